"""Test configuration.

Puts the repo root on sys.path and provides a gateway factory wired to the
real cat/ls binaries with auditing off. Tests that need a stricter policy
build their own SecurityPolicy.
"""

import os
import shutil
import sys

# Add parent to path
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from core.gateway import Gateway, build_registry
from core.path_registry import PathRegistry
from core.policy import SecurityPolicy


def make_paths(exclude=(), **extra) -> PathRegistry:
    """PathRegistry with whatever real binaries exist, minus exclude, plus overrides."""
    paths = {}
    for name in ("cat", "ls", "git", "bazel"):
        found = shutil.which(name)
        if found and name not in exclude:
            paths[name] = os.path.realpath(found)
    paths.update(extra)
    return PathRegistry(paths)


def make_gateway(blocked_paths=(), supervisor=None, audit=None, paths=None, **limits) -> Gateway:
    policy = SecurityPolicy.build(blocked_paths=blocked_paths, **limits)
    return Gateway(
        policy,
        build_registry(),
        paths if paths is not None else make_paths(),
        supervisor=supervisor,
        audit=audit,
    )
