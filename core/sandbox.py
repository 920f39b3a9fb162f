"""Security sandbox for gateway tool calls.

Centralizes the per-argument checks that run before any process exists:
- Path guard: textual traversal check, canonicalization (symlinks resolved),
  blocked-prefix match on path-segment boundaries, absolute working_dir
- Argument sanitizer: forbidden characters anywhere in any argument
- Flag guard: path/target fields may not start with '-'
- Environment guard: blocked keys, BASH_FUNC_* exports, malformed entries

SECURITY MODEL:
- Arguments are handed to process creation as a vector, never through a
  shell. The forbidden-character check stops semantic injection into tools
  that interpret those characters themselves.
- A rejection anywhere rejects the whole request. Nothing is escaped,
  nothing is partially executed.
- A path that does not exist is not a rejection; the command reports it.
"""

import os
import re

from core.errors import EnvRejected, InjectionRejected, PathRejected
from core.policy import FORBIDDEN_CHARACTERS_DISPLAY, SecurityPolicy


# Hint appended to forbidden-character errors
TRANSFORM_HINT = (
    "Use grep_pattern, invert_grep, head, tail, sort, or unique parameters "
    "to filter/transform output instead of shell operators."
)

# Both separators count on every platform: a request is text, not a native path
_SEGMENT_SPLIT_RE = re.compile(r"[\\/]+")


def has_parent_segment(raw_path: str) -> bool:
    """True if any path segment is exactly '..' (checked before resolution)."""
    return ".." in _SEGMENT_SPLIT_RE.split(raw_path)


def is_under_prefix(path: str, prefix: str) -> bool:
    """Segment-boundary prefix match: /etc covers /etc and /etc/x, not /etc2."""
    if path == prefix:
        return True
    base = prefix.rstrip(os.sep)
    return path.startswith(base + os.sep)


class Sandbox:
    """Validates paths, arguments and environment against a SecurityPolicy.

    Stateless apart from the read-only policy, so one instance is shared
    by all concurrent requests.
    """

    def __init__(self, policy: SecurityPolicy):
        self.policy = policy

    # ============================================================
    # Path guard
    # ============================================================

    def authorize_path(self, raw_path: str, base_dir: str = None) -> str:
        """Authorize a path argument. Returns the canonical path.

        Checks, in order:
        1. No '..' segment anywhere in the raw text
        2. Canonicalize (relative paths join base_dir, else cwd; symlinks resolved)
        3. Canonical path is not equal to / under any blocked prefix

        Raises PathRejected.
        """
        if has_parent_segment(raw_path):
            raise PathRejected(
                f"Path '{raw_path}' contains a parent-directory segment ('..'), "
                f"which is not allowed",
                path=raw_path,
            )

        if os.path.isabs(raw_path):
            candidate = raw_path
        else:
            candidate = os.path.join(base_dir or os.getcwd(), raw_path)

        try:
            resolved = os.path.realpath(candidate)
        except (OSError, ValueError) as e:
            raise PathRejected(f"Invalid path '{raw_path}': {e}", path=raw_path)

        for prefix in self.policy.blocked_path_prefixes:
            if is_under_prefix(resolved, prefix):
                raise PathRejected(
                    f"Accessing path '{raw_path}' is not allowed", path=raw_path
                )

        return resolved

    def authorize_working_dir(self, raw_path: str) -> str:
        """Authorize a working directory: the path checks plus absoluteness."""
        resolved = self.authorize_path(raw_path)
        if not os.path.isabs(raw_path):
            raise PathRejected(
                f"working_dir must be an absolute path: '{raw_path}'", path=raw_path
            )
        return resolved

    # ============================================================
    # Argument sanitizer
    # ============================================================

    def check_argument(self, arg: str) -> None:
        """Reject an argument containing any forbidden character."""
        forbidden = self.policy.forbidden_characters
        if any(ch in forbidden for ch in arg):
            raise InjectionRejected(
                f"'{arg}' contains invalid characters. "
                f"Forbidden characters: {FORBIDDEN_CHARACTERS_DISPLAY}. {TRANSFORM_HINT}",
                argument=arg,
            )

    def check_not_flag(self, arg: str, field: str = "argument") -> None:
        """Reject a value that would be parsed as an option by the tool."""
        if arg.startswith("-"):
            raise InjectionRejected(
                f"{field} '{arg}' must not start with '-'", argument=arg
            )

    def check_env(self, env: dict) -> None:
        """Reject blocked or malformed environment entries (keys are case-sensitive)."""
        for key, value in env.items():
            if not key or "=" in key or "\x00" in key:
                raise EnvRejected(f"Invalid environment variable name: '{key}'", key=key)
            if self.policy.is_blocked_env_key(key):
                raise EnvRejected(
                    f"Setting environment variable '{key}' is not allowed", key=key
                )
            if "\x00" in value:
                raise EnvRejected(
                    f"Environment variable '{key}' contains a NUL byte", key=key
                )

    def sanitize(self, args, env: dict = None) -> None:
        """Scan every argument and every env key. First failure rejects all.

        Raises InjectionRejected or EnvRejected.
        """
        for arg in args:
            self.check_argument(arg)
        if env:
            self.check_env(env)
