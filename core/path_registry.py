"""Executable lookup for the gateway's tools.

Every binary is located once at startup and kept as a canonical absolute
path. Requests only ever read that table, so neither a later PATH change
nor a request's env can swap the program that runs.
"""

import os
import shutil


# tool name -> (candidate program names, required at startup)
TOOL_BINARIES = {
    "cat": (("cat",), True),
    "ls": (("ls",), True),
    "git": (("git",), False),
    "bazel": (("bazel", "bazelisk"), False),
}


def which_real(candidates, search_path: str = None) -> str | None:
    """First candidate found on search_path (default PATH), symlinks resolved."""
    for candidate in candidates:
        found = shutil.which(candidate, path=search_path)
        if found:
            return os.path.realpath(found)
    return None


class PathRegistry:
    """Tool name to absolute executable path, fixed after startup."""

    def __init__(self, paths: dict = None, binaries: dict = None):
        self._paths: dict[str, str] = dict(paths or {})
        self._binaries = TOOL_BINARIES if binaries is None else binaries
        self.warnings: list[str] = []

    def resolve_all(self, search_path: str = None) -> dict[str, str]:
        """Locate every tool binary and replace the table.

        A missing optional binary only adds a warning; calls to that tool
        then fail with SpawnFailed.

        Raises RuntimeError if a required binary cannot be found.
        """
        found = {}
        missing = []
        warnings = []
        for tool, (candidates, required) in self._binaries.items():
            path = which_real(candidates, search_path)
            if path:
                found[tool] = path
            elif required:
                missing.append(tool)
            else:
                warnings.append(
                    f"'{tool}' not found (tried: {', '.join(candidates)}); "
                    f"calls to the {tool} tool will fail."
                )

        if missing:
            raise RuntimeError(
                f"Required binaries not found: {', '.join(missing)}. "
                f"Install them or fix PATH."
            )

        self._paths = found
        self.warnings = warnings
        return dict(found)

    def get_optional(self, name: str) -> str | None:
        return self._paths.get(name)
