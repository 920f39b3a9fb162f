"""Process-wide security policy.

Built once at startup from the merged configuration and shared read-only
by every request. Nothing mutates it afterwards, so no locking is needed.
"""

import os
from dataclasses import dataclass


# Characters that could be used for injection. The gateway never builds a
# shell string, so these guard against tools that interpret the characters
# themselves (glob patterns, pathspecs, revision syntax).
FORBIDDEN_CHARACTERS = frozenset(";|&$`(){}[]<>'\"\\*?!#\n\r")

# Display form for error messages (control characters omitted)
FORBIDDEN_CHARACTERS_DISPLAY = "; | & $ ` ( ) { } [ ] < > ' \" \\ * ? ! #"

# Environment keys that change how the child (or something it spawns)
# loads code, runs hooks, or locates its binaries.
BLOCKED_ENV_KEYS = frozenset({
    # Dynamic loader injection
    "LD_PRELOAD", "LD_LIBRARY_PATH", "LD_AUDIT",
    "DYLD_INSERT_LIBRARIES", "DYLD_LIBRARY_PATH",
    "DYLD_FRAMEWORK_PATH", "DYLD_FALLBACK_LIBRARY_PATH",
    # Shell startup / expansion
    "BASH_ENV", "ENV", "IFS", "PS4", "PROMPT_COMMAND",
    "SHELLOPTS", "BASHOPTS",
    # Binary lookup
    "PATH",
    # Interpreter manipulation
    "PYTHONPATH", "PYTHONSTARTUP", "NODE_OPTIONS",
    "PERL5OPT", "RUBYOPT", "JAVA_TOOL_OPTIONS",
    # Git hooks into arbitrary commands
    "GIT_SSH", "GIT_SSH_COMMAND", "GIT_EXEC_PATH",
    "GIT_ASKPASS", "SSH_ASKPASS",
    "GIT_EDITOR", "EDITOR", "VISUAL",
    "GIT_PAGER", "PAGER", "GIT_EXTERNAL_DIFF",
    "GIT_CONFIG_GLOBAL", "GIT_CONFIG_SYSTEM",
    "GIT_CONFIG_PARAMETERS", "GIT_CONFIG_COUNT",
    "GIT_DIR", "GIT_WORK_TREE",
})

# Exported bash functions (Shellshock-style payloads)
BLOCKED_ENV_PREFIXES = ("BASH_FUNC_",)

# Environment variable holding extra blocked prefixes, semicolon-separated
BLOCKED_PATHS_ENV_VAR = "CMDGATE_BLOCKED_PATHS"


def canonicalize_prefix(prefix: str) -> str:
    """Canonicalize a blocked prefix. Raises ValueError if not absolute."""
    if not os.path.isabs(prefix):
        raise ValueError(f"Blocked path prefix must be absolute: {prefix!r}")
    return os.path.realpath(prefix)


def parse_blocked_paths(value: str) -> list[str]:
    """Split a semicolon-separated prefix list, dropping empty segments."""
    return [p.strip() for p in value.split(";") if p.strip()]


@dataclass(frozen=True)
class SecurityPolicy:
    blocked_path_prefixes: frozenset[str] = frozenset()
    blocked_env_keys: frozenset[str] = BLOCKED_ENV_KEYS
    blocked_env_prefixes: tuple[str, ...] = BLOCKED_ENV_PREFIXES
    forbidden_characters: frozenset[str] = FORBIDDEN_CHARACTERS
    default_timeout_ms: int = 180_000
    max_output_lines: int = 100_000
    max_line_bytes: int = 65_536
    progress_queue_size: int = 1024
    grep_timeout_ms: int = 2000

    @classmethod
    def build(
        cls,
        blocked_paths=(),
        extra_env_keys=(),
        **limits,
    ) -> "SecurityPolicy":
        """Construct a policy, canonicalizing prefixes and validating limits."""
        prefixes = frozenset(canonicalize_prefix(p) for p in blocked_paths)
        env_keys = BLOCKED_ENV_KEYS | frozenset(extra_env_keys)
        for name in ("default_timeout_ms", "max_output_lines", "max_line_bytes",
                     "progress_queue_size", "grep_timeout_ms"):
            if name in limits:
                value = limits[name]
                if isinstance(value, bool) or not isinstance(value, int) or value <= 0:
                    raise ValueError(f"{name} must be a positive integer, got {value!r}")
        return cls(blocked_path_prefixes=prefixes, blocked_env_keys=env_keys, **limits)

    def is_blocked_env_key(self, key: str) -> bool:
        if key in self.blocked_env_keys:
            return True
        return any(key.startswith(p) for p in self.blocked_env_prefixes)


def load_policy(config: dict, environ=None) -> SecurityPolicy:
    """Build the SecurityPolicy from merged config plus the environment.

    Blocked path lists from the config file/CLI and from
    CMDGATE_BLOCKED_PATHS are unioned.
    """
    environ = os.environ if environ is None else environ
    blocked = list(config.get("blocked_paths") or [])
    blocked.extend(parse_blocked_paths(environ.get(BLOCKED_PATHS_ENV_VAR, "")))

    return SecurityPolicy.build(
        blocked_paths=blocked,
        extra_env_keys=config.get("blocked_env_keys") or [],
        default_timeout_ms=config.get("default_timeout_ms", 180_000),
        max_output_lines=config.get("max_output_lines", 100_000),
        max_line_bytes=config.get("max_line_bytes", 65_536),
        progress_queue_size=config.get("progress_queue_size", 1024),
        grep_timeout_ms=config.get("grep_timeout_ms", 2000),
    )
