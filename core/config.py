"""Configuration file support for cmdgate.

Loads settings from .cmdgate.toml (project-level) or ~/.cmdgate.toml
(user-level). CLI flags override config file values. Config file overrides
defaults. Blocked path lists are the exception: file, environment
(CMDGATE_BLOCKED_PATHS) and CLI lists are unioned, never replaced.
"""

import os
import tomllib
from pathlib import Path


# Default configuration values (same as CLI defaults)
DEFAULTS = {
    "blocked_paths": [],
    "blocked_env_keys": [],
    "default_timeout_ms": 180_000,
    "max_output_lines": 100_000,
    "max_line_bytes": 65_536,
    "progress_queue_size": 1024,
    "grep_timeout_ms": 2000,
    "audit_dir": None,
}

# Config file search order (first found wins)
CONFIG_FILENAMES = [".cmdgate.toml", "cmdgate.toml"]
CONFIG_SEARCH_DIRS = [
    ".",                          # Current directory (project-level)
    str(Path.home()),             # Home directory (user-level)
]


class ConfigError(Exception):
    """Raised when a config file exists but cannot be used."""
    pass


def find_config_file() -> str | None:
    """Find the first config file in the search path."""
    for directory in CONFIG_SEARCH_DIRS:
        for filename in CONFIG_FILENAMES:
            path = os.path.join(directory, filename)
            if os.path.isfile(path):
                return path
    return None


def load_config(config_path: str = None, search: bool = True) -> dict:
    """Load configuration from file.

    Args:
        config_path: Explicit path to config file. Must exist if given.
        search: Look in the default locations when no path is given.

    Returns:
        Dict of configuration values. Missing keys use DEFAULTS.

    Raises:
        ConfigError: explicit file missing, unreadable, or not valid TOML.
    """
    config = {k: (list(v) if isinstance(v, list) else v) for k, v in DEFAULTS.items()}

    if config_path:
        if not os.path.isfile(config_path):
            raise ConfigError(f"Config file not found: {config_path}")
        path = config_path
    elif search:
        path = find_config_file()
    else:
        path = None
    if not path:
        return config

    try:
        with open(path, "rb") as f:
            file_config = tomllib.load(f)
    except OSError as e:
        raise ConfigError(f"Cannot read config file {path}: {e}")
    except tomllib.TOMLDecodeError as e:
        raise ConfigError(f"Invalid TOML in {path}: {e}")

    # Normalize key names (TOML uses - or _, CLI uses _)
    for key, value in file_config.items():
        norm_key = key.replace("-", "_")
        if norm_key in config:
            config[norm_key] = value

    for key in ("blocked_paths", "blocked_env_keys"):
        value = config[key]
        if isinstance(value, str):
            config[key] = [value]
        elif not isinstance(value, list) or not all(isinstance(v, str) for v in value):
            raise ConfigError(f"{key} in {path} must be a list of strings")

    config["_config_file"] = path
    return config


def merge_cli_args(config: dict, args) -> dict:
    """Merge CLI arguments over config file values.

    CLI args that are None don't override config. --blocked-path entries
    are added to the configured list.
    """
    result = dict(config)

    mappings = {
        "timeout_ms": "default_timeout_ms",
        "audit_dir": "audit_dir",
    }
    for arg_name, config_key in mappings.items():
        cli_value = getattr(args, arg_name, None)
        if cli_value is None:
            continue
        result[config_key] = cli_value

    extra = getattr(args, "blocked_path", None) or []
    result["blocked_paths"] = list(result.get("blocked_paths") or []) + list(extra)
    return result


def generate_sample_config() -> str:
    """Generate a sample .cmdgate.toml config file."""
    return '''# cmdgate configuration
# Place this file at .cmdgate.toml (project) or ~/.cmdgate.toml (user)

# Absolute path prefixes no tool may touch (matched after symlink resolution).
# Also settable with CMDGATE_BLOCKED_PATHS="/etc;/root" and --blocked-path.
# All sources are combined.
blocked_paths = ["/etc", "/root/.ssh"]

# Extra environment variable names requests may not set
# (loader, shell and git hook variables are always blocked)
# blocked_env_keys = ["AWS_PROFILE"]

# Timeout applied when a request omits timeout_ms (milliseconds)
default_timeout_ms = 180000

# Output limits. Lines are always counted; these cap what is kept.
max_output_lines = 100000
max_line_bytes = 65536

# Progress notifications buffered before new ones are dropped
progress_queue_size = 1024

# Time allowed for matching grep_pattern against one command's output
grep_timeout_ms = 2000

# Audit log directory (default: working directory)
# audit_dir = "./logs"
'''
