"""Command policy: controls which subcommands each tool may run.

The allowlist is static: widening it is a code change, so the exposed
surface stays reviewable. Tools without a subcommand concept (cat, ls)
only need to be known.
"""

from types import MappingProxyType

from core.errors import SubcommandRejected


# Allowed subcommands per tool. None = tool takes no subcommand.
ALLOWED_SUBCOMMANDS = MappingProxyType({
    "cat": None,
    "ls": None,
    # Build tool: build and test only (no run, no clean --expunge)
    "bazel": ("build", "test"),
    # Version control: status + the safe write ops
    "git": ("status", "add", "commit", "checkout"),
})

# Flags rejected anywhere in a tool's argument list. git accepts any
# unambiguous prefix of a long option, so prefixes of these are rejected too.
FORBIDDEN_FLAGS = MappingProxyType({
    "git": frozenset({
        # Never skip hooks, never rewrite history, never force
        "--no-verify", "--amend", "--force", "-f", "--exec",
        # Options that make git read a file of the caller's choosing
        "--pathspec-from-file", "-F", "--file", "-t", "--template",
    }),
})

# Options whose value may be the next argument. That argument is a value,
# not an option and not a path.
VALUE_FLAGS = MappingProxyType({
    "git": frozenset({
        "-m", "--message", "-C", "--reuse-message", "-c", "--reedit-message",
        "--fixup", "--squash", "--author", "--date", "--cleanup", "--trailer",
        "-b", "-B", "--orphan",
    }),
})


def split_args(args, value_flags=frozenset()) -> tuple[list[str], list[str]]:
    """Split an argument list into (options, operands).

    A value-taking option swallows the next argument when its value is not
    attached ('-mmsg', '--message=msg'); that value lands in neither list.
    A short-option cluster ('-qb') ends at its first value-taking letter.
    Everything after '--' is an operand.
    """
    options = []
    operands = []
    remaining = iter(args)
    for arg in remaining:
        if arg == "--":
            operands.extend(remaining)
            break
        if arg.startswith("--"):
            options.append(arg)
            if "=" not in arg and arg in value_flags:
                next(remaining, None)
        elif arg.startswith("-") and len(arg) > 1:
            options.append(arg)
            for i, letter in enumerate(arg[1:], 1):
                if "-" + letter in value_flags:
                    if i == len(arg) - 1:
                        next(remaining, None)
                    break
        else:
            operands.append(arg)
    return options, operands


class CommandPolicy:
    """Per-tool subcommand allowlist."""

    def __init__(self, allowed: dict = None, forbidden_flags: dict = None):
        """Initialize command policy.

        Args:
            allowed: Override the tool → subcommands map (tests only).
            forbidden_flags: Override the tool → forbidden flags map.
        """
        self._allowed = MappingProxyType(dict(allowed if allowed is not None else ALLOWED_SUBCOMMANDS))
        self._forbidden_flags = MappingProxyType(
            dict(forbidden_flags if forbidden_flags is not None else FORBIDDEN_FLAGS)
        )

    def allowed_subcommands(self, tool_name: str) -> tuple[str, ...]:
        """Allowed subcommands for a tool (empty for subcommand-less tools)."""
        return tuple(self._allowed.get(tool_name) or ())

    def authorize(self, tool_name: str, subcommand: str = None) -> None:
        """Raise SubcommandRejected unless the tool/subcommand pair is allowed."""
        if tool_name not in self._allowed:
            raise SubcommandRejected(f"Tool '{tool_name}' is not allowed")

        allowed = self._allowed[tool_name]
        if allowed is None:
            return

        if not subcommand:
            raise SubcommandRejected(
                f"subcommand is required for {tool_name}. "
                f"Allowed subcommands: {', '.join(allowed)}"
            )
        if subcommand not in allowed:
            raise SubcommandRejected(
                f"Subcommand '{subcommand}' is not allowed. "
                f"Allowed subcommands: {', '.join(allowed)}"
            )

    def check_flags(self, tool_name: str, args) -> None:
        """Reject tool-specific dangerous flags.

        Catches the exact flag, its '--flag=value' form, abbreviations of
        long flags and short flags inside a cluster ('-qf').
        """
        forbidden = self._forbidden_flags.get(tool_name)
        if not forbidden:
            return
        value_flags = VALUE_FLAGS.get(tool_name, frozenset())
        options, _ = split_args(args, value_flags)
        for option in options:
            if option.startswith("--"):
                name = option.split("=", 1)[0]
                if any(flag.startswith(name) for flag in forbidden if flag.startswith("--")):
                    raise SubcommandRejected(f"Flag '{name}' is not allowed for {tool_name}")
                continue
            for letter in option[1:]:
                flag = "-" + letter
                if flag in forbidden:
                    raise SubcommandRejected(f"Flag '{flag}' is not allowed for {tool_name}")
                if flag in value_flags:
                    break
