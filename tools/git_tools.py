"""git tool: a small, safe subset of version control operations.

Safety rules (enforced by core.command_policy):
  - Only status, add, commit and checkout
  - Never --no-verify
  - Never --amend
  - Never --force / -f
  - Never an option that reads a file (--pathspec-from-file, -F, -t)

Every operand (pathspec, branch name) is authorized like a path, so it
cannot reach outside through '..' or name a blocked location.
"""

from core.command_policy import VALUE_FLAGS, split_args
from core.errors import PathRejected
from core.tool_protocol import ToolDefinition, ToolInvocation, require_string, string_list


def build(arguments: dict) -> ToolInvocation:
    """git <subcommand> <args...>

    A commit message is passed as its own element, e.g.
    {"subcommand": "commit", "args": ["-m", "Fix typo"]}.
    """
    subcommand = require_string(arguments, "subcommand")
    args = string_list(arguments, "args")
    _, operands = split_args(args, VALUE_FLAGS["git"])
    for operand in operands:
        # ':(top)', ':/' and friends re-anchor the pathspec at the repo root
        if operand.startswith(":"):
            raise PathRejected(
                f"Pathspec magic is not allowed: '{operand}'", path=operand
            )
    return ToolInvocation(
        subcommand=subcommand,
        args=args,
        pathspecs=tuple(operands),
    )


DEFINITION = ToolDefinition(
    name="git",
    description="Run a git subcommand (status, add, commit, checkout).",
    properties={
        "subcommand": {
            "type": "string",
            "enum": ["status", "add", "commit", "checkout"],
            "description": "The git subcommand to run",
        },
        "args": {
            "type": "array",
            "items": {"type": "string"},
            "description": "Arguments passed to the git subcommand",
        },
    },
    required=("subcommand",),
    builder=build,
    executable="git",
)
