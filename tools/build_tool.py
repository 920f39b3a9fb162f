"""bazel tool: build or test a single target.

Only `build` and `test` are reachable (see core.command_policy). The
target is passed as one operand and may not start with '-', so a request
cannot smuggle in startup options or --config overrides.
"""

from core.tool_protocol import ToolDefinition, ToolInvocation, require_string


def build(arguments: dict) -> ToolInvocation:
    return ToolInvocation(
        subcommand=require_string(arguments, "subcommand"),
        operands=(require_string(arguments, "target"),),
    )


DEFINITION = ToolDefinition(
    name="bazel",
    description="Run bazel build or test on a target.",
    properties={
        "subcommand": {
            "type": "string",
            "enum": ["build", "test"],
            "description": "Bazel subcommand (build or test)",
        },
        "target": {
            "type": "string",
            "description": "Bazel target (e.g. //path/to:target)",
        },
    },
    required=("subcommand", "target"),
    builder=build,
    executable="bazel",
)
