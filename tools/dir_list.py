"""ls tool: long listing of a directory, hidden entries included."""

from core.tool_protocol import ToolDefinition, ToolInvocation, optional_string


def build(arguments: dict) -> ToolInvocation:
    path = optional_string(arguments, "path", default=".")
    return ToolInvocation(args=("-al",), paths=(path,))


DEFINITION = ToolDefinition(
    name="ls",
    description="List directory contents (ls -al). Defaults to the working directory.",
    properties={
        "path": {
            "type": "string",
            "description": "Path to the directory to list (default: '.')",
        },
    },
    builder=build,
    executable="ls",
)
