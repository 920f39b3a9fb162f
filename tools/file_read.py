"""cat tool: print a file's contents."""

from core.tool_protocol import ToolDefinition, ToolInvocation, require_string


def build(arguments: dict) -> ToolInvocation:
    """cat <path>. The path is authorized and canonicalized by the gateway."""
    return ToolInvocation(paths=(require_string(arguments, "path"),))


DEFINITION = ToolDefinition(
    name="cat",
    description=(
        "Read and output file contents. Use grep_pattern, head, tail, sort "
        "and unique to filter the output."
    ),
    properties={
        "path": {"type": "string", "description": "Path to the file to read"},
    },
    required=("path",),
    builder=build,
    executable="cat",
)
