"""Tool protocol for the cmdgate command gateway.

A tool is a ToolDefinition: a name, a description, a JSON input schema, the
PathRegistry key of its executable, and a builder that turns the raw
request arguments into a ToolInvocation. Builders only shape arguments;
every security decision is made afterwards by the Gateway.

Argument vector layout:
    <executable> [subcommand] <args...> <operands...> <resolved paths...>
"""

from dataclasses import dataclass, field

from core.errors import ValidationError


# Request fields every tool accepts in addition to its own
COMMON_PROPERTIES = {
    "grep_pattern": {
        "type": "string",
        "description": "Keep only output lines matching this regular expression.",
    },
    "invert_grep": {
        "type": "boolean",
        "description": "Drop matching lines instead of keeping them.",
    },
    "sort": {"type": "boolean", "description": "Sort output lines."},
    "unique": {"type": "boolean", "description": "Collapse adjacent duplicate lines."},
    "head": {"type": "integer", "minimum": 0, "description": "Keep the first N lines."},
    "tail": {"type": "integer", "minimum": 0, "description": "Keep the last N lines."},
    "transform_order": {
        "type": "array",
        "items": {"type": "string", "enum": ["grep", "sort", "unique", "head", "tail"]},
        "description": "Explicit order of transformation steps. Only listed steps run.",
    },
    "timeout_ms": {
        "type": "integer",
        "minimum": 1,
        "description": "Kill the command after this many milliseconds.",
    },
    "working_dir": {
        "type": "string",
        "description": "Absolute working directory for the command.",
    },
    "env": {
        "type": "object",
        "additionalProperties": {"type": "string"},
        "description": "Extra environment variables for the command.",
    },
}

COMMON_FIELDS = frozenset(COMMON_PROPERTIES)


@dataclass(frozen=True)
class ToolInvocation:
    """What a builder produced from the request.

    paths are authorized and canonicalized by the Gateway before they are
    appended; operands and paths must not look like flags. pathspecs are
    entries of args that name files: they are authorized the same way but
    passed on as written.
    """
    subcommand: str | None = None
    args: tuple[str, ...] = ()
    operands: tuple[str, ...] = ()
    paths: tuple[str, ...] = ()
    pathspecs: tuple[str, ...] = ()


@dataclass(frozen=True)
class ToolDefinition:
    name: str
    description: str
    properties: dict
    builder: callable
    executable: str
    required: tuple[str, ...] = ()
    fields: frozenset = field(init=False)

    def __post_init__(self):
        object.__setattr__(self, "fields", frozenset(self.properties) | COMMON_FIELDS)

    @property
    def input_schema(self) -> dict:
        return {
            "type": "object",
            "properties": {**self.properties, **COMMON_PROPERTIES},
            "required": list(self.required),
            "additionalProperties": False,
        }

    def build(self, arguments: dict) -> ToolInvocation:
        unknown = sorted(k for k in arguments if k not in self.fields)
        if unknown:
            raise ValidationError(
                f"Unknown argument(s) for {self.name}: {', '.join(unknown)}"
            )
        return self.builder(arguments)


# ============================================================
# Argument helpers for builders
# ============================================================

def require_string(arguments: dict, name: str) -> str:
    value = arguments.get(name)
    if value is None:
        raise ValidationError(f"{name} is required")
    if not isinstance(value, str):
        raise ValidationError(f"{name} must be a string, got {value!r}")
    if not value:
        raise ValidationError(f"{name} must not be empty")
    return value


def optional_string(arguments: dict, name: str, default: str = None) -> str | None:
    if arguments.get(name) is None:
        return default
    return require_string(arguments, name)


def string_list(arguments: dict, name: str) -> tuple[str, ...]:
    """A list of strings; missing means empty."""
    value = arguments.get(name)
    if value is None:
        return ()
    if not isinstance(value, list) or not all(isinstance(v, str) for v in value):
        raise ValidationError(f"{name} must be a list of strings, got {value!r}")
    return tuple(value)


class ToolRegistry:
    """Registry of the tools the gateway exposes."""

    def __init__(self):
        self._tools: dict[str, ToolDefinition] = {}

    def register_tool(self, definition: ToolDefinition) -> None:
        if definition.name in self._tools:
            raise ValueError(f"Tool '{definition.name}' is already registered.")
        self._tools[definition.name] = definition

    def get_tool(self, name: str) -> ToolDefinition | None:
        """Return the definition or None if not registered."""
        return self._tools.get(name)

    def names(self) -> list[str]:
        return list(self._tools)

    def list_tools(self) -> list[dict]:
        """Name, description and input schema of every registered tool."""
        return [
            {
                "name": d.name,
                "description": d.description,
                "inputSchema": d.input_schema,
            }
            for d in self._tools.values()
        ]
