"""Value types passed between the gateway stages."""

from dataclasses import dataclass, field
from types import MappingProxyType


# Default request timeout (3 minutes)
DEFAULT_TIMEOUT_MS = 180_000

# Exit code reported when the process has no numeric status of its own:
# killed by a signal, timed out, cancelled, or abandoned after a read error.
EXIT_KILLED = -1

# CommandResult.termination values
EXITED = "exited"
TIMEOUT = "timeout"
CANCELLED = "cancelled"
STREAM_ERROR = "stream_error"


@dataclass(frozen=True)
class ExecutionRequest:
    """A fully validated, ready-to-run command.

    Only Gateway.prepare() builds these, after policy, path and argument
    checks have all passed. Nothing downstream re-validates.
    """

    tool_name: str
    executable: str
    subcommand: str | None = None
    positional_args: tuple[str, ...] = ()
    working_dir: str | None = None
    env: MappingProxyType = field(default_factory=lambda: MappingProxyType({}))
    timeout_ms: int = DEFAULT_TIMEOUT_MS

    def __post_init__(self):
        object.__setattr__(self, "positional_args", tuple(self.positional_args))
        if not isinstance(self.env, MappingProxyType):
            object.__setattr__(self, "env", MappingProxyType(dict(self.env)))

    @property
    def argv(self) -> list[str]:
        """Argument vector handed to process creation. Never a shell string."""
        argv = [self.executable]
        if self.subcommand:
            argv.append(self.subcommand)
        argv.extend(self.positional_args)
        return argv


@dataclass(frozen=True)
class CommandResult:
    line_count: int
    exit_code: int
    output_lines: tuple[str, ...] = ()
    termination: str = EXITED
    truncated: bool = False

    def __post_init__(self):
        object.__setattr__(self, "output_lines", tuple(self.output_lines))

    @property
    def ok(self) -> bool:
        return self.exit_code == 0


@dataclass(frozen=True)
class ProgressEvent:
    sequence_number: int
    text: str


@dataclass(frozen=True)
class ToolResponse:
    """Rendered outcome of one tool call."""

    text: str
    is_error: bool
    result: CommandResult | None = None
