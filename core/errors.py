"""Error taxonomy for the command gateway.

Everything here is scoped to a single tool call. The gateway catches
GatewayError and renders it as an error result; nothing in this hierarchy
is fatal to the server process.

  GatewayError
    ValidationError       rejected before any process is spawned
      PathRejected        traversal segment, blocked prefix, non-absolute working_dir
      InjectionRejected   forbidden character or flag-looking argument
      EnvRejected         blocked or malformed environment key/value
      SubcommandRejected  tool/subcommand/flag not in the static allowlist
      TransformError      malformed transformation parameters or order
    SpawnFailed           executable missing, permission denied, bad cwd

Timeout and cancellation are NOT errors: they produce a CommandResult.
"""


class GatewayError(Exception):
    """Base class for request-scoped gateway failures."""

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message

    def render(self) -> str:
        """Human-readable message for the result envelope."""
        if self.message.startswith("Error:"):
            return self.message
        return f"Error: {self.message}"


class ValidationError(GatewayError):
    """Raised when a request fails validation. Nothing has been spawned."""
    pass


class PathRejected(ValidationError):
    """Raised when a path resolves into a blocked tree or attempts traversal."""

    def __init__(self, message: str, path: str = ""):
        super().__init__(message)
        self.path = path


class InjectionRejected(ValidationError):
    """Raised when an argument carries shell-metacharacter or flag content."""

    def __init__(self, message: str, argument: str = ""):
        super().__init__(message)
        self.argument = argument


class EnvRejected(ValidationError):
    """Raised when an environment key is blocked or malformed."""

    def __init__(self, message: str, key: str = ""):
        super().__init__(message)
        self.key = key


class SubcommandRejected(ValidationError):
    """Raised when a tool, subcommand or flag is outside the allowlist."""
    pass


class TransformError(ValidationError):
    """Raised on malformed transformation parameters."""
    pass


class SpawnFailed(GatewayError):
    """Raised when the child process could not be created."""
    pass
