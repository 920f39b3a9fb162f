"""Gateway: the single entry point for a tool call.

Pipeline for one request:
    tool lookup → argument shaping (tool builder)
    → CommandPolicy (subcommand allowlist, forbidden flags)
    → Sandbox (forbidden characters, flag-looking operands, env keys,
      working_dir, path authorization)
    → TransformationSpec / timeout parsing
    → ExecutionRequest → ProcessSupervisor → transformation pipeline
    → ToolResponse

Every rejection happens before a process exists. Every failure is scoped
to its own call and comes back as a ToolResponse with is_error set; the
gateway never raises out of handle().
"""

import os
import threading
import time

from core import transform
from core.audit_log import AuditLog
from core.command_policy import CommandPolicy
from core.errors import GatewayError, SpawnFailed, ValidationError
from core.models import CANCELLED, TIMEOUT, CommandResult, ExecutionRequest, ToolResponse
from core.path_registry import PathRegistry
from core.policy import SecurityPolicy, load_policy
from core.sandbox import Sandbox
from core.supervisor import ProcessSupervisor, ProgressRelay
from core.tool_protocol import ToolRegistry, optional_string
from core.transform import TransformationSpec

from tools import build_tool, dir_list, file_read, git_tools


BUILTIN_TOOLS = (
    file_read.DEFINITION,
    dir_list.DEFINITION,
    build_tool.DEFINITION,
    git_tools.DEFINITION,
)


def build_registry() -> ToolRegistry:
    """Registry with the four built-in tools."""
    registry = ToolRegistry()
    for definition in BUILTIN_TOOLS:
        registry.register_tool(definition)
    return registry


def parse_timeout(arguments: dict, default_ms: int) -> int:
    value = arguments.get("timeout_ms")
    if value is None:
        return default_ms
    if isinstance(value, bool) or not isinstance(value, int) or value <= 0:
        raise ValidationError(f"timeout_ms must be a positive integer, got {value!r}")
    return value


def parse_env(arguments: dict) -> dict:
    value = arguments.get("env")
    if value is None:
        return {}
    if not isinstance(value, dict) or not all(
        isinstance(k, str) and isinstance(v, str) for k, v in value.items()
    ):
        raise ValidationError("env must be an object mapping strings to strings")
    return dict(value)


def render_result(result: CommandResult, spec: TransformationSpec,
                  timeout_ms: int, max_output_lines: int, grep_timeout_ms: int = None) -> str:
    """Summary block, then the transformed lines when any were requested.

    Raises TransformError when grep_pattern runs past grep_timeout_ms.
    """
    parts = [f"Lines: {result.line_count}", f"Exit code: {result.exit_code}"]
    if result.termination == TIMEOUT:
        parts.append(f"Terminated: timeout after {timeout_ms} ms")
    elif result.termination == CANCELLED:
        parts.append("Terminated: cancelled")
    if result.truncated:
        parts.append(f"Output truncated: kept first {max_output_lines} lines")
    text = "\n".join(parts)

    if not spec.is_empty:
        grep_timeout = None if grep_timeout_ms is None else grep_timeout_ms / 1000.0
        lines = transform.apply(result.output_lines, spec, timeout=grep_timeout)
        text += "\n\n" + "\n".join(lines)
    return text


class Gateway:
    """Validates, runs and renders tool calls. Safe to share across threads."""

    def __init__(
        self,
        policy: SecurityPolicy,
        registry: ToolRegistry,
        paths: PathRegistry,
        supervisor: ProcessSupervisor = None,
        command_policy: CommandPolicy = None,
        sandbox: Sandbox = None,
        audit: AuditLog = None,
    ):
        self.policy = policy
        self.registry = registry
        self.paths = paths
        self.supervisor = supervisor or ProcessSupervisor(
            max_output_lines=policy.max_output_lines,
            max_line_bytes=policy.max_line_bytes,
            progress_queue_size=policy.progress_queue_size,
        )
        self.command_policy = command_policy or CommandPolicy()
        self.sandbox = sandbox or Sandbox(policy)
        self.audit = audit

        self._stats_lock = threading.Lock()
        self.tool_calls = 0
        self.errors = 0

    def list_tools(self) -> list[dict]:
        return self.registry.list_tools()

    # ============================================================
    # Validation
    # ============================================================

    def prepare(self, tool_name: str, arguments: dict) -> tuple[ExecutionRequest, TransformationSpec]:
        """Turn a raw tool call into a validated ExecutionRequest.

        Raises ValidationError (nothing spawned) or SpawnFailed when the
        tool's executable was not found at startup.
        """
        if arguments is None:
            arguments = {}
        if not isinstance(arguments, dict):
            raise ValidationError("Tool arguments must be an object")

        definition = self.registry.get_tool(tool_name)
        if definition is None:
            raise ValidationError(
                f"Unknown tool '{tool_name}'. Available tools: {', '.join(self.registry.names())}"
            )

        invocation = definition.build(arguments)

        self.command_policy.authorize(tool_name, invocation.subcommand)
        self.command_policy.check_flags(tool_name, invocation.args)

        env = parse_env(arguments)
        words = list(invocation.args) + list(invocation.operands) + list(invocation.paths)
        if invocation.subcommand:
            words.insert(0, invocation.subcommand)
        self.sandbox.sanitize(words, env)

        for operand in invocation.operands:
            self.sandbox.check_not_flag(operand, field="target")
        for path in invocation.paths:
            self.sandbox.check_not_flag(path, field="path")

        working_dir = optional_string(arguments, "working_dir")
        if working_dir is not None:
            working_dir = self.sandbox.authorize_working_dir(working_dir)

        resolved = [self.sandbox.authorize_path(p, base_dir=working_dir) for p in invocation.paths]
        for pathspec in invocation.pathspecs:
            self.sandbox.authorize_path(pathspec, base_dir=working_dir)

        spec = TransformationSpec.from_arguments(arguments)
        timeout_ms = parse_timeout(arguments, self.policy.default_timeout_ms)

        executable = self.paths.get_optional(definition.executable)
        if executable is None:
            raise SpawnFailed(
                f"Failed to start command: executable not found: {definition.executable}"
            )

        request = ExecutionRequest(
            tool_name=tool_name,
            executable=executable,
            subcommand=invocation.subcommand,
            positional_args=list(invocation.args) + list(invocation.operands) + resolved,
            working_dir=working_dir,
            env=env,
            timeout_ms=timeout_ms,
        )
        return request, spec

    # ============================================================
    # Execution
    # ============================================================

    def handle(self, tool_name: str, arguments: dict, progress_sink=None,
               cancel_event: threading.Event = None) -> ToolResponse:
        """Run one tool call end to end. Never raises.

        Args:
            tool_name: Registered tool name.
            arguments: Raw request fields.
            progress_sink: Optional callable(sequence_number, text) for
                per-line progress. None means no notifications.
            cancel_event: Optional threading.Event; set it to kill the run.
        """
        start = time.time()
        with self._stats_lock:
            self.tool_calls += 1

        try:
            request, spec = self.prepare(tool_name, arguments)
        except ValidationError as e:
            if self.audit is not None:
                self.audit.validation_block(tool_name, e.render(), arguments)
            return self._error(e.render())
        except SpawnFailed as e:
            return self._spawn_failed(tool_name, e)
        except Exception as e:
            return self._internal_error(tool_name, e)

        relay = None
        if progress_sink is not None:
            relay = ProgressRelay(progress_sink, self.policy.progress_queue_size)

        try:
            result = self.supervisor.run(
                request,
                progress_sink=relay,
                cancel_event=cancel_event,
                capture=not spec.is_empty,
            )
            text = render_result(
                result, spec, request.timeout_ms, self.policy.max_output_lines,
                grep_timeout_ms=self.policy.grep_timeout_ms,
            )
        except SpawnFailed as e:
            return self._spawn_failed(tool_name, e)
        except GatewayError as e:
            if self.audit is not None:
                self.audit.error(f"gateway.{tool_name}", e.render())
            return self._error(e.render())
        except Exception as e:
            return self._internal_error(tool_name, e)

        duration_ms = int((time.time() - start) * 1000)
        if self.audit is not None:
            self.audit.tool_call(
                tool_name, arguments, ok=result.ok, exit_code=result.exit_code,
                line_count=result.line_count, duration_ms=duration_ms,
                termination=result.termination,
            )
            if relay is not None and (relay.dropped or relay.failed):
                self.audit.progress_stats(tool_name, **relay.stats())

        if not result.ok:
            with self._stats_lock:
                self.errors += 1
        return ToolResponse(text=text, is_error=not result.ok, result=result)

    def _error(self, message: str) -> ToolResponse:
        with self._stats_lock:
            self.errors += 1
        return ToolResponse(text=message, is_error=True, result=None)

    def _internal_error(self, tool_name: str, exc: Exception) -> ToolResponse:
        message = f"Error: internal error: {type(exc).__name__}: {exc}"
        if self.audit is not None:
            self.audit.error(f"gateway.{tool_name}", message)
        return self._error(message)

    def _spawn_failed(self, tool_name: str, exc: SpawnFailed) -> ToolResponse:
        if self.audit is not None:
            self.audit.spawn_failure(tool_name, exc.render())
        return self._error(exc.render())


def build_gateway(config: dict, audit: AuditLog = None, paths: PathRegistry = None,
                  environ=None) -> Gateway:
    """Assemble a Gateway from merged configuration.

    Raises ValueError on an invalid policy and RuntimeError when a required
    binary is missing; both are startup errors.
    """
    policy = load_policy(config, environ=os.environ if environ is None else environ)
    if paths is None:
        paths = PathRegistry()
        paths.resolve_all()
    return Gateway(policy, build_registry(), paths, audit=audit)
