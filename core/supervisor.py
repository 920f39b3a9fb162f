"""Process supervisor: runs one validated command and always reaps it.

Runs one ExecutionRequest as a child process (argument vector, never a
shell), reads stdout and stderr concurrently line by line, numbers every
line with one shared counter, optionally forwards each raw line to a
progress sink, and guarantees the child is reaped or killed before run()
returns.

Outcomes:
  exited        normal exit; exit_code is the child's status
  timeout       deadline passed; process group killed, exit_code EXIT_KILLED
  cancelled     cancel event set; same as timeout
  stream_error  reading a pipe failed; process group killed, partial result

Only a failed spawn raises (SpawnFailed). Everything else is data.
"""

import os
import queue
import signal
import subprocess
import sys
import threading
import time

from core.errors import SpawnFailed
from core.models import (
    CANCELLED, EXIT_KILLED, EXITED, STREAM_ERROR, TIMEOUT,
    CommandResult, ExecutionRequest, ProgressEvent,
)


# How often the wait loop re-checks deadline and cancel event (seconds)
POLL_INTERVAL = 0.05

# Reader threads get this long to finish after the process group is killed
KILL_GRACE_SECONDS = 2.0

# How long run() waits for queued progress notifications at the end
PROGRESS_FLUSH_SECONDS = 1.0

MAX_LINE_BYTES = 65_536
MAX_OUTPUT_LINES = 100_000


def decode_line(raw: bytes) -> str:
    """Decode one raw line, dropping the terminator (LF, optionally CR LF)."""
    text = raw.decode("utf-8", errors="replace")
    if text.endswith("\n"):
        text = text[:-1]
        if text.endswith("\r"):
            text = text[:-1]
    return text


def iter_lines(stream, max_line_bytes: int = MAX_LINE_BYTES):
    """Yield raw lines from a binary stream, each at most max_line_bytes.

    The remainder of an overlong line is read and discarded so one huge
    line cannot exhaust memory. The final unterminated segment counts as
    a line.
    """
    while True:
        chunk = stream.readline(max_line_bytes)
        if not chunk:
            return
        if chunk.endswith(b"\n") or len(chunk) < max_line_bytes:
            yield chunk
            continue
        while True:
            rest = stream.readline(max_line_bytes)
            if not rest or rest.endswith(b"\n"):
                break
        yield chunk


class LineCounter:
    """Shared, lock-guarded line counter. The one synchronization point."""

    def __init__(self, start: int = 0, max_lines: int = MAX_OUTPUT_LINES,
                 capture: bool = True):
        self._lock = threading.Lock()
        self._value = start
        self._max_lines = max_lines
        self._capture = capture
        self.lines: list[str] = []
        self.truncated = False

    @property
    def value(self) -> int:
        with self._lock:
            return self._value

    def record(self, text: str, relay=None) -> int:
        """Count a line, keep it if capturing, queue its progress event."""
        with self._lock:
            self._value += 1
            seq = self._value
            if self._capture:
                if len(self.lines) < self._max_lines:
                    self.lines.append(text)
                else:
                    self.truncated = True
            if relay is not None:
                relay.emit(ProgressEvent(seq, text))
            return seq


def stream_pipe(stream, counter: LineCounter, relay=None,
                max_line_bytes: int = MAX_LINE_BYTES) -> int:
    """Read a pipe to EOF, counting each line. Returns the counter value.

    Continuation works from any starting count: a counter at k that reads
    n lines ends at k + n.
    """
    for raw in iter_lines(stream, max_line_bytes):
        counter.record(decode_line(raw), relay)
    return counter.value


# ============================================================
# Progress relay
# ============================================================

_STOP = object()


class ProgressRelay:
    """Bounded, best-effort delivery of ProgressEvents to a sink.

    Readers call emit() which never blocks: a full queue drops the event.
    One daemon thread calls sink(sequence_number, text); a raising sink
    is counted and skipped. A slow sink therefore delays notifications,
    never the command.
    """

    def __init__(self, sink, max_queue: int = 1024):
        self._sink = sink
        self._queue = queue.Queue(maxsize=max_queue)
        self.dropped = 0
        self.failed = 0
        self.delivered = 0
        self.last_error = ""
        self._thread = threading.Thread(
            target=self._deliver, name="progress-relay", daemon=True
        )
        self._thread.start()

    def emit(self, event: ProgressEvent) -> None:
        try:
            self._queue.put_nowait(event)
        except queue.Full:
            self.dropped += 1

    def _deliver(self) -> None:
        while True:
            event = self._queue.get()
            if event is _STOP:
                return
            try:
                self._sink(event.sequence_number, event.text)
                self.delivered += 1
            except Exception as e:
                self.failed += 1
                self.last_error = f"{type(e).__name__}: {e}"

    def close(self, timeout: float = PROGRESS_FLUSH_SECONDS) -> None:
        """Flush for at most `timeout` seconds, then abandon the rest."""
        deadline = time.monotonic() + timeout
        try:
            self._queue.put(_STOP, timeout=timeout)
        except queue.Full:
            pass
        self._thread.join(max(0.0, deadline - time.monotonic()))
        # Anything still queued is dropped
        while True:
            try:
                item = self._queue.get_nowait()
            except queue.Empty:
                break
            if item is not _STOP:
                self.dropped += 1
        if self._thread.is_alive():
            # Stuck in the sink; let it exit once the sink returns
            self._queue.put_nowait(_STOP)

    def stats(self) -> dict:
        return {
            "delivered": self.delivered,
            "dropped": self.dropped,
            "failed": self.failed,
            "last_error": self.last_error,
        }


# ============================================================
# Supervisor
# ============================================================

class ProcessSupervisor:
    """Runs ExecutionRequests. Holds only limits, so it is shared freely."""

    def __init__(
        self,
        max_output_lines: int = MAX_OUTPUT_LINES,
        max_line_bytes: int = MAX_LINE_BYTES,
        progress_queue_size: int = 1024,
        base_env: dict = None,
    ):
        self.max_output_lines = max_output_lines
        self.max_line_bytes = max_line_bytes
        self.progress_queue_size = progress_queue_size
        self.base_env = base_env

    def _spawn(self, request: ExecutionRequest) -> subprocess.Popen:
        env = dict(os.environ if self.base_env is None else self.base_env)
        env.update(request.env)

        kwargs = {}
        if sys.platform == "win32":
            kwargs["creationflags"] = subprocess.CREATE_NEW_PROCESS_GROUP
        else:
            kwargs["start_new_session"] = True

        try:
            return subprocess.Popen(
                request.argv,
                cwd=request.working_dir,
                env=env,
                stdin=subprocess.DEVNULL,
                stdout=subprocess.PIPE,
                stderr=subprocess.PIPE,
                shell=False,
                **kwargs,
            )
        except FileNotFoundError as e:
            if request.working_dir and not os.path.isdir(request.working_dir):
                raise SpawnFailed(f"Working directory not found: {request.working_dir}")
            raise SpawnFailed(f"Failed to start command: executable not found: {e.filename or request.executable}")
        except PermissionError as e:
            raise SpawnFailed(f"Failed to start command: permission denied: {e.filename or request.executable}")
        except (OSError, ValueError) as e:
            raise SpawnFailed(f"Failed to start command: {e}")

    def _kill(self, proc: subprocess.Popen) -> None:
        """Kill the child and everything in its process group, then reap it."""
        try:
            if sys.platform == "win32":
                proc.kill()
            else:
                os.killpg(proc.pid, signal.SIGKILL)
        except ProcessLookupError:
            pass
        except PermissionError:
            proc.kill()
        proc.wait()

    def _wait(self, proc, readers, deadline, cancel_event, failures) -> str:
        """Wait for both streams to end and the process to exit.

        Returns EXITED, or the reason the wait was cut short.
        """
        while True:
            if failures:
                return STREAM_ERROR
            pending = [t for t in readers if t.is_alive()]
            if not pending and proc.poll() is not None:
                return EXITED
            if cancel_event is not None and cancel_event.is_set():
                return CANCELLED
            remaining = deadline - time.monotonic()
            if remaining <= 0:
                return TIMEOUT
            wait = min(POLL_INTERVAL, remaining)
            if pending:
                pending[0].join(wait)
            else:
                try:
                    proc.wait(timeout=wait)
                except subprocess.TimeoutExpired:
                    pass

    def run(
        self,
        request: ExecutionRequest,
        progress_sink=None,
        cancel_event: threading.Event = None,
        capture: bool = True,
    ) -> CommandResult:
        """Execute the request and return its CommandResult.

        Args:
            request: Validated request.
            progress_sink: Optional callable(sequence_number, text), called
                once per raw output line from a relay thread. A ProgressRelay
                may be passed instead so the caller can read its stats.
            cancel_event: Optional threading.Event; setting it kills the
                process and returns a result like a timeout.
            capture: Keep output lines for the transformation pipeline.

        Raises:
            SpawnFailed: the process could not be created.
        """
        counter = LineCounter(max_lines=self.max_output_lines, capture=capture)
        if progress_sink is None:
            relay = None
        elif isinstance(progress_sink, ProgressRelay):
            relay = progress_sink
        else:
            relay = ProgressRelay(progress_sink, self.progress_queue_size)

        try:
            proc = self._spawn(request)
        except SpawnFailed:
            if relay is not None:
                relay.close(0)
            raise

        deadline = time.monotonic() + request.timeout_ms / 1000.0
        failures: list[str] = []

        def _reader(stream):
            try:
                stream_pipe(stream, counter, relay, self.max_line_bytes)
            except (OSError, ValueError) as e:
                failures.append(f"{type(e).__name__}: {e}")

        readers = [
            threading.Thread(target=_reader, args=(proc.stdout,), name="stdout-reader", daemon=True),
            threading.Thread(target=_reader, args=(proc.stderr,), name="stderr-reader", daemon=True),
        ]
        for t in readers:
            t.start()

        outcome = None
        try:
            outcome = self._wait(proc, readers, deadline, cancel_event, failures)
        finally:
            # Timeout, cancel, stream error, or an exception while waiting.
            # The leader may already be gone while its group still holds the pipes.
            if outcome != EXITED:
                self._kill(proc)
            for t in readers:
                t.join(KILL_GRACE_SECONDS)
            if not any(t.is_alive() for t in readers):
                proc.stdout.close()
                proc.stderr.close()
            if relay is not None:
                relay.close()

        if outcome == EXITED:
            exit_code = proc.returncode if proc.returncode >= 0 else EXIT_KILLED
        else:
            exit_code = EXIT_KILLED

        return CommandResult(
            line_count=counter.value,
            exit_code=exit_code,
            output_lines=counter.lines,
            termination=outcome,
            truncated=counter.truncated,
        )
