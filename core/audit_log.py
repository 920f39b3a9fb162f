"""Structured audit logging for cmdgate sessions.

Logs every tool call, validation block, spawn failure and session event to
a JSONL (JSON Lines) file. Each line is a self-contained JSON object.

Log files are written as .cmdgate-audit-YYYYMMDD-HHMMSS.jsonl in the
configured directory (default: working directory). Tool calls run
concurrently, so writes are serialized with a lock.
"""

import json
import os
import threading
import time
from datetime import datetime, timezone


def _preview(arguments, limit: int) -> str:
    try:
        text = json.dumps(arguments, separators=(",", ":"), sort_keys=True, default=str)
    except (TypeError, ValueError):
        text = repr(arguments)
    return text[:limit]


class AuditLog:
    """Append-only structured logger for session events."""

    def __init__(self, log_dir: str = None):
        """Initialize audit logger.

        Args:
            log_dir: Directory to write log files. Defaults to cwd.
        """
        self.log_dir = log_dir or "."
        ts = datetime.now().strftime("%Y%m%d-%H%M%S")
        self.log_path = os.path.join(self.log_dir, f".cmdgate-audit-{ts}.jsonl")
        self._session_id = ts
        self._event_count = 0
        self._start_time = time.time()
        self._file = None
        self._lock = threading.Lock()

    def _ensure_open(self):
        """Lazily open the log file on first write."""
        if self._file is None:
            os.makedirs(self.log_dir, exist_ok=True)
            self._file = open(self.log_path, "a", encoding="utf-8")

    def _write(self, event_type: str, data: dict) -> None:
        with self._lock:
            self._ensure_open()
            self._event_count += 1
            entry = {
                "seq": self._event_count,
                "ts": datetime.now(timezone.utc).isoformat(),
                "elapsed_s": round(time.time() - self._start_time, 2),
                "event": event_type,
                **data,
            }
            self._file.write(json.dumps(entry, separators=(",", ":")) + "\n")
            self._file.flush()

    def session_start(self, blocked_paths, tools, mode: str = "mcp") -> None:
        """Log session start with the effective policy."""
        self._write("session_start", {
            "session_id": self._session_id,
            "mode": mode,
            "blocked_paths": sorted(blocked_paths),
            "tools": list(tools),
        })

    def session_end(self, tool_calls: int, errors: int) -> None:
        """Log session end with summary stats, then close the file."""
        self._write("session_end", {
            "tool_calls": tool_calls,
            "errors": errors,
            "duration_s": round(time.time() - self._start_time, 1),
        })
        self.close()

    def tool_call(self, name: str, arguments, ok: bool, exit_code: int,
                  line_count: int, duration_ms: int, termination: str = "exited") -> None:
        """Log a completed process run."""
        self._write("tool_call", {
            "tool": name,
            "args": _preview(arguments, 500),
            "ok": ok,
            "exit_code": exit_code,
            "lines": line_count,
            "duration_ms": duration_ms,
            "termination": termination,
        })

    def validation_block(self, tool: str, reason: str, arguments=None) -> None:
        """Log a request rejected before any process was created."""
        self._write("validation_block", {
            "tool": tool,
            "reason": reason[:300],
            "args": _preview(arguments, 200) if arguments is not None else "",
        })

    def spawn_failure(self, tool: str, reason: str) -> None:
        self._write("spawn_failure", {
            "tool": tool,
            "reason": reason[:300],
        })

    def progress_stats(self, tool: str, delivered: int, dropped: int,
                       failed: int, last_error: str = "") -> None:
        """Log progress notifications that were dropped or failed."""
        self._write("progress_stats", {
            "tool": tool,
            "delivered": delivered,
            "dropped": dropped,
            "failed": failed,
            "last_error": last_error[:300],
        })

    def error(self, source: str, message: str) -> None:
        self._write("error", {
            "source": source,
            "message": message[:500],
        })

    def close(self) -> None:
        """Flush and close the log file."""
        with self._lock:
            if self._file is not None:
                self._file.flush()
                self._file.close()
                self._file = None
