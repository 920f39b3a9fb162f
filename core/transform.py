"""Output transformation pipeline.

Ordered, independently toggled text filters applied to captured output:

  grep    keep lines where grep_pattern matches anywhere (invert_grep: drop them)
  sort    stable ascending codepoint order
  unique  collapse adjacent duplicates (like uniq, not a global dedupe)
  head    first N lines
  tail    last N lines

Default order is grep → sort → unique → head → tail. An explicit order runs
only the listed steps. A listed step with no parameter is a no-op.
The pipeline is pure: no state survives a call.
"""

import time
from dataclasses import dataclass

import regex

from core.errors import TransformError


STEPS = ("grep", "sort", "unique", "head", "tail")
DEFAULT_ORDER = STEPS

# Request fields consumed by TransformationSpec.from_arguments
TRANSFORM_FIELDS = (
    "grep_pattern", "invert_grep", "sort", "unique", "head", "tail", "transform_order",
)


def _optional_bool(arguments: dict, name: str) -> bool:
    value = arguments.get(name)
    if value is None:
        return False
    if not isinstance(value, bool):
        raise TransformError(f"{name} must be a boolean, got {value!r}")
    return value


def _optional_count(arguments: dict, name: str) -> int | None:
    value = arguments.get(name)
    if value is None:
        return None
    if isinstance(value, bool) or not isinstance(value, int) or value < 0:
        raise TransformError(f"{name} must be a non-negative integer, got {value!r}")
    return value


def normalize_order(order) -> tuple[str, ...]:
    """Validate a step list. Duplicates collapse to their first occurrence."""
    if isinstance(order, str) or not isinstance(order, (list, tuple)):
        raise TransformError(f"transform_order must be a list of step names, got {order!r}")
    seen = []
    for step in order:
        if step not in STEPS:
            raise TransformError(
                f"Unknown transformation '{step}'. Valid steps: {', '.join(STEPS)}"
            )
        if step not in seen:
            seen.append(step)
    return tuple(seen)


@dataclass(frozen=True)
class TransformationSpec:
    grep_pattern: regex.Pattern | None = None
    invert_grep: bool = False
    sort: bool = False
    unique: bool = False
    head: int | None = None
    tail: int | None = None
    order: tuple[str, ...] | None = None

    @classmethod
    def from_arguments(cls, arguments: dict) -> "TransformationSpec":
        """Build a spec from raw request fields. Raises TransformError."""
        pattern = arguments.get("grep_pattern")
        compiled = None
        if pattern is not None:
            if not isinstance(pattern, str):
                raise TransformError(f"grep_pattern must be a string, got {pattern!r}")
            try:
                compiled = regex.compile(pattern)
            except regex.error as e:
                raise TransformError(f"Invalid grep pattern: {e}")

        order = arguments.get("transform_order")
        return cls(
            grep_pattern=compiled,
            invert_grep=_optional_bool(arguments, "invert_grep"),
            sort=_optional_bool(arguments, "sort"),
            unique=_optional_bool(arguments, "unique"),
            head=_optional_count(arguments, "head"),
            tail=_optional_count(arguments, "tail"),
            order=None if order is None else normalize_order(order),
        )

    @property
    def effective_order(self) -> tuple[str, ...]:
        return DEFAULT_ORDER if self.order is None else self.order

    @property
    def is_empty(self) -> bool:
        """True when no transformation was requested at all."""
        return (
            self.grep_pattern is None
            and not self.sort
            and not self.unique
            and self.head is None
            and self.tail is None
            and self.order is None
        )


# ============================================================
# Steps
# ============================================================

def _grep(lines: list[str], spec: TransformationSpec, timeout: float = None) -> list[str]:
    """Filter lines with grep_pattern, spending at most `timeout` seconds in total.

    Matching releases the GIL, so a slow pattern only holds up its own call.
    """
    if spec.grep_pattern is None:
        return lines
    deadline = None if timeout is None else time.monotonic() + timeout
    keep = not spec.invert_grep
    result = []
    for line in lines:
        remaining = None
        if deadline is not None:
            remaining = deadline - time.monotonic()
            if remaining <= 0:
                raise _grep_timed_out(timeout)
        try:
            found = spec.grep_pattern.search(line, concurrent=True, timeout=remaining)
        except TimeoutError:
            raise _grep_timed_out(timeout)
        if (found is not None) == keep:
            result.append(line)
    return result


def _grep_timed_out(timeout: float) -> TransformError:
    return TransformError(
        f"grep_pattern did not finish within {int(timeout * 1000)} ms; use a simpler pattern"
    )


def _sort(lines: list[str], spec: TransformationSpec) -> list[str]:
    return sorted(lines) if spec.sort else lines


def _unique(lines: list[str], spec: TransformationSpec) -> list[str]:
    if not spec.unique:
        return lines
    result = []
    for line in lines:
        if not result or result[-1] != line:
            result.append(line)
    return result


def _head(lines: list[str], spec: TransformationSpec) -> list[str]:
    if spec.head is None:
        return lines
    return lines[:spec.head]


def _tail(lines: list[str], spec: TransformationSpec) -> list[str]:
    if spec.tail is None:
        return lines
    if spec.tail == 0:
        return []
    return lines[-spec.tail:]


_STEP_FUNCS = {
    "sort": _sort,
    "unique": _unique,
    "head": _head,
    "tail": _tail,
}


def apply(lines, spec: TransformationSpec, timeout: float = None) -> list[str]:
    """Run the steps of spec.effective_order over lines. Input is not modified.

    Raises TransformError when grep runs past `timeout` seconds.
    """
    result = list(lines)
    for step in spec.effective_order:
        if step == "grep":
            result = _grep(result, spec, timeout)
        else:
            result = _STEP_FUNCS[step](result, spec)
    return result
