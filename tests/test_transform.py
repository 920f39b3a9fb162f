"""Transformation pipeline tests.

Run with: python -m pytest tests/test_transform.py -v
"""

import threading
import time

import pytest

from core.errors import TransformError, ValidationError
from core.transform import DEFAULT_ORDER, TransformationSpec, apply, normalize_order


def spec(**fields):
    return TransformationSpec.from_arguments(fields)


LOG = [
    "INFO start",
    "DEBUG cache miss",
    "ERROR disk full",
    "INFO retry",
    "ERROR disk full",
    "WARN slow",
    "ERROR timeout",
]


# ============================================================
# Spec parsing
# ============================================================

def test_empty_spec_is_identity():
    s = spec()
    assert s.is_empty
    assert apply(LOG, s) == LOG
    assert s.effective_order == DEFAULT_ORDER


def test_explicit_order_makes_spec_non_empty():
    assert not spec(transform_order=[]).is_empty
    assert not spec(head=0).is_empty
    assert spec(invert_grep=True).is_empty is True


def test_invalid_regex_rejected():
    with pytest.raises(TransformError) as exc:
        spec(grep_pattern="(unclosed")
    assert "Invalid grep pattern" in exc.value.render()


def test_unknown_step_rejected():
    with pytest.raises(ValidationError):
        spec(transform_order=["grep", "shuffle"])


def test_order_must_be_a_list():
    with pytest.raises(TransformError):
        spec(transform_order="grep,sort")


def test_duplicate_steps_collapse_to_first():
    assert normalize_order(["head", "grep", "head", "sort", "grep"]) == ("head", "grep", "sort")


def test_counts_validated():
    for bad in (-1, True, 1.5, "3"):
        with pytest.raises(TransformError):
            spec(head=bad)
        with pytest.raises(TransformError):
            spec(tail=bad)


def test_flags_validated():
    with pytest.raises(TransformError):
        spec(sort="true")
    with pytest.raises(TransformError):
        spec(unique=1)


# ============================================================
# Steps
# ============================================================

def test_grep_search_anywhere():
    assert apply(LOG, spec(grep_pattern="disk")) == ["ERROR disk full", "ERROR disk full"]
    assert apply(LOG, spec(grep_pattern="^INFO")) == ["INFO start", "INFO retry"]


def test_invert_grep():
    result = apply(LOG, spec(grep_pattern="ERROR", invert_grep=True))
    assert result == ["INFO start", "DEBUG cache miss", "INFO retry", "WARN slow"]


def test_invert_grep_without_pattern_is_noop():
    assert apply(LOG, spec(invert_grep=True, transform_order=["grep"])) == LOG


def test_sort_unique_scenario():
    assert apply(["b", "a", "a", "c"], spec(sort=True, unique=True)) == ["a", "b", "c"]


def test_unique_is_adjacent_only():
    assert apply(["a", "b", "a", "a"], spec(unique=True)) == ["a", "b", "a"]


def test_sort_is_codepoint_order():
    assert apply(["b", "B", "a", "A"], spec(sort=True)) == ["A", "B", "a", "b"]


def test_head_and_tail():
    lines = [str(i) for i in range(10)]
    assert apply(lines, spec(head=3)) == ["0", "1", "2"]
    assert apply(lines, spec(tail=2)) == ["8", "9"]
    assert apply(lines, spec(head=5, tail=2)) == ["3", "4"]
    assert apply(lines, spec(head=50)) == lines


def test_tail_zero_is_empty():
    assert apply(["a", "b"], spec(tail=0)) == []
    assert apply(["a", "b"], spec(head=0)) == []


def test_empty_input():
    assert apply([], spec(grep_pattern="x", sort=True, unique=True, head=1, tail=1)) == []


# ============================================================
# Ordering
# ============================================================

def test_default_order_filters_before_limiting():
    """grep runs before head by default."""
    result = apply(LOG, spec(grep_pattern="ERROR", head=2))
    assert result == ["ERROR disk full", "ERROR disk full"]


def test_explicit_order_changes_result():
    """head-then-grep only searches the first lines."""
    result = apply(LOG, spec(grep_pattern="ERROR", head=2, transform_order=["head", "grep"]))
    assert result == []
    result = apply(LOG, spec(grep_pattern="ERROR", head=3, transform_order=["head", "grep"]))
    assert result == ["ERROR disk full"]


def test_explicit_order_runs_only_listed_steps():
    result = apply(["c", "b", "a"], spec(sort=True, head=1, transform_order=["head"]))
    assert result == ["c"]


def test_empty_explicit_order_runs_nothing():
    assert apply(LOG, spec(sort=True, transform_order=[])) == LOG


def test_sort_unique_idempotent():
    s = spec(sort=True, unique=True)
    once = apply(LOG, s)
    assert apply(once, s) == once


def test_input_not_modified():
    lines = ["b", "a"]
    apply(lines, spec(sort=True))
    assert lines == ["b", "a"]


# ============================================================
# Grep time budget
# ============================================================

BACKTRACKING = r"^(a+)+$"
BAD_LINE = "a" * 40 + "!"


def test_grep_budget_exhausted_raises():
    with pytest.raises(TransformError) as exc:
        apply(LOG, spec(grep_pattern="ERROR"), timeout=0)
    assert "grep_pattern did not finish within 0 ms" in exc.value.message


def test_grep_without_budget_still_works():
    assert apply(LOG, spec(grep_pattern="WARN"), timeout=None) == ["WARN slow"]
    assert apply([], spec(grep_pattern="x"), timeout=0) == []


def test_backtracking_pattern_is_bounded():
    start = time.monotonic()
    try:
        assert apply([BAD_LINE] * 3, spec(grep_pattern=BACKTRACKING), timeout=0.5) == []
    except TransformError as e:
        assert "grep_pattern" in e.message
    assert time.monotonic() - start < 5


def test_slow_grep_does_not_stall_other_threads():
    outcome = {}

    def worker():
        try:
            outcome["lines"] = apply([BAD_LINE] * 50, spec(grep_pattern=BACKTRACKING), timeout=1.0)
        except TransformError as e:
            outcome["error"] = e.message

    t = threading.Thread(target=worker)
    t.start()
    start = time.monotonic()
    for _ in range(10):
        time.sleep(0.01)
    assert time.monotonic() - start < 0.5
    t.join(10)
    assert not t.is_alive()
    assert outcome
