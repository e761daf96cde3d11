from __future__ import annotations

from datetime import UTC, date, datetime, timedelta
from types import SimpleNamespace

import pytest

from cadence.core.status import (
    add_period,
    can_execute,
    current_window,
    derive_status,
    next_due_date,
    window_bounds,
    window_history,
)

# Weekly cadence: window 0 is [2025-01-01, 2025-01-08), window 1 is [2025-01-08, 2025-01-15).
WEEKLY = SimpleNamespace(anchor_date=date(2025, 1, 8), frequency="weekly")


def at(*parts: int) -> datetime:
    return datetime(*parts, tzinfo=UTC)


def execution(identifier: int, executed_at: datetime) -> SimpleNamespace:
    return SimpleNamespace(id=identifier, executed_at=executed_at)


def test_before_first_window_is_upcoming() -> None:
    assert derive_status(WEEKLY, [], at(2024, 12, 31, 23, 59, 59)) == "UPCOMING"


def test_window_start_is_inclusive() -> None:
    assert derive_status(WEEKLY, [], at(2025, 1, 1)) == "OPEN"


def test_window_end_is_exclusive() -> None:
    just_before_end = at(2025, 1, 8) - timedelta(microseconds=1)
    assert derive_status(WEEKLY, [], just_before_end) == "OPEN"
    assert derive_status(WEEKLY, [], at(2025, 1, 8)) == "OVERDUE"


def test_execution_inside_current_window_completes_it() -> None:
    executions = [execution(1, at(2025, 1, 3, 9))]
    assert derive_status(WEEKLY, executions, at(2025, 1, 5)) == "COMPLETED"


def test_next_window_opens_after_completed_window() -> None:
    executions = [execution(1, at(2025, 1, 3, 9))]
    assert derive_status(WEEKLY, executions, at(2025, 1, 8)) == "OPEN"


def test_execution_on_boundary_belongs_to_the_later_window() -> None:
    executions = [execution(1, at(2025, 1, 8))]
    now = at(2025, 1, 8, 12)

    assert derive_status(WEEKLY, executions, now) == "COMPLETED"
    states = [window.state for window in window_history(WEEKLY, executions, now)]
    assert states == ["missed", "completed"]


def test_late_execution_does_not_close_an_earlier_window() -> None:
    executions = [execution(7, at(2025, 1, 10))]
    now = at(2025, 1, 16)

    history = window_history(WEEKLY, executions, now)
    assert [window.state for window in history] == ["missed", "completed", "open"]
    assert history[1].execution_ids == [7]
    assert derive_status(WEEKLY, executions, now) == "OPEN"


def test_missed_window_after_completion_is_overdue() -> None:
    executions = [execution(1, at(2025, 1, 2))]
    assert derive_status(WEEKLY, executions, at(2025, 1, 16)) == "OVERDUE"


def test_executions_after_now_are_ignored() -> None:
    executions = [execution(1, at(2025, 1, 6))]
    assert derive_status(WEEKLY, executions, at(2025, 1, 5)) == "OPEN"


def test_naive_now_is_treated_as_utc() -> None:
    assert derive_status(WEEKLY, [], datetime(2025, 1, 1)) == "OPEN"


def test_upcoming_history_has_a_single_window() -> None:
    history = window_history(WEEKLY, [], at(2024, 12, 1))
    assert len(history) == 1
    assert history[0].state == "upcoming"
    assert history[0].start == at(2025, 1, 1)


def test_current_window_bounds() -> None:
    window = current_window(WEEKLY, at(2025, 1, 9))
    assert window is not None
    assert (window.index, window.start, window.end) == (1, at(2025, 1, 8), at(2025, 1, 15))
    assert current_window(WEEKLY, at(2024, 12, 1)) is None


def test_next_due_date_points_at_earliest_unsatisfied_window() -> None:
    assert next_due_date(WEEKLY, [], at(2025, 1, 20)) == date(2025, 1, 8)
    executions = [execution(1, at(2025, 1, 3))]
    assert next_due_date(WEEKLY, executions, at(2025, 1, 4)) == date(2025, 1, 15)


def test_can_execute_only_open_or_overdue() -> None:
    assert can_execute(WEEKLY, [], at(2024, 12, 1)) is False
    assert can_execute(WEEKLY, [], at(2025, 1, 2)) is True
    assert can_execute(WEEKLY, [], at(2025, 1, 20)) is True
    assert can_execute(WEEKLY, [execution(1, at(2025, 1, 2))], at(2025, 1, 3)) is False


def test_rework_is_allowed_only_in_a_completed_window() -> None:
    done = [execution(1, at(2025, 1, 2))]

    assert can_execute(WEEKLY, done, at(2025, 1, 3), allow_rework=True) is True
    assert can_execute(WEEKLY, [], at(2024, 12, 1), allow_rework=True) is False
    assert can_execute(WEEKLY, done, at(2025, 1, 9), allow_rework=True) is True


def test_month_arithmetic_clamps_without_drift() -> None:
    anchor = date(2025, 1, 31)
    assert add_period(anchor, "monthly", 1) == date(2025, 2, 28)
    assert add_period(anchor, "monthly", 2) == date(2025, 3, 31)
    assert add_period(date(2024, 2, 29), "yearly", 1) == date(2025, 2, 28)
    assert add_period(date(2025, 1, 15), "quarterly", 1) == date(2025, 4, 15)
    assert add_period(date(2025, 1, 15), "half_yearly", -1) == date(2024, 7, 15)


def test_unsupported_frequency_is_rejected() -> None:
    with pytest.raises(ValueError, match="unsupported frequency"):
        add_period(date(2025, 1, 1), "daily", 1)


@pytest.mark.parametrize("frequency", ["weekly", "monthly", "quarterly", "half_yearly", "yearly"])
def test_status_rule_holds_for_every_frequency(frequency: str) -> None:
    job = SimpleNamespace(anchor_date=date(2025, 6, 30), frequency=frequency)
    start, end = window_bounds(job.anchor_date, frequency, 0)
    last_instant = end - timedelta(microseconds=1)

    assert derive_status(job, [], start - timedelta(seconds=1)) == "UPCOMING"
    assert derive_status(job, [], start) == "OPEN"
    assert derive_status(job, [], last_instant) == "OPEN"
    assert derive_status(job, [execution(1, start)], last_instant) == "COMPLETED"
    assert derive_status(job, [], end) == "OVERDUE"
