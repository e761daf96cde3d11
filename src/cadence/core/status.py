"""Cycle-window status derivation for recurring jobs.

A job's cadence is an ``anchor_date`` plus a ``frequency``. Window ``k`` ends at
``anchor_date + k periods`` and starts one period earlier; boundaries sit on UTC
midnight. Membership is ``start <= t < end`` for both ``now`` and execution
timestamps. Each window is judged only by the executions that fall inside it.
"""

from __future__ import annotations

import calendar
from collections.abc import Iterable
from datetime import UTC, date, datetime, time, timedelta
from typing import Any

from cadence.types import CycleWindow, DerivedStatus

_PERIOD_MONTHS = {
    "monthly": 1,
    "quarterly": 3,
    "half_yearly": 6,
    "yearly": 12,
}
EXECUTABLE_STATUSES = frozenset({"OPEN", "OVERDUE"})


def add_months(value: date, months: int) -> date:
    total = value.year * 12 + (value.month - 1) + months
    year, month_index = divmod(total, 12)
    month = month_index + 1
    day = min(value.day, calendar.monthrange(year, month)[1])
    return date(year, month, day)


def add_period(value: date, frequency: str, count: int = 1) -> date:
    if frequency == "weekly":
        return value + timedelta(weeks=count)
    months = _PERIOD_MONTHS.get(frequency)
    if months is None:
        raise ValueError(f"unsupported frequency '{frequency}'")
    return add_months(value, months * count)


def window_bounds(anchor: date, frequency: str, index: int) -> tuple[datetime, datetime]:
    return _boundary(anchor, frequency, index - 1), _boundary(anchor, frequency, index)


def derive_status(job: Any, executions: Iterable[Any], now: datetime | None = None) -> DerivedStatus:
    moment = as_utc(now or datetime.now(UTC))
    anchor, frequency = job.anchor_date, job.frequency

    if moment < _boundary(anchor, frequency, -1):
        return "UPCOMING"

    current = _locate(anchor, frequency, moment)
    satisfied = _satisfied_windows(anchor, frequency, executions, moment)
    if current in satisfied:
        return "COMPLETED"

    due = max(satisfied, default=-1) + 1
    if due < current:
        return "OVERDUE"
    return "OPEN"


def current_window(job: Any, now: datetime | None = None) -> CycleWindow | None:
    moment = as_utc(now or datetime.now(UTC))
    anchor, frequency = job.anchor_date, job.frequency
    if moment < _boundary(anchor, frequency, -1):
        return None
    index = _locate(anchor, frequency, moment)
    start, end = window_bounds(anchor, frequency, index)
    return CycleWindow(index=index, start=start, end=end, state="open")


def window_history(job: Any, executions: Iterable[Any], now: datetime | None = None) -> list[CycleWindow]:
    """Every window from the first up to the one containing ``now``, each with its own state.

    A late execution marks only its own window completed; earlier windows without an
    execution stay ``missed``.
    """
    moment = as_utc(now or datetime.now(UTC))
    anchor, frequency = job.anchor_date, job.frequency

    if moment < _boundary(anchor, frequency, -1):
        start, end = window_bounds(anchor, frequency, 0)
        return [CycleWindow(index=0, start=start, end=end, state="upcoming")]

    current = _locate(anchor, frequency, moment)
    by_window: dict[int, list[int]] = {}
    for item in executions:
        executed_at = _execution_time(item)
        index = _window_of(anchor, frequency, executed_at, moment)
        if index is None:
            continue
        by_window.setdefault(index, []).append(getattr(item, "id", None) or 0)

    windows: list[CycleWindow] = []
    for index in range(current + 1):
        start, end = window_bounds(anchor, frequency, index)
        if index in by_window:
            state = "completed"
        elif index == current:
            state = "open"
        else:
            state = "missed"
        windows.append(
            CycleWindow(
                index=index,
                start=start,
                end=end,
                state=state,
                execution_ids=by_window.get(index, []),
            )
        )
    return windows


def next_due_date(job: Any, executions: Iterable[Any], now: datetime | None = None) -> date:
    """End boundary of the earliest window that still needs an execution."""
    moment = as_utc(now or datetime.now(UTC))
    anchor, frequency = job.anchor_date, job.frequency
    satisfied = _satisfied_windows(anchor, frequency, executions, moment)
    due = max(satisfied, default=-1) + 1
    return add_period(anchor, frequency, due)


def can_execute(
    job: Any,
    executions: Iterable[Any],
    now: datetime | None = None,
    *,
    allow_rework: bool = False,
) -> bool:
    """Whether an execution may be recorded now.

    OPEN and OVERDUE jobs always accept one. A COMPLETED window accepts another
    only with ``allow_rework``; UPCOMING jobs never do.
    """
    status = derive_status(job, executions, now)
    return status in EXECUTABLE_STATUSES or (allow_rework and status == "COMPLETED")


def as_utc(value: datetime) -> datetime:
    if value.tzinfo is None:
        return value.replace(tzinfo=UTC)
    return value.astimezone(UTC)


def _boundary(anchor: date, frequency: str, index: int) -> datetime:
    return datetime.combine(add_period(anchor, frequency, index), time.min, tzinfo=UTC)


def _estimate(anchor: date, frequency: str, moment: date) -> int:
    if frequency == "weekly":
        return max(0, (moment - anchor).days // 7)
    months = (moment.year - anchor.year) * 12 + (moment.month - anchor.month)
    return max(0, months // _PERIOD_MONTHS[frequency])


def _locate(anchor: date, frequency: str, moment: datetime) -> int:
    index = _estimate(anchor, frequency, moment.date())
    while index > 0 and moment < _boundary(anchor, frequency, index - 1):
        index -= 1
    while moment >= _boundary(anchor, frequency, index):
        index += 1
    return index


def _execution_time(item: Any) -> datetime:
    return as_utc(getattr(item, "executed_at", item))


def _window_of(anchor: date, frequency: str, executed_at: datetime, now: datetime) -> int | None:
    if executed_at > now or executed_at < _boundary(anchor, frequency, -1):
        return None
    return _locate(anchor, frequency, executed_at)


def _satisfied_windows(
    anchor: date,
    frequency: str,
    executions: Iterable[Any],
    now: datetime,
) -> set[int]:
    satisfied: set[int] = set()
    for item in executions:
        index = _window_of(anchor, frequency, _execution_time(item), now)
        if index is not None:
            satisfied.add(index)
    return satisfied
