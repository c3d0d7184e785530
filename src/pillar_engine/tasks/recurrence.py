# src/pillar_engine/tasks/recurrence.py

"""
Recurring tasks.

- next_occurrence(): advance a due date by one cadence step (pure)
- build_successor(): decide the next occurrence of a just-completed task (pure)

Month/year overflow policy: clamp to the last valid day of the target month
(Jan 31 + 1 month = Feb 28/29, Feb 29 + 1 year = Feb 28). relativedelta does
exactly this, and we never roll a short month into the next one.
"""

from __future__ import annotations

import logging
from dataclasses import replace
from datetime import datetime, timedelta

from dateutil.relativedelta import relativedelta

from ..core.clock import ensure_utc
from .task_models import RecurrenceFrequency, StatusChange, Subtask, Task

logger = logging.getLogger(__name__)


def next_occurrence(
    anchor: datetime,
    frequency: RecurrenceFrequency,
    interval: int = 1,
    end_date: datetime | None = None,
) -> datetime | None:
    """
    Return the occurrence one cadence step after `anchor`.

    Returns None when the computed date lies after `end_date` (series exhausted).
    A next date exactly equal to the end date is still a valid occurrence.
    """
    if frequency == RecurrenceFrequency.NONE:
        raise ValueError("a non-recurring task has no next occurrence")

    step = max(1, int(interval))
    anchor = ensure_utc(anchor)

    if frequency == RecurrenceFrequency.DAILY:
        nxt = anchor + timedelta(days=step)
    elif frequency == RecurrenceFrequency.WEEKLY:
        nxt = anchor + timedelta(days=7 * step)
    elif frequency == RecurrenceFrequency.MONTHLY:
        nxt = anchor + relativedelta(months=step)
    elif frequency == RecurrenceFrequency.YEARLY:
        nxt = anchor + relativedelta(years=step)
    else:
        raise ValueError(f"unsupported recurrence frequency: {frequency!r}")

    if end_date is not None and nxt > ensure_utc(end_date):
        return None
    return nxt


def completion_key(task: Task) -> str:
    """
    Idempotency key of "this occurrence was completed".

    One key per (task, occurrence): a retried or repeated completion of the same
    occurrence maps to the same key, so the store can refuse a second successor.
    """
    due = ensure_utc(task.due_date).isoformat() if task.due_date else "none"
    return f"{task.id}@{due}"


def build_successor(
    task: Task,
    *,
    completed_at: datetime,
    starting_column_id: str | None = None,
) -> Task | None:
    """
    Build the next occurrence of `task`, or None if the series does not continue.

    `task` must be the snapshot from *before* completion. The next due date is
    anchored at the task's own due date, so completing late never shifts the series.
    The returned task has id=0 (not persisted yet).
    """
    rule = task.recurrence
    if not rule.is_recurring:
        return None
    if task.due_date is None:
        return None

    nxt = next_occurrence(task.due_date, rule.frequency, rule.interval, rule.end_date)
    if nxt is None:
        logger.debug("Recurrence exhausted task_id=%s end_date=%s", task.id, rule.end_date)
        return None

    column_id = starting_column_id or task.column_id
    return replace(
        task,
        id=0,
        due_date=nxt,
        column_id=column_id,
        labels=list(task.labels),
        subtasks=[Subtask(title=s.title, completed=False) for s in task.subtasks],
        status_history=[StatusChange(column_id=column_id, at=ensure_utc(completed_at))],
        completed_at=None,
        spawned_from=completion_key(task),
        created_at=None,
        updated_at=None,
    )
