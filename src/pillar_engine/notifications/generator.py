# src/pillar_engine/notifications/generator.py

"""
Notification generation for a single task.

Pure decision logic: given a task snapshot, its owner's preferences, the
notifications already recorded for the task and "now", return what should be
created. Persisting (and racing other writers) is the caller's problem; the
store's unique (task, dedup key) constraint is what finally guarantees
at-most-once.
"""

from __future__ import annotations

import logging
from collections.abc import Iterable
from datetime import datetime
from typing import Any

from ..core.clock import ensure_utc
from ..tasks.task_models import Task
from .notification_models import (
    NewNotification,
    Notification,
    NotificationKind,
    NotificationPreference,
    ReminderRule,
    overdue_dedup_key,
    reminder_dedup_key,
)
from .quiet_hours import is_within_quiet_hours, resolve_timezone

logger = logging.getLogger(__name__)


def format_time_remaining(minutes: int) -> str:
    if minutes < 60:
        return f"{minutes} minute{'' if minutes == 1 else 's'}"
    hours = minutes // 60
    if hours < 24:
        return f"{hours} hour{'' if hours == 1 else 's'}"
    days = hours // 24
    return f"{days} day{'' if days == 1 else 's'}"


def _reminder_phrase(rule: ReminderRule) -> str:
    if rule.minutes_before is not None:
        return f"in {format_time_remaining(int(rule.minutes_before))}"
    days = int(rule.days_before or 0)
    if days == 0:
        return "today"
    if days == 1:
        return "tomorrow"
    return f"in {days} days"


def _metadata(task: Task, due: datetime) -> dict[str, Any]:
    return {
        "priority": task.priority.value,
        "dueDate": due.isoformat(),
        "projectId": task.project_id,
    }


def generate_notifications_for_task(
    task: Task,
    preferences: NotificationPreference,
    existing: Iterable[Notification],
    now: datetime,
    timezone: str | None = None,
) -> list[NewNotification]:
    """
    Decide which notifications to create for `task` right now.

    Short-circuits, in order: in-app disabled, no due date, completed, quiet hours.
    Quiet hours only defer: nothing is recorded, so the next sweep after the
    window produces the same notifications.

    Once a task is overdue only the overdue notification is considered;
    reminders are about an upcoming due date. With the overdue notification
    turned off (and none recorded) unfired reminders still go out, so a reminder
    held back by quiet hours past the due date is late, not lost.
    """
    out: list[NewNotification] = []

    if not preferences.enable_in_app_notifications:
        return out
    if task.due_date is None:
        return out
    if task.completed_at is not None:
        return out

    tz_name = timezone or preferences.timezone
    now = ensure_utc(now)

    if is_within_quiet_hours(
        now,
        preferences.quiet_hours_enabled,
        preferences.quiet_hours_start,
        preferences.quiet_hours_end,
        tz_name,
    ):
        logger.debug("Quiet hours for user=%s; deferring task_id=%s", task.user_id, task.id)
        return out

    due = ensure_utc(task.due_date)
    fired = {n.dedup_key for n in existing if n.task_id == task.id}

    if due < now and (preferences.enable_overdue_summary or overdue_dedup_key() in fired):
        if overdue_dedup_key() not in fired:
            out.append(
                NewNotification(
                    user_id=task.user_id,
                    task_id=task.id,
                    kind=NotificationKind.OVERDUE,
                    title="Task is overdue",
                    message=f'"{task.title}" is overdue and needs your attention.',
                    metadata=_metadata(task, due),
                )
            )
        return out

    tz = resolve_timezone(tz_name)
    for rule in preferences.reminder_rules:
        key = reminder_dedup_key(rule.key)
        if key in fired:
            continue

        trigger = rule.trigger_at(due, tz)
        if now < trigger:
            continue

        phrase = _reminder_phrase(rule)
        out.append(
            NewNotification(
                user_id=task.user_id,
                task_id=task.id,
                kind=NotificationKind.REMINDER,
                title=f"Task due {phrase}",
                message=f'"{task.title}" is due {phrase}.',
                metadata=_metadata(task, due),
                rule_key=rule.key,
                scheduled_for=trigger,
            )
        )
        # Two identical rules in the list still fire once.
        fired.add(key)

    return out
