# src/pillar_engine/notifications/summaries.py

"""
Per-user summary notifications.

Two kinds, each at most once per user and local calendar day:
- daily-summary: tasks due today plus overdue ones, from daily_summary_time on;
- overdue-digest: overdue tasks with how long they are overdue, from
  overdue_summary_time on.

"Today" is the user's local date; due dates are matched against that date's
UTC midnight boundaries, since date-only due dates are stored as midnight UTC.
"""

from __future__ import annotations

import logging
from collections.abc import Iterable
from datetime import datetime, time, timedelta, timezone
from typing import Any

from ..core.clock import ensure_utc
from ..tasks.task_models import Task
from .notification_models import (
    NewNotification,
    Notification,
    NotificationKind,
    NotificationPreference,
    parse_hhmm,
    summary_dedup_key,
)
from .quiet_hours import is_within_quiet_hours, resolve_timezone

logger = logging.getLogger(__name__)

DAILY_PREVIEW_LIMIT = 5
DIGEST_PREVIEW_LIMIT = 10
DIGEST_MESSAGE_LIMIT = 5


def _plural(n: int, word: str) -> str:
    return f"{n} {word}{'' if n == 1 else 's'}"


def _preview(task: Task) -> dict[str, Any]:
    return {
        "id": task.id,
        "title": task.title,
        "priority": task.priority.value,
        "projectId": task.project_id,
    }


def _reached(local_now: datetime, at: str, user_id: str, what: str) -> bool:
    try:
        threshold = parse_hhmm(at)
    except (TypeError, ValueError):
        logger.warning("Malformed %s time %r for user=%s; skipping", what, at, user_id)
        return False
    return (local_now.hour, local_now.minute) >= (threshold.hour, threshold.minute)


def _daily_summary(
    user_id: str,
    today: str,
    due_today: list[Task],
    overdue: list[Task],
) -> NewNotification:
    parts: list[str] = []
    if due_today:
        parts.append(f"{_plural(len(due_today), 'task')} due today")
    if overdue:
        parts.append(_plural(len(overdue), "overdue task"))

    return NewNotification(
        user_id=user_id,
        task_id=None,
        kind=NotificationKind.DAILY_SUMMARY,
        title="Daily Summary",
        message=f"You have {' and '.join(parts)}.",
        metadata={
            "summaryDate": today,
            "dueTodayCount": len(due_today),
            "overdueCount": len(overdue),
            "totalCount": len(due_today) + len(overdue),
            "dueTodayTasks": [_preview(t) for t in due_today[:DAILY_PREVIEW_LIMIT]],
            "overdueTasks": [_preview(t) for t in overdue[:DAILY_PREVIEW_LIMIT]],
        },
        period=today,
    )


def _overdue_digest(
    user_id: str,
    today: str,
    today_start: datetime,
    overdue: list[Task],
) -> NewNotification:
    previews = []
    for t in overdue[:DIGEST_PREVIEW_LIMIT]:
        due = ensure_utc(t.due_date)
        item = _preview(t)
        item["dueDate"] = due.isoformat()
        item["daysOverdue"] = (today_start - due) // timedelta(days=1)
        previews.append(item)

    listed = ", ".join(f"{p['title']} ({p['daysOverdue']}d overdue)" for p in previews[:DIGEST_MESSAGE_LIMIT])
    message = f"You have {_plural(len(overdue), 'overdue task')}: {listed}"
    if len(overdue) > DIGEST_MESSAGE_LIMIT:
        message += f", and {len(overdue) - DIGEST_MESSAGE_LIMIT} more"

    return NewNotification(
        user_id=user_id,
        task_id=None,
        kind=NotificationKind.OVERDUE_DIGEST,
        title="Overdue Tasks Summary",
        message=message,
        metadata={
            "overdueSummaryDate": today,
            "overdueCount": len(overdue),
            "tasks": previews,
        },
        period=today,
    )


def generate_summaries_for_user(
    preferences: NotificationPreference,
    tasks: Iterable[Task],
    existing: Iterable[Notification],
    now: datetime,
) -> list[NewNotification]:
    """
    Decide which summaries to create for one user right now.

    `tasks` are the user's open tasks; `existing` their recent summaries.
    Quiet hours defer (nothing is recorded). A summary with nothing to report
    is not sent, and may still go out later the same day if that changes.
    """
    out: list[NewNotification] = []
    user_id = preferences.user_id

    if not preferences.enable_in_app_notifications:
        return out
    if not (preferences.enable_daily_summary or preferences.enable_overdue_summary):
        return out

    now = ensure_utc(now)
    if is_within_quiet_hours(
        now,
        preferences.quiet_hours_enabled,
        preferences.quiet_hours_start,
        preferences.quiet_hours_end,
        preferences.timezone,
    ):
        logger.debug("Quiet hours for user=%s; deferring summaries", user_id)
        return out

    local_now = now.astimezone(resolve_timezone(preferences.timezone))
    today = local_now.date().isoformat()
    today_start = datetime.combine(local_now.date(), time(0), tzinfo=timezone.utc)
    tomorrow_start = today_start + timedelta(days=1)

    open_tasks = sorted(
        (
            t
            for t in tasks
            if t.user_id == user_id and t.due_date is not None and t.completed_at is None
        ),
        key=lambda t: (ensure_utc(t.due_date), t.id),
    )
    overdue = [t for t in open_tasks if ensure_utc(t.due_date) < today_start]
    due_today = [t for t in open_tasks if today_start <= ensure_utc(t.due_date) < tomorrow_start]

    fired = {n.dedup_key for n in existing if n.user_id == user_id and n.task_id is None}

    if (
        preferences.enable_daily_summary
        and (due_today or overdue)
        and summary_dedup_key(NotificationKind.DAILY_SUMMARY, today) not in fired
        and _reached(local_now, preferences.daily_summary_time, user_id, "daily summary")
    ):
        out.append(_daily_summary(user_id, today, due_today, overdue))

    if (
        preferences.enable_overdue_summary
        and overdue
        and summary_dedup_key(NotificationKind.OVERDUE_DIGEST, today) not in fired
        and _reached(local_now, preferences.overdue_summary_time, user_id, "overdue summary")
    ):
        out.append(_overdue_digest(user_id, today, today_start, overdue))

    return out
