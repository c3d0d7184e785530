# src/pillar_engine/notifications/scheduler.py

from __future__ import annotations

"""
Notification scheduler.

run_sweep() is one pass in two stages.

Per task (every task with a due date and no completion):
- loads the owner's preferences (created lazily with defaults),
- loads the task's notification history,
- asks the generator what is new,
- inserts it (the store's unique key turns a lost race into a no-op).

Per user (preferences with a summary kind enabled):
- loads the user's open tasks and recent summaries,
- creates the daily summary / overdue digest once per local day.

A failure on one task or user is logged and the sweep goes on. Nothing records
"attempted": the failed item is simply evaluated again by the next sweep.

run_notification_scheduler() is the polling loop around it; the cadence is
configuration, the sweep itself has no notion of time beyond `now`.
"""

import asyncio
import logging
from collections.abc import Callable
from dataclasses import dataclass, field
from datetime import datetime, timedelta

from ..core.clock import ensure_utc
from ..core.events import SyncEvent
from ..core.ports import EventSink, NotificationRepo, PreferenceRepo, TaskRepo
from ..core.state import AppState
from ..tasks.task_models import Task
from .generator import generate_notifications_for_task
from .notification_models import NewNotification, Notification, NotificationPreference
from .summaries import generate_summaries_for_user

logger = logging.getLogger(__name__)

# Summaries are deduplicated per local day; 36h covers every timezone offset.
SUMMARY_LOOKBACK = timedelta(hours=36)


@dataclass(slots=True)
class SweepResult:
    scanned: int = 0
    created: int = 0
    duplicates: int = 0
    failed: int = 0
    notifications: list[Notification] = field(default_factory=list)


def _persist(
        new: list[NewNotification],
        notification_repo: NotificationRepo,
        now: datetime,
) -> tuple[list[Notification], int]:
    stored: list[Notification] = []
    duplicates = 0
    for item in new:
        saved = notification_repo.insert(item, created_at=now)
        if saved is None:
            duplicates += 1
            continue
        stored.append(saved)
    return stored, duplicates


def _process_task(
        task: Task,
        preference_repo: PreferenceRepo,
        notification_repo: NotificationRepo,
        now: datetime,
) -> tuple[list[Notification], int]:
    """Evaluate and persist one task. Runs in a worker thread; may raise."""
    prefs = preference_repo.get_or_create(task.user_id)
    existing = notification_repo.list_for_task(task.id)

    new = generate_notifications_for_task(task, prefs, existing, now, prefs.timezone)
    return _persist(new, notification_repo, now)


def _process_user(
        prefs: NotificationPreference,
        task_repo: TaskRepo,
        notification_repo: NotificationRepo,
        now: datetime,
) -> tuple[list[Notification], int]:
    """Evaluate and persist one user's summaries. Runs in a worker thread; may raise."""
    tasks = task_repo.list_open_tasks_for_user(prefs.user_id)
    existing = notification_repo.list_summaries(prefs.user_id, since=now - SUMMARY_LOOKBACK)

    new = generate_summaries_for_user(prefs, tasks, existing, now)
    return _persist(new, notification_repo, now)


def _announce(events: EventSink, notification: Notification, project_id: str | None) -> None:
    events.emit(
        SyncEvent(
            entity="notification",
            action="created",
            entity_id=str(notification.id),
            user_id=notification.user_id,
            project_id=project_id,
            data={
                "taskId": notification.task_id,
                "type": notification.kind.value,
                "title": notification.title,
                "message": notification.message,
                "metadata": dict(notification.metadata),
            },
        )
    )


async def run_sweep(
        task_repo: TaskRepo,
        preference_repo: PreferenceRepo,
        notification_repo: NotificationRepo,
        *,
        now: datetime,
        events: EventSink | None = None,
        batch_limit: int = 500,
        max_workers: int = 4,
) -> SweepResult:
    """
    Run one sweep at `now`.

    Tasks, then users, are evaluated concurrently, at most `max_workers` at a
    time; store calls run in threads. Tasks beyond `batch_limit` wait for the
    next sweep.
    """
    result = SweepResult()
    now = ensure_utc(now)

    try:
        tasks = await asyncio.to_thread(task_repo.list_due_open_tasks, limit=int(batch_limit))
    except Exception:
        logger.exception("list_due_open_tasks failed")
        return result

    result.scanned = len(tasks)
    sem = asyncio.Semaphore(max(1, int(max_workers)))

    async def _run(
            work: Callable[[], tuple[list[Notification], int]],
            project_id: str | None,
            label: str,
    ) -> None:
        async with sem:
            try:
                stored, duplicates = await asyncio.to_thread(work)
            except Exception:
                result.failed += 1
                logger.exception("Notification sweep failed %s", label)
                return

        result.duplicates += duplicates
        for n in stored:
            result.created += 1
            result.notifications.append(n)
            logger.info(
                "Notification created id=%s user=%s task_id=%s kind=%s",
                n.id,
                n.user_id,
                n.task_id,
                n.kind.value,
            )
            if events is not None:
                _announce(events, n, project_id)

    await asyncio.gather(
        *(
            _run(
                lambda t=t: _process_task(t, preference_repo, notification_repo, now),
                t.project_id,
                f"task_id={t.id}",
            )
            for t in tasks
            if t.due_date is not None and t.completed_at is None
        )
    )

    try:
        candidates = await asyncio.to_thread(preference_repo.list_summary_candidates)
    except Exception:
        logger.exception("list_summary_candidates failed")
        candidates = []

    await asyncio.gather(
        *(
            _run(
                lambda p=p: _process_user(p, task_repo, notification_repo, now),
                None,
                f"user={p.user_id}",
            )
            for p in candidates
        )
    )

    if result.created or result.failed:
        logger.info(
            "Sweep done scanned=%s created=%s duplicates=%s failed=%s",
            result.scanned,
            result.created,
            result.duplicates,
            result.failed,
        )
    else:
        logger.debug("Sweep done scanned=%s (nothing new)", result.scanned)
    return result


async def run_notification_scheduler(
        state: AppState,
        *,
        interval_seconds: float = 120.0,
        initial_delay_seconds: float = 10.0,
        batch_limit: int = 500,
        max_workers: int = 4,
) -> None:
    """
    Simple polling scheduler.

    Waits initial_delay_seconds, then every interval_seconds runs one sweep at
    state.clock(). A sweep that blows up is logged; the loop keeps going.

    To stop the scheduler, cancel the coroutine/task.
    """
    sleep_s = max(0.5, float(interval_seconds))

    if initial_delay_seconds > 0:
        await asyncio.sleep(float(initial_delay_seconds))

    while True:
        try:
            await run_sweep(
                state.task_store,
                state.preference_store,
                state.notification_store,
                now=state.clock(),
                events=state.events,
                batch_limit=batch_limit,
                max_workers=max_workers,
            )
        except Exception:
            logger.exception("Notification sweep crashed")

        await asyncio.sleep(sleep_s)
