# tests/test_notification_scheduler.py

from __future__ import annotations

import asyncio
from datetime import datetime, timedelta

import pytest

from pillar_engine.core.state import AppState
from pillar_engine.notifications.notification_models import NotificationKind, NotificationPreference
from pillar_engine.notifications.scheduler import run_notification_scheduler, run_sweep

from .fakes import (
    NOW,
    UTC,
    FakeNotificationRepo,
    FakePreferenceRepo,
    FakeTaskRepo,
    RecordingEvents,
    make_task,
)


def digest_not_due_yet() -> FakePreferenceRepo:
    """u1 with the overdue digest scheduled after NOW, so only task notifications fire."""
    return FakePreferenceRepo({"u1": NotificationPreference(user_id="u1", overdue_summary_time="23:00")})


@pytest.mark.asyncio
async def test_sweep_creates_overdue_notification_once() -> None:
    tasks = FakeTaskRepo([make_task()])
    prefs = digest_not_due_yet()
    notes = FakeNotificationRepo()

    first = await run_sweep(tasks, prefs, notes, now=NOW)
    assert (first.scanned, first.created, first.failed) == (1, 1, 0)
    assert first.notifications[0].kind == NotificationKind.OVERDUE

    second = await run_sweep(tasks, prefs, notes, now=NOW)
    assert (second.scanned, second.created, second.failed) == (1, 0, 0)
    assert len(notes.items) == 1


@pytest.mark.asyncio
async def test_sweep_skips_completed_and_undated_tasks() -> None:
    tasks = FakeTaskRepo(
        [
            make_task(id=1, completed_at=datetime(2026, 2, 14, 12, 0, tzinfo=UTC)),
            make_task(id=2, due_date=None),
        ]
    )
    notes = FakeNotificationRepo()

    result = await run_sweep(tasks, FakePreferenceRepo(), notes, now=NOW)

    assert result.created == 0
    assert notes.items == []


@pytest.mark.asyncio
async def test_failure_on_one_task_does_not_stop_the_sweep() -> None:
    tasks = FakeTaskRepo([make_task(id=1), make_task(id=2), make_task(id=3)])
    prefs = digest_not_due_yet()
    notes = FakeNotificationRepo(fail_for={1})

    result = await run_sweep(tasks, prefs, notes, now=NOW)

    assert result.failed == 1
    assert result.created == 2
    assert sorted(n.task_id for n in notes.items) == [2, 3]

    # Nothing marks task 1 as attempted: the next healthy sweep picks it up.
    notes.fail_for.clear()
    retry = await run_sweep(tasks, prefs, notes, now=NOW)
    assert (retry.created, retry.failed) == (1, 0)
    assert sorted(n.task_id for n in notes.items) == [1, 2, 3]


@pytest.mark.asyncio
async def test_failed_insert_on_one_task_does_not_stop_the_sweep() -> None:
    tasks = FakeTaskRepo([make_task(id=1), make_task(id=2), make_task(id=3)])
    prefs = digest_not_due_yet()
    notes = FakeNotificationRepo(fail_insert_for={2})

    result = await run_sweep(tasks, prefs, notes, now=NOW)

    assert (result.created, result.failed) == (2, 1)
    assert sorted(n.task_id for n in notes.items) == [1, 3]

    notes.fail_insert_for.clear()
    retry = await run_sweep(tasks, prefs, notes, now=NOW)
    assert (retry.created, retry.failed) == (1, 0)
    assert sorted(n.task_id for n in notes.items) == [1, 2, 3]


@pytest.mark.asyncio
async def test_listing_failure_returns_empty_result() -> None:
    class BrokenTaskRepo:
        def list_due_open_tasks(self, *, limit: int = 500):
            raise ConnectionError("db down")

    result = await run_sweep(BrokenTaskRepo(), FakePreferenceRepo(), FakeNotificationRepo(), now=NOW)
    assert (result.scanned, result.created, result.failed) == (0, 0, 0)


@pytest.mark.asyncio
async def test_sweep_announces_created_notifications() -> None:
    events = RecordingEvents()

    await run_sweep(
        FakeTaskRepo([make_task()]),
        digest_not_due_yet(),
        FakeNotificationRepo(),
        now=NOW,
        events=events,
    )

    assert len(events.events) == 1
    (ev,) = events.events
    assert (ev.entity, ev.action, ev.user_id, ev.project_id) == ("notification", "created", "u1", "p1")
    assert ev.data["taskId"] == 1
    assert ev.data["type"] == "overdue"


@pytest.mark.asyncio
async def test_sweep_respects_batch_limit() -> None:
    tasks = FakeTaskRepo([make_task(id=i) for i in range(1, 6)])
    result = await run_sweep(tasks, digest_not_due_yet(), FakeNotificationRepo(), now=NOW, batch_limit=2)
    assert (result.scanned, result.created) == (2, 2)


@pytest.mark.asyncio
async def test_overdue_digest_sent_once_per_local_day() -> None:
    tasks = FakeTaskRepo([make_task(id=i, title=f"Task {i}") for i in range(1, 4)])
    prefs = FakePreferenceRepo()
    notes = FakeNotificationRepo()
    events = RecordingEvents()

    first = await run_sweep(tasks, prefs, notes, now=NOW, events=events)

    kinds = sorted(n.kind.value for n in first.notifications)
    assert kinds == ["overdue", "overdue", "overdue", "overdue-digest"]
    (digest,) = [n for n in first.notifications if n.kind == NotificationKind.OVERDUE_DIGEST]
    assert digest.task_id is None
    assert digest.period == "2026-02-15"
    assert digest.metadata["overdueCount"] == 3

    (digest_event,) = [e for e in events.events if e.data["type"] == "overdue-digest"]
    assert digest_event.project_id is None
    assert digest_event.data["taskId"] is None

    again = await run_sweep(tasks, prefs, notes, now=NOW + timedelta(hours=3))
    assert again.created == 0

    next_day = await run_sweep(tasks, prefs, notes, now=NOW + timedelta(days=1))
    assert [n.kind for n in next_day.notifications] == [NotificationKind.OVERDUE_DIGEST]
    assert next_day.notifications[0].period == "2026-02-16"


@pytest.mark.asyncio
async def test_daily_summary_for_user_with_it_enabled() -> None:
    today_task = make_task(id=1, due_date=datetime(2026, 2, 15, 18, 0, tzinfo=UTC))
    tasks = FakeTaskRepo([today_task])
    prefs = FakePreferenceRepo({"u1": NotificationPreference(user_id="u1", enable_daily_summary=True)})
    notes = FakeNotificationRepo()

    result = await run_sweep(tasks, prefs, notes, now=NOW)

    summaries = [n for n in result.notifications if n.kind == NotificationKind.DAILY_SUMMARY]
    assert len(summaries) == 1
    assert summaries[0].message == "You have 1 task due today."
    # Nothing overdue, so no digest.
    assert not [n for n in result.notifications if n.kind == NotificationKind.OVERDUE_DIGEST]


@pytest.mark.asyncio
async def test_failure_for_one_user_does_not_stop_summaries() -> None:
    class FlakyTaskRepo(FakeTaskRepo):
        def list_open_tasks_for_user(self, user_id: str):
            if user_id == "u1":
                raise ConnectionError("db down")
            return super().list_open_tasks_for_user(user_id)

    tasks = FlakyTaskRepo([make_task(id=1, user_id="u1"), make_task(id=2, user_id="u2")])
    notes = FakeNotificationRepo()

    result = await run_sweep(tasks, FakePreferenceRepo(), notes, now=NOW)

    assert result.failed == 1
    digests = [n for n in notes.items if n.kind == NotificationKind.OVERDUE_DIGEST]
    assert [n.user_id for n in digests] == ["u2"]


@pytest.mark.asyncio
async def test_concurrent_sweeps_store_one_notification(state: AppState) -> None:
    task_id = state.task_store.add_task(make_task())

    results = await asyncio.gather(
        run_sweep(state.task_store, state.preference_store, state.notification_store, now=NOW),
        run_sweep(state.task_store, state.preference_store, state.notification_store, now=NOW),
    )

    # One overdue notification and one overdue digest, whichever sweep won each.
    assert sum(r.created for r in results) == 2
    assert sum(r.failed for r in results) == 0
    stored = state.notification_store.list_for_task(task_id)
    assert [n.kind for n in stored] == [NotificationKind.OVERDUE]
    digests = state.notification_store.list_summaries("u1", since=NOW - timedelta(days=1))
    assert [n.kind for n in digests] == [NotificationKind.OVERDUE_DIGEST]


@pytest.mark.asyncio
async def test_scheduler_loop_sweeps_and_can_be_cancelled(state: AppState) -> None:
    task_id = state.task_store.add_task(make_task())
    seen = []
    state.events.subscribe(seen.append)

    runner = asyncio.create_task(
        run_notification_scheduler(
            state,
            interval_seconds=0.01,
            initial_delay_seconds=0.0,
            batch_limit=10,
            max_workers=2,
        )
    )

    await asyncio.sleep(0.3)
    runner.cancel()
    with pytest.raises(asyncio.CancelledError):
        await runner

    assert len(state.notification_store.list_for_task(task_id)) == 1
    assert sorted(e.data["type"] for e in seen) == ["overdue", "overdue-digest"]
