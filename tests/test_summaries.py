# tests/test_summaries.py

from __future__ import annotations

from dataclasses import replace
from datetime import datetime

import pytest

from pillar_engine.notifications.notification_models import NotificationKind, NotificationPreference
from pillar_engine.notifications.summaries import generate_summaries_for_user

from .fakes import NOW, UTC, as_stored, make_task


def prefs(**overrides) -> NotificationPreference:
    return NotificationPreference(user_id="u1", **overrides)


def day(d: int, hour: int = 0) -> datetime:
    return datetime(2026, 2, d, hour, 0, tzinfo=UTC)


def sample_tasks():
    return [
        make_task(id=1, title="Pay rent", due_date=day(15)),  # date-only, due today
        make_task(id=2, title="Call plumber", due_date=day(15, 18)),
        make_task(id=3, title="File taxes", due_date=day(12)),
    ]


def test_daily_summary_is_opt_in() -> None:
    out = generate_summaries_for_user(prefs(), sample_tasks(), [], NOW)
    assert [n.kind for n in out] == [NotificationKind.OVERDUE_DIGEST]


def test_daily_summary_counts_today_and_overdue() -> None:
    p = prefs(enable_daily_summary=True, enable_overdue_summary=False)

    (n,) = generate_summaries_for_user(p, sample_tasks(), [], NOW)

    assert n.kind == NotificationKind.DAILY_SUMMARY
    assert n.task_id is None
    assert n.title == "Daily Summary"
    assert n.message == "You have 2 tasks due today and 1 overdue task."
    assert n.period == "2026-02-15"
    assert n.dedup_key == "daily-summary:2026-02-15"
    assert n.metadata["summaryDate"] == "2026-02-15"
    assert (n.metadata["dueTodayCount"], n.metadata["overdueCount"], n.metadata["totalCount"]) == (2, 1, 3)
    assert [t["id"] for t in n.metadata["dueTodayTasks"]] == [1, 2]
    assert n.metadata["overdueTasks"] == [{"id": 3, "title": "File taxes", "priority": "high", "projectId": "p1"}]


@pytest.mark.parametrize(("hour", "minute", "count"), [(7, 59, 0), (8, 0, 1), (21, 30, 1)])
def test_daily_summary_waits_for_its_time(hour: int, minute: int, count: int) -> None:
    p = prefs(enable_daily_summary=True, enable_overdue_summary=False, daily_summary_time="08:00")
    now = datetime(2026, 2, 15, hour, minute, tzinfo=UTC)
    assert len(generate_summaries_for_user(p, sample_tasks(), [], now)) == count


def test_summaries_sent_once_per_local_day() -> None:
    p = prefs(enable_daily_summary=True)

    first = generate_summaries_for_user(p, sample_tasks(), [], NOW)
    assert sorted(n.kind.value for n in first) == ["daily-summary", "overdue-digest"]

    existing = [as_stored(n, notification_id=i) for i, n in enumerate(first, start=1)]
    assert generate_summaries_for_user(p, sample_tasks(), existing, day(15, 20)) == []

    tomorrow = generate_summaries_for_user(p, sample_tasks(), existing, day(16, 10))
    assert sorted(n.period for n in tomorrow) == ["2026-02-16", "2026-02-16"]


def test_summaries_of_other_users_do_not_count_as_sent() -> None:
    (digest,) = generate_summaries_for_user(prefs(), sample_tasks(), [], NOW)
    theirs = [as_stored(replace(digest, user_id="u2"))]

    assert len(generate_summaries_for_user(prefs(), sample_tasks(), theirs, NOW)) == 1


def test_overdue_digest_lists_tasks_with_days_overdue() -> None:
    tasks = [make_task(id=i, title=f"T{i}", due_date=day(i)) for i in range(1, 8)]

    (n,) = generate_summaries_for_user(prefs(), tasks, [], NOW)

    assert n.kind == NotificationKind.OVERDUE_DIGEST
    assert n.title == "Overdue Tasks Summary"
    assert n.message == (
        "You have 7 overdue tasks: T1 (14d overdue), T2 (13d overdue), T3 (12d overdue), "
        "T4 (11d overdue), T5 (10d overdue), and 2 more"
    )
    assert n.metadata["overdueSummaryDate"] == "2026-02-15"
    assert n.metadata["overdueCount"] == 7
    assert len(n.metadata["tasks"]) == 7
    assert n.metadata["tasks"][-1]["daysOverdue"] == 8
    assert n.metadata["tasks"][0]["dueDate"] == "2026-02-01T00:00:00+00:00"


def test_overdue_digest_preview_is_capped() -> None:
    tasks = [make_task(id=i, title=f"T{i}", due_date=day(i)) for i in range(1, 13)]

    (n,) = generate_summaries_for_user(prefs(), tasks, [], NOW)

    assert n.metadata["overdueCount"] == 12
    assert [t["id"] for t in n.metadata["tasks"]] == list(range(1, 11))
    assert n.message.endswith(", and 7 more")


def test_single_overdue_task_message() -> None:
    tasks = [make_task(title="File taxes", due_date=day(12))]
    (n,) = generate_summaries_for_user(prefs(), tasks, [], NOW)
    assert n.message == "You have 1 overdue task: File taxes (3d overdue)"


def test_overdue_digest_waits_for_its_time() -> None:
    early = datetime(2026, 2, 15, 8, 59, tzinfo=UTC)
    assert generate_summaries_for_user(prefs(), sample_tasks(), [], early) == []
    assert generate_summaries_for_user(prefs(overdue_summary_time="08:30"), sample_tasks(), [], early) != []


def test_quiet_hours_defer_summaries() -> None:
    p = prefs(
        enable_daily_summary=True,
        quiet_hours_enabled=True,
        quiet_hours_start="09:30",
        quiet_hours_end="11:00",
    )
    assert generate_summaries_for_user(p, sample_tasks(), [], NOW) == []
    assert len(generate_summaries_for_user(p, sample_tasks(), [], day(15, 12))) == 2


def test_today_follows_the_user_timezone() -> None:
    # 20:00 UTC on the 15th is 09:00 on the 16th in Auckland (UTC+13 in February).
    now = day(15, 20)
    tasks = [
        make_task(id=1, title="Due today", due_date=day(16)),
        make_task(id=2, title="Yesterday", due_date=day(15)),
    ]
    p = prefs(enable_daily_summary=True, timezone="Pacific/Auckland")

    out = {n.kind: n for n in generate_summaries_for_user(p, tasks, [], now)}

    daily = out[NotificationKind.DAILY_SUMMARY]
    assert daily.period == "2026-02-16"
    assert (daily.metadata["dueTodayCount"], daily.metadata["overdueCount"]) == (1, 1)
    digest = out[NotificationKind.OVERDUE_DIGEST]
    assert digest.message == "You have 1 overdue task: Yesterday (1d overdue)"


def test_nothing_to_report_sends_nothing() -> None:
    tasks = [
        make_task(id=1, due_date=day(20)),
        make_task(id=2, due_date=day(10), completed_at=day(11)),
        make_task(id=3, due_date=day(10), user_id="u2"),
        make_task(id=4, due_date=None),
    ]
    p = prefs(enable_daily_summary=True)
    assert generate_summaries_for_user(p, tasks, [], NOW) == []


@pytest.mark.parametrize(
    "pref_kwargs",
    [
        {"enable_in_app_notifications": False, "enable_daily_summary": True},
        {"enable_overdue_summary": False},
    ],
)
def test_guards_produce_nothing(pref_kwargs) -> None:
    assert generate_summaries_for_user(prefs(**pref_kwargs), sample_tasks(), [], NOW) == []


def test_malformed_summary_time_skips_only_that_summary() -> None:
    p = prefs(enable_daily_summary=True, daily_summary_time="8am")
    out = generate_summaries_for_user(p, sample_tasks(), [], NOW)
    assert [n.kind for n in out] == [NotificationKind.OVERDUE_DIGEST]
