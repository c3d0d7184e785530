# src/pillar_engine/notifications/notification_models.py

from __future__ import annotations

import re
from dataclasses import dataclass, field
from datetime import datetime, time, timedelta
from enum import StrEnum
from typing import Any

import pytz

from ..core.clock import ensure_utc

MAX_REMINDER_RULES = 10

_HHMM_RE = re.compile(r"^([0-1]\d|2[0-3]):([0-5]\d)$")


def parse_hhmm(value: str | time) -> time:
    """Parse "HH:MM" (24h). Raises TypeError for non-strings, ValueError for bad text."""
    if isinstance(value, time):
        return value
    if not isinstance(value, str):
        raise TypeError(f"expected HH:MM string, got {type(value).__name__}")
    m = _HHMM_RE.match(value.strip())
    if not m:
        raise ValueError(f"expected HH:MM, got {value!r}")
    return time(int(m.group(1)), int(m.group(2)))


class NotificationKind(StrEnum):
    OVERDUE = "overdue"
    REMINDER = "reminder"
    DAILY_SUMMARY = "daily-summary"
    OVERDUE_DIGEST = "overdue-digest"


@dataclass(frozen=True, slots=True)
class ReminderRule:
    """
    An offset from a task's due date that fires exactly one reminder.

    Two shapes:
    - fixed duration: minutes_before=60 -> due_date - 1h
    - calendar offset: days_before=1, time="09:00" -> 09:00 local time on the day
      before the due date's calendar day
    """

    minutes_before: int | None = None
    days_before: int | None = None
    time: str | None = None

    def __post_init__(self) -> None:
        if self.minutes_before is not None:
            if self.days_before is not None or self.time is not None:
                raise ValueError("a reminder rule is either minutes_before or days_before+time")
            if int(self.minutes_before) <= 0:
                raise ValueError("minutes_before must be positive")
            return
        if self.days_before is None or self.time is None:
            raise ValueError("days_before and time must be given together")
        if not 0 <= int(self.days_before) <= 30:
            raise ValueError("days_before must be within 0..30")
        parse_hhmm(self.time)

    @classmethod
    def offset(cls, minutes_before: int) -> ReminderRule:
        return cls(minutes_before=minutes_before)

    @classmethod
    def days(cls, days_before: int, at: str) -> ReminderRule:
        return cls(days_before=days_before, time=at)

    @property
    def key(self) -> str:
        """Stable identity of the rule; part of the reminder dedup key."""
        if self.minutes_before is not None:
            return f"offset:{int(self.minutes_before)}"
        return f"days:{int(self.days_before or 0)}@{self.time}"

    def trigger_at(self, due_date: datetime, tz: pytz.BaseTzInfo) -> datetime:
        """Absolute UTC instant at which this rule fires for `due_date`."""
        due = ensure_utc(due_date)
        if self.minutes_before is not None:
            return due - timedelta(minutes=int(self.minutes_before))

        # Due dates are stored as midnight UTC for date-only tasks, so the calendar
        # day is read from the UTC components, not from the user's local time.
        day = due.date() - timedelta(days=int(self.days_before or 0))
        at = parse_hhmm(self.time or "")
        local = tz.localize(datetime.combine(day, at))
        return local.astimezone(pytz.utc)

    def to_dict(self) -> dict[str, Any]:
        if self.minutes_before is not None:
            return {"minutesBefore": int(self.minutes_before)}
        return {"daysBefore": int(self.days_before or 0), "time": self.time}

    @classmethod
    def from_dict(cls, raw: dict[str, Any]) -> ReminderRule:
        if "minutesBefore" in raw:
            return cls.offset(int(raw["minutesBefore"]))
        return cls.days(int(raw["daysBefore"]), str(raw["time"]))


def default_reminder_rules() -> list[ReminderRule]:
    # 1 day, 1 hour, 15 minutes
    return [ReminderRule.offset(1440), ReminderRule.offset(60), ReminderRule.offset(15)]


@dataclass(slots=True)
class NotificationPreference:
    user_id: str
    enable_in_app_notifications: bool = True
    quiet_hours_enabled: bool = False
    quiet_hours_start: str = "22:00"
    quiet_hours_end: str = "08:00"
    timezone: str = "UTC"
    # Gates both the per-task overdue notification and the daily overdue digest.
    enable_overdue_summary: bool = True
    overdue_summary_time: str = "09:00"
    enable_daily_summary: bool = False
    daily_summary_time: str = "08:00"
    reminder_rules: list[ReminderRule] = field(default_factory=default_reminder_rules)

    def __post_init__(self) -> None:
        if len(self.reminder_rules) > MAX_REMINDER_RULES:
            raise ValueError(
                f"at most {MAX_REMINDER_RULES} reminder rules are allowed, got {len(self.reminder_rules)}"
            )


def overdue_dedup_key() -> str:
    return NotificationKind.OVERDUE.value


def reminder_dedup_key(rule_key: str) -> str:
    return f"{NotificationKind.REMINDER.value}:{rule_key}"


def summary_dedup_key(kind: NotificationKind, local_date: str) -> str:
    """One summary of each kind per user and local calendar day."""
    return f"{kind.value}:{local_date}"


def _dedup_key(kind: NotificationKind, rule_key: str | None, period: str | None) -> str:
    if kind == NotificationKind.REMINDER:
        return reminder_dedup_key(rule_key or "")
    if kind == NotificationKind.OVERDUE:
        return overdue_dedup_key()
    return summary_dedup_key(kind, period or "")


@dataclass(frozen=True, slots=True)
class NewNotification:
    """
    A notification the generators decided to create (not persisted yet).

    Task notifications carry a task_id; per-user summaries carry task_id=None
    and `period`, the user's local date they summarize.
    """

    user_id: str
    task_id: int | None
    kind: NotificationKind
    title: str
    message: str
    metadata: dict[str, Any]
    rule_key: str | None = None
    scheduled_for: datetime | None = None
    period: str | None = None

    @property
    def dedup_key(self) -> str:
        return _dedup_key(self.kind, self.rule_key, self.period)


@dataclass(frozen=True, slots=True)
class Notification:
    id: int
    user_id: str
    task_id: int | None
    kind: NotificationKind
    title: str
    message: str
    metadata: dict[str, Any]
    created_at: datetime
    rule_key: str | None = None
    scheduled_for: datetime | None = None
    period: str | None = None

    @property
    def dedup_key(self) -> str:
        return _dedup_key(self.kind, self.rule_key, self.period)
