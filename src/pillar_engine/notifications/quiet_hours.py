# src/pillar_engine/notifications/quiet_hours.py

from __future__ import annotations

import logging
from datetime import datetime, time

import pytz

from ..core.clock import ensure_utc
from .notification_models import parse_hhmm

logger = logging.getLogger(__name__)


def resolve_timezone(name: str | None) -> pytz.BaseTzInfo:
    """IANA zone by name; unknown or empty names fall back to UTC."""
    if not name:
        return pytz.utc
    try:
        return pytz.timezone(name)
    except pytz.UnknownTimeZoneError:
        logger.warning("Unknown timezone %r; falling back to UTC", name)
        return pytz.utc


def _minutes(value: time) -> int:
    return value.hour * 60 + value.minute


def is_within_quiet_hours(
    now: datetime,
    enabled: bool,
    start: str | time,
    end: str | time,
    timezone: str | None = "UTC",
) -> bool:
    """
    True if notification creation must be suppressed at `now`.

    Local wall-clock minutes are compared against [start, end], both ends inclusive.
    A window with start > end crosses midnight (22:00-08:00).
    """
    if not enabled:
        return False

    try:
        s = _minutes(parse_hhmm(start))
        e = _minutes(parse_hhmm(end))
    except (TypeError, ValueError):
        logger.warning("Malformed quiet hours start=%r end=%r; ignoring quiet hours", start, end)
        return False

    local = ensure_utc(now).astimezone(resolve_timezone(timezone))
    t = local.hour * 60 + local.minute

    if s <= e:
        return s <= t <= e
    return t >= s or t <= e
