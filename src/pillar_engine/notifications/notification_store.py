# src/pillar_engine/notifications/notification_store.py

from __future__ import annotations

import logging
import sqlite3
from datetime import datetime
from pathlib import Path
from typing import Any

from ..core.clock import from_epoch, to_epoch, utc_now
from ..core.db import SQLiteStore, dump_json, load_json
from ..errors import StoreError
from .notification_models import (
    MAX_REMINDER_RULES,
    NewNotification,
    Notification,
    NotificationKind,
    NotificationPreference,
    ReminderRule,
)

logger = logging.getLogger(__name__)


class NotificationStore(SQLiteStore):
    """
    SQLite notification store.

    UNIQUE(task_id, dedup_key) is the at-most-once guarantee for task
    notifications, a partial unique index on (user_id, dedup_key) the one for
    per-user summaries (task_id NULL). Two sweeps racing on the same item can
    both decide to create it, only one insert wins. The loser gets None back
    from insert(), not an error.
    """

    def __init__(self, db_path: str | Path = "pillar.sqlite3") -> None:
        super().__init__(db_path)
        logger.info("NotificationStore ready db=%s", self._db_path)

    def _ensure_schema(self) -> None:
        conn = self._get_conn()
        try:
            cur = conn.cursor()
            cur.execute(
                """
                CREATE TABLE IF NOT EXISTS notifications (
                    id INTEGER PRIMARY KEY AUTOINCREMENT,
                    user_id TEXT NOT NULL,
                    task_id INTEGER,
                    kind TEXT NOT NULL,
                    rule_key TEXT,
                    dedup_key TEXT NOT NULL,
                    title TEXT NOT NULL,
                    message TEXT NOT NULL,
                    scheduled_for REAL,
                    period TEXT,
                    metadata TEXT NOT NULL DEFAULT '{}',
                    created_at REAL NOT NULL,
                    UNIQUE(task_id, dedup_key)
                )
                """
            )
            self._add_missing_columns(cur, "notifications", {"period": "TEXT"})
            cur.execute("CREATE INDEX IF NOT EXISTS idx_notifications_user ON notifications(user_id, created_at)")
            cur.execute(
                """
                CREATE UNIQUE INDEX IF NOT EXISTS idx_notifications_user_summary
                ON notifications(user_id, dedup_key)
                WHERE task_id IS NULL
                """
            )
            conn.commit()
        finally:
            conn.close()

    @staticmethod
    def _row_to_notification(row: sqlite3.Row) -> Notification:
        return Notification(
            id=int(row["id"]),
            user_id=str(row["user_id"]),
            task_id=int(row["task_id"]) if row["task_id"] is not None else None,
            kind=NotificationKind(row["kind"]),
            title=str(row["title"]),
            message=str(row["message"]),
            metadata=load_json(row["metadata"], {}),
            created_at=from_epoch(row["created_at"]),
            rule_key=row["rule_key"],
            scheduled_for=from_epoch(row["scheduled_for"]),
            period=row["period"],
        )

    def list_for_task(self, task_id: int) -> list[Notification]:
        conn = self._get_conn()
        try:
            cur = conn.execute(
                "SELECT * FROM notifications WHERE task_id = ? ORDER BY created_at ASC, id ASC",
                (int(task_id),),
            )
            return [self._row_to_notification(r) for r in cur.fetchall()]
        finally:
            conn.close()

    def list_for_user(self, user_id: str, limit: int = 50) -> list[Notification]:
        conn = self._get_conn()
        try:
            cur = conn.execute(
                """
                SELECT *
                FROM notifications
                WHERE user_id = ?
                ORDER BY created_at DESC, id DESC
                    LIMIT ?
                """,
                (user_id, int(limit)),
            )
            return [self._row_to_notification(r) for r in cur.fetchall()]
        finally:
            conn.close()

    def list_summaries(self, user_id: str, *, since: datetime) -> list[Notification]:
        """Per-user summaries (no task) created at or after `since`."""
        conn = self._get_conn()
        try:
            cur = conn.execute(
                """
                SELECT *
                FROM notifications
                WHERE user_id = ?
                  AND task_id IS NULL
                  AND created_at >= ?
                ORDER BY created_at ASC, id ASC
                """,
                (user_id, to_epoch(since)),
            )
            return [self._row_to_notification(r) for r in cur.fetchall()]
        finally:
            conn.close()

    def insert(self, new: NewNotification, *, created_at: datetime | None = None) -> Notification | None:
        """
        Persist one notification.

        Returns the stored notification, or None if one with the same dedup key
        already exists for the task (or, for summaries, the user). Any other
        SQLite failure, other constraint violations included, raises StoreError.
        """
        created_at = created_at or utc_now()
        try:
            with self._transaction() as conn:
                cur = conn.execute(
                    """
                    INSERT INTO notifications(
                        user_id, task_id, kind, rule_key, dedup_key, title,
                        message, scheduled_for, period, metadata, created_at
                    )
                    VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
                    """,
                    (
                        new.user_id,
                        int(new.task_id) if new.task_id is not None else None,
                        new.kind.value,
                        new.rule_key,
                        new.dedup_key,
                        new.title,
                        new.message,
                        to_epoch(new.scheduled_for),
                        new.period,
                        dump_json(new.metadata, "{}"),
                        to_epoch(created_at),
                    ),
                )
                rowid = cur.lastrowid
        except sqlite3.IntegrityError as exc:
            if exc.sqlite_errorname != "SQLITE_CONSTRAINT_UNIQUE":
                raise StoreError(
                    f"failed to insert notification user={new.user_id} task={new.task_id}: {exc}"
                ) from exc
            logger.debug(
                "Notification already exists user=%s task_id=%s key=%s",
                new.user_id,
                new.task_id,
                new.dedup_key,
            )
            return None
        except sqlite3.Error as exc:
            raise StoreError(f"failed to insert notification user={new.user_id} task={new.task_id}") from exc

        if rowid is None:
            raise RuntimeError("SQLite did not return lastrowid for notifications insert")

        return Notification(
            id=int(rowid),
            user_id=new.user_id,
            task_id=new.task_id,
            kind=new.kind,
            title=new.title,
            message=new.message,
            metadata=dict(new.metadata),
            created_at=created_at,
            rule_key=new.rule_key,
            scheduled_for=new.scheduled_for,
            period=new.period,
        )


class PreferenceStore(SQLiteStore):
    """One notification preference row per user, created lazily with defaults."""

    def __init__(self, db_path: str | Path = "pillar.sqlite3", *, default_timezone: str = "UTC") -> None:
        self._default_timezone = default_timezone or "UTC"
        super().__init__(db_path)
        logger.info("PreferenceStore ready db=%s", self._db_path)

    def _ensure_schema(self) -> None:
        conn = self._get_conn()
        try:
            cur = conn.cursor()
            cur.execute(
                """
                CREATE TABLE IF NOT EXISTS notification_preferences (
                    user_id TEXT PRIMARY KEY,
                    enable_in_app INTEGER NOT NULL DEFAULT 1,
                    quiet_hours_enabled INTEGER NOT NULL DEFAULT 0,
                    quiet_hours_start TEXT NOT NULL DEFAULT '22:00',
                    quiet_hours_end TEXT NOT NULL DEFAULT '08:00',
                    timezone TEXT NOT NULL DEFAULT 'UTC',
                    enable_overdue_summary INTEGER NOT NULL DEFAULT 1,
                    overdue_summary_time TEXT NOT NULL DEFAULT '09:00',
                    enable_daily_summary INTEGER NOT NULL DEFAULT 0,
                    daily_summary_time TEXT NOT NULL DEFAULT '08:00',
                    reminder_rules TEXT NOT NULL DEFAULT '[]',
                    created_at REAL NOT NULL,
                    updated_at REAL NOT NULL
                )
                """
            )
            self._add_missing_columns(
                cur,
                "notification_preferences",
                {
                    "overdue_summary_time": "TEXT NOT NULL DEFAULT '09:00'",
                    "enable_daily_summary": "INTEGER NOT NULL DEFAULT 0",
                    "daily_summary_time": "TEXT NOT NULL DEFAULT '08:00'",
                },
            )
            conn.commit()
        finally:
            conn.close()

    @staticmethod
    def _rules_from_json(user_id: str, raw: str | None) -> list[ReminderRule]:
        rules: list[ReminderRule] = []
        for item in load_json(raw, []):
            if not isinstance(item, dict):
                continue
            try:
                rules.append(ReminderRule.from_dict(item))
            except (KeyError, TypeError, ValueError):
                logger.warning("Skipping malformed reminder rule user=%s rule=%r", user_id, item)
        if len(rules) > MAX_REMINDER_RULES:
            logger.warning(
                "User %s has %d reminder rules; keeping the first %d",
                user_id,
                len(rules),
                MAX_REMINDER_RULES,
            )
            rules = rules[:MAX_REMINDER_RULES]
        return rules

    def _row_to_preference(self, row: sqlite3.Row) -> NotificationPreference:
        user_id = str(row["user_id"])
        return NotificationPreference(
            user_id=user_id,
            enable_in_app_notifications=bool(row["enable_in_app"]),
            quiet_hours_enabled=bool(row["quiet_hours_enabled"]),
            quiet_hours_start=str(row["quiet_hours_start"]),
            quiet_hours_end=str(row["quiet_hours_end"]),
            timezone=str(row["timezone"] or "UTC"),
            enable_overdue_summary=bool(row["enable_overdue_summary"]),
            overdue_summary_time=str(row["overdue_summary_time"]),
            enable_daily_summary=bool(row["enable_daily_summary"]),
            daily_summary_time=str(row["daily_summary_time"]),
            reminder_rules=self._rules_from_json(user_id, row["reminder_rules"]),
        )

    @staticmethod
    def _params(pref: NotificationPreference) -> tuple[Any, ...]:
        return (
            pref.user_id,
            int(pref.enable_in_app_notifications),
            int(pref.quiet_hours_enabled),
            pref.quiet_hours_start,
            pref.quiet_hours_end,
            pref.timezone,
            int(pref.enable_overdue_summary),
            pref.overdue_summary_time,
            int(pref.enable_daily_summary),
            pref.daily_summary_time,
            dump_json([r.to_dict() for r in pref.reminder_rules], "[]"),
        )

    def get(self, user_id: str) -> NotificationPreference | None:
        conn = self._get_conn()
        try:
            row = conn.execute(
                "SELECT * FROM notification_preferences WHERE user_id = ?",
                (user_id,),
            ).fetchone()
            return self._row_to_preference(row) if row else None
        finally:
            conn.close()

    def list_summary_candidates(self) -> list[NotificationPreference]:
        """Users with in-app notifications on and at least one summary kind enabled."""
        conn = self._get_conn()
        try:
            cur = conn.execute(
                """
                SELECT *
                FROM notification_preferences
                WHERE enable_in_app = 1
                  AND (enable_daily_summary = 1 OR enable_overdue_summary = 1)
                ORDER BY user_id
                """
            )
            return [self._row_to_preference(r) for r in cur.fetchall()]
        finally:
            conn.close()

    def save(self, pref: NotificationPreference) -> None:
        now_ts = to_epoch(utc_now())
        try:
            with self._transaction() as conn:
                conn.execute(
                    """
                    INSERT INTO notification_preferences(
                        user_id, enable_in_app, quiet_hours_enabled, quiet_hours_start,
                        quiet_hours_end, timezone, enable_overdue_summary, overdue_summary_time,
                        enable_daily_summary, daily_summary_time, reminder_rules,
                        created_at, updated_at
                    )
                    VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
                    ON CONFLICT(user_id) DO UPDATE SET
                        enable_in_app = excluded.enable_in_app,
                        quiet_hours_enabled = excluded.quiet_hours_enabled,
                        quiet_hours_start = excluded.quiet_hours_start,
                        quiet_hours_end = excluded.quiet_hours_end,
                        timezone = excluded.timezone,
                        enable_overdue_summary = excluded.enable_overdue_summary,
                        overdue_summary_time = excluded.overdue_summary_time,
                        enable_daily_summary = excluded.enable_daily_summary,
                        daily_summary_time = excluded.daily_summary_time,
                        reminder_rules = excluded.reminder_rules,
                        updated_at = excluded.updated_at
                    """,
                    (*self._params(pref), now_ts, now_ts),
                )
        except sqlite3.Error as exc:
            raise StoreError(f"failed to save preferences for user {pref.user_id}") from exc

    def get_or_create(self, user_id: str) -> NotificationPreference:
        """
        Return the user's preferences, creating a default record if missing.

        INSERT OR IGNORE makes concurrent first calls safe: whoever loses the race
        simply reads the row the winner created.
        """
        defaults = NotificationPreference(user_id=user_id, timezone=self._default_timezone)
        now_ts = to_epoch(utc_now())
        try:
            with self._transaction() as conn:
                cur = conn.execute(
                    """
                    INSERT OR IGNORE INTO notification_preferences(
                        user_id, enable_in_app, quiet_hours_enabled, quiet_hours_start,
                        quiet_hours_end, timezone, enable_overdue_summary, overdue_summary_time,
                        enable_daily_summary, daily_summary_time, reminder_rules,
                        created_at, updated_at
                    )
                    VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
                    """,
                    (*self._params(defaults), now_ts, now_ts),
                )
                if cur.rowcount == 1:
                    logger.info("Created default notification preferences user=%s", user_id)
        except sqlite3.Error as exc:
            raise StoreError(f"failed to create preferences for user {user_id}") from exc

        pref = self.get(user_id)
        return pref if pref is not None else defaults
