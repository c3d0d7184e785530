# src/pillar_engine/core/db.py

from __future__ import annotations

import contextlib
import json
import logging
import sqlite3
from collections.abc import Iterator
from pathlib import Path
from typing import Any

logger = logging.getLogger(__name__)


class SQLiteStore:
    """
    Base for the engine's SQLite stores.

    All stores may share one database file. Each method opens its own short-lived
    connection, so a store instance is safe to use from worker threads.
    Subclasses create their tables in _ensure_schema().
    """

    def __init__(self, db_path: str | Path) -> None:
        self._db_path = Path(db_path)
        self._db_path.parent.mkdir(parents=True, exist_ok=True)
        self._ensure_schema()

    @property
    def db_path(self) -> Path:
        return self._db_path

    def _ensure_schema(self) -> None:
        raise NotImplementedError

    def _get_conn(self) -> sqlite3.Connection:
        conn = sqlite3.connect(str(self._db_path), timeout=30.0)
        conn.row_factory = sqlite3.Row
        self._configure_conn(conn)
        return conn

    @staticmethod
    def _configure_conn(conn: sqlite3.Connection) -> None:
        with contextlib.suppress(sqlite3.Error):
            conn.execute("PRAGMA journal_mode=WAL")

    @contextlib.contextmanager
    def _transaction(self) -> Iterator[sqlite3.Connection]:
        """Commit on success, roll back on any exception, always close."""
        conn = self._get_conn()
        try:
            yield conn
            conn.commit()
        except BaseException:
            conn.rollback()
            raise
        finally:
            conn.close()

    @staticmethod
    def _add_missing_columns(cur: sqlite3.Cursor, table: str, columns: dict[str, str]) -> None:
        """Safe migrations: ALTER TABLE only for columns an older DB does not have."""
        cur.execute(f"PRAGMA table_info({table})")
        existing = {row["name"] for row in cur.fetchall()}
        for name, decl in columns.items():
            if name in existing:
                continue
            cur.execute(f"ALTER TABLE {table} ADD COLUMN {name} {decl}")
            logger.info("Migration: added column %s.%s", table, name)


def dump_json(value: Any, default: str) -> str:
    if value is None:
        return default
    try:
        return json.dumps(value, ensure_ascii=False)
    except (TypeError, ValueError):
        logger.exception("Failed to JSON-encode value; storing %s.", default)
        return default


def load_json(raw: str | None, default: Any) -> Any:
    if not raw:
        return default
    try:
        val = json.loads(raw)
    except ValueError:
        return default
    return val if isinstance(val, type(default)) else default
