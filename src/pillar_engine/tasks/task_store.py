# src/pillar_engine/tasks/task_store.py

from __future__ import annotations

import logging
import sqlite3
from datetime import datetime
from pathlib import Path
from typing import Any

from ..core.clock import from_epoch, to_epoch, utc_now
from ..core.db import SQLiteStore, dump_json, load_json
from ..errors import StoreError
from .task_models import (
    Column,
    Priority,
    Project,
    Recurrence,
    RecurrenceFrequency,
    StatusChange,
    Subtask,
    Task,
)

logger = logging.getLogger(__name__)


class TaskStore(SQLiteStore):
    """
    SQLite task + project store.

    Only the slice of the tracker's task model the scheduling engine reads and
    writes lives here. `spawned_from` is UNIQUE: at most one successor per
    completed occurrence, even if the completion is retried.
    """

    def __init__(self, db_path: str | Path = "pillar.sqlite3") -> None:
        super().__init__(db_path)
        try:
            total = self.count_tasks()
        except sqlite3.Error:
            total = -1
        logger.info("TaskStore ready db=%s total=%s", self._db_path, total)

    # ---- low-level helpers ----

    def _ensure_schema(self) -> None:
        conn = self._get_conn()
        try:
            cur = conn.cursor()

            cur.execute(
                """
                CREATE TABLE IF NOT EXISTS projects (
                    id TEXT PRIMARY KEY,
                    name TEXT NOT NULL,
                    columns TEXT NOT NULL DEFAULT '[]'
                )
                """
            )

            cur.execute(
                """
                CREATE TABLE IF NOT EXISTS tasks (
                    id INTEGER PRIMARY KEY AUTOINCREMENT,
                    title TEXT NOT NULL,
                    description TEXT,
                    project_id TEXT NOT NULL,
                    user_id TEXT NOT NULL,
                    column_id TEXT NOT NULL,
                    priority TEXT NOT NULL DEFAULT 'medium',
                    due_at REAL,
                    recurrence_frequency TEXT NOT NULL DEFAULT 'none',
                    recurrence_interval INTEGER NOT NULL DEFAULT 1,
                    recurrence_end_at REAL,
                    labels TEXT NOT NULL DEFAULT '[]',
                    subtasks TEXT NOT NULL DEFAULT '[]',
                    status_history TEXT NOT NULL DEFAULT '[]',
                    completed_at REAL,
                    spawned_from TEXT,
                    created_at REAL NOT NULL,
                    updated_at REAL NOT NULL
                )
                """
            )

            self._add_missing_columns(
                cur,
                "tasks",
                {
                    "recurrence_end_at": "REAL",
                    "labels": "TEXT NOT NULL DEFAULT '[]'",
                    "status_history": "TEXT NOT NULL DEFAULT '[]'",
                    "spawned_from": "TEXT",
                },
            )

            cur.execute("CREATE INDEX IF NOT EXISTS idx_tasks_open_due ON tasks(completed_at, due_at)")
            cur.execute("CREATE INDEX IF NOT EXISTS idx_tasks_project ON tasks(project_id, column_id)")
            cur.execute("CREATE UNIQUE INDEX IF NOT EXISTS idx_tasks_spawned_from ON tasks(spawned_from)")

            conn.commit()
        finally:
            conn.close()

    @staticmethod
    def _subtasks_to_json(subtasks: list[Subtask]) -> str:
        return dump_json([{"title": s.title, "completed": bool(s.completed)} for s in subtasks], "[]")

    @staticmethod
    def _history_to_json(history: list[StatusChange]) -> str:
        return dump_json([{"columnId": h.column_id, "at": to_epoch(h.at)} for h in history], "[]")

    @staticmethod
    def _row_to_task(row: sqlite3.Row) -> Task:
        subtasks = [
            Subtask(title=str(s.get("title", "")), completed=bool(s.get("completed", False)))
            for s in load_json(row["subtasks"], [])
            if isinstance(s, dict)
        ]
        history: list[StatusChange] = []
        for h in load_json(row["status_history"], []):
            if not isinstance(h, dict) or h.get("at") is None:
                continue
            history.append(StatusChange(column_id=str(h.get("columnId", "")), at=from_epoch(h["at"])))

        return Task(
            id=int(row["id"]),
            title=str(row["title"]),
            description=row["description"],
            project_id=str(row["project_id"]),
            user_id=str(row["user_id"]),
            column_id=str(row["column_id"]),
            priority=Priority.from_db(row["priority"]),
            due_date=from_epoch(row["due_at"]),
            recurrence=Recurrence(
                frequency=RecurrenceFrequency.from_db(row["recurrence_frequency"]),
                interval=max(1, int(row["recurrence_interval"] or 1)),
                end_date=from_epoch(row["recurrence_end_at"]),
            ),
            labels=[str(x) for x in load_json(row["labels"], [])],
            subtasks=subtasks,
            status_history=history,
            completed_at=from_epoch(row["completed_at"]),
            spawned_from=row["spawned_from"],
            created_at=from_epoch(row["created_at"]),
            updated_at=from_epoch(row["updated_at"]),
        )

    def _insert_task(self, cur: sqlite3.Cursor, task: Task, now_ts: float) -> int:
        cur.execute(
            """
            INSERT INTO tasks(
                title, description, project_id, user_id, column_id, priority,
                due_at, recurrence_frequency, recurrence_interval, recurrence_end_at,
                labels, subtasks, status_history, completed_at, spawned_from,
                created_at, updated_at
            )
            VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
            """,
            (
                task.title.strip(),
                task.description,
                task.project_id,
                task.user_id,
                task.column_id,
                task.priority.value,
                to_epoch(task.due_date),
                task.recurrence.frequency.value,
                int(task.recurrence.interval),
                to_epoch(task.recurrence.end_date),
                dump_json(list(task.labels), "[]"),
                self._subtasks_to_json(task.subtasks),
                self._history_to_json(task.status_history),
                to_epoch(task.completed_at),
                task.spawned_from,
                now_ts,
                now_ts,
            ),
        )
        rowid = cur.lastrowid
        if rowid is None:
            raise RuntimeError("SQLite did not return lastrowid for tasks insert")
        return int(rowid)

    def _select_one(self, sql: str, params: tuple[Any, ...]) -> Task | None:
        conn = self._get_conn()
        try:
            row = conn.execute(sql, params).fetchone()
            return self._row_to_task(row) if row else None
        finally:
            conn.close()

    # ---- projects ----

    def save_project(self, project: Project) -> None:
        cols = [{"id": c.id, "name": c.name, "order": c.order} for c in project.columns]
        try:
            with self._transaction() as conn:
                conn.execute(
                    """
                    INSERT INTO projects(id, name, columns) VALUES (?, ?, ?)
                    ON CONFLICT(id) DO UPDATE SET name = excluded.name, columns = excluded.columns
                    """,
                    (project.id, project.name, dump_json(cols, "[]")),
                )
        except sqlite3.Error as exc:
            raise StoreError(f"failed to save project {project.id}") from exc

    def get_project(self, project_id: str) -> Project | None:
        conn = self._get_conn()
        try:
            row = conn.execute("SELECT * FROM projects WHERE id = ?", (project_id,)).fetchone()
        finally:
            conn.close()
        if row is None:
            return None
        columns = [
            Column(id=str(c["id"]), name=str(c.get("name", "")), order=int(c.get("order", 0)))
            for c in load_json(row["columns"], [])
            if isinstance(c, dict) and "id" in c
        ]
        return Project(id=str(row["id"]), name=str(row["name"]), columns=columns)

    # ---- tasks ----

    def count_tasks(self) -> int:
        conn = self._get_conn()
        try:
            (n,) = conn.execute("SELECT COUNT(*) FROM tasks").fetchone()
            return int(n)
        finally:
            conn.close()

    def add_task(self, task: Task) -> int:
        if not task.title or not task.title.strip():
            raise ValueError("title is required")

        now_ts = to_epoch(utc_now())
        try:
            with self._transaction() as conn:
                task_id = self._insert_task(conn.cursor(), task, now_ts)
        except sqlite3.Error as exc:
            raise StoreError("failed to insert task") from exc

        logger.debug(
            "Task added id=%s project=%s due_at=%s recurrence=%s",
            task_id,
            task.project_id,
            task.due_date,
            task.recurrence.frequency.value,
        )
        return task_id

    def get_task(self, task_id: int) -> Task | None:
        return self._select_one("SELECT * FROM tasks WHERE id = ?", (int(task_id),))

    def find_successor(self, spawned_from: str) -> Task | None:
        return self._select_one("SELECT * FROM tasks WHERE spawned_from = ?", (spawned_from,))

    def list_due_open_tasks(self, *, limit: int = 500) -> list[Task]:
        """
        Tasks eligible for a notification sweep: a due date and no completion.

        Oldest due first, so a sweep cut short by `limit` handles the most
        pressing tasks and the rest are picked up by the next sweep.
        """
        conn = self._get_conn()
        try:
            cur = conn.execute(
                """
                SELECT *
                FROM tasks
                WHERE due_at IS NOT NULL
                  AND completed_at IS NULL
                ORDER BY due_at ASC, id ASC
                    LIMIT ?
                """,
                (int(limit),),
            )
            return [self._row_to_task(r) for r in cur.fetchall()]
        finally:
            conn.close()

    def list_open_tasks_for_user(self, user_id: str) -> list[Task]:
        """Every open task of `user_id` with a due date, oldest due first."""
        conn = self._get_conn()
        try:
            cur = conn.execute(
                """
                SELECT *
                FROM tasks
                WHERE user_id = ?
                  AND due_at IS NOT NULL
                  AND completed_at IS NULL
                ORDER BY due_at ASC, id ASC
                """,
                (user_id,),
            )
            return [self._row_to_task(r) for r in cur.fetchall()]
        finally:
            conn.close()

    def complete_task(
        self,
        task_id: int,
        *,
        completed_at: datetime,
        done_column_id: str | None,
        successor: Task | None,
    ) -> tuple[Task, Task | None, bool]:
        """
        Mark the task completed and insert its successor in one transaction.

        Returns (completed task, successor or None, successor_created).
        A successor whose spawned_from already exists is not inserted again;
        the existing row is returned with successor_created=False.
        Raises StoreError if anything fails; nothing is applied in that case.
        """
        now_ts = to_epoch(utc_now())
        created = False
        successor_id: int | None = None

        try:
            with self._transaction() as conn:
                cur = conn.cursor()
                row = cur.execute("SELECT * FROM tasks WHERE id = ?", (int(task_id),)).fetchone()
                if row is None:
                    raise StoreError(f"task {task_id} disappeared during completion")
                current = self._row_to_task(row)

                if current.completed_at is None:
                    column_id = done_column_id or current.column_id
                    history = [*current.status_history, StatusChange(column_id=column_id, at=completed_at)]
                    cur.execute(
                        """
                        UPDATE tasks
                        SET completed_at = ?, column_id = ?, status_history = ?, updated_at = ?
                        WHERE id = ?
                          AND completed_at IS NULL
                        """,
                        (
                            to_epoch(completed_at),
                            column_id,
                            self._history_to_json(history),
                            now_ts,
                            int(task_id),
                        ),
                    )

                if successor is not None:
                    try:
                        successor_id = self._insert_task(cur, successor, now_ts)
                        created = True
                    except sqlite3.IntegrityError:
                        # UNIQUE(spawned_from): an earlier attempt already spawned it.
                        existing = cur.execute(
                            "SELECT id FROM tasks WHERE spawned_from = ?",
                            (successor.spawned_from,),
                        ).fetchone()
                        if existing is None:
                            raise
                        successor_id = int(existing["id"])
        except StoreError:
            raise
        except sqlite3.Error as exc:
            raise StoreError(f"failed to complete task {task_id}") from exc

        completed = self.get_task(task_id)
        if completed is None:
            raise StoreError(f"task {task_id} not readable after completion")

        spawned = self.get_task(successor_id) if successor_id is not None else None

        logger.debug(
            "Task completed id=%s successor_id=%s created=%s",
            task_id,
            successor_id,
            created,
        )
        return completed, spawned, created
