# src/pillar_engine/core/ports.py

from __future__ import annotations

"""
Ports (interfaces) used by the engine.

The scheduler and the completion hook depend on Protocols instead of concrete
stores. This keeps storage swappable and lets tests run on in-memory fakes.
"""

from datetime import datetime
from typing import TYPE_CHECKING, Protocol

if TYPE_CHECKING:
    from ..notifications.notification_models import (
        NewNotification,
        Notification,
        NotificationPreference,
    )
    from ..tasks.task_models import Project, Task
    from .events import SyncEvent


class TaskRepo(Protocol):
    # Sweep API
    def list_due_open_tasks(self, *, limit: int = 500) -> list[Task]: ...
    def list_open_tasks_for_user(self, user_id: str) -> list[Task]: ...

    # Completion API
    def get_task(self, task_id: int) -> Task | None: ...
    def get_project(self, project_id: str) -> Project | None: ...
    def find_successor(self, spawned_from: str) -> Task | None: ...
    def complete_task(
            self,
            task_id: int,
            *,
            completed_at: datetime,
            done_column_id: str | None,
            successor: Task | None,
    ) -> tuple[Task, Task | None, bool]: ...


class PreferenceRepo(Protocol):
    def get_or_create(self, user_id: str) -> NotificationPreference: ...
    def list_summary_candidates(self) -> list[NotificationPreference]: ...


class NotificationRepo(Protocol):
    def list_for_task(self, task_id: int) -> list[Notification]: ...
    def list_summaries(self, user_id: str, *, since: datetime) -> list[Notification]: ...

    def insert(
            self,
            new: NewNotification,
            *,
            created_at: datetime | None = None,
    ) -> Notification | None: ...


class EventSink(Protocol):
    """
    Fire-and-forget announcements so connected clients can refresh.

    Delivery is at-least-once and consumers deduplicate; emit() must never raise.
    """

    def emit(self, event: SyncEvent) -> None: ...
