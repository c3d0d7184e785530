# src/pillar_engine/tasks/task_api.py

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Any

from ..core.clock import ensure_utc
from ..core.events import SyncEvent
from ..core.ports import EventSink, TaskRepo
from ..errors import TaskNotFoundError
from .recurrence import build_successor, completion_key
from .task_models import Task

logger = logging.getLogger(__name__)


@dataclass(slots=True)
class CompletionResult:
    task: Task
    successor: Task | None = None
    successor_created: bool = False
    already_completed: bool = False


def _task_event_data(task: Task) -> dict[str, Any]:
    return {
        "title": task.title,
        "columnId": task.column_id,
        "priority": task.priority.value,
        "dueDate": task.due_date.isoformat() if task.due_date else None,
        "completedAt": task.completed_at.isoformat() if task.completed_at else None,
        "spawnedFrom": task.spawned_from,
    }


def _announce(events: EventSink, action: str, task: Task) -> None:
    events.emit(
        SyncEvent(
            entity="task",
            action=action,
            entity_id=str(task.id),
            user_id=task.user_id,
            project_id=task.project_id,
            data=_task_event_data(task),
        )
    )


def complete_task(
    task_repo: TaskRepo,
    task_id: int,
    *,
    now: datetime,
    events: EventSink | None = None,
) -> CompletionResult:
    """
    Mark a task completed and, for a recurring task, create its next occurrence.

    The successor is decided from the snapshot taken *before* completion and is
    written in the same store transaction as the completion. Store failures
    propagate (StoreError): a recurring series must never end silently.

    Safe to retry: an already-completed task is returned as-is together with the
    successor its completion produced, and the store refuses a second successor
    for the same completed occurrence.
    """
    task = task_repo.get_task(task_id)
    if task is None:
        raise TaskNotFoundError(task_id)

    if task.completed_at is not None:
        successor = None
        if task.recurrence.is_recurring and task.due_date is not None:
            successor = task_repo.find_successor(completion_key(task))
        logger.debug("Task %s already completed; successor=%s", task_id, successor.id if successor else None)
        return CompletionResult(task=task, successor=successor, already_completed=True)

    now = ensure_utc(now)
    project = task_repo.get_project(task.project_id)
    starting = project.starting_column if project else None
    done = project.done_column if project else None

    successor = build_successor(
        task,
        completed_at=now,
        starting_column_id=starting.id if starting else None,
    )

    completed, spawned, created = task_repo.complete_task(
        task.id,
        completed_at=now,
        done_column_id=done.id if done else None,
        successor=successor,
    )
    logger.info(
        "Task %s completed; successor=%s created=%s",
        task.id,
        spawned.id if spawned else None,
        created,
    )

    if events is not None:
        _announce(events, "updated", completed)
        if spawned is not None and created:
            _announce(events, "created", spawned)

    return CompletionResult(task=completed, successor=spawned, successor_created=created)
