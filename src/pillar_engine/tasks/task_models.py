# src/pillar_engine/tasks/task_models.py

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from enum import StrEnum


class Priority(StrEnum):
    URGENT = "urgent"
    HIGH = "high"
    MEDIUM = "medium"
    LOW = "low"

    @classmethod
    def from_db(cls, raw: str | None) -> Priority:
        if not raw:
            return cls.MEDIUM
        try:
            return cls(raw)
        except ValueError:
            return cls.MEDIUM


class RecurrenceFrequency(StrEnum):
    NONE = "none"
    DAILY = "daily"
    WEEKLY = "weekly"
    MONTHLY = "monthly"
    YEARLY = "yearly"

    @classmethod
    def from_db(cls, raw: str | None) -> RecurrenceFrequency:
        if not raw:
            return cls.NONE
        try:
            return cls(raw)
        except ValueError:
            return cls.NONE


@dataclass(frozen=True, slots=True)
class Recurrence:
    frequency: RecurrenceFrequency = RecurrenceFrequency.NONE
    interval: int = 1
    end_date: datetime | None = None

    def __post_init__(self) -> None:
        if int(self.interval) < 1:
            raise ValueError(f"recurrence interval must be >= 1, got {self.interval}")

    @property
    def is_recurring(self) -> bool:
        return self.frequency != RecurrenceFrequency.NONE


@dataclass(frozen=True, slots=True)
class Subtask:
    title: str
    completed: bool = False


@dataclass(frozen=True, slots=True)
class StatusChange:
    """One entry of a task's append-only column history."""

    column_id: str
    at: datetime


@dataclass(frozen=True, slots=True)
class Column:
    id: str
    name: str
    order: int


@dataclass(slots=True)
class Project:
    id: str
    name: str
    columns: list[Column] = field(default_factory=list)

    def _sorted_columns(self) -> list[Column]:
        return sorted(self.columns, key=lambda c: c.order)

    @property
    def starting_column(self) -> Column | None:
        cols = self._sorted_columns()
        return cols[0] if cols else None

    @property
    def done_column(self) -> Column | None:
        cols = self._sorted_columns()
        return cols[-1] if cols else None


@dataclass(slots=True)
class Task:
    id: int
    title: str
    project_id: str
    user_id: str
    column_id: str

    priority: Priority = Priority.MEDIUM
    description: str | None = None
    due_date: datetime | None = None
    recurrence: Recurrence = field(default_factory=Recurrence)
    labels: list[str] = field(default_factory=list)
    subtasks: list[Subtask] = field(default_factory=list)
    status_history: list[StatusChange] = field(default_factory=list)
    completed_at: datetime | None = None

    # Completion key of the predecessor occurrence this task was spawned from.
    spawned_from: str | None = None

    created_at: datetime | None = None
    updated_at: datetime | None = None

    @property
    def is_completed(self) -> bool:
        return self.completed_at is not None
