# src/pillar_engine/errors.py

from __future__ import annotations


class EngineError(Exception):
    """Base class for errors raised by the scheduling engine."""


class StoreError(EngineError):
    """A store write could not be applied (the whole operation was rolled back)."""


class TaskNotFoundError(EngineError, LookupError):
    def __init__(self, task_id: int) -> None:
        self.task_id = task_id
        super().__init__(f"Task {task_id} not found")
