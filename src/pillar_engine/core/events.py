# src/pillar_engine/core/events.py

from __future__ import annotations

import logging
import threading
from collections.abc import Callable
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any

from .clock import utc_now

logger = logging.getLogger(__name__)


@dataclass(frozen=True, slots=True)
class SyncEvent:
    entity: str  # "notification" | "task"
    action: str  # "created" | "updated"
    entity_id: str
    user_id: str
    project_id: str | None = None
    data: dict[str, Any] = field(default_factory=dict)
    timestamp: datetime = field(default_factory=utc_now)


Subscriber = Callable[[SyncEvent], None]


class EventBus:
    """
    In-process fan-out of SyncEvents.

    A failing subscriber is logged and skipped; emit() never raises, so
    announcing a change can never undo or fail the change itself.
    """

    def __init__(self) -> None:
        self._subscribers: list[Subscriber] = []
        self._lock = threading.Lock()

    def subscribe(self, callback: Subscriber) -> Callable[[], None]:
        """Register a subscriber; returns a function that unsubscribes it."""
        with self._lock:
            self._subscribers.append(callback)

        def _unsubscribe() -> None:
            with self._lock:
                if callback in self._subscribers:
                    self._subscribers.remove(callback)

        return _unsubscribe

    def emit(self, event: SyncEvent) -> None:
        with self._lock:
            subscribers = list(self._subscribers)

        for cb in subscribers:
            try:
                cb(event)
            except Exception:
                logger.exception(
                    "Event subscriber failed entity=%s action=%s id=%s",
                    event.entity,
                    event.action,
                    event.entity_id,
                )
