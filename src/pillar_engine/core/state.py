# src/pillar_engine/core/state.py

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any

from .clock import Clock, utc_now
from .events import EventBus
from .ports import NotificationRepo, PreferenceRepo, TaskRepo


@dataclass
class AppState:
    # Settings object (pillar_engine.config.Settings or a test stand-in).
    settings: Any

    task_store: TaskRepo
    preference_store: PreferenceRepo
    notification_store: NotificationRepo

    events: EventBus = field(default_factory=EventBus)
    clock: Clock = utc_now
