# src/pillar_engine/cli/bootstrap.py

"""
CLI bootstrap helpers.

This module is the "composition root":
- loads settings once,
- ensures local (gitignored) directories exist,
- wires the SQLite stores and the event bus into AppState.
"""

from __future__ import annotations

import logging

from ..config import get_settings
from ..core.events import EventBus
from ..core.state import AppState
from ..notifications.notification_store import NotificationStore, PreferenceStore
from ..tasks.task_store import TaskStore

logger = logging.getLogger(__name__)


def _ensure_local_dirs(settings) -> None:
    settings.data_dir.mkdir(parents=True, exist_ok=True)
    settings.db_path.parent.mkdir(parents=True, exist_ok=True)


def create_initial_state(*, settings=None) -> AppState:
    """
    Create AppState from the provided settings.

    Keeping settings injectable makes the app easier to test and avoids hidden global config reads.
    If settings is None, falls back to get_settings().
    """
    if settings is None:
        settings = get_settings()

    _ensure_local_dirs(settings)

    state = AppState(
        settings=settings,
        task_store=TaskStore(settings.db_path),
        preference_store=PreferenceStore(settings.db_path, default_timezone=settings.default_timezone),
        notification_store=NotificationStore(settings.db_path),
        events=EventBus(),
    )
    logger.debug("AppState ready db=%s", settings.db_path)
    return state
