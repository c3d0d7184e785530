# tests/conftest.py

from __future__ import annotations

from pathlib import Path
from types import SimpleNamespace

import pytest

from pillar_engine.core.events import EventBus
from pillar_engine.core.state import AppState
from pillar_engine.notifications.notification_store import NotificationStore, PreferenceStore
from pillar_engine.tasks.task_models import Column, Project
from pillar_engine.tasks.task_store import TaskStore

from .fakes import NOW


@pytest.fixture()
def settings(tmp_path: Path) -> SimpleNamespace:
    """
    Minimal settings object compatible with AppState and the CLI bootstrap.

    We intentionally use a SimpleNamespace rather than importing real config,
    to keep unit tests isolated and deterministic.
    """
    return SimpleNamespace(
        app_name="pillar-test",
        log_level="DEBUG",
        data_dir=tmp_path,
        db_path=tmp_path / "pillar.sqlite3",
        sweep_interval_seconds=0.01,
        sweep_initial_delay_seconds=0.0,
        sweep_batch_limit=100,
        sweep_max_workers=2,
        default_timezone="UTC",
    )


@pytest.fixture()
def task_store(settings: SimpleNamespace) -> TaskStore:
    store = TaskStore(settings.db_path)
    store.save_project(
        Project(
            id="p1",
            name="Home",
            columns=[
                Column(id="done", name="Done", order=2),
                Column(id="todo", name="To Do", order=0),
                Column(id="doing", name="In Progress", order=1),
            ],
        )
    )
    return store


@pytest.fixture()
def preference_store(settings: SimpleNamespace) -> PreferenceStore:
    return PreferenceStore(settings.db_path, default_timezone=settings.default_timezone)


@pytest.fixture()
def notification_store(settings: SimpleNamespace) -> NotificationStore:
    return NotificationStore(settings.db_path)


@pytest.fixture()
def state(
    settings: SimpleNamespace,
    task_store: TaskStore,
    preference_store: PreferenceStore,
    notification_store: NotificationStore,
) -> AppState:
    """
    AppState wired with real SQLite stores and a pinned clock.

    NOTE: the stores' uniqueness constraints are part of what we test, so no fakes here.
    """
    return AppState(
        settings=settings,
        task_store=task_store,
        preference_store=preference_store,
        notification_store=notification_store,
        events=EventBus(),
        clock=lambda: NOW,
    )
