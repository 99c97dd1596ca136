# tests/conftest.py

from __future__ import annotations

from pathlib import Path
from types import SimpleNamespace

import pytest

from stageboard.cli.bootstrap import create_initial_state
from stageboard.core.engine import TodoEngine
from stageboard.core.state import AppState

from .fakes import FakeClock, SequentialIds


@pytest.fixture()
def settings(tmp_path: Path) -> SimpleNamespace:
    """
    Minimal settings object compatible with bootstrap and the CLI.

    We intentionally use a SimpleNamespace rather than importing real config,
    to keep unit tests isolated and deterministic.
    """
    return SimpleNamespace(
        app_name="stageboard-test",
        log_level="DEBUG",
        data_dir=tmp_path / "data",
        state_key="sm_todo_v1",
        migration_key="sm_cloud_migrated_v1",
        persist_debounce_ms=10,
        seed_on_first_run=False,
        sync_enabled=False,
        sync_db_path=None,
        sync_user_id="",
        sync_poll_seconds=0.01,
    )


@pytest.fixture()
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture()
def engine(clock: FakeClock) -> TodoEngine:
    """Empty engine with deterministic ids (t1, t2, ...) and timestamps."""
    return TodoEngine(clock=clock, id_factory=SequentialIds())


@pytest.fixture()
def state(settings: SimpleNamespace) -> AppState:
    """
    AppState wired through the real composition root (local-only).

    NOTE: the JSON file store is real here because its behavior is part of
    what we want to test.
    """
    return create_initial_state(settings=settings)
