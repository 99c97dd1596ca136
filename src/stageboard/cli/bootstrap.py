# src/stageboard/cli/bootstrap.py

"""
CLI bootstrap helpers.

This module is the "composition root":
- loads settings once,
- ensures local (gitignored) directories exist,
- builds the engine from the persisted snapshot (or the first-run seed),
- wires the debounced local persistence sink,
- builds the remote adapter + migration controller when sync is configured.
"""

from __future__ import annotations

import logging

from ..config import get_settings
from ..core.engine import SyncStatus, TodoEngine
from ..core.migration import MigrationController
from ..core.models import Snapshot, seed_collection
from ..core.normalize import now_ms
from ..core.ports import KeyValueStore, RemoteSyncAdapter
from ..core.state import AppState
from ..remote.sqlite_store import SqliteDocumentStore
from ..storage.debounce import Debouncer
from ..storage.local_store import JsonFileStore, MigrationFlag, load_state, save_state

logger = logging.getLogger(__name__)


def load_initial_snapshot(store: KeyValueStore, *, key: str, seed: bool) -> Snapshot:
    loaded = load_state(store, key)
    if loaded is not None:
        return loaded
    if seed:
        logger.info("No local state found; starting from the seed collection")
        return Snapshot(tasks_by_stage=seed_collection(now_ms()))
    return Snapshot()


def build_remote(settings) -> RemoteSyncAdapter | None:
    """Concrete adapter from settings, or None when sync is not configured."""
    db_path = getattr(settings, "sync_db_path", None)
    if not db_path:
        return None
    try:
        return SqliteDocumentStore(
            db_path,
            user_id=getattr(settings, "sync_user_id", ""),
            poll_seconds=float(getattr(settings, "sync_poll_seconds", 1.0)),
        )
    except Exception:
        # An unusable remote must never block the local app.
        logger.exception("Remote store unavailable at %s; running local-only", db_path)
        return None


def create_initial_state(*, settings=None, remote: RemoteSyncAdapter | None = None) -> AppState:
    """
    Create AppState from the provided settings.

    Keeping settings (and the remote adapter) injectable makes the app easy to test.
    If settings is None, falls back to get_settings().
    """
    if settings is None:
        settings = get_settings()

    settings.data_dir.mkdir(parents=True, exist_ok=True)
    local_store = JsonFileStore(settings.data_dir)

    snapshot = load_initial_snapshot(
        local_store,
        key=settings.state_key,
        seed=bool(getattr(settings, "seed_on_first_run", True)),
    )
    engine = TodoEngine(snapshot)

    def _save() -> None:
        save_state(local_store, engine.snapshot(), settings.state_key)

    persist = Debouncer(_save, delay_seconds=settings.persist_debounce_ms / 1000.0)
    engine.add_change_listener(persist)

    if remote is None:
        remote = build_remote(settings)

    migration = None
    if remote is not None:
        migration = MigrationController(MigrationFlag(local_store, settings.migration_key), remote)

    return AppState(
        settings=settings,
        engine=engine,
        local_store=local_store,
        persist=persist,
        remote=remote,
        migration=migration,
    )


async def start_remote_sync(state: AppState) -> SyncStatus:
    return await state.engine.start_sync(state.remote, state.migration)


async def shutdown(state: AppState) -> None:
    """Best-effort shutdown: stop the subscription, finish writes, flush local state."""
    state.engine.stop_sync()
    try:
        await state.engine.drain()
    except Exception:
        logger.exception("Failed while waiting for pending remote writes")
    state.persist.flush()
