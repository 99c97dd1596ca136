# src/stageboard/core/state.py

from __future__ import annotations

from dataclasses import dataclass
from typing import Any

from ..storage.debounce import Debouncer
from .engine import TodoEngine
from .migration import MigrationController
from .ports import KeyValueStore, RemoteSyncAdapter


@dataclass
class AppState:
    """
    Process-wide context passed explicitly to connectors and commands.

    Built once by cli.bootstrap.create_initial_state(); torn down by
    cli.main (stop sync, flush pending local write).
    """

    # Settings object (real Settings or a SimpleNamespace in tests).
    settings: Any

    engine: TodoEngine
    local_store: KeyValueStore
    persist: Debouncer

    remote: RemoteSyncAdapter | None = None
    migration: MigrationController | None = None
