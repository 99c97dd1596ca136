# src/stageboard/storage/local_store.py

"""
Local durable storage.

A tiny keyed blob store (one JSON file per key under the data dir) plus the
two records the app keeps in it:
- the persisted snapshot {"todosByStage": {...}, "clientTags": [...]},
- the one-shot migration flag, keyed independently from the snapshot.
"""

from __future__ import annotations

import contextlib
import json
import logging
import os
import re
from pathlib import Path
from typing import Any

from ..core.models import Snapshot
from ..core.normalize import collection_from_records, collection_to_records, normalize_tags
from ..core.ports import KeyValueStore

logger = logging.getLogger(__name__)

STATE_KEY = "sm_todo_v1"
MIGRATION_FLAG_KEY = "sm_cloud_migrated_v1"

_KEY_RE = re.compile(r"^[A-Za-z0-9_.\-]+$")


class JsonFileStore:
    """
    KeyValueStore backed by `<root>/<key>.json` files.

    Writes go to a temp file first and are moved into place with os.replace,
    so a crash mid-write never leaves a truncated blob behind.
    """

    def __init__(self, root: str | Path) -> None:
        self._root = Path(root)
        self._root.mkdir(parents=True, exist_ok=True)
        logger.info("JsonFileStore ready root=%s", self._root)

    def _path(self, key: str) -> Path:
        if not _KEY_RE.match(key or ""):
            raise ValueError(f"invalid storage key: {key!r}")
        return self._root / f"{key}.json"

    def get(self, key: str) -> Any | None:
        path = self._path(key)
        if not path.exists():
            return None
        try:
            return json.loads(path.read_text("utf-8"))
        except (OSError, ValueError):
            logger.exception("Failed to read %s; treating as missing", path)
            return None

    def set(self, key: str, value: Any) -> None:
        path = self._path(key)
        tmp = path.with_suffix(".tmp")
        tmp.write_text(json.dumps(value, ensure_ascii=False, indent=2), "utf-8")
        os.replace(tmp, path)
        with contextlib.suppress(OSError):
            # Task notes may be personal; keep the blob private on disk.
            os.chmod(path, 0o600)

    def delete(self, key: str) -> None:
        with contextlib.suppress(FileNotFoundError):
            self._path(key).unlink()


def load_state(store: KeyValueStore, key: str = STATE_KEY) -> Snapshot | None:
    """
    Read the persisted snapshot. Returns None when nothing usable is stored.

    Missing stages come back as empty lists; invalid task records are dropped.
    """
    raw = store.get(key)
    if not isinstance(raw, dict) or not isinstance(raw.get("todosByStage"), dict):
        return None

    tasks_by_stage = collection_from_records(raw["todosByStage"])
    tags_raw = raw.get("clientTags")
    client_tags = normalize_tags(tags_raw if isinstance(tags_raw, list) else [])

    snapshot = Snapshot(tasks_by_stage=tasks_by_stage, client_tags=client_tags)
    logger.info("Loaded local state: %d tasks, %d tags", snapshot.task_count(), len(client_tags))
    return snapshot


def save_state(store: KeyValueStore, snapshot: Snapshot, key: str = STATE_KEY) -> None:
    store.set(
        key,
        {
            "todosByStage": collection_to_records(snapshot.tasks_by_stage),
            "clientTags": list(snapshot.client_tags),
        },
    )
    logger.debug("Saved local state: %d tasks", snapshot.task_count())


class MigrationFlag:
    """Persisted boolean: has this device already attempted the one-time cloud copy?"""

    def __init__(self, store: KeyValueStore, key: str = MIGRATION_FLAG_KEY) -> None:
        self._store = store
        self._key = key

    def is_set(self) -> bool:
        return self._store.get(self._key) is True

    def mark(self) -> None:
        self._store.set(self._key, True)
