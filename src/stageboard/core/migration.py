# src/stageboard/core/migration.py

"""
One-time copy of pre-existing local data into the remote store.

Runs at most once per device, gated by a persisted flag:
- flag already set          -> skipped
- remote already has tasks  -> skipped (never overwrite independent history)
- otherwise                 -> upsert every task (stage + index as order),
                               then write the tag catalog

The flag is set after every attempt, including a failed copy, so a broken
remote cannot cause a retry on every startup.
"""

from __future__ import annotations

import logging
from enum import StrEnum
from typing import Protocol

from .models import Snapshot
from .ports import RemoteSyncAdapter

logger = logging.getLogger(__name__)


class FlagStore(Protocol):
    def is_set(self) -> bool: ...
    def mark(self) -> None: ...


class MigrationResult(StrEnum):
    ALREADY_DONE = "already_done"
    REMOTE_HAS_DATA = "remote_has_data"
    COPIED = "copied"
    FAILED = "failed"


class MigrationController:
    def __init__(self, flag: FlagStore, remote: RemoteSyncAdapter) -> None:
        self._flag = flag
        self._remote = remote
        self.last_error: BaseException | None = None

    async def run(self, uid: str, snapshot: Snapshot) -> MigrationResult:
        if self._flag.is_set():
            return MigrationResult.ALREADY_DONE

        self.last_error = None
        try:
            if await self._remote.has_any_data(uid):
                logger.info("Migration skipped: remote already has tasks (uid=%s)", uid)
                result = MigrationResult.REMOTE_HAS_DATA
            else:
                copied = 0
                for stage, tasks in snapshot.tasks_by_stage.items():
                    for index, task in enumerate(tasks):
                        await self._remote.upsert(uid, stage, task, index)
                        copied += 1
                await self._remote.save_tag_catalog(uid, list(snapshot.client_tags))
                logger.info("Migration copied %d tasks to remote (uid=%s)", copied, uid)
                result = MigrationResult.COPIED
        except Exception as e:
            logger.warning("Migration failed (uid=%s): %s", uid, e, exc_info=True)
            self.last_error = e
            result = MigrationResult.FAILED

        # TODO: distinguish "attempted" from "completed" so a failed copy can be retried with backoff.
        self._flag.mark()
        return result
