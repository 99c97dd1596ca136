# src/stageboard/core/ports.py

from __future__ import annotations

"""
Ports (interfaces) used by the core.

The engine and the migration controller depend on these Protocols, never on
a concrete document store or file layout. This keeps the remote collaborator
swappable and makes testing easier (see tests/fakes.py).
"""

from collections.abc import Callable, Sequence
from typing import Any, Protocol

from .models import Snapshot, Task
from .stages import StageId

SnapshotCallback = Callable[[Snapshot], None]
ErrorCallback = Callable[[BaseException], None]
Unsubscribe = Callable[[], None]
StageOrder = tuple[StageId, Sequence[Task]]


class RemoteSyncAdapter(Protocol):
    """
    Per-identity document store.

    Layout: one document per task (text, done, createdAt, dueAt?, clientTag?,
    links?, content?, stage, order, updatedAt) plus one profile document
    holding the tag catalog.

    Write operations raise WriteError; identify() raises NotSignedIn.
    subscribe() must deliver a full, self-consistent Snapshot on every change
    (never deltas), with each stage already ordered by `order` ascending and
    ties broken by `createdAt` descending.
    """

    async def identify(self) -> str: ...

    def subscribe(
        self,
        uid: str,
        on_snapshot: SnapshotCallback,
        on_error: ErrorCallback,
    ) -> Unsubscribe: ...

    async def upsert(self, uid: str, stage: StageId, task: Task, order: int) -> None: ...

    async def delete(self, uid: str, task_id: str) -> None: ...

    async def batch_delete(self, uid: str, task_ids: Sequence[str]) -> None: ...

    async def batch_reorder(self, uid: str, updates: Sequence[StageOrder]) -> None: ...

    async def has_any_data(self, uid: str) -> bool: ...

    async def save_tag_catalog(self, uid: str, tags: Sequence[str]) -> None: ...


class KeyValueStore(Protocol):
    """Durable keyed blobs on the device (JSON-compatible values)."""

    def get(self, key: str) -> Any | None: ...
    def set(self, key: str, value: Any) -> None: ...
    def delete(self, key: str) -> None: ...
