# src/stageboard/core/engine.py

"""
Reconciliation engine.

Holds the authoritative in-memory task collection and the remembered tag set.

Every mutation follows the same two phases:
1) mutate local state synchronously and return (callers never wait on I/O),
2) mirror the change to the remote adapter as a fire-and-forget asyncio task.
   Failures are logged and recorded in `sync_error`; local state is never
   rolled back.

Remote -> local is wholesale replacement: each snapshot delivered by the
subscription replaces the collection and rebuilds the tag catalog. The last
snapshot observed wins over any in-flight local write.

All methods must be called from the thread that runs the event loop.
"""

from __future__ import annotations

import asyncio
import logging
import uuid
from collections.abc import Awaitable, Callable, Sequence
from dataclasses import dataclass, replace
from enum import StrEnum
from typing import Any

from .errors import ListenError, NotConfigured, NotSignedIn, ValidationRejected
from .migration import MigrationController, MigrationResult
from .models import (
    CLEAR,
    KEEP,
    Snapshot,
    Task,
    TaskPatch,
    copy_collection,
    ensure_stage_shape,
)
from .normalize import (
    as_timestamp,
    normalize_client_tag,
    normalize_collection,
    normalize_content,
    normalize_links,
    normalize_tag_catalog,
    normalize_text,
    now_ms,
)
from .ports import RemoteSyncAdapter, StageOrder, Unsubscribe
from .stages import STAGE_TEMPLATES, StageId

logger = logging.getLogger(__name__)

RemoteOp = Callable[[RemoteSyncAdapter, str], Awaitable[None]]
Listener = Callable[[], None]


class SyncState(StrEnum):
    STOPPED = "stopped"
    NOT_CONFIGURED = "not_configured"
    SIGNED_OUT = "signed_out"
    CONNECTING = "connecting"
    LIVE = "live"


@dataclass(frozen=True, slots=True)
class SyncStatus:
    state: SyncState
    uid: str | None
    error: str | None
    pending_writes: int


class TodoEngine:
    def __init__(
        self,
        snapshot: Snapshot | None = None,
        *,
        clock: Callable[[], int] | None = None,
        id_factory: Callable[[], str] | None = None,
    ) -> None:
        snap = snapshot or Snapshot()
        self._todos = normalize_collection(ensure_stage_shape(snap.tasks_by_stage))
        self._client_tags = normalize_tag_catalog(self._todos, snap.client_tags)

        self._clock = clock or now_ms
        self._new_id = id_factory or (lambda: str(uuid.uuid4()))

        self._change_listeners: list[Listener] = []
        self._status_listeners: list[Listener] = []

        # ---- sync session ----
        self._loop: asyncio.AbstractEventLoop | None = None
        self._remote: RemoteSyncAdapter | None = None
        self._uid: str | None = None
        self._unsubscribe: Unsubscribe | None = None
        self._sync_state = SyncState.STOPPED
        self._sync_error: str | None = None
        self._pending: set[asyncio.Task[None]] = set()

    # ---- reads ----

    def tasks(self, stage: str | StageId) -> list[Task]:
        return list(self._todos[StageId.parse(stage)])

    def get_task(self, stage: str | StageId, task_id: str) -> Task | None:
        for task in self._todos[StageId.parse(stage)]:
            if task.id == task_id:
                return task
        return None

    def snapshot(self) -> Snapshot:
        return Snapshot(tasks_by_stage=copy_collection(self._todos), client_tags=self.client_tags)

    @property
    def client_tags(self) -> list[str]:
        """Tag catalog: remembered tags plus every tag used by a task, sorted."""
        return normalize_tag_catalog(self._todos, self._client_tags)

    @property
    def remembered_tags(self) -> list[str]:
        return list(self._client_tags)

    def stage_progress(self, stage: str | StageId) -> str:
        items = self._todos[StageId.parse(stage)]
        done = sum(1 for t in items if t.done)
        return f"{done}/{len(items)} done"

    # ---- listeners ----

    def add_change_listener(self, fn: Listener) -> Callable[[], None]:
        """Called after every local mutation and every applied remote snapshot."""
        self._change_listeners.append(fn)
        return lambda: self._change_listeners.remove(fn)

    def add_status_listener(self, fn: Listener) -> Callable[[], None]:
        """Called whenever sync state or sync error changes."""
        self._status_listeners.append(fn)
        return lambda: self._status_listeners.remove(fn)

    @staticmethod
    def _notify(listeners: list[Listener]) -> None:
        for fn in list(listeners):
            try:
                fn()
            except Exception:
                logger.exception("Listener %r failed", fn)

    def _changed(self) -> None:
        self._notify(self._change_listeners)

    # ---- local mutations ----

    @staticmethod
    def _require_text(text: str | None) -> str:
        value = normalize_text(text)
        if not value:
            raise ValidationRejected("task text is empty")
        return value

    def _index(self, stage: StageId, task_id: str) -> int:
        for i, task in enumerate(self._todos[stage]):
            if task.id == task_id:
                return i
        return -1

    def _remember(self, tag: str | None) -> bool:
        """Add tag to the remembered set. Returns True if the set changed."""
        if tag is None or tag in self._client_tags:
            return False
        self._client_tags = sorted({*self._client_tags, tag})
        return True

    def add_task(
        self,
        stage: str | StageId,
        text: str,
        due_at: int | None = None,
        client_tag: str | None = None,
        links: Sequence[str] | None = None,
        content: str | None = None,
    ) -> Task | None:
        """Insert a new task at the front of the stage. Returns None if text is empty."""
        sid = StageId.parse(stage)
        try:
            clean = self._require_text(text)
        except ValidationRejected:
            logger.debug("add_task rejected: empty text (stage=%s)", sid.value)
            return None

        task = Task(
            id=self._new_id(),
            text=clean,
            done=False,
            created_at=self._clock(),
            due_at=as_timestamp(due_at),
            client_tag=normalize_client_tag(client_tag),
            links=normalize_links(links),
            content=normalize_content(content),
        )
        self._todos[sid].insert(0, task)
        tags_changed = self._remember(task.client_tag)
        logger.debug("Task added id=%s stage=%s", task.id, sid.value)
        self._changed()

        ordered = list(self._todos[sid])
        tags = self.client_tags if tags_changed else None

        async def push(remote: RemoteSyncAdapter, uid: str) -> None:
            await remote.upsert(uid, sid, task, 0)
            await remote.batch_reorder(uid, [(sid, ordered)])
            if tags is not None:
                await remote.save_tag_catalog(uid, tags)

        self._mirror("add", push)
        return task

    def add_template_tasks(self, stage: str | StageId) -> list[Task]:
        """Prepend the stage's template tasks, keeping template order."""
        sid = StageId.parse(stage)
        now = self._clock()
        additions = [
            Task(id=self._new_id(), text=text, done=False, created_at=now + index)
            for index, text in enumerate(STAGE_TEMPLATES[sid])
        ]
        if not additions:
            return []

        self._todos[sid] = [*additions, *self._todos[sid]]
        logger.debug("Added %d template tasks to stage=%s", len(additions), sid.value)
        self._changed()

        ordered = list(self._todos[sid])

        async def push(remote: RemoteSyncAdapter, uid: str) -> None:
            for index, task in enumerate(additions):
                await remote.upsert(uid, sid, task, index)
            await remote.batch_reorder(uid, [(sid, ordered)])

        self._mirror("add_template", push)
        return additions

    def toggle_task(self, stage: str | StageId, task_id: str) -> Task | None:
        sid = StageId.parse(stage)
        index = self._index(sid, task_id)
        if index < 0:
            return None

        task = replace(self._todos[sid][index], done=not self._todos[sid][index].done)
        self._todos[sid][index] = task
        self._changed()

        async def push(remote: RemoteSyncAdapter, uid: str) -> None:
            await remote.upsert(uid, sid, task, index)

        self._mirror("toggle", push)
        return task

    def update_task(
        self,
        stage: str | StageId,
        task_id: str,
        patch: TaskPatch | None = None,
        /,
        **fields: Any,
    ) -> Task | None:
        """
        Apply only the fields present in `patch` (or given as keyword arguments).

        Omitted fields are kept. Optional fields set to None or CLEAR are removed.
        If `text` is present and normalizes to empty, nothing is applied.
        Returns the updated task, or None when the task is missing or the update
        was rejected.
        """
        sid = StageId.parse(stage)
        if patch is None:
            patch = TaskPatch(**fields)
        elif fields:
            raise TypeError("pass either a TaskPatch or keyword fields, not both")

        index = self._index(sid, task_id)
        if index < 0:
            return None

        current = self._todos[sid][index]
        if patch.is_empty():
            return current

        changes: dict[str, Any] = {}
        try:
            if patch.text is not KEEP:
                changes["text"] = self._require_text(patch.text)
        except ValidationRejected:
            logger.debug("update_task rejected: empty text (id=%s)", task_id)
            return None

        if patch.done is not KEEP:
            changes["done"] = bool(patch.done)
        if patch.due_at is not KEEP:
            changes["due_at"] = None if patch.due_at is CLEAR else as_timestamp(patch.due_at)
        if patch.client_tag is not KEEP:
            changes["client_tag"] = (
                None if patch.client_tag is CLEAR else normalize_client_tag(patch.client_tag)
            )
        if patch.links is not KEEP:
            changes["links"] = None if patch.links is CLEAR else normalize_links(patch.links)
        if patch.content is not KEEP:
            changes["content"] = None if patch.content is CLEAR else normalize_content(patch.content)

        task = replace(current, **changes)
        self._todos[sid][index] = task
        tags_changed = self._remember(task.client_tag)
        logger.debug("Task updated id=%s fields=%s", task_id, ",".join(patch.touched()))
        self._changed()

        tags = self.client_tags if tags_changed else None

        async def push(remote: RemoteSyncAdapter, uid: str) -> None:
            await remote.upsert(uid, sid, task, index)
            if tags is not None:
                await remote.save_tag_catalog(uid, tags)

        self._mirror("update", push)
        return task

    def delete_task(self, stage: str | StageId, task_id: str) -> bool:
        sid = StageId.parse(stage)
        index = self._index(sid, task_id)
        if index < 0:
            return False

        del self._todos[sid][index]
        logger.debug("Task deleted id=%s stage=%s", task_id, sid.value)
        self._changed()

        ordered = list(self._todos[sid])

        async def push(remote: RemoteSyncAdapter, uid: str) -> None:
            await remote.delete(uid, task_id)
            await remote.batch_reorder(uid, [(sid, ordered)])

        self._mirror("delete", push)
        return True

    def clear_completed(self, stage: str | StageId) -> int:
        """Remove every done task in the stage. Returns how many were removed."""
        sid = StageId.parse(stage)
        removed = [t.id for t in self._todos[sid] if t.done]
        if not removed:
            return 0

        self._todos[sid] = [t for t in self._todos[sid] if not t.done]
        logger.debug("Cleared %d completed tasks in stage=%s", len(removed), sid.value)
        self._changed()

        ordered = list(self._todos[sid])

        async def push(remote: RemoteSyncAdapter, uid: str) -> None:
            await remote.batch_delete(uid, removed)
            await remote.batch_reorder(uid, [(sid, ordered)])

        self._mirror("clear_completed", push)
        return len(removed)

    def reorder_task(self, stage: str | StageId, dragged_id: str, target_id: str) -> bool:
        """Move the dragged task into the target's position (splice and reinsert)."""
        sid = StageId.parse(stage)
        if dragged_id == target_id:
            return False

        items = list(self._todos[sid])
        src = self._index(sid, dragged_id)
        dst = self._index(sid, target_id)
        if src < 0 or dst < 0:
            return False

        moved = items.pop(src)
        items.insert(dst, moved)
        self._todos[sid] = items
        self._changed()

        ordered = list(items)

        async def push(remote: RemoteSyncAdapter, uid: str) -> None:
            await remote.batch_reorder(uid, [(sid, ordered)])

        self._mirror("reorder", push)
        return True

    def move_task_to_stage(
        self, from_stage: str | StageId, task_id: str, to_stage: str | StageId
    ) -> Task | None:
        """Move a task to the front of another stage, keeping its id and data."""
        src = StageId.parse(from_stage)
        dst = StageId.parse(to_stage)
        if src == dst:
            return None

        index = self._index(src, task_id)
        if index < 0:
            return None

        task = self._todos[src].pop(index)
        self._todos[dst].insert(0, task)
        logger.debug("Task moved id=%s %s -> %s", task_id, src.value, dst.value)
        self._changed()

        updates: list[StageOrder] = [(src, list(self._todos[src])), (dst, list(self._todos[dst]))]

        async def push(remote: RemoteSyncAdapter, uid: str) -> None:
            await remote.upsert(uid, dst, task, 0)
            await remote.batch_reorder(uid, updates)

        self._mirror("move", push)
        return task

    def remember_client_tag(self, tag: str | None) -> bool:
        clean = normalize_client_tag(tag)
        if not self._remember(clean):
            return False
        self._changed()
        self._push_tags()
        return True

    def forget_client_tag(self, tag: str | None) -> bool:
        """Drop a remembered tag. Tags still used by tasks stay in the catalog."""
        clean = normalize_client_tag(tag)
        if clean is None or clean not in self._client_tags:
            return False
        self._client_tags = [t for t in self._client_tags if t != clean]
        self._changed()
        self._push_tags()
        return True

    def _push_tags(self) -> None:
        tags = self.client_tags

        async def push(remote: RemoteSyncAdapter, uid: str) -> None:
            await remote.save_tag_catalog(uid, tags)

        self._mirror("save_tags", push)

    # ---- remote -> local ----

    def apply_remote_snapshot(self, snapshot: Snapshot) -> None:
        """Replace the whole collection with a normalized remote snapshot."""
        todos = normalize_collection(ensure_stage_shape(snapshot.tasks_by_stage))
        self._todos = todos
        self._client_tags = normalize_tag_catalog(todos, snapshot.client_tags)
        logger.info(
            "Applied remote snapshot: %d tasks, %d tags",
            sum(len(v) for v in todos.values()),
            len(self._client_tags),
        )
        self._changed()
        if self._sync_error is not None:
            self._sync_error = None
            self._notify(self._status_listeners)

    # ---- sync session ----

    @property
    def sync_error(self) -> str | None:
        return self._sync_error

    def sync_status(self) -> SyncStatus:
        return SyncStatus(
            state=self._sync_state,
            uid=self._uid,
            error=self._sync_error,
            pending_writes=len(self._pending),
        )

    def _set_state(self, state: SyncState) -> None:
        if state != self._sync_state:
            self._sync_state = state
            self._notify(self._status_listeners)

    def _record_sync_error(self, what: str, exc: BaseException) -> None:
        logger.warning("Sync %s failed: %s", what, exc)
        self._sync_error = f"{what}: {exc}" if str(exc) else f"{what}: {type(exc).__name__}"
        self._notify(self._status_listeners)

    async def start_sync(
        self,
        remote: RemoteSyncAdapter | None,
        migration: MigrationController | None = None,
    ) -> SyncStatus:
        """
        Identify, run the one-time migration, then subscribe to live snapshots.

        Never raises for remote-path failures: they end up in sync_status().
        """
        self.stop_sync()
        if remote is None:
            logger.info("Remote sync not configured; running local-only")
            self._set_state(SyncState.NOT_CONFIGURED)
            return self.sync_status()

        self._loop = asyncio.get_running_loop()
        self._set_state(SyncState.CONNECTING)

        try:
            uid = await remote.identify()
        except NotSignedIn:
            logger.info("Remote sync disabled: not signed in")
            self._set_state(SyncState.SIGNED_OUT)
            return self.sync_status()
        except NotConfigured:
            logger.info("Remote sync not configured; running local-only")
            self._set_state(SyncState.NOT_CONFIGURED)
            return self.sync_status()
        except Exception as e:
            self._record_sync_error("identify", e)
            self._set_state(SyncState.STOPPED)
            return self.sync_status()

        self._remote = remote
        self._uid = uid

        if migration is not None:
            result = await migration.run(uid, self.snapshot())
            logger.info("Migration result: %s", result.value)
            if result == MigrationResult.FAILED and migration.last_error is not None:
                self._record_sync_error("migration", migration.last_error)

        try:
            self._unsubscribe = remote.subscribe(
                uid,
                lambda snap: self._on_remote_snapshot(uid, snap),
                lambda exc: self._on_listen_error(uid, exc),
            )
        except Exception as e:
            self._record_sync_error("subscribe", e)
            self._remote = None
            self._uid = None
            self._set_state(SyncState.STOPPED)
            return self.sync_status()

        logger.info("Remote sync live uid=%s", uid)
        self._set_state(SyncState.LIVE)
        return self.sync_status()

    def stop_sync(self) -> None:
        """Tear down the subscription and forget the identity. In-flight writes keep running."""
        unsubscribe, self._unsubscribe = self._unsubscribe, None
        if unsubscribe is not None:
            try:
                unsubscribe()
            except Exception:
                logger.exception("Unsubscribe failed")
        was_active = self._remote is not None
        self._remote = None
        self._uid = None
        if was_active:
            logger.info("Remote sync stopped")
        self._set_state(SyncState.STOPPED)

    def _on_remote_snapshot(self, uid: str, snapshot: Snapshot) -> None:
        if uid != self._uid:
            logger.debug("Ignoring snapshot for stale uid=%s", uid)
            return
        self.apply_remote_snapshot(snapshot)

    def _on_listen_error(self, uid: str, exc: BaseException) -> None:
        if uid != self._uid:
            return
        err = exc if isinstance(exc, ListenError) else ListenError(str(exc))
        self._record_sync_error("listen", err)

    def _mirror(self, what: str, op: RemoteOp) -> None:
        remote, uid, loop = self._remote, self._uid, self._loop
        if remote is None or uid is None or loop is None:
            return
        task = loop.create_task(self._run_remote(what, op(remote, uid)))
        self._pending.add(task)
        task.add_done_callback(self._pending.discard)

    async def _run_remote(self, what: str, coro: Awaitable[None]) -> None:
        try:
            await coro
        except Exception as e:
            self._record_sync_error(what, e)

    async def drain(self) -> None:
        """Wait for in-flight remote writes (shutdown and tests only)."""
        while self._pending:
            await asyncio.gather(*list(self._pending), return_exceptions=True)
