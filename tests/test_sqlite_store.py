# tests/test_sqlite_store.py

from __future__ import annotations

import asyncio
import sqlite3
from collections.abc import Callable
from pathlib import Path

import pytest

from stageboard.core.engine import SyncState, TodoEngine
from stageboard.core.errors import NotSignedIn
from stageboard.core.models import Snapshot, Task
from stageboard.core.stages import StageId
from stageboard.remote.sqlite_store import SqliteDocumentStore


def _task(task_id: str, text: str, created_at: int, **kw) -> Task:
    return Task(id=task_id, text=text, done=False, created_at=created_at, **kw)


async def _wait_for(cond: Callable[[], bool], timeout: float = 2.0) -> None:
    deadline = asyncio.get_running_loop().time() + timeout
    while not cond():
        if asyncio.get_running_loop().time() > deadline:
            raise AssertionError("condition not met in time")
        await asyncio.sleep(0.01)


@pytest.fixture()
def store(tmp_path: Path) -> SqliteDocumentStore:
    return SqliteDocumentStore(tmp_path / "remote.sqlite3", user_id="user-1", poll_seconds=0.01)


@pytest.mark.asyncio
async def test_identify_requires_a_user(tmp_path: Path) -> None:
    anonymous = SqliteDocumentStore(tmp_path / "remote.sqlite3", user_id="  ")
    with pytest.raises(NotSignedIn):
        await anonymous.identify()


@pytest.mark.asyncio
async def test_upsert_and_snapshot_ordering(store: SqliteDocumentStore) -> None:
    await store.upsert("user-1", StageId.DRAFT, _task("b", "B", 1), 1)
    await store.upsert("user-1", StageId.DRAFT, _task("a", "A", 2, links=("https://a.io",)), 0)
    await store.upsert("user-1", StageId.PUBLISH, _task("c", "C", 3, due_at=99, client_tag="Acme"), 0)

    snap = store.load_snapshot("user-1")

    assert [t.id for t in snap.tasks_by_stage[StageId.DRAFT]] == ["a", "b"]
    assert snap.tasks_by_stage[StageId.DRAFT][0].links == ("https://a.io",)
    published = snap.tasks_by_stage[StageId.PUBLISH][0]
    assert (published.due_at, published.client_tag) == (99, "Acme")
    assert store.load_snapshot("someone-else") == Snapshot()


@pytest.mark.asyncio
async def test_equal_orders_break_ties_by_newest_first(store: SqliteDocumentStore) -> None:
    await store.upsert("user-1", StageId.IDEATION, _task("old", "Old", 1), 0)
    await store.upsert("user-1", StageId.IDEATION, _task("new", "New", 5), 0)

    snap = store.load_snapshot("user-1")

    assert [t.id for t in snap.tasks_by_stage[StageId.IDEATION]] == ["new", "old"]


@pytest.mark.asyncio
async def test_batch_reorder_moves_between_stages(store: SqliteDocumentStore) -> None:
    a, b = _task("a", "A", 1), _task("b", "B", 2)
    await store.upsert("user-1", StageId.DRAFT, a, 0)
    await store.upsert("user-1", StageId.DRAFT, b, 1)

    await store.batch_reorder(
        "user-1",
        [(StageId.DRAFT, [b]), (StageId.PRODUCE, [a]), (StageId.PUBLISH, [_task("ghost", "G", 3)])],
    )
    snap = store.load_snapshot("user-1")

    assert [t.id for t in snap.tasks_by_stage[StageId.DRAFT]] == ["b"]
    assert [t.id for t in snap.tasks_by_stage[StageId.PRODUCE]] == ["a"]
    # reorder never creates documents
    assert snap.tasks_by_stage[StageId.PUBLISH] == []


@pytest.mark.asyncio
async def test_delete_and_batch_delete(store: SqliteDocumentStore) -> None:
    for i, tid in enumerate(("a", "b", "c")):
        await store.upsert("user-1", StageId.DRAFT, _task(tid, tid.upper(), i), i)

    await store.delete("user-1", "a")
    await store.batch_delete("user-1", ["b", "missing"])
    await store.batch_delete("user-1", [])

    assert [t.id for t in store.load_snapshot("user-1").tasks_by_stage[StageId.DRAFT]] == ["c"]


@pytest.mark.asyncio
async def test_has_any_data_and_tag_catalog(store: SqliteDocumentStore) -> None:
    assert await store.has_any_data("user-1") is False

    await store.save_tag_catalog("user-1", [" Beta ", "Acme", "Acme"])
    assert await store.has_any_data("user-1") is False

    await store.upsert("user-1", StageId.DRAFT, _task("a", "A", 1), 0)
    assert await store.has_any_data("user-1") is True
    assert store.load_snapshot("user-1").client_tags == ["Acme", "Beta"]


@pytest.mark.asyncio
async def test_unusable_rows_are_skipped(store: SqliteDocumentStore, tmp_path: Path) -> None:
    await store.upsert("user-1", StageId.DRAFT, _task("ok", "Fine", 1), 0)
    conn = sqlite3.connect(str(tmp_path / "remote.sqlite3"))
    try:
        conn.execute(
            "INSERT INTO todos(uid, id, stage_id, sort_order, text, done, created_at, updated_at) "
            "VALUES ('user-1', 'bad-stage', 'backlog', 0, 'x', 0, 1, 0), "
            "('user-1', 'blank', 'draft', 0, '   ', 0, 1, 0), "
            "('user-1', 'no-order', 'draft', NULL, 'Last', 0, 9, 0)"
        )
        conn.commit()
    finally:
        conn.close()

    snap = store.load_snapshot("user-1")

    assert [t.id for t in snap.tasks_by_stage[StageId.DRAFT]] == ["ok", "no-order"]
    assert snap.task_count() == 2


@pytest.mark.asyncio
async def test_non_numeric_order_sorts_last(store: SqliteDocumentStore, tmp_path: Path) -> None:
    await store.upsert("user-1", StageId.DRAFT, _task("ok", "Fine", 1), 0)
    conn = sqlite3.connect(str(tmp_path / "remote.sqlite3"))
    try:
        conn.execute(
            "INSERT INTO todos(uid, id, stage_id, sort_order, text, done, created_at, "
            "client_tag, content, updated_at) "
            "VALUES ('user-1', 'text-order', 'draft', 'oops', 'Odd', 0, 9, X'00', X'01', 0)"
        )
        conn.commit()
    finally:
        conn.close()

    draft = store.load_snapshot("user-1").tasks_by_stage[StageId.DRAFT]

    assert [t.id for t in draft] == ["ok", "text-order"]
    assert draft[1].client_tag is None
    assert draft[1].content is None


@pytest.mark.asyncio
async def test_live_sync_survives_malformed_document(store: SqliteDocumentStore, tmp_path: Path) -> None:
    conn = sqlite3.connect(str(tmp_path / "remote.sqlite3"))
    try:
        conn.execute(
            "INSERT INTO todos(uid, id, stage_id, sort_order, text, done, created_at, updated_at) "
            "VALUES ('user-1', 'text-order', 'draft', 'oops', 'Odd', 0, 1, 0)"
        )
        conn.commit()
    finally:
        conn.close()
    engine = TodoEngine()
    status = await engine.start_sync(store)
    try:
        assert status.state == SyncState.LIVE
        await _wait_for(lambda: len(engine.tasks("draft")) == 1)

        await store.upsert("user-1", StageId.DRAFT, _task("later", "Later", 5), 0)

        await _wait_for(lambda: len(engine.tasks("draft")) == 2)
        assert [t.id for t in engine.tasks("draft")] == ["later", "text-order"]
        assert engine.sync_error is None
    finally:
        engine.stop_sync()


@pytest.mark.asyncio
async def test_failed_poll_is_reported_and_polling_continues(
    store: SqliteDocumentStore, monkeypatch: pytest.MonkeyPatch
) -> None:
    real_load = store.load_snapshot
    failures = {"left": 1}

    def flaky_load(uid: str) -> Snapshot:
        if failures["left"]:
            failures["left"] -= 1
            raise RuntimeError("disk went away")
        return real_load(uid)

    monkeypatch.setattr(store, "load_snapshot", flaky_load)
    engine = TodoEngine()
    await engine.start_sync(store)
    try:
        await _wait_for(lambda: engine.sync_error is not None)
        assert engine.sync_error == "listen: poll failed: disk went away"

        await _wait_for(lambda: engine.sync_error is None)
        await store.upsert("user-1", StageId.DRAFT, _task("a", "A", 1), 0)
        await _wait_for(lambda: len(engine.tasks("draft")) == 1)
    finally:
        engine.stop_sync()


@pytest.mark.asyncio
async def test_writes_bump_revision(store: SqliteDocumentStore) -> None:
    assert store.revision("user-1") == 0
    await store.upsert("user-1", StageId.DRAFT, _task("a", "A", 1), 0)
    await store.save_tag_catalog("user-1", ["Acme"])

    assert store.revision("user-1") == 2
    assert store.revision("user-2") == 0


@pytest.mark.asyncio
async def test_subscribe_emits_initial_and_changed_snapshots(store: SqliteDocumentStore) -> None:
    seen: list[Snapshot] = []
    errors: list[BaseException] = []
    unsubscribe = store.subscribe("user-1", seen.append, errors.append)
    try:
        await _wait_for(lambda: len(seen) == 1)
        assert seen[0].task_count() == 0

        await store.upsert("user-1", StageId.DRAFT, _task("a", "A", 1), 0)
        await _wait_for(lambda: len(seen) == 2)
        assert [t.id for t in seen[1].tasks_by_stage[StageId.DRAFT]] == ["a"]

        # no write, no emission
        await asyncio.sleep(0.05)
        assert len(seen) == 2
    finally:
        unsubscribe()

    await store.upsert("user-1", StageId.DRAFT, _task("b", "B", 2), 1)
    await asyncio.sleep(0.05)
    assert len(seen) == 2
    assert errors == []


@pytest.mark.asyncio
async def test_two_devices_converge_through_shared_file(tmp_path: Path) -> None:
    db = tmp_path / "shared.sqlite3"
    laptop = TodoEngine()
    phone = TodoEngine()
    laptop_status = await laptop.start_sync(SqliteDocumentStore(db, user_id="user-1", poll_seconds=0.01))
    phone_status = await phone.start_sync(SqliteDocumentStore(db, user_id="user-1", poll_seconds=0.01))
    try:
        assert laptop_status.state == phone_status.state == SyncState.LIVE

        task = laptop.add_task("research", "Shared note", client_tag="Acme")
        assert task is not None
        await laptop.drain()

        await _wait_for(lambda: phone.get_task("research", task.id) is not None)
        assert phone.client_tags == ["Acme"]

        phone.toggle_task("research", task.id)
        await phone.drain()
        await _wait_for(lambda: laptop.tasks("research")[0].done)
    finally:
        laptop.stop_sync()
        phone.stop_sync()
