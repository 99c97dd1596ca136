# tests/test_local_store.py

from __future__ import annotations

import asyncio
import json
from pathlib import Path
from types import SimpleNamespace

import pytest

from stageboard.cli.bootstrap import create_initial_state, shutdown
from stageboard.core.engine import TodoEngine
from stageboard.core.models import Snapshot, Task, empty_collection
from stageboard.core.stages import STAGE_IDS, StageId
from stageboard.storage.local_store import (
    JsonFileStore,
    MigrationFlag,
    load_state,
    save_state,
)


def test_save_then_load_round_trips(tmp_path: Path) -> None:
    store = JsonFileStore(tmp_path)
    todos = empty_collection()
    todos[StageId.DRAFT] = [
        Task(
            id="a",
            text="Write",
            done=True,
            created_at=10,
            due_at=20,
            client_tag="Acme",
            links=("https://a.io", "https://b.io"),
            content="line 1\nline 2",
        ),
        Task(id="b", text="Plain", done=False, created_at=5),
    ]
    snapshot = Snapshot(tasks_by_stage=todos, client_tags=["Acme", "Beta"])

    save_state(store, snapshot)
    loaded = load_state(store)

    assert loaded == snapshot


def test_engine_snapshot_round_trips_through_blob(tmp_path: Path, engine: TodoEngine) -> None:
    store = JsonFileStore(tmp_path)
    engine.add_task("ideation", "  Plan launch ", links=["example.com"], client_tag=" Acme ")
    engine.add_task("publish", "Ship", content="  notes  \n")

    save_state(store, engine.snapshot())
    reloaded = TodoEngine(load_state(store))

    assert reloaded.snapshot() == engine.snapshot()


def test_load_normalizes_legacy_and_partial_blobs(tmp_path: Path) -> None:
    store = JsonFileStore(tmp_path)
    store.set(
        "sm_todo_v1",
        {
            "todosByStage": {
                "draft": [
                    {"id": "a", "text": " Old ", "done": False, "createdAt": 1, "link": "old.example"},
                    {"id": "", "text": "no id"},
                    {"id": "c", "text": "   "},
                ],
                "backlog": [{"id": "x", "text": "unknown stage"}],
            },
            "clientTags": [" Acme ", "", "Acme"],
        },
    )

    loaded = load_state(store)

    assert loaded is not None
    assert set(loaded.tasks_by_stage) == set(STAGE_IDS)
    draft = loaded.tasks_by_stage[StageId.DRAFT]
    assert [t.id for t in draft] == ["a"]
    assert draft[0].text == "Old"
    assert draft[0].links == ("https://old.example",)
    assert loaded.client_tags == ["Acme"]


def test_load_returns_none_for_missing_or_corrupt_blob(tmp_path: Path) -> None:
    store = JsonFileStore(tmp_path)
    assert load_state(store) is None

    (tmp_path / "sm_todo_v1.json").write_text("{not json", "utf-8")
    assert load_state(store) is None

    store.set("sm_todo_v1", {"clientTags": []})
    assert load_state(store) is None


def test_store_rejects_path_like_keys(tmp_path: Path) -> None:
    store = JsonFileStore(tmp_path)
    with pytest.raises(ValueError):
        store.set("../escape", 1)


def test_migration_flag_is_keyed_independently(tmp_path: Path) -> None:
    store = JsonFileStore(tmp_path)
    flag = MigrationFlag(store)
    save_state(store, Snapshot())

    assert flag.is_set() is False
    flag.mark()

    assert flag.is_set() is True
    assert MigrationFlag(JsonFileStore(tmp_path)).is_set() is True
    assert json.loads((tmp_path / "sm_cloud_migrated_v1.json").read_text("utf-8")) is True
    assert load_state(store) == Snapshot()


def test_first_run_uses_seed_when_enabled(settings: SimpleNamespace) -> None:
    settings.seed_on_first_run = True
    state = create_initial_state(settings=settings)

    for sid in STAGE_IDS:
        assert len(state.engine.tasks(sid)) == 3


@pytest.mark.asyncio
async def test_mutation_bursts_are_persisted_once(settings: SimpleNamespace) -> None:
    state = create_initial_state(settings=settings)
    writes: list[int] = []
    real_set = state.local_store.set

    def counting_set(key, value) -> None:
        writes.append(1)
        real_set(key, value)

    state.local_store.set = counting_set  # type: ignore[method-assign]

    for i in range(5):
        state.engine.add_task("draft", f"task {i}")
    await asyncio.sleep(0.05)

    assert len(writes) == 1
    reloaded = create_initial_state(settings=settings)
    assert [t.text for t in reloaded.engine.tasks("draft")] == [f"task {i}" for i in reversed(range(5))]


@pytest.mark.asyncio
async def test_shutdown_flushes_pending_write(settings: SimpleNamespace) -> None:
    settings.persist_debounce_ms = 60_000
    state = create_initial_state(settings=settings)
    state.engine.add_task("publish", "flush me")
    assert state.persist.pending

    await shutdown(state)

    reloaded = create_initial_state(settings=settings)
    assert [t.text for t in reloaded.engine.tasks("publish")] == ["flush me"]
