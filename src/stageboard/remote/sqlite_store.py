# src/stageboard/remote/sqlite_store.py

from __future__ import annotations

import asyncio
import contextlib
import json
import logging
import math
import sqlite3
import time
from collections.abc import Callable, Sequence
from pathlib import Path

from ..core.errors import ListenError, NotSignedIn, WriteError
from ..core.models import Snapshot, Task, empty_collection
from ..core.normalize import (
    as_timestamp,
    normalize_links,
    normalize_tags,
    now_ms,
)
from ..core.ports import ErrorCallback, SnapshotCallback, StageOrder, Unsubscribe
from ..core.stages import STAGE_IDS, StageId

logger = logging.getLogger(__name__)

# Documents without a usable order sort after everything else.
_ORDER_LAST = 2**53 - 1


def _text_or_none(value: object) -> str | None:
    return value if isinstance(value, str) else None


class SqliteDocumentStore:
    """
    Remote document store backed by a single SQLite file.

    Point several devices at the same file (network share, synced folder) and
    they converge through it. Layout per identity (uid):
    - todos:     one row per task document (+ stage_id, sort_order, updated_at)
    - profiles:  one row holding the tag catalog
    - revisions: a counter bumped by every write; subscribers poll it and
                 emit a full snapshot whenever it moves

    The schema is migration-safe (create if missing, add columns if missing).
    Each call opens its own connection; blocking work runs in a worker thread.
    """

    def __init__(
        self,
        db_path: str | Path,
        *,
        user_id: str | None = None,
        poll_seconds: float = 1.0,
    ) -> None:
        self._db_path = Path(db_path)
        self._db_path.parent.mkdir(parents=True, exist_ok=True)
        self._user_id = (user_id or "").strip() or None
        self._poll_s = max(0.01, float(poll_seconds))
        self._ensure_schema()
        logger.info("SqliteDocumentStore ready db=%s user=%s", self._db_path, self._user_id)

    # ---- low-level helpers ----

    def _get_conn(self) -> sqlite3.Connection:
        conn = sqlite3.connect(str(self._db_path), timeout=30.0)
        conn.row_factory = sqlite3.Row
        with contextlib.suppress(sqlite3.Error):
            conn.execute("PRAGMA journal_mode=WAL")
        return conn

    def _ensure_schema(self) -> None:
        conn = self._get_conn()
        try:
            cur = conn.cursor()
            cur.execute(
                """
                CREATE TABLE IF NOT EXISTS todos (
                    uid TEXT NOT NULL,
                    id TEXT NOT NULL,
                    stage_id TEXT,
                    sort_order REAL,
                    text TEXT,
                    done INTEGER NOT NULL DEFAULT 0,
                    created_at INTEGER,
                    updated_at REAL NOT NULL,
                    PRIMARY KEY (uid, id)
                )
                """
            )

            cur.execute("PRAGMA table_info(todos)")
            cols = {row["name"] for row in cur.fetchall()}

            def add_col(name: str, decl: str) -> None:
                if name in cols:
                    return
                cur.execute(f"ALTER TABLE todos ADD COLUMN {name} {decl}")
                logger.info("SqliteDocumentStore migration: added column %s", name)

            add_col("due_at", "INTEGER")
            add_col("client_tag", "TEXT")
            add_col("links", "TEXT")
            add_col("content", "TEXT")

            cur.execute(
                """
                CREATE TABLE IF NOT EXISTS profiles (
                    uid TEXT PRIMARY KEY,
                    client_tags TEXT NOT NULL DEFAULT '[]',
                    updated_at REAL NOT NULL
                )
                """
            )
            cur.execute(
                """
                CREATE TABLE IF NOT EXISTS revisions (
                    uid TEXT PRIMARY KEY,
                    rev INTEGER NOT NULL DEFAULT 0
                )
                """
            )
            cur.execute("CREATE INDEX IF NOT EXISTS idx_todos_uid_stage ON todos(uid, stage_id)")
            conn.commit()
        finally:
            conn.close()

    @staticmethod
    def _bump(cur: sqlite3.Cursor, uid: str) -> None:
        cur.execute(
            """
            INSERT INTO revisions(uid, rev) VALUES (?, 1)
            ON CONFLICT(uid) DO UPDATE SET rev = rev + 1
            """,
            (uid,),
        )

    def _write(self, what: str, uid: str, fn: Callable[[sqlite3.Cursor], None]) -> None:
        """Run fn(cursor) in one transaction, bump the revision, wrap failures."""
        if not uid:
            raise WriteError(f"{what}: missing uid")
        try:
            conn = self._get_conn()
            try:
                cur = conn.cursor()
                fn(cur)
                self._bump(cur, uid)
                conn.commit()
            finally:
                conn.close()
        except sqlite3.Error as e:
            raise WriteError(f"{what} failed: {e}") from e

    @staticmethod
    def _links_to_str(links: Sequence[str] | None) -> str | None:
        return json.dumps(list(links), ensure_ascii=False) if links else None

    @staticmethod
    def _str_to_links(s: str | None) -> list[str] | None:
        if not s:
            return None
        try:
            val = json.loads(s)
        except ValueError:
            return None
        return [x for x in val if isinstance(x, str) and x.strip()] if isinstance(val, list) else None

    # ---- sync (worker-thread) implementations ----

    def _upsert_sync(self, uid: str, stage: StageId, task: Task, order: int) -> None:
        def op(cur: sqlite3.Cursor) -> None:
            cur.execute(
                """
                INSERT INTO todos(
                    uid, id, stage_id, sort_order, text, done, created_at,
                    due_at, client_tag, links, content, updated_at
                )
                VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
                ON CONFLICT(uid, id) DO UPDATE SET
                    stage_id = excluded.stage_id,
                    sort_order = excluded.sort_order,
                    text = excluded.text,
                    done = excluded.done,
                    created_at = excluded.created_at,
                    due_at = excluded.due_at,
                    client_tag = excluded.client_tag,
                    links = excluded.links,
                    content = excluded.content,
                    updated_at = excluded.updated_at
                """,
                (
                    uid,
                    task.id,
                    stage.value,
                    float(order),
                    task.text,
                    1 if task.done else 0,
                    int(task.created_at),
                    task.due_at,
                    task.client_tag,
                    self._links_to_str(task.links),
                    task.content,
                    time.time(),
                ),
            )

        self._write("upsert", uid, op)

    def _delete_sync(self, uid: str, task_ids: Sequence[str]) -> None:
        def op(cur: sqlite3.Cursor) -> None:
            cur.executemany(
                "DELETE FROM todos WHERE uid = ? AND id = ?",
                [(uid, tid) for tid in task_ids],
            )

        self._write("delete", uid, op)

    def _reorder_sync(self, uid: str, updates: Sequence[StageOrder]) -> None:
        now = time.time()

        def op(cur: sqlite3.Cursor) -> None:
            for stage, tasks in updates:
                cur.executemany(
                    """
                    UPDATE todos
                    SET stage_id = ?, sort_order = ?, updated_at = ?
                    WHERE uid = ? AND id = ?
                    """,
                    [(stage.value, float(i), now, uid, t.id) for i, t in enumerate(tasks)],
                )

        self._write("batch_reorder", uid, op)

    def _save_tags_sync(self, uid: str, tags: Sequence[str]) -> None:
        payload = json.dumps(normalize_tags(tags), ensure_ascii=False)

        def op(cur: sqlite3.Cursor) -> None:
            cur.execute(
                """
                INSERT INTO profiles(uid, client_tags, updated_at) VALUES (?, ?, ?)
                ON CONFLICT(uid) DO UPDATE SET
                    client_tags = excluded.client_tags,
                    updated_at = excluded.updated_at
                """,
                (uid, payload, time.time()),
            )

        self._write("save_tag_catalog", uid, op)

    def _has_any_data_sync(self, uid: str) -> bool:
        conn = self._get_conn()
        try:
            cur = conn.cursor()
            cur.execute("SELECT 1 FROM todos WHERE uid = ? LIMIT 1", (uid,))
            return cur.fetchone() is not None
        finally:
            conn.close()

    def revision(self, uid: str) -> int:
        conn = self._get_conn()
        try:
            cur = conn.cursor()
            cur.execute("SELECT rev FROM revisions WHERE uid = ?", (uid,))
            row = cur.fetchone()
            return int(row["rev"]) if row else 0
        finally:
            conn.close()

    def _row_to_task(self, row: sqlite3.Row, fallback_ts: int) -> tuple[StageId, float, Task] | None:
        stage = StageId.try_parse(row["stage_id"])
        text = row["text"]
        if stage is None or not isinstance(text, str) or not text.strip():
            return None

        order = row["sort_order"]
        if isinstance(order, bool) or not isinstance(order, (int, float)) or not math.isfinite(order):
            order = _ORDER_LAST
        created_at = as_timestamp(row["created_at"])
        task = Task(
            id=str(row["id"]),
            text=text,
            done=bool(row["done"]),
            created_at=created_at if created_at is not None else fallback_ts,
            due_at=as_timestamp(row["due_at"]),
            client_tag=_text_or_none(row["client_tag"]),
            links=normalize_links(self._str_to_links(row["links"])),
            content=_text_or_none(row["content"]),
        )
        return stage, float(order), task

    def load_snapshot(self, uid: str) -> Snapshot:
        """
        Full snapshot for uid: per-stage lists ordered by sort_order ascending,
        ties broken by created_at descending. Unusable documents are skipped.
        """
        conn = self._get_conn()
        try:
            cur = conn.cursor()
            cur.execute("SELECT * FROM todos WHERE uid = ?", (uid,))
            rows = cur.fetchall()
            cur.execute("SELECT client_tags FROM profiles WHERE uid = ?", (uid,))
            profile = cur.fetchone()
        finally:
            conn.close()

        fallback_ts = now_ms()
        staged: dict[StageId, list[tuple[float, Task]]] = {sid: [] for sid in STAGE_IDS}
        for row in rows:
            decoded = self._row_to_task(row, fallback_ts)
            if decoded is None:
                continue
            stage, order, task = decoded
            staged[stage].append((order, task))

        out = empty_collection()
        for sid, items in staged.items():
            items.sort(key=lambda it: (it[0], -it[1].created_at))
            out[sid] = [task for _, task in items]

        tags: list[str] = []
        if profile is not None:
            try:
                raw = json.loads(profile["client_tags"] or "[]")
            except ValueError:
                raw = []
            tags = normalize_tags(raw if isinstance(raw, list) else [])

        return Snapshot(tasks_by_stage=out, client_tags=tags)

    # ---- RemoteSyncAdapter ----

    async def identify(self) -> str:
        if not self._user_id:
            raise NotSignedIn("no sync user configured")
        return self._user_id

    async def upsert(self, uid: str, stage: StageId, task: Task, order: int) -> None:
        await asyncio.to_thread(self._upsert_sync, uid, stage, task, order)

    async def delete(self, uid: str, task_id: str) -> None:
        await asyncio.to_thread(self._delete_sync, uid, [task_id])

    async def batch_delete(self, uid: str, task_ids: Sequence[str]) -> None:
        if not task_ids:
            return
        await asyncio.to_thread(self._delete_sync, uid, list(task_ids))

    async def batch_reorder(self, uid: str, updates: Sequence[StageOrder]) -> None:
        await asyncio.to_thread(self._reorder_sync, uid, list(updates))

    async def has_any_data(self, uid: str) -> bool:
        return await asyncio.to_thread(self._has_any_data_sync, uid)

    async def save_tag_catalog(self, uid: str, tags: Sequence[str]) -> None:
        await asyncio.to_thread(self._save_tags_sync, uid, list(tags))

    def subscribe(
        self,
        uid: str,
        on_snapshot: SnapshotCallback,
        on_error: ErrorCallback,
    ) -> Unsubscribe:
        """
        Start a polling listener on the running loop.

        Emits one snapshot right away, then one whenever the revision changes.
        A failed poll is reported through on_error and retried next interval.
        """
        runner = asyncio.get_running_loop().create_task(
            self._poll_loop(uid, on_snapshot, on_error)
        )
        return runner.cancel

    async def _poll_loop(
        self,
        uid: str,
        on_snapshot: SnapshotCallback,
        on_error: ErrorCallback,
    ) -> None:
        last_rev: int | None = None
        while True:
            try:
                rev = await asyncio.to_thread(self.revision, uid)
                if rev != last_rev:
                    snapshot = await asyncio.to_thread(self.load_snapshot, uid)
                    last_rev = rev
                    on_snapshot(snapshot)
            except Exception as e:
                logger.warning("Snapshot poll failed uid=%s: %s", uid, e, exc_info=True)
                on_error(ListenError(f"poll failed: {e}"))

            await asyncio.sleep(self._poll_s)
