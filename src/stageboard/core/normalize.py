# src/stageboard/core/normalize.py

"""
Normalization layer.

Pure, total and idempotent helpers shared by the local and the remote path:
- field normalizers (text, links, client tag, content),
- tag catalog derivation,
- record <-> Task conversion for the persisted JSON shape (camelCase keys).

"Absent" is always None: an empty link set, an empty tag or an empty note
never survives normalization, so equality checks see one canonical state.
"""

from __future__ import annotations

import logging
import math
import re
import time
from collections.abc import Iterable, Mapping
from typing import Any

from .models import Task, TasksByStage, empty_collection
from .stages import StageId

logger = logging.getLogger(__name__)

DEFAULT_LINK_SCHEME = "https://"

_SCHEME_RE = re.compile(r"^[a-z][a-z0-9+.\-]*://", re.IGNORECASE)
_OPAQUE_SCHEMES = ("mailto:", "tel:")


def now_ms() -> int:
    return int(time.time() * 1000)


# ---- field normalizers ----


def normalize_text(s: str | None) -> str:
    return (s or "").strip()


def normalize_link(s: str | None) -> str | None:
    value = (s or "").strip()
    if not value:
        return None
    if _SCHEME_RE.match(value) or value.lower().startswith(_OPAQUE_SCHEMES):
        return value
    return DEFAULT_LINK_SCHEME + value


def normalize_links(links: Iterable[str | None] | str | None) -> tuple[str, ...] | None:
    if links is None:
        return None
    if isinstance(links, str):
        links = [links]

    out: list[str] = []
    seen: set[str] = set()
    for raw in links:
        if not isinstance(raw, str):
            continue
        link = normalize_link(raw)
        if link is None or link in seen:
            continue
        seen.add(link)
        out.append(link)
    return tuple(out) if out else None


def normalize_client_tag(s: str | None) -> str | None:
    value = (s or "").strip()
    return value or None


def normalize_content(s: str | None) -> str | None:
    if not s:
        return None
    lines = s.replace("\r\n", "\n").replace("\r", "\n").split("\n")
    value = "\n".join(line.rstrip() for line in lines).strip()
    return value or None


def normalize_tags(tags: Iterable[str | None] | None) -> list[str]:
    """Trim, drop empties, dedupe (case-sensitive), sort."""
    out: set[str] = set()
    for tag in tags or ():
        if not isinstance(tag, str):
            continue
        t = normalize_client_tag(tag)
        if t:
            out.add(t)
    return sorted(out)


def normalize_tag_catalog(
    tasks_by_stage: Mapping[StageId, Iterable[Task]],
    existing_tags: Iterable[str | None] | None = None,
) -> list[str]:
    """Union of remembered tags and every client tag used by a task."""
    found: list[str | None] = list(existing_tags or ())
    for items in tasks_by_stage.values():
        for task in items:
            found.append(task.client_tag)
    return normalize_tags(found)


def normalize_task(task: Task) -> Task:
    return Task(
        id=task.id,
        text=normalize_text(task.text),
        done=bool(task.done),
        created_at=int(task.created_at),
        due_at=as_timestamp(task.due_at),
        client_tag=normalize_client_tag(task.client_tag),
        links=normalize_links(task.links),
        content=normalize_content(task.content),
    )


def normalize_collection(tasks_by_stage: Mapping[StageId, Iterable[Task]]) -> TasksByStage:
    """Normalize every task and make sure all stages exist. Empty-text tasks are dropped."""
    out = empty_collection()
    for sid, items in tasks_by_stage.items():
        stage = StageId.try_parse(sid)
        if stage is None:
            continue
        for task in items:
            t = normalize_task(task)
            if t.text:
                out[stage].append(t)
    return out


# ---- records (persisted JSON shape) ----


def as_timestamp(value: Any) -> int | None:
    """Epoch millis from a number or a datetime-like object; None otherwise."""
    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, (int, float)):
        return int(value) if math.isfinite(value) else None
    ts = getattr(value, "timestamp", None)
    if callable(ts):
        try:
            return int(float(ts()) * 1000)
        except (TypeError, ValueError, OverflowError):
            return None
    return None


def task_from_record(raw: Any, *, default_created_at: int | None = None) -> Task | None:
    """
    Decode one persisted task record.

    Returns None for records that cannot form a valid task (no id, empty text).
    A legacy single `link` field becomes a one-element `links` set.
    """
    if not isinstance(raw, Mapping):
        return None

    task_id = raw.get("id")
    if not isinstance(task_id, str) or not task_id.strip():
        return None

    text = raw.get("text")
    if not isinstance(text, str) or not text.strip():
        return None

    links_raw = raw.get("links")
    if not isinstance(links_raw, list):
        legacy = raw.get("link")
        links_raw = [legacy] if isinstance(legacy, str) else None

    created_at = as_timestamp(raw.get("createdAt"))
    if created_at is None:
        created_at = default_created_at if default_created_at is not None else now_ms()

    tag = raw.get("clientTag")
    content = raw.get("content")

    return Task(
        id=task_id,
        text=normalize_text(text),
        done=bool(raw.get("done", False)),
        created_at=created_at,
        due_at=as_timestamp(raw.get("dueAt")),
        client_tag=normalize_client_tag(tag) if isinstance(tag, str) else None,
        links=normalize_links(links_raw),
        content=normalize_content(content) if isinstance(content, str) else None,
    )


def task_to_record(task: Task) -> dict[str, Any]:
    out: dict[str, Any] = {
        "id": task.id,
        "text": task.text,
        "done": task.done,
        "createdAt": task.created_at,
    }
    if task.due_at is not None:
        out["dueAt"] = task.due_at
    if task.client_tag is not None:
        out["clientTag"] = task.client_tag
    if task.links:
        out["links"] = list(task.links)
    if task.content is not None:
        out["content"] = task.content
    return out


def collection_from_records(raw: Any) -> TasksByStage:
    out = empty_collection()
    if not isinstance(raw, Mapping):
        return out

    fallback_ts = now_ms()
    for key, items in raw.items():
        stage = StageId.try_parse(key)
        if stage is None:
            logger.debug("Dropping unknown stage %r from persisted state", key)
            continue
        if not isinstance(items, list):
            continue
        for item in items:
            task = task_from_record(item, default_created_at=fallback_ts)
            if task is None:
                logger.debug("Dropping invalid task record in stage %s", stage.value)
                continue
            out[stage].append(task)
    return out


def collection_to_records(tasks_by_stage: TasksByStage) -> dict[str, list[dict[str, Any]]]:
    return {
        sid.value: [task_to_record(t) for t in items] for sid, items in tasks_by_stage.items()
    }
