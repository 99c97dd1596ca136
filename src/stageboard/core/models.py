# src/stageboard/core/models.py

from __future__ import annotations

from collections.abc import Mapping, Sequence
from dataclasses import dataclass, field
from typing import Any, Final

from .stages import STAGE_IDS, STAGE_TEMPLATES, StageId


class _Marker:
    """Named sentinel used by TaskPatch (repr shows up in logs and test failures)."""

    __slots__ = ("_name",)

    def __init__(self, name: str) -> None:
        self._name = name

    def __repr__(self) -> str:
        return self._name

    def __bool__(self) -> bool:
        return False


# Field-update markers: KEEP = field omitted, CLEAR = explicitly removed.
KEEP: Final[Any] = _Marker("KEEP")
CLEAR: Final[Any] = _Marker("CLEAR")


@dataclass(frozen=True, slots=True)
class Task:
    id: str
    text: str
    done: bool
    created_at: int  # epoch millis
    due_at: int | None = None
    client_tag: str | None = None
    links: tuple[str, ...] | None = None
    content: str | None = None


TasksByStage = dict[StageId, list[Task]]


@dataclass(frozen=True, slots=True)
class TaskPatch:
    """
    Partial update for a task.

    Every field defaults to KEEP (leave untouched). Optional fields accept
    CLEAR or None to remove the value; anything else sets it.
    `text` cannot be cleared: an empty text rejects the whole patch.
    """

    text: str | Any = KEEP
    done: bool | Any = KEEP
    due_at: int | None | Any = KEEP
    client_tag: str | None | Any = KEEP
    links: Sequence[str] | None | Any = KEEP
    content: str | None | Any = KEEP

    def touched(self) -> list[str]:
        return [
            name
            for name in ("text", "done", "due_at", "client_tag", "links", "content")
            if getattr(self, name) is not KEEP
        ]

    def is_empty(self) -> bool:
        return not self.touched()


@dataclass(slots=True)
class Snapshot:
    """
    Complete state for one device or identity: tasks per stage + remembered tags.

    The same shape is written to local storage and delivered by the remote adapter.
    """

    tasks_by_stage: TasksByStage = field(default_factory=lambda: empty_collection())
    client_tags: list[str] = field(default_factory=list)

    def task_count(self) -> int:
        return sum(len(items) for items in self.tasks_by_stage.values())


def empty_collection() -> TasksByStage:
    return {sid: [] for sid in STAGE_IDS}


def ensure_stage_shape(tasks_by_stage: Mapping[StageId, Sequence[Task]] | None) -> TasksByStage:
    """Copy into a collection that has every stage key, in stage order."""
    src = tasks_by_stage or {}
    return {sid: list(src.get(sid) or []) for sid in STAGE_IDS}


def copy_collection(tasks_by_stage: TasksByStage) -> TasksByStage:
    return {sid: list(items) for sid, items in tasks_by_stage.items()}


def seed_collection(now_ms: int) -> TasksByStage:
    """First-run collection: the stage templates with stable seed ids."""
    out = empty_collection()
    offset = 0
    for sid in STAGE_IDS:
        for text in STAGE_TEMPLATES[sid]:
            offset += 1
            out[sid].append(
                Task(id=f"seed-{offset}", text=text, done=False, created_at=now_ms + offset)
            )
    return out
