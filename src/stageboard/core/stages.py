# src/stageboard/core/stages.py

from __future__ import annotations

from dataclasses import dataclass
from enum import StrEnum


class StageId(StrEnum):
    """The five fixed production lanes, in display order."""

    IDEATION = "ideation"
    RESEARCH = "research"
    DRAFT = "draft"
    PRODUCE = "produce"
    PUBLISH = "publish"

    @classmethod
    def parse(cls, raw: str | StageId) -> StageId:
        """Strict lookup; raises ValueError for unknown ids."""
        if isinstance(raw, cls):
            return raw
        try:
            return cls(str(raw).strip().lower())
        except ValueError:
            raise ValueError(f"unknown stage: {raw!r}") from None

    @classmethod
    def try_parse(cls, raw: object) -> StageId | None:
        if not isinstance(raw, str):
            return None
        try:
            return cls(raw.strip().lower())
        except ValueError:
            return None


@dataclass(frozen=True, slots=True)
class Stage:
    id: StageId
    day: str
    title: str
    description: str


STAGES: tuple[Stage, ...] = (
    Stage(
        id=StageId.IDEATION,
        day="Monday",
        title="Ideation",
        description="Generate and explore content ideas, angles, and creative directions.",
    ),
    Stage(
        id=StageId.RESEARCH,
        day="Tuesday",
        title="Outlining",
        description="Break down the main ideas into a clear structure and content flow.",
    ),
    Stage(
        id=StageId.DRAFT,
        day="Wednesday",
        title="Production",
        description="Produce the core content: write, record, or build the main material.",
    ),
    Stage(
        id=StageId.PRODUCE,
        day="Thursday",
        title="Editing",
        description="Edit videos, refine visuals, and finalize graphic design assets.",
    ),
    Stage(
        id=StageId.PUBLISH,
        day="Friday",
        title="Publishing",
        description="Publish the content and distribute it to the intended audience.",
    ),
)

STAGE_IDS: tuple[StageId, ...] = tuple(s.id for s in STAGES)

# Texts used both for the first-run seed and for add_template_tasks().
STAGE_TEMPLATES: dict[StageId, tuple[str, ...]] = {
    StageId.IDEATION: (
        "List 10 audience pain points",
        "Pick 3 hook ideas for this week",
        "Choose one high-priority topic",
    ),
    StageId.RESEARCH: (
        "Collect 5 supporting references",
        "Define post goal and CTA",
        "Create bullet outline",
    ),
    StageId.DRAFT: (
        "Write first draft headline",
        "Draft opening in first 2 lines",
        "Finalize script with CTA",
    ),
    StageId.PRODUCE: (
        "Prepare shot list or design frames",
        "Record or design core assets",
        "Export mobile-friendly format",
    ),
    StageId.PUBLISH: (
        "Schedule post with caption + tags",
        "Reply to first comments within 30 min",
        "Review metrics and note one improvement",
    ),
}


def get_stage(stage_id: str | StageId) -> Stage:
    sid = StageId.parse(stage_id)
    for stage in STAGES:
        if stage.id == sid:
            return stage
    raise ValueError(f"unknown stage: {stage_id!r}")
