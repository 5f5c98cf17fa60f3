from datetime import datetime, timezone
from typing import Dict, Tuple

from pydantic import BaseModel, ConfigDict, Field, model_validator

from curriculum_synth.domain.schemas.curriculum import CurriculumSpec


def _utc_now() -> datetime:
    return datetime.now(timezone.utc)


class GenerationCheckpoint(BaseModel):
    """
    Point-in-time copy of run progress, replaced (never mutated) after each commit.

    Carries the curriculum itself so a resumed run never re-plans.
    """

    model_config = ConfigDict(frozen=True, populate_by_name=True)

    curriculum_id: str = Field(alias="curriculumId")
    deck_id: str = Field(alias="deckId")
    topic: str
    curriculum: CurriculumSpec
    completed_chapter_ids: Tuple[str, ...] = Field(default=(), alias="completedChapterIds")
    summaries: Dict[str, str] = Field(default_factory=dict)
    retry_counts: Dict[str, int] = Field(default_factory=dict, alias="retryCounts")
    updated_at: datetime = Field(default_factory=_utc_now, alias="updatedAt")

    @model_validator(mode="after")
    def _validate_progress(self) -> "GenerationCheckpoint":
        known = set(self.curriculum.chapter_ids)
        if len(set(self.completed_chapter_ids)) != len(self.completed_chapter_ids):
            raise ValueError("checkpoint lists a completed chapter twice")
        stray = [cid for cid in self.completed_chapter_ids if cid not in known]
        stray += [cid for cid in self.retry_counts if cid not in known]
        if stray:
            raise ValueError(f"checkpoint references unknown chapters: {', '.join(sorted(set(stray)))}")
        if any(count < 0 for count in self.retry_counts.values()):
            raise ValueError("checkpoint holds a negative retry count")
        return self

    def to_record(self) -> dict:
        return self.model_dump(mode="json", by_alias=True)
