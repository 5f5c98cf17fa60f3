"""
Curriculum Schemas - immutable plan of a synthesized course.

Field names are snake_case; aliases accept the camelCase keys emitted by the
content service so a planning response validates directly into these models.
"""

from typing import Dict, FrozenSet, Optional, Tuple

from pydantic import AliasChoices, BaseModel, ConfigDict, Field, field_validator, model_validator


class ChapterSpec(BaseModel):
    """One node of the curriculum dependency graph."""

    model_config = ConfigDict(frozen=True, populate_by_name=True)

    id: str = Field(min_length=1)
    title: str = Field(min_length=1)
    learning_objectives: Tuple[str, ...] = Field(default=(), alias="learningObjectives")
    topics: Tuple[str, ...] = ()
    prerequisite_ids: FrozenSet[str] = Field(
        default=frozenset(),
        validation_alias=AliasChoices(
            "prerequisite_ids", "prerequisiteIds", "prerequisiteChapterIds"
        ),
        serialization_alias="prerequisiteIds",
    )

    @field_validator("id", "title", mode="before")
    @classmethod
    def _strip_text(cls, value):
        return str(value or "").strip()

    @field_validator("prerequisite_ids", mode="before")
    @classmethod
    def _normalize_prerequisites(cls, value):
        if value is None:
            return frozenset()
        if isinstance(value, str):
            value = [value]
        return frozenset(str(item).strip() for item in value if str(item or "").strip())


class CurriculumSpec(BaseModel):
    """
    Full course plan: shared terminology lock plus ordered chapters.

    Duplicate chapter ids and prerequisites naming unknown chapters are
    rejected. Cycles are accepted here; the scheduler terminates on them.
    """

    model_config = ConfigDict(frozen=True, populate_by_name=True)

    name: str = Field(min_length=1)
    description: str = ""
    shared_dictionary: Dict[str, str] = Field(default_factory=dict, alias="sharedDictionary")
    chapters: Tuple[ChapterSpec, ...]

    @model_validator(mode="after")
    def _validate_chapter_graph(self) -> "CurriculumSpec":
        if not self.chapters:
            raise ValueError("curriculum has no chapters")

        seen: set[str] = set()
        for chapter in self.chapters:
            if chapter.id in seen:
                raise ValueError(f"duplicate chapter id: {chapter.id}")
            seen.add(chapter.id)

        for chapter in self.chapters:
            unknown = sorted(chapter.prerequisite_ids - seen)
            if unknown:
                raise ValueError(
                    f"chapter {chapter.id} references unknown prerequisites: {', '.join(unknown)}"
                )
        return self

    @property
    def chapter_ids(self) -> Tuple[str, ...]:
        return tuple(chapter.id for chapter in self.chapters)

    def get_chapter(self, chapter_id: str) -> Optional[ChapterSpec]:
        for chapter in self.chapters:
            if chapter.id == chapter_id:
                return chapter
        return None

    def index_of(self, chapter_id: str) -> int:
        return self.chapter_ids.index(chapter_id)


class PlanningConstraints(BaseModel):
    """Knobs forwarded to the planning call and to every chapter draft."""

    understanding: str = "Intermediate"
    persona_name: str = "The Master"
    persona_instruction: str = "Explain with rigor, clarity and concrete examples."
    chapter_count: int = Field(default=12, ge=1)
    target_chapter_words: int = Field(default=1500, ge=100)


class DraftContext(BaseModel):
    """Per-chapter framing passed to the streaming draft."""

    model_config = ConfigDict(frozen=True)

    chapter_index: int
    total_chapters: int
    persona_name: str
    persona_instruction: str
    target_chapter_words: int
