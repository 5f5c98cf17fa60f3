from enum import Enum
from typing import List, Optional

from pydantic import BaseModel, ConfigDict, Field, model_validator


class BloomsLevel(str, Enum):
    RECALL = "Recall"
    COMPREHENSION = "Comprehension"
    APPLICATION = "Application"
    ANALYSIS = "Analysis"
    SYNTHESIS = "Synthesis"
    EVALUATION = "Evaluation"


class AssessmentOption(BaseModel):
    id: str
    text: str
    explanation: Optional[str] = None


class AssessmentItem(BaseModel):
    """Multiple-choice question tied to one chapter."""

    question_text: str = Field(alias="questionText", min_length=1)
    blooms_level: BloomsLevel = Field(default=BloomsLevel.COMPREHENSION, alias="bloomsLevel")
    options: List[AssessmentOption] = Field(min_length=2)
    correct_answer_id: str = Field(alias="correctAnswerId")
    detailed_explanation: Optional[str] = Field(default=None, alias="detailedExplanation")

    model_config = ConfigDict(populate_by_name=True)

    @model_validator(mode="after")
    def _correct_answer_is_an_option(self) -> "AssessmentItem":
        if self.correct_answer_id not in {option.id for option in self.options}:
            raise ValueError(f"correctAnswerId {self.correct_answer_id!r} matches no option")
        return self


class FinalizedChapter(BaseModel):
    """Cleaned chapter body plus the archival summary used by later state vectors."""

    content: str = Field(min_length=1)
    summary: str = Field(default="", alias="summaryForArchivist")

    model_config = ConfigDict(populate_by_name=True)


class Correction(BaseModel):
    original_claim: str = Field(alias="originalClaim")
    correction: str
    source: Optional[str] = None

    model_config = ConfigDict(populate_by_name=True)


class VerificationReport(BaseModel):
    is_accurate: bool = Field(default=True, alias="isAccurate")
    corrections: List[Correction] = Field(default_factory=list)
    overall_quality_score: Optional[float] = Field(default=None, alias="overallQualityScore")

    model_config = ConfigDict(populate_by_name=True)


class RefinedContent(BaseModel):
    refined_content: str = Field(alias="refinedContent", min_length=1)

    model_config = ConfigDict(populate_by_name=True)


class DiagramAsset(BaseModel):
    has_diagram: bool = Field(default=False, alias="hasDiagram")
    svg_code: Optional[str] = Field(default=None, alias="svgCode")
    caption: Optional[str] = None

    model_config = ConfigDict(populate_by_name=True)


class AssessmentBundle(BaseModel):
    """Output of the final pedagogical pass: lightly re-edited content plus questions."""

    refined_content: str = Field(alias="refinedContent", min_length=1)
    assessments: List[AssessmentItem] = Field(default_factory=list, alias="questions")

    model_config = ConfigDict(populate_by_name=True)


class AuditSuggestion(BaseModel):
    chapter_id: str = Field(alias="chapterId")
    issue: str
    fix: str

    model_config = ConfigDict(populate_by_name=True)


class GlobalAuditReport(BaseModel):
    is_consistent: bool = Field(default=True, alias="isConsistent")
    suggestions: List[AuditSuggestion] = Field(default_factory=list)
    final_summary: Optional[str] = Field(default=None, alias="finalSummary")

    model_config = ConfigDict(populate_by_name=True)


class ChapterResult(BaseModel):
    """Committed output of one successful chapter pipeline run."""

    chapter_id: str
    content: str
    summary: str
    assessments: List[AssessmentItem] = Field(default_factory=list)
