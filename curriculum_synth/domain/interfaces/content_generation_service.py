from abc import ABC, abstractmethod
from typing import AsyncGenerator, Dict, List, Mapping

from curriculum_synth.domain.schemas.chapter_content import (
    AssessmentBundle,
    AuditSuggestion,
    Correction,
    FinalizedChapter,
)
from curriculum_synth.domain.schemas.curriculum import (
    ChapterSpec,
    CurriculumSpec,
    DraftContext,
    PlanningConstraints,
)


class IContentGenerationService(ABC):
    """
    Contract of the external generative content service.
    Every operation is asynchronous and fallible: implementations raise
    TransientServiceError for retryable transport failures and
    MalformedResponseError for payloads that do not validate.
    """

    @abstractmethod
    async def plan_curriculum(self, topic: str, constraints: PlanningConstraints) -> CurriculumSpec:
        pass

    @abstractmethod
    async def build_state_vector(
        self,
        topic: str,
        prerequisite_summaries: Mapping[str, str],
        shared_dictionary: Mapping[str, str],
    ) -> str:
        """Dense summary of concepts already established by prerequisite chapters."""
        pass

    @abstractmethod
    def stream_chapter_draft(
        self,
        topic: str,
        chapter: ChapterSpec,
        state_vector: str,
        shared_dictionary: Mapping[str, str],
        context: DraftContext,
    ) -> AsyncGenerator[str, None]:
        """Async generator of raw text chunks; callers close it when they stop early."""
        pass

    @abstractmethod
    async def finalize_chapter_draft(
        self,
        topic: str,
        chapter: ChapterSpec,
        draft: str,
        state_vector: str,
        shared_dictionary: Mapping[str, str],
    ) -> FinalizedChapter:
        pass

    @abstractmethod
    async def verify_content(self, topic: str, chapter_title: str, content: str) -> List[Correction]:
        pass

    @abstractmethod
    async def refine_content(self, topic: str, content: str, corrections: List[Correction]) -> str:
        pass

    @abstractmethod
    async def enrich_content(self, topic: str, content: str) -> str:
        """Returns the content with supplementary visual material spliced in."""
        pass

    @abstractmethod
    async def generate_assessments(
        self, topic: str, chapter_title: str, content: str
    ) -> AssessmentBundle:
        pass

    @abstractmethod
    async def global_audit(
        self,
        topic: str,
        course_name: str,
        chapter_excerpts: Dict[str, str],
        shared_dictionary: Mapping[str, str],
    ) -> List[AuditSuggestion]:
        pass

    @abstractmethod
    async def apply_audit_fix(self, topic: str, content: str, suggestion: AuditSuggestion) -> str:
        pass
