from abc import ABC, abstractmethod
from typing import Dict, List, Optional

from curriculum_synth.domain.schemas.chapter_content import AssessmentItem
from curriculum_synth.domain.synthesis.checkpoint import GenerationCheckpoint
from curriculum_synth.domain.synthesis.run_status import CourseStatus


class ISynthesisRepository(ABC):
    """
    Storage collaborator for the course aggregate and run checkpoints.
    """

    @abstractmethod
    async def append_chapter_result(
        self,
        deck_id: str,
        chapter_id: str,
        content: str,
        assessments: List[AssessmentItem],
    ) -> None:
        """Atomically appends one chapter's content and its assessment items."""
        pass

    @abstractmethod
    async def set_course_status(self, deck_id: str, status: CourseStatus) -> None:
        pass

    @abstractmethod
    async def save_checkpoint(self, snapshot: GenerationCheckpoint) -> None:
        pass

    @abstractmethod
    async def load_checkpoint(self, curriculum_id: str) -> Optional[GenerationCheckpoint]:
        pass

    @abstractmethod
    async def list_chapter_results(self, deck_id: str) -> Dict[str, str]:
        """Committed chapter contents keyed by chapter id, in commit order."""
        pass

    @abstractmethod
    async def update_chapter_content(self, deck_id: str, chapter_id: str, content: str) -> None:
        pass
