import asyncio
from collections import defaultdict
from typing import Dict, List, Optional

from curriculum_synth.domain.interfaces.synthesis_repository import ISynthesisRepository
from curriculum_synth.domain.schemas.chapter_content import AssessmentItem
from curriculum_synth.domain.synthesis.checkpoint import GenerationCheckpoint
from curriculum_synth.domain.synthesis.run_status import CourseStatus


class InMemorySynthesisRepository(ISynthesisRepository):
    """
    Process-local course store. Used for local runs and as the test double.
    """

    def __init__(self) -> None:
        self._lock = asyncio.Lock()
        self._chapters: Dict[str, Dict[str, str]] = defaultdict(dict)
        self._assessments: Dict[str, Dict[str, List[AssessmentItem]]] = defaultdict(dict)
        self._status_history: Dict[str, List[CourseStatus]] = defaultdict(list)
        self._checkpoints: Dict[str, GenerationCheckpoint] = {}

    async def append_chapter_result(
        self,
        deck_id: str,
        chapter_id: str,
        content: str,
        assessments: List[AssessmentItem],
    ) -> None:
        async with self._lock:
            chapters = self._chapters[deck_id]
            # Re-committing keeps the original position.
            chapters[chapter_id] = content
            self._assessments[deck_id][chapter_id] = list(assessments)

    async def set_course_status(self, deck_id: str, status: CourseStatus) -> None:
        async with self._lock:
            self._status_history[deck_id].append(CourseStatus(status))

    async def save_checkpoint(self, snapshot: GenerationCheckpoint) -> None:
        async with self._lock:
            self._checkpoints[snapshot.curriculum_id] = snapshot

    async def load_checkpoint(self, curriculum_id: str) -> Optional[GenerationCheckpoint]:
        async with self._lock:
            return self._checkpoints.get(curriculum_id)

    async def list_chapter_results(self, deck_id: str) -> Dict[str, str]:
        async with self._lock:
            return dict(self._chapters.get(deck_id, {}))

    async def update_chapter_content(self, deck_id: str, chapter_id: str, content: str) -> None:
        async with self._lock:
            chapters = self._chapters.get(deck_id, {})
            if chapter_id not in chapters:
                raise KeyError(f"chapter {chapter_id} is not committed in deck {deck_id}")
            chapters[chapter_id] = content

    # Read helpers

    def chapters(self, deck_id: str) -> Dict[str, str]:
        return dict(self._chapters.get(deck_id, {}))

    def assessments(self, deck_id: str) -> Dict[str, List[AssessmentItem]]:
        return {cid: list(items) for cid, items in self._assessments.get(deck_id, {}).items()}

    def status_history(self, deck_id: str) -> List[CourseStatus]:
        return list(self._status_history.get(deck_id, []))

    def status(self, deck_id: str) -> Optional[CourseStatus]:
        history = self._status_history.get(deck_id)
        return history[-1] if history else None
