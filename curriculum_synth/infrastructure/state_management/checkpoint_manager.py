from typing import Optional

import structlog

from curriculum_synth.domain.interfaces.synthesis_repository import ISynthesisRepository
from curriculum_synth.domain.synthesis.checkpoint import GenerationCheckpoint
from curriculum_synth.domain.synthesis.run_state import RunState
from curriculum_synth.infrastructure.observability.synthesis_logging import compact_error, emit_event

logger = structlog.get_logger(__name__)


class CheckpointManager:
    """
    Persists progress snapshots for one curriculum run and rehydrates them on resume.
    """

    def __init__(
        self,
        repository: ISynthesisRepository,
        *,
        curriculum_id: str,
        deck_id: str,
        topic: str,
    ):
        self.repo = repository
        self.curriculum_id = curriculum_id
        self.deck_id = deck_id
        self.topic = topic
        self.latest: Optional[GenerationCheckpoint] = None

    async def persist(self, run_state: RunState) -> GenerationCheckpoint:
        snapshot = run_state.to_checkpoint(
            curriculum_id=self.curriculum_id, deck_id=self.deck_id, topic=self.topic
        )
        try:
            await self.repo.save_checkpoint(snapshot)
        except Exception as exc:
            # The chapter is already committed; the next commit writes a newer snapshot.
            emit_event(
                logger,
                "checkpoint_persist_failed",
                level="error",
                curriculum_id=self.curriculum_id,
                completed=len(snapshot.completed_chapter_ids),
                error=compact_error(exc),
            )
            return snapshot
        self.latest = snapshot
        emit_event(
            logger,
            "checkpoint_persisted",
            curriculum_id=self.curriculum_id,
            completed=len(snapshot.completed_chapter_ids),
        )
        return snapshot

    @staticmethod
    async def load(
        repository: ISynthesisRepository, curriculum_id: str
    ) -> Optional[GenerationCheckpoint]:
        snapshot = await repository.load_checkpoint(curriculum_id)
        if snapshot is None:
            logger.info("checkpoint_not_found", curriculum_id=curriculum_id)
            return None
        logger.info(
            "checkpoint_loaded",
            curriculum_id=curriculum_id,
            completed=len(snapshot.completed_chapter_ids),
            chapters=len(snapshot.curriculum.chapters),
        )
        return snapshot
