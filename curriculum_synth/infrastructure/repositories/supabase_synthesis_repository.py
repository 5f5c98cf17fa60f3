from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

import structlog

from curriculum_synth.domain.interfaces.synthesis_repository import ISynthesisRepository
from curriculum_synth.domain.schemas.chapter_content import AssessmentItem
from curriculum_synth.domain.synthesis.checkpoint import GenerationCheckpoint
from curriculum_synth.domain.synthesis.run_status import CourseStatus
from curriculum_synth.infrastructure.supabase.client import get_async_supabase_client

logger = structlog.get_logger(__name__)

CHAPTERS_TABLE = "course_chapters"
DECKS_TABLE = "course_decks"
CHECKPOINTS_TABLE = "synthesis_checkpoints"


def _now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


class SupabaseSynthesisRepository(ISynthesisRepository):
    """
    Course store backed by Supabase tables.

    A chapter and its assessments live in one row, so a single upsert commits
    both or neither.
    """

    def __init__(self, client: Any = None):
        self._client = client

    async def get_client(self):
        if self._client is None:
            self._client = await get_async_supabase_client()
        return self._client

    async def append_chapter_result(
        self,
        deck_id: str,
        chapter_id: str,
        content: str,
        assessments: List[AssessmentItem],
    ) -> None:
        client = await self.get_client()
        payload = {
            "deck_id": deck_id,
            "chapter_id": chapter_id,
            "content": content,
            "assessments": [item.model_dump(mode="json", by_alias=True) for item in assessments],
            "committed_at": _now_iso(),
        }
        await client.table(CHAPTERS_TABLE).upsert(
            payload, on_conflict="deck_id,chapter_id"
        ).execute()

    async def set_course_status(self, deck_id: str, status: CourseStatus) -> None:
        client = await self.get_client()
        await client.table(DECKS_TABLE).update(
            {"status": CourseStatus(status).value, "updated_at": _now_iso()}
        ).eq("id", deck_id).execute()

    async def save_checkpoint(self, snapshot: GenerationCheckpoint) -> None:
        client = await self.get_client()
        await client.table(CHECKPOINTS_TABLE).upsert(
            {
                "curriculum_id": snapshot.curriculum_id,
                "deck_id": snapshot.deck_id,
                "payload": snapshot.to_record(),
                "updated_at": snapshot.updated_at.isoformat(),
            },
            on_conflict="curriculum_id",
        ).execute()

    async def load_checkpoint(self, curriculum_id: str) -> Optional[GenerationCheckpoint]:
        client = await self.get_client()
        res = await (
            client.table(CHECKPOINTS_TABLE)
            .select("payload")
            .eq("curriculum_id", curriculum_id)
            .limit(1)
            .execute()
        )
        rows = res.data or []
        if not rows:
            return None
        payload = rows[0].get("payload")
        if not payload:
            return None
        return GenerationCheckpoint.model_validate(payload)

    async def list_chapter_results(self, deck_id: str) -> Dict[str, str]:
        client = await self.get_client()
        res = await (
            client.table(CHAPTERS_TABLE)
            .select("chapter_id,content")
            .eq("deck_id", deck_id)
            .order("committed_at")
            .execute()
        )
        return {str(row["chapter_id"]): str(row.get("content") or "") for row in (res.data or [])}

    async def update_chapter_content(self, deck_id: str, chapter_id: str, content: str) -> None:
        client = await self.get_client()
        res = await (
            client.table(CHAPTERS_TABLE)
            .update({"content": content})
            .eq("deck_id", deck_id)
            .eq("chapter_id", chapter_id)
            .execute()
        )
        if not res.data:
            logger.warning("chapter_update_matched_nothing", deck_id=deck_id, chapter_id=chapter_id)
