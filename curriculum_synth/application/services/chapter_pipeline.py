"""
Chapter Pipeline - the fixed stage sequence run once per dispatch attempt.

Stages: state synchronization, streaming draft (the only retried call),
finalization, optional verification, optional enrichment, assessment
generation, commit. Every attempt starts from a clean slate: nothing from a
previous failed attempt is reused, and the chapter stream is reset. The
stream outlives failed attempts; it is closed here once the chapter commits
and by the scheduler once the chapter is exhausted.
"""

from __future__ import annotations

from contextlib import aclosing
from typing import Awaitable, List, Mapping, Optional, TypeVar

import structlog

from curriculum_synth.core.synthesis_options import SynthesisOptions
from curriculum_synth.domain.exceptions import MalformedResponseError
from curriculum_synth.domain.interfaces.content_generation_service import IContentGenerationService
from curriculum_synth.domain.interfaces.synthesis_observer import (
    NullSynthesisObserver,
    SynthesisObserver,
)
from curriculum_synth.domain.interfaces.synthesis_repository import ISynthesisRepository
from curriculum_synth.domain.schemas.chapter_content import ChapterResult
from curriculum_synth.domain.schemas.curriculum import (
    ChapterSpec,
    CurriculumSpec,
    DraftContext,
    PlanningConstraints,
)
from curriculum_synth.domain.synthesis.run_status import ChapterPhase
from curriculum_synth.infrastructure.concurrency.call_guard import call_with_timeout
from curriculum_synth.infrastructure.concurrency.cancellation import CancellationToken
from curriculum_synth.infrastructure.concurrency.retry_policy import RetryPolicy
from curriculum_synth.infrastructure.observability.synthesis_logging import emit_event, perf_now
from curriculum_synth.infrastructure.streaming.chapter_stream import ChapterStream, ChapterStreamHub

logger = structlog.get_logger(__name__)

T = TypeVar("T")


class ChapterPipeline:
    def __init__(
        self,
        *,
        topic: str,
        deck_id: str,
        curriculum: CurriculumSpec,
        content_service: IContentGenerationService,
        repository: ISynthesisRepository,
        stream_hub: ChapterStreamHub,
        cancellation: CancellationToken,
        options: SynthesisOptions,
        constraints: Optional[PlanningConstraints] = None,
        observer: Optional[SynthesisObserver] = None,
        draft_retry: Optional[RetryPolicy] = None,
    ):
        self.topic = topic
        self.deck_id = deck_id
        self.curriculum = curriculum
        self.content_service = content_service
        self.repository = repository
        self.stream_hub = stream_hub
        self.cancellation = cancellation
        self.options = options
        self.constraints = constraints or PlanningConstraints()
        self.observer = observer or NullSynthesisObserver()
        self.draft_retry = draft_retry or RetryPolicy(
            max_attempts=options.draft_retry_max_attempts,
            initial_delay=options.draft_retry_initial_delay,
        )

    def draft_context(self, chapter: ChapterSpec) -> DraftContext:
        return DraftContext(
            chapter_index=self.curriculum.index_of(chapter.id),
            total_chapters=len(self.curriculum.chapters),
            persona_name=self.constraints.persona_name,
            persona_instruction=self.constraints.persona_instruction,
            target_chapter_words=self.constraints.target_chapter_words,
        )

    async def run(
        self,
        chapter: ChapterSpec,
        prerequisite_summaries: Mapping[str, str],
        *,
        attempt: int = 1,
    ) -> ChapterResult:
        chapter_id = chapter.id
        started = perf_now()
        stream = self.stream_hub.channel(chapter_id)
        if attempt > 1 or stream.buffer:
            stream.reset()
        dictionary = dict(self.curriculum.shared_dictionary)

        # 1. State synchronization
        self._enter_stage("state_sync", chapter_id, ChapterPhase.DRAFTING)
        state_vector = await self._call(
            self.content_service.build_state_vector(
                self.topic, dict(prerequisite_summaries), dictionary
            ),
            operation="build_state_vector",
            chapter_id=chapter_id,
        )

        # 2. Streaming draft
        self._enter_stage("draft", chapter_id)
        draft = await self._stream_draft(chapter, state_vector, dictionary, stream)

        # 3. Finalization
        self._enter_stage("finalize", chapter_id, ChapterPhase.FINALIZING)
        finalized = await self._call(
            self.content_service.finalize_chapter_draft(
                self.topic, chapter, draft, state_vector, dictionary
            ),
            operation="finalize_chapter_draft",
            chapter_id=chapter_id,
        )
        content = self._require_text(finalized.content, "finalize_chapter_draft", chapter_id)
        summary = finalized.summary.strip()

        # 4. Verification / refinement
        if self.options.enable_verification:
            self._enter_stage("verify", chapter_id, ChapterPhase.AUDITING)
            corrections = await self._call(
                self.content_service.verify_content(self.topic, chapter.title, content),
                operation="verify_content",
                chapter_id=chapter_id,
            )
            if corrections:
                self._enter_stage("refine", chapter_id)
                content = self._require_text(
                    await self._call(
                        self.content_service.refine_content(self.topic, content, corrections),
                        operation="refine_content",
                        chapter_id=chapter_id,
                    ),
                    "refine_content",
                    chapter_id,
                )
                emit_event(
                    logger,
                    "chapter_corrections_applied",
                    chapter_id=chapter_id,
                    corrections=len(corrections),
                )

        # 5. Enrichment
        if self.options.enable_enrichment:
            self._enter_stage("enrich", chapter_id, ChapterPhase.ILLUSTRATING)
            content = self._require_text(
                await self._call(
                    self.content_service.enrich_content(self.topic, content),
                    operation="enrich_content",
                    chapter_id=chapter_id,
                ),
                "enrich_content",
                chapter_id,
            )

        # 6. Assessment generation
        self._enter_stage("assess", chapter_id, ChapterPhase.ASSESSING)
        bundle = await self._call(
            self.content_service.generate_assessments(self.topic, chapter.title, content),
            operation="generate_assessments",
            chapter_id=chapter_id,
        )
        content = self._require_text(bundle.refined_content, "generate_assessments", chapter_id)

        # 7. Commit
        self._enter_stage("commit", chapter_id)
        await self.repository.append_chapter_result(
            self.deck_id, chapter_id, content, list(bundle.assessments)
        )
        stream.close()

        emit_event(
            logger,
            "chapter_pipeline_completed",
            since=started,
            chapter_id=chapter_id,
            attempt=attempt,
            content_chars=len(content),
            assessments=len(bundle.assessments),
        )
        return ChapterResult(
            chapter_id=chapter_id,
            content=content,
            summary=summary,
            assessments=list(bundle.assessments),
        )

    async def _stream_draft(
        self,
        chapter: ChapterSpec,
        state_vector: str,
        dictionary: Mapping[str, str],
        stream: ChapterStream,
    ) -> str:
        context = self.draft_context(chapter)

        async def _consume() -> str:
            if stream.buffer:
                stream.reset()
            parts: List[str] = []
            chunks = self.content_service.stream_chapter_draft(
                self.topic, chapter, state_vector, dictionary, context
            )
            async with aclosing(chunks):
                async for chunk in chunks:
                    self.cancellation.raise_if_cancelled("draft_stream", chapter.id)
                    if not chunk:
                        continue
                    parts.append(chunk)
                    stream.publish(chunk)
            return self._require_text("".join(parts), "stream_chapter_draft", chapter.id)

        async def _attempt() -> str:
            return await call_with_timeout(
                _consume(),
                timeout=self.options.draft_timeout_seconds,
                operation="stream_chapter_draft",
                chapter_id=chapter.id,
            )

        return await self.draft_retry.execute(
            _attempt, operation_name="stream_chapter_draft", chapter_id=chapter.id
        )

    async def _call(self, awaitable: Awaitable[T], *, operation: str, chapter_id: str) -> T:
        started = perf_now()
        result = await call_with_timeout(
            awaitable,
            timeout=self.options.call_timeout_seconds,
            operation=operation,
            chapter_id=chapter_id,
        )
        emit_event(
            logger,
            "chapter_stage_call",
            level="debug",
            since=started,
            operation=operation,
            chapter_id=chapter_id,
        )
        return result

    def _enter_stage(self, stage: str, chapter_id: str, phase: Optional[ChapterPhase] = None) -> None:
        self.cancellation.raise_if_cancelled(stage, chapter_id)
        if phase is not None:
            self.observer.on_phase(chapter_id, phase)

    @staticmethod
    def _require_text(value: Optional[str], operation: str, chapter_id: str) -> str:
        if not value or not str(value).strip():
            raise MalformedResponseError(
                f"{operation} returned empty content", operation=operation, chapter_id=chapter_id
            )
        return value
