"""
Synthesize Curriculum Use Case - plan (or resume), schedule, audit, finalize.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import List, Optional, Tuple

import structlog
from structlog.contextvars import bound_contextvars

from curriculum_synth.application.services.chapter_pipeline import ChapterPipeline
from curriculum_synth.application.services.consistency_auditor import (
    AuditOutcome,
    GlobalConsistencyAuditor,
)
from curriculum_synth.application.services.dependency_scheduler import (
    DependencyScheduler,
    SchedulerOutcome,
)
from curriculum_synth.core.synthesis_options import SynthesisOptions
from curriculum_synth.domain.exceptions import SynthesisCancelled
from curriculum_synth.domain.interfaces.content_generation_service import IContentGenerationService
from curriculum_synth.domain.interfaces.synthesis_observer import SynthesisObserver
from curriculum_synth.domain.interfaces.synthesis_repository import ISynthesisRepository
from curriculum_synth.domain.schemas.curriculum import CurriculumSpec, PlanningConstraints
from curriculum_synth.domain.synthesis.run_state import RunState, UnresolvedChapter
from curriculum_synth.domain.synthesis.run_status import CourseStatus, SchedulerStatus
from curriculum_synth.infrastructure.concurrency.call_guard import call_with_timeout
from curriculum_synth.infrastructure.concurrency.cancellation import CancellationToken
from curriculum_synth.infrastructure.concurrency.retry_policy import RetryPolicy
from curriculum_synth.infrastructure.observability.synthesis_logging import (
    compact_error,
    elapsed_ms,
    emit_event,
    perf_now,
)
from curriculum_synth.infrastructure.state_management.checkpoint_manager import CheckpointManager
from curriculum_synth.infrastructure.streaming.chapter_stream import ChapterStreamHub

logger = structlog.get_logger(__name__)


@dataclass(frozen=True)
class SynthesisRequest:
    topic: str
    deck_id: str
    curriculum_id: Optional[str] = None
    constraints: PlanningConstraints = field(default_factory=PlanningConstraints)

    @property
    def resolved_curriculum_id(self) -> str:
        return self.curriculum_id or self.deck_id


@dataclass
class SynthesisReport:
    curriculum_id: str
    deck_id: str
    status: CourseStatus
    curriculum: Optional[CurriculumSpec] = None
    completed_chapter_ids: Tuple[str, ...] = ()
    unresolved: List[UnresolvedChapter] = field(default_factory=list)
    audit: Optional[AuditOutcome] = None
    resumed: bool = False
    elapsed_ms: float = 0.0


def resolve_course_status(outcome: SchedulerOutcome) -> CourseStatus:
    if outcome.status == SchedulerStatus.DONE:
        return CourseStatus.COMPLETED
    if outcome.status == SchedulerStatus.CANCELLED:
        return CourseStatus.CANCELLED
    return CourseStatus.PARTIAL if outcome.completed_chapter_ids else CourseStatus.FAILED


class SynthesizeCurriculumUseCase:
    def __init__(
        self,
        content_service: IContentGenerationService,
        repository: ISynthesisRepository,
        *,
        options: Optional[SynthesisOptions] = None,
        stream_hub: Optional[ChapterStreamHub] = None,
        observer: Optional[SynthesisObserver] = None,
        draft_retry: Optional[RetryPolicy] = None,
    ):
        self.content_service = content_service
        self.repository = repository
        self.options = options or SynthesisOptions.from_settings()
        self.stream_hub = stream_hub or ChapterStreamHub()
        self.observer = observer
        self.draft_retry = draft_retry

    async def execute(
        self,
        request: SynthesisRequest,
        cancellation: Optional[CancellationToken] = None,
    ) -> SynthesisReport:
        cancellation = cancellation or CancellationToken()
        curriculum_id = request.resolved_curriculum_id
        with bound_contextvars(curriculum_id=curriculum_id, deck_id=request.deck_id):
            return await self._execute(request, curriculum_id, cancellation)

    async def _execute(
        self,
        request: SynthesisRequest,
        curriculum_id: str,
        cancellation: CancellationToken,
    ) -> SynthesisReport:
        started = perf_now()
        deck_id = request.deck_id
        topic = request.topic

        checkpoint = await CheckpointManager.load(self.repository, curriculum_id)
        resumed = checkpoint is not None
        if checkpoint is not None:
            if checkpoint.deck_id != deck_id:
                emit_event(
                    logger,
                    "checkpoint_deck_mismatch",
                    level="warning",
                    requested_deck_id=deck_id,
                    checkpoint_deck_id=checkpoint.deck_id,
                )
            deck_id, topic = checkpoint.deck_id, checkpoint.topic
            run_state = RunState.from_checkpoint(
                checkpoint,
                max_concurrency=self.options.max_concurrency,
                max_retries=self.options.max_chapter_retries,
            )
            checkpoints = CheckpointManager(
                self.repository, curriculum_id=curriculum_id, deck_id=deck_id, topic=topic
            )
        else:
            try:
                cancellation.raise_if_cancelled("plan")
                curriculum = await call_with_timeout(
                    self.content_service.plan_curriculum(topic, request.constraints),
                    timeout=self.options.call_timeout_seconds,
                    operation="plan_curriculum",
                )
            except SynthesisCancelled:
                await self.repository.set_course_status(deck_id, CourseStatus.CANCELLED)
                emit_event(logger, "synthesis_cancelled_before_planning", level="warning")
                return SynthesisReport(
                    curriculum_id=curriculum_id,
                    deck_id=deck_id,
                    status=CourseStatus.CANCELLED,
                    elapsed_ms=elapsed_ms(started),
                )
            except Exception as exc:
                emit_event(logger, "curriculum_planning_failed", level="error", error=compact_error(exc))
                await self.repository.set_course_status(deck_id, CourseStatus.FAILED)
                raise
            run_state = RunState(
                curriculum=curriculum,
                max_concurrency=self.options.max_concurrency,
                max_retries=self.options.max_chapter_retries,
            )
            checkpoints = CheckpointManager(
                self.repository, curriculum_id=curriculum_id, deck_id=deck_id, topic=topic
            )
            await checkpoints.persist(run_state)

        curriculum = run_state.curriculum
        emit_event(
            logger,
            "synthesis_started",
            topic=topic,
            resumed=resumed,
            chapters=len(curriculum.chapters),
            already_completed=len(run_state.completed_chapter_ids),
        )
        await self.repository.set_course_status(deck_id, CourseStatus.GENERATING)

        pipeline = ChapterPipeline(
            topic=topic,
            deck_id=deck_id,
            curriculum=curriculum,
            content_service=self.content_service,
            repository=self.repository,
            stream_hub=self.stream_hub,
            cancellation=cancellation,
            options=self.options,
            constraints=request.constraints,
            observer=self.observer,
            draft_retry=self.draft_retry,
        )
        scheduler = DependencyScheduler(
            run_state=run_state,
            runner=pipeline,
            cancellation=cancellation,
            checkpoints=checkpoints,
            observer=self.observer,
            stream_hub=self.stream_hub,
        )
        try:
            outcome = await scheduler.run()
        except Exception as exc:
            emit_event(logger, "scheduler_crashed", level="error", error=compact_error(exc))
            await self.repository.set_course_status(deck_id, CourseStatus.FAILED)
            raise
        finally:
            self.stream_hub.close_all()

        audit: Optional[AuditOutcome] = None
        if outcome.status != SchedulerStatus.CANCELLED:
            auditor = GlobalConsistencyAuditor(
                content_service=self.content_service,
                repository=self.repository,
                options=self.options,
                cancellation=cancellation,
            )
            audit = await auditor.run(
                topic=topic,
                deck_id=deck_id,
                curriculum=curriculum,
                scheduler_status=outcome.status,
            )

        status = resolve_course_status(outcome)
        await self.repository.set_course_status(deck_id, status)

        report = SynthesisReport(
            curriculum_id=curriculum_id,
            deck_id=deck_id,
            status=status,
            curriculum=curriculum,
            completed_chapter_ids=outcome.completed_chapter_ids,
            unresolved=list(outcome.unresolved),
            audit=audit,
            resumed=resumed,
            elapsed_ms=elapsed_ms(started),
        )
        emit_event(
            logger,
            "synthesis_finished",
            status=status.value,
            completed=len(report.completed_chapter_ids),
            unresolved=len(report.unresolved),
            audit_applied=len(audit.applied_chapter_ids) if audit else None,
            duration_ms=report.elapsed_ms,
        )
        return report
