"""
Dependency Scheduler - drives chapters through the pipeline in prerequisite order.

The scheduler coroutine is the single writer of RunState. Pipelines run as
independent tasks and only report back through their task result; the
scheduler multiplexes over those tasks with asyncio.wait(FIRST_COMPLETED)
and applies each outcome itself, so concurrent completions never race.
"""

from __future__ import annotations

import asyncio
from dataclasses import dataclass, field
from typing import Dict, List, Mapping, Optional, Protocol, Tuple

import structlog

from curriculum_synth.domain.exceptions import SynthesisCancelled
from curriculum_synth.domain.interfaces.synthesis_observer import (
    NullSynthesisObserver,
    SynthesisObserver,
)
from curriculum_synth.domain.schemas.chapter_content import ChapterResult
from curriculum_synth.domain.schemas.curriculum import ChapterSpec
from curriculum_synth.domain.synthesis.run_state import RunState, UnresolvedChapter
from curriculum_synth.domain.synthesis.run_status import (
    ChapterPhase,
    ChapterRunState,
    SchedulerStatus,
)
from curriculum_synth.infrastructure.concurrency.cancellation import CancellationToken
from curriculum_synth.infrastructure.observability.synthesis_logging import (
    compact_error,
    emit_event,
    perf_now,
)
from curriculum_synth.infrastructure.state_management.checkpoint_manager import CheckpointManager
from curriculum_synth.infrastructure.streaming.chapter_stream import ChapterStreamHub

logger = structlog.get_logger(__name__)


class ChapterRunner(Protocol):
    async def run(
        self,
        chapter: ChapterSpec,
        prerequisite_summaries: Mapping[str, str],
        *,
        attempt: int = 1,
    ) -> ChapterResult: ...


@dataclass
class SchedulerOutcome:
    status: SchedulerStatus
    completed_chapter_ids: Tuple[str, ...]
    unresolved: List[UnresolvedChapter]
    results: Dict[str, ChapterResult] = field(default_factory=dict)
    iterations: int = 0
    attempts: int = 0

    @property
    def failed_chapter_ids(self) -> Tuple[str, ...]:
        return tuple(item.chapter_id for item in self.unresolved)


class DependencyScheduler:
    def __init__(
        self,
        *,
        run_state: RunState,
        runner: ChapterRunner,
        cancellation: CancellationToken,
        checkpoints: Optional[CheckpointManager] = None,
        observer: Optional[SynthesisObserver] = None,
        stream_hub: Optional[ChapterStreamHub] = None,
    ):
        self.run_state = run_state
        self.runner = runner
        self.cancellation = cancellation
        self.checkpoints = checkpoints
        self.observer = observer or NullSynthesisObserver()
        self.stream_hub = stream_hub
        self._tasks: Dict[asyncio.Task, str] = {}
        self._results: Dict[str, ChapterResult] = {}
        self._attempts = 0

    async def run(self) -> SchedulerOutcome:
        state = self.run_state
        started = perf_now()
        iterations = 0
        emit_event(
            logger,
            "scheduler_started",
            chapters=len(state.curriculum.chapters),
            already_completed=len(state.completed_chapter_ids),
            max_concurrency=state.max_concurrency,
            max_retries=state.max_retries,
        )

        try:
            while True:
                iterations += 1
                if not self.cancellation.is_cancelled:
                    for chapter in state.ready_set()[: state.free_slots]:
                        self._dispatch(chapter)

                if not self._tasks:
                    break

                done, _ = await asyncio.wait(
                    set(self._tasks), return_when=asyncio.FIRST_COMPLETED
                )
                for task in sorted(done, key=lambda t: state.curriculum.index_of(self._tasks[t])):
                    chapter_id = self._tasks.pop(task)
                    await self._settle(chapter_id, task)
        finally:
            await self._abort_pending()

        outcome = self._build_outcome(iterations)
        emit_event(
            logger,
            f"synthesis_{outcome.status.value}",
            level="info" if outcome.status == SchedulerStatus.DONE else "warning",
            since=started,
            iterations=iterations,
            attempts=self._attempts,
            completed=len(outcome.completed_chapter_ids),
            unresolved=[
                {"chapter_id": u.chapter_id, "reason": u.reason.value, "retries": u.retry_count}
                for u in outcome.unresolved
            ] or None,
        )
        return outcome

    def _dispatch(self, chapter: ChapterSpec) -> None:
        state = self.run_state
        state.mark_active(chapter)
        attempt = state.retry_counts.get(chapter.id, 0) + 1
        self._attempts += 1
        task = asyncio.create_task(
            self.runner.run(chapter, state.prerequisite_summaries(chapter), attempt=attempt),
            name=f"chapter:{chapter.id}",
        )
        self._tasks[task] = chapter.id
        emit_event(
            logger,
            "chapter_dispatched",
            chapter_id=chapter.id,
            attempt=attempt,
            active=len(state.active_chapter_ids),
        )

    async def _settle(self, chapter_id: str, task: asyncio.Task) -> None:
        state = self.run_state

        if task.cancelled():
            state.release(chapter_id)
            emit_event(logger, "chapter_cancelled", level="warning", chapter_id=chapter_id)
            return

        error = task.exception()
        if isinstance(error, SynthesisCancelled):
            state.release(chapter_id)
            emit_event(
                logger, "chapter_cancelled", level="warning", chapter_id=chapter_id, stage=error.stage
            )
            return
        if error is not None and not isinstance(error, Exception):
            raise error

        if error is None:
            result: ChapterResult = task.result()
            state.mark_complete(chapter_id, result.summary)
            self._results[chapter_id] = result
            emit_event(
                logger,
                "chapter_committed",
                chapter_id=chapter_id,
                completed=len(state.completed_chapter_ids),
                total=len(state.curriculum.chapters),
            )
            if self.checkpoints is not None:
                await self.checkpoints.persist(state)
            self.observer.on_phase(chapter_id, ChapterPhase.COMPLETE)
            return

        new_state = state.mark_failed(chapter_id)
        exhausted = new_state == ChapterRunState.FAILED_EXHAUSTED
        emit_event(
            logger,
            "chapter_exhausted" if exhausted else "chapter_failed",
            level="error" if exhausted else "warning",
            chapter_id=chapter_id,
            retry_count=state.retry_counts.get(chapter_id, 0),
            max_retries=state.max_retries,
            error_type=type(error).__name__,
            error=compact_error(error),
        )
        if exhausted and self.stream_hub is not None:
            self.stream_hub.close(chapter_id)
        self.observer.on_phase(chapter_id, ChapterPhase.FAILED)

    async def _abort_pending(self) -> None:
        """Only reached with tasks left when run() itself is interrupted."""
        if not self._tasks:
            return
        pending = list(self._tasks)
        for task in pending:
            task.cancel()
        await asyncio.gather(*pending, return_exceptions=True)
        for task in pending:
            self.run_state.release(self._tasks.pop(task))

    def _build_outcome(self, iterations: int) -> SchedulerOutcome:
        state = self.run_state
        if state.all_complete:
            status = SchedulerStatus.DONE
        elif self.cancellation.is_cancelled:
            status = SchedulerStatus.CANCELLED
        else:
            status = SchedulerStatus.STALLED
        return SchedulerOutcome(
            status=status,
            completed_chapter_ids=tuple(state.completed_chapter_ids),
            unresolved=state.unresolved(cancelled=status == SchedulerStatus.CANCELLED),
            results=dict(self._results),
            iterations=iterations,
            attempts=self._attempts,
        )
