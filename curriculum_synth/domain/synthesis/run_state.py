"""
Scheduler-owned run state.

Only the scheduler coroutine calls the mutators below; each one checks the
scheduling invariants before touching the collections so a violation leaves
the state unchanged.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Dict, List, Mapping, Optional, Set

from curriculum_synth.domain.exceptions import RunStateViolation
from curriculum_synth.domain.schemas.curriculum import ChapterSpec, CurriculumSpec
from curriculum_synth.domain.synthesis.checkpoint import GenerationCheckpoint
from curriculum_synth.domain.synthesis.run_status import ChapterRunState, UnresolvedReason


@dataclass(frozen=True)
class UnresolvedChapter:
    chapter_id: str
    reason: UnresolvedReason
    retry_count: int
    blocking_prerequisites: tuple[str, ...] = ()


@dataclass
class RunState:
    curriculum: CurriculumSpec
    max_concurrency: int
    max_retries: int
    completed_chapter_ids: List[str] = field(default_factory=list)
    active_chapter_ids: Set[str] = field(default_factory=set)
    retry_counts: Dict[str, int] = field(default_factory=dict)
    summaries: Dict[str, str] = field(default_factory=dict)

    def __post_init__(self) -> None:
        if self.max_concurrency < 1:
            raise ValueError("max_concurrency must be >= 1")
        if self.max_retries < 1:
            raise ValueError("max_retries must be >= 1")
        self._completed_index: Set[str] = set(self.completed_chapter_ids)

    @classmethod
    def from_checkpoint(
        cls,
        checkpoint: GenerationCheckpoint,
        *,
        max_concurrency: int,
        max_retries: int,
    ) -> "RunState":
        return cls(
            curriculum=checkpoint.curriculum,
            max_concurrency=max_concurrency,
            max_retries=max_retries,
            completed_chapter_ids=list(checkpoint.completed_chapter_ids),
            # The budget may have shrunk since the checkpoint was written.
            retry_counts={
                cid: min(count, max_retries) for cid, count in checkpoint.retry_counts.items()
            },
            summaries=dict(checkpoint.summaries),
        )

    def to_checkpoint(self, *, curriculum_id: str, deck_id: str, topic: str) -> GenerationCheckpoint:
        return GenerationCheckpoint(
            curriculum_id=curriculum_id,
            deck_id=deck_id,
            topic=topic,
            curriculum=self.curriculum,
            completed_chapter_ids=tuple(self.completed_chapter_ids),
            summaries=dict(self.summaries),
            retry_counts=dict(self.retry_counts),
        )

    # -- queries ---------------------------------------------------------

    def is_complete(self, chapter_id: str) -> bool:
        return chapter_id in self._completed_index

    def is_exhausted(self, chapter_id: str) -> bool:
        return self.retry_counts.get(chapter_id, 0) >= self.max_retries

    def prerequisites_met(self, chapter: ChapterSpec) -> bool:
        return chapter.prerequisite_ids <= self._completed_index

    def ready_set(self) -> List[ChapterSpec]:
        """Dispatchable chapters, in curriculum order."""
        return [
            chapter
            for chapter in self.curriculum.chapters
            if chapter.id not in self._completed_index
            and chapter.id not in self.active_chapter_ids
            and not self.is_exhausted(chapter.id)
            and self.prerequisites_met(chapter)
        ]

    @property
    def free_slots(self) -> int:
        return self.max_concurrency - len(self.active_chapter_ids)

    @property
    def all_complete(self) -> bool:
        return len(self._completed_index) == len(self.curriculum.chapters)

    def state_of(self, chapter_id: str) -> ChapterRunState:
        if chapter_id in self._completed_index:
            return ChapterRunState.COMPLETE
        if chapter_id in self.active_chapter_ids:
            return ChapterRunState.ACTIVE
        if self.is_exhausted(chapter_id):
            return ChapterRunState.FAILED_EXHAUSTED
        if self.retry_counts.get(chapter_id, 0) > 0:
            return ChapterRunState.FAILED_RETRYABLE
        return ChapterRunState.PENDING

    def prerequisite_summaries(self, chapter: ChapterSpec) -> Dict[str, str]:
        """Snapshot of prerequisite summaries in curriculum order."""
        return {
            cid: self.summaries.get(cid, "")
            for cid in self.curriculum.chapter_ids
            if cid in chapter.prerequisite_ids
        }

    # -- mutators (scheduler only) ----------------------------------------

    def mark_active(self, chapter: ChapterSpec) -> None:
        if chapter.id in self._completed_index:
            raise RunStateViolation(f"chapter {chapter.id} is already complete", chapter_id=chapter.id)
        if chapter.id in self.active_chapter_ids:
            raise RunStateViolation(f"chapter {chapter.id} is already active", chapter_id=chapter.id)
        if self.is_exhausted(chapter.id):
            raise RunStateViolation(f"chapter {chapter.id} has no retries left", chapter_id=chapter.id)
        if not self.prerequisites_met(chapter):
            missing = sorted(chapter.prerequisite_ids - self._completed_index)
            raise RunStateViolation(
                f"chapter {chapter.id} dispatched before prerequisites: {', '.join(missing)}",
                chapter_id=chapter.id,
            )
        if self.free_slots <= 0:
            raise RunStateViolation(
                f"concurrency bound {self.max_concurrency} reached", chapter_id=chapter.id
            )
        self.active_chapter_ids.add(chapter.id)

    def mark_complete(self, chapter_id: str, summary: str) -> None:
        if chapter_id not in self.active_chapter_ids:
            raise RunStateViolation(f"chapter {chapter_id} completed while not active", chapter_id=chapter_id)
        self.active_chapter_ids.discard(chapter_id)
        self.completed_chapter_ids.append(chapter_id)
        self._completed_index.add(chapter_id)
        self.summaries[chapter_id] = summary

    def mark_failed(self, chapter_id: str) -> ChapterRunState:
        """Counts a failed attempt; returns the resulting chapter state."""
        if chapter_id not in self.active_chapter_ids:
            raise RunStateViolation(f"chapter {chapter_id} failed while not active", chapter_id=chapter_id)
        self.active_chapter_ids.discard(chapter_id)
        self.retry_counts[chapter_id] = min(self.retry_counts.get(chapter_id, 0) + 1, self.max_retries)
        return self.state_of(chapter_id)

    def release(self, chapter_id: str) -> None:
        """Drops an active chapter without charging its retry budget (cancellation)."""
        self.active_chapter_ids.discard(chapter_id)

    # -- reporting ----------------------------------------------------------

    def unresolved(self, *, cancelled: bool = False) -> List[UnresolvedChapter]:
        """
        Classifies every incomplete chapter.

        exhausted: its own retries are spent. blocked: some ancestor is
        exhausted. unreachable: it waits on a cycle. cancelled: the run was
        stopped before it could be attempted or finished.
        """
        doomed = self._doomed_ancestry()
        result: List[UnresolvedChapter] = []
        for chapter in self.curriculum.chapters:
            if chapter.id in self._completed_index:
                continue
            retries = self.retry_counts.get(chapter.id, 0)
            blocking = tuple(
                cid for cid in self.curriculum.chapter_ids
                if cid in chapter.prerequisite_ids and cid not in self._completed_index
            )
            if self.is_exhausted(chapter.id):
                reason = UnresolvedReason.EXHAUSTED
            elif cancelled:
                reason = UnresolvedReason.CANCELLED
            elif doomed.get(chapter.id):
                reason = UnresolvedReason.BLOCKED
            else:
                reason = UnresolvedReason.UNREACHABLE
            result.append(
                UnresolvedChapter(
                    chapter_id=chapter.id,
                    reason=reason,
                    retry_count=retries,
                    blocking_prerequisites=blocking,
                )
            )
        return result

    def _doomed_ancestry(self) -> Mapping[str, bool]:
        """True for chapters with an exhausted chapter somewhere among their ancestors."""
        by_id = {chapter.id: chapter for chapter in self.curriculum.chapters}
        memo: Dict[str, bool] = {}

        for root in by_id:
            if root in memo:
                continue
            # Iterative DFS; nodes on the current path count as not doomed so cycles terminate.
            stack: List[tuple[str, Optional[list]]] = [(root, None)]
            on_path: Set[str] = set()
            while stack:
                node, pending = stack.pop()
                if pending is None:
                    if node in memo or node in on_path:
                        continue
                    on_path.add(node)
                    pending = [
                        pid for pid in by_id[node].prerequisite_ids
                        if pid not in self._completed_index
                    ]
                    stack.append((node, pending))
                    for pid in pending:
                        if pid not in memo and pid not in on_path:
                            stack.append((pid, None))
                    continue
                on_path.discard(node)
                memo[node] = any(self.is_exhausted(pid) or memo.get(pid, False) for pid in pending)
        return memo
