"""
Global Consistency Auditor - one post-pass over the committed chapters.

Reviews bounded excerpts of every completed chapter against the shared
dictionary, then applies the suggested fixes one chapter at a time. Fixes are
best-effort: a failing fix is logged and skipped, and the chapters are not
re-audited afterwards.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Dict, List, Optional

import structlog

from curriculum_synth.core.synthesis_options import SynthesisOptions
from curriculum_synth.domain.exceptions import BestEffortRefinementFailure, MalformedResponseError
from curriculum_synth.domain.interfaces.content_generation_service import IContentGenerationService
from curriculum_synth.domain.interfaces.synthesis_repository import ISynthesisRepository
from curriculum_synth.domain.schemas.chapter_content import AuditSuggestion
from curriculum_synth.domain.schemas.curriculum import CurriculumSpec
from curriculum_synth.domain.synthesis.run_status import SchedulerStatus
from curriculum_synth.infrastructure.concurrency.call_guard import call_with_timeout
from curriculum_synth.infrastructure.concurrency.cancellation import CancellationToken
from curriculum_synth.infrastructure.observability.synthesis_logging import (
    compact_error,
    emit_event,
    perf_now,
)

logger = structlog.get_logger(__name__)


@dataclass
class SkippedFix:
    chapter_id: str
    issue: str
    error: str


@dataclass
class AuditOutcome:
    ran: bool
    skipped_reason: Optional[str] = None
    suggestions: List[AuditSuggestion] = field(default_factory=list)
    applied_chapter_ids: List[str] = field(default_factory=list)
    skipped_fixes: List[SkippedFix] = field(default_factory=list)

    @classmethod
    def skipped(cls, reason: str) -> "AuditOutcome":
        return cls(ran=False, skipped_reason=reason)


class GlobalConsistencyAuditor:
    def __init__(
        self,
        *,
        content_service: IContentGenerationService,
        repository: ISynthesisRepository,
        options: SynthesisOptions,
        cancellation: Optional[CancellationToken] = None,
    ):
        self.content_service = content_service
        self.repository = repository
        self.options = options
        self.cancellation = cancellation

    async def run(
        self,
        *,
        topic: str,
        deck_id: str,
        curriculum: CurriculumSpec,
        scheduler_status: SchedulerStatus,
    ) -> AuditOutcome:
        if scheduler_status == SchedulerStatus.CANCELLED:
            return AuditOutcome.skipped("cancelled")

        stored = await self.repository.list_chapter_results(deck_id)
        contents: Dict[str, str] = {
            cid: stored[cid] for cid in curriculum.chapter_ids if cid in stored
        }
        if len(contents) < self.options.min_chapters_for_audit:
            emit_event(logger, "audit_skipped", reason="not_enough_chapters", completed=len(contents))
            return AuditOutcome.skipped("not_enough_chapters")

        started = perf_now()
        excerpts = {
            cid: content[: self.options.audit_excerpt_chars] for cid, content in contents.items()
        }
        try:
            suggestions = await call_with_timeout(
                self.content_service.global_audit(
                    topic, curriculum.name, excerpts, dict(curriculum.shared_dictionary)
                ),
                timeout=self.options.call_timeout_seconds,
                operation="global_audit",
            )
        except Exception as exc:
            emit_event(logger, "audit_failed", level="error", error=compact_error(exc))
            return AuditOutcome.skipped(f"audit_failed: {compact_error(exc, limit=120)}")

        outcome = AuditOutcome(ran=True, suggestions=list(suggestions))
        for suggestion in outcome.suggestions:
            if self.cancellation is not None and self.cancellation.is_cancelled:
                outcome.skipped_fixes.append(
                    SkippedFix(suggestion.chapter_id, suggestion.issue, "cancelled")
                )
                continue
            try:
                contents[suggestion.chapter_id] = await self._apply_fix(
                    topic, deck_id, contents, suggestion
                )
                outcome.applied_chapter_ids.append(suggestion.chapter_id)
            except BestEffortRefinementFailure as failure:
                emit_event(
                    logger,
                    "audit_fix_skipped",
                    level="warning",
                    chapter_id=failure.chapter_id,
                    issue=compact_error(failure.issue, limit=160),
                    error=failure.message,
                )
                outcome.skipped_fixes.append(
                    SkippedFix(suggestion.chapter_id, suggestion.issue, failure.message)
                )

        emit_event(
            logger,
            "audit_completed",
            since=started,
            suggestions=len(outcome.suggestions),
            applied=len(outcome.applied_chapter_ids),
            skipped=len(outcome.skipped_fixes),
        )
        return outcome

    async def _apply_fix(
        self,
        topic: str,
        deck_id: str,
        contents: Dict[str, str],
        suggestion: AuditSuggestion,
    ) -> str:
        chapter_id = suggestion.chapter_id
        if chapter_id not in contents:
            raise BestEffortRefinementFailure(
                "suggestion targets a chapter that was never committed",
                chapter_id=chapter_id,
                issue=suggestion.issue,
            )
        try:
            refined = await call_with_timeout(
                self.content_service.apply_audit_fix(topic, contents[chapter_id], suggestion),
                timeout=self.options.call_timeout_seconds,
                operation="apply_audit_fix",
                chapter_id=chapter_id,
            )
            if not refined or not refined.strip():
                raise MalformedResponseError(
                    "apply_audit_fix returned empty content",
                    operation="apply_audit_fix",
                    chapter_id=chapter_id,
                )
            await self.repository.update_chapter_content(deck_id, chapter_id, refined)
        except Exception as exc:
            raise BestEffortRefinementFailure(
                compact_error(exc), chapter_id=chapter_id, issue=suggestion.issue
            ) from exc
        return refined
