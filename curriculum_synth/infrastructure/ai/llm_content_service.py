"""
LangChain adapter for the content generation contract.

JSON operations go through `ainvoke` and the validation boundary in
curriculum_parser; the chapter draft is streamed with `astream`. Provider
failures that look transient (rate limits, timeouts, dropped connections,
5xx) are re-raised as TransientServiceError so the retry layers see one type.
"""

from __future__ import annotations

from typing import Any, AsyncGenerator, Dict, List, Mapping, Optional, Type, TypeVar

import structlog
from langchain_core.language_models.chat_models import BaseChatModel
from langchain_core.messages import HumanMessage
from langchain_core.runnables import Runnable
from pydantic import BaseModel

from curriculum_synth.core.prompts.synthesis import SynthesisPrompts
from curriculum_synth.domain.exceptions import SynthesisError, TransientServiceError
from curriculum_synth.domain.interfaces.content_generation_service import IContentGenerationService
from curriculum_synth.domain.schemas.chapter_content import (
    AssessmentBundle,
    AuditSuggestion,
    Correction,
    DiagramAsset,
    FinalizedChapter,
    GlobalAuditReport,
    RefinedContent,
    VerificationReport,
)
from curriculum_synth.domain.schemas.curriculum import (
    ChapterSpec,
    CurriculumSpec,
    DraftContext,
    PlanningConstraints,
)
from curriculum_synth.domain.synthesis.content_splicer import render_figure, splice_after_first_heading
from curriculum_synth.domain.synthesis.curriculum_parser import parse_curriculum, parse_model
from curriculum_synth.infrastructure.observability.synthesis_logging import compact_error, emit_event

logger = structlog.get_logger(__name__)

M = TypeVar("M", bound=BaseModel)

_TRANSIENT_MARKERS = (
    "429",
    "rate limit",
    "resource exhausted",
    "resourceexhausted",
    "timeout",
    "timed out",
    "connection",
    "temporarily unavailable",
    "service unavailable",
    "502",
    "503",
    "504",
)


def is_transient_provider_error(exc: BaseException) -> bool:
    name = exc.__class__.__name__.lower()
    text = str(exc or "").lower()
    return any(marker in name or marker in text for marker in _TRANSIENT_MARKERS)


def message_text(message: Any) -> str:
    """Flattens a chat message or chunk; some providers return a list of parts."""
    content = getattr(message, "content", message)
    if isinstance(content, str):
        return content
    if isinstance(content, list):
        parts = []
        for part in content:
            if isinstance(part, str):
                parts.append(part)
            elif isinstance(part, dict) and part.get("type", "text") == "text":
                parts.append(str(part.get("text") or ""))
        return "".join(parts)
    return str(content or "")


class LLMContentGenerationService(IContentGenerationService):
    def __init__(
        self,
        llm: BaseChatModel,
        fast_llm: Optional[BaseChatModel] = None,
        verify_llm: Optional[Runnable] = None,
    ):
        self.llm = llm
        # Planning and state sync run on the cheaper model when one is given.
        self.fast_llm = fast_llm or llm
        # Fact checking runs on a search-grounded model when one is given.
        self.verify_llm = verify_llm or llm

    @classmethod
    def from_settings(cls) -> "LLMContentGenerationService":
        from curriculum_synth.infrastructure.ai.llm_factory import get_llm

        return cls(
            llm=get_llm("DRAFTING"),
            fast_llm=get_llm("PLANNING", fast=True),
            verify_llm=get_llm("AUDIT", ground_with_search=True),
        )

    async def plan_curriculum(self, topic: str, constraints: PlanningConstraints) -> CurriculumSpec:
        prompt = SynthesisPrompts.curriculum_planner(
            topic,
            constraints.understanding,
            constraints.persona_instruction,
            constraints.chapter_count,
        )
        text = await self._invoke(self.fast_llm, prompt, operation="plan_curriculum")
        curriculum = parse_curriculum(text)
        emit_event(
            logger,
            "curriculum_planned",
            topic=topic,
            chapters=len(curriculum.chapters),
            terms=len(curriculum.shared_dictionary),
        )
        return curriculum

    async def build_state_vector(
        self,
        topic: str,
        prerequisite_summaries: Mapping[str, str],
        shared_dictionary: Mapping[str, str],
    ) -> str:
        prompt = SynthesisPrompts.state_vector(topic, prerequisite_summaries, shared_dictionary)
        text = await self._invoke(self.fast_llm, prompt, operation="build_state_vector")
        return text.strip()

    async def stream_chapter_draft(
        self,
        topic: str,
        chapter: ChapterSpec,
        state_vector: str,
        shared_dictionary: Mapping[str, str],
        context: DraftContext,
    ) -> AsyncGenerator[str, None]:
        prompt = SynthesisPrompts.chapter_draft(
            topic,
            title=chapter.title,
            learning_objectives=chapter.learning_objectives,
            topics=chapter.topics,
            chapter_index=context.chapter_index,
            total_chapters=context.total_chapters,
            persona_name=context.persona_name,
            persona_instruction=context.persona_instruction,
            target_chapter_words=context.target_chapter_words,
            shared_dictionary=shared_dictionary,
            state_vector=state_vector,
        )
        try:
            async for chunk in self.llm.astream([HumanMessage(content=prompt)]):
                text = message_text(chunk)
                if text:
                    yield text
        except SynthesisError:
            raise
        except Exception as exc:
            if not is_transient_provider_error(exc):
                raise
            raise self._transient(exc, "stream_chapter_draft", chapter.id) from exc

    async def finalize_chapter_draft(
        self,
        topic: str,
        chapter: ChapterSpec,
        draft: str,
        state_vector: str,
        shared_dictionary: Mapping[str, str],
    ) -> FinalizedChapter:
        prompt = SynthesisPrompts.finalize_chapter(
            topic, chapter.title, draft, state_vector, shared_dictionary
        )
        return await self._invoke_model(prompt, FinalizedChapter, operation="finalize_chapter_draft")

    async def verify_content(self, topic: str, chapter_title: str, content: str) -> List[Correction]:
        prompt = SynthesisPrompts.verify_content(topic, chapter_title, content)
        text = await self._invoke(self.verify_llm, prompt, operation="verify_content")
        report = parse_model(text, VerificationReport, operation="verify_content")
        return list(report.corrections)

    async def refine_content(self, topic: str, content: str, corrections: List[Correction]) -> str:
        prompt = SynthesisPrompts.refine_content(
            topic, content, [c.model_dump(by_alias=True) for c in corrections]
        )
        refined = await self._invoke_model(prompt, RefinedContent, operation="refine_content")
        return refined.refined_content

    async def enrich_content(self, topic: str, content: str) -> str:
        prompt = SynthesisPrompts.diagram(topic, content)
        diagram = await self._invoke_model(prompt, DiagramAsset, operation="enrich_content")
        if not diagram.has_diagram or not (diagram.svg_code or "").strip():
            return content
        return splice_after_first_heading(content, render_figure(diagram.svg_code, diagram.caption))

    async def generate_assessments(
        self, topic: str, chapter_title: str, content: str
    ) -> AssessmentBundle:
        prompt = SynthesisPrompts.assessments(topic, chapter_title, content)
        return await self._invoke_model(prompt, AssessmentBundle, operation="generate_assessments")

    async def global_audit(
        self,
        topic: str,
        course_name: str,
        chapter_excerpts: Dict[str, str],
        shared_dictionary: Mapping[str, str],
    ) -> List[AuditSuggestion]:
        prompt = SynthesisPrompts.global_audit(topic, course_name, chapter_excerpts, shared_dictionary)
        report = await self._invoke_model(prompt, GlobalAuditReport, operation="global_audit")
        emit_event(
            logger,
            "global_audit_report",
            is_consistent=report.is_consistent,
            suggestions=len(report.suggestions),
            final_summary=compact_error(report.final_summary, limit=200) if report.final_summary else None,
        )
        return list(report.suggestions)

    async def apply_audit_fix(self, topic: str, content: str, suggestion: AuditSuggestion) -> str:
        prompt = SynthesisPrompts.apply_audit_fix(topic, content, suggestion.issue, suggestion.fix)
        refined = await self._invoke_model(prompt, RefinedContent, operation="apply_audit_fix")
        return refined.refined_content

    async def _invoke_model(self, prompt: str, schema: Type[M], *, operation: str) -> M:
        text = await self._invoke(self.llm, prompt, operation=operation)
        return parse_model(text, schema, operation=operation)

    async def _invoke(self, llm: Runnable, prompt: str, *, operation: str) -> str:
        try:
            response = await llm.ainvoke([HumanMessage(content=prompt)])
        except SynthesisError:
            raise
        except Exception as exc:
            if not is_transient_provider_error(exc):
                raise
            raise self._transient(exc, operation) from exc
        return message_text(response)

    @staticmethod
    def _transient(
        exc: Exception, operation: str, chapter_id: Optional[str] = None
    ) -> TransientServiceError:
        emit_event(
            logger,
            "content_service_transient_error",
            level="warning",
            operation=operation,
            chapter_id=chapter_id,
            error_type=type(exc).__name__,
            error=compact_error(exc),
        )
        return TransientServiceError(
            f"{operation} failed: {compact_error(exc)}", operation=operation, chapter_id=chapter_id
        )
