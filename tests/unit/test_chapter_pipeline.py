import asyncio
from typing import List, Optional

import pytest

from curriculum_synth.application.services.chapter_pipeline import ChapterPipeline
from curriculum_synth.core.synthesis_options import SynthesisOptions
from curriculum_synth.domain.exceptions import (
    MalformedResponseError,
    SynthesisCancelled,
    TransientServiceError,
)
from curriculum_synth.domain.interfaces.content_generation_service import IContentGenerationService
from curriculum_synth.domain.schemas.chapter_content import (
    AssessmentBundle,
    AssessmentItem,
    AssessmentOption,
    Correction,
    FinalizedChapter,
)
from curriculum_synth.domain.schemas.curriculum import ChapterSpec, CurriculumSpec
from curriculum_synth.domain.synthesis.run_status import ChapterPhase
from curriculum_synth.infrastructure.concurrency.cancellation import CancellationToken
from curriculum_synth.infrastructure.concurrency.retry_policy import RetryPolicy
from curriculum_synth.infrastructure.repositories.in_memory_synthesis_repository import (
    InMemorySynthesisRepository,
)
from curriculum_synth.infrastructure.streaming.chapter_stream import (
    ChapterStreamHub,
    StreamEventKind,
)

CURRICULUM = CurriculumSpec(
    name="Optics",
    shared_dictionary={"Photon": "Quantum of light"},
    chapters=[
        ChapterSpec(id="intro", title="Introduction"),
        ChapterSpec(id="lenses", title="Lenses", prerequisite_ids=["intro"]),
    ],
)


def _question() -> AssessmentItem:
    return AssessmentItem(
        question_text="What is a photon?",
        options=[AssessmentOption(id="o1", text="Light quantum"), AssessmentOption(id="o2", text="Lens")],
        correct_answer_id="o1",
    )


class _FakeContentService(IContentGenerationService):
    def __init__(self):
        self.calls: List[str] = []
        self.draft_failures = 0
        self.draft_chunks = ["<h2>Lenses</h2>", "<p>Refraction</p>"]
        self.corrections: List[Correction] = []
        self.finalize_content = "<h2>Lenses</h2><p>Final</p>"
        self.hang_on: Optional[str] = None
        self.stream_hook = None
        self.finalize_failures = 0
        self.streams_closed = 0

    async def plan_curriculum(self, topic, constraints):
        return CURRICULUM

    async def build_state_vector(self, topic, prerequisite_summaries, shared_dictionary):
        self.calls.append("build_state_vector")
        return "state:" + ",".join(prerequisite_summaries.values())

    async def stream_chapter_draft(self, topic, chapter, state_vector, shared_dictionary, context):
        self.calls.append("stream_chapter_draft")
        try:
            for index, chunk in enumerate(self.draft_chunks):
                if self.stream_hook is not None:
                    self.stream_hook(index)
                yield chunk
                if self.draft_failures and index == 0:
                    self.draft_failures -= 1
                    raise TransientServiceError("stream dropped", operation="stream_chapter_draft")
        finally:
            self.streams_closed += 1

    async def finalize_chapter_draft(self, topic, chapter, draft, state_vector, shared_dictionary):
        self.calls.append("finalize_chapter_draft")
        if self.finalize_failures:
            self.finalize_failures -= 1
            raise TransientServiceError("finalize failed", operation="finalize_chapter_draft")
        if self.hang_on == "finalize_chapter_draft":
            await asyncio.sleep(10)
        return FinalizedChapter(content=self.finalize_content, summary=f"{chapter.id} covered")

    async def verify_content(self, topic, chapter_title, content):
        self.calls.append("verify_content")
        return list(self.corrections)

    async def refine_content(self, topic, content, corrections):
        self.calls.append("refine_content")
        return content + "<p>corrected</p>"

    async def enrich_content(self, topic, content):
        self.calls.append("enrich_content")
        return content.replace("</h2>", "</h2><figure>diagram</figure>", 1)

    async def generate_assessments(self, topic, chapter_title, content):
        self.calls.append("generate_assessments")
        return AssessmentBundle(refined_content=content + "<p>assessed</p>", assessments=[_question()])

    async def global_audit(self, topic, course_name, chapter_excerpts, shared_dictionary):
        return []

    async def apply_audit_fix(self, topic, content, suggestion):
        return content


async def _collect(iterator) -> list:
    return [event async for event in iterator]


class _RecordingObserver:
    def __init__(self):
        self.phases: List[ChapterPhase] = []

    def on_phase(self, chapter_id, phase):
        self.phases.append(phase)


class _NoSleep:
    def __init__(self):
        self.delays: List[float] = []

    async def sleep(self, seconds: float) -> None:
        self.delays.append(seconds)


def _pipeline(service, repo=None, *, token=None, observer=None, sleeper=None, hub=None, **overrides):
    options = SynthesisOptions().with_overrides(**overrides)
    return ChapterPipeline(
        topic="Optics",
        deck_id="deck-1",
        curriculum=CURRICULUM,
        content_service=service,
        repository=repo or InMemorySynthesisRepository(),
        stream_hub=hub or ChapterStreamHub(),
        cancellation=token or CancellationToken(),
        options=options,
        observer=observer,
        draft_retry=RetryPolicy(max_attempts=3, initial_delay=2.0, sleep=(sleeper or _NoSleep()).sleep),
    )


def test_pipeline_runs_stages_in_order_and_commits_result() -> None:
    async def _run() -> None:
        service = _FakeContentService()
        repo = InMemorySynthesisRepository()
        observer = _RecordingObserver()
        pipeline = _pipeline(service, repo, observer=observer)

        result = await pipeline.run(CURRICULUM.chapters[1], {"intro": "intro covered"})

        assert service.calls == [
            "build_state_vector",
            "stream_chapter_draft",
            "finalize_chapter_draft",
            "verify_content",
            "generate_assessments",
        ]
        assert observer.phases == [
            ChapterPhase.DRAFTING,
            ChapterPhase.FINALIZING,
            ChapterPhase.AUDITING,
            ChapterPhase.ASSESSING,
        ]
        assert result.summary == "lenses covered"
        assert result.content == "<h2>Lenses</h2><p>Final</p><p>assessed</p>"
        assert repo.chapters("deck-1") == {"lenses": result.content}
        assert len(repo.assessments("deck-1")["lenses"]) == 1

    asyncio.run(_run())


def test_corrections_trigger_refinement_and_enrichment_splices_content() -> None:
    async def _run() -> None:
        service = _FakeContentService()
        service.corrections = [Correction(original_claim="x", correction="y")]
        pipeline = _pipeline(service, enable_enrichment=True)

        result = await pipeline.run(CURRICULUM.chapters[0], {})

        assert service.calls[3:] == [
            "verify_content",
            "refine_content",
            "enrich_content",
            "generate_assessments",
        ]
        assert "<figure>diagram</figure>" in result.content
        assert "<p>corrected</p>" in result.content

    asyncio.run(_run())


def test_verification_can_be_disabled() -> None:
    async def _run() -> None:
        service = _FakeContentService()
        pipeline = _pipeline(service, enable_verification=False)

        await pipeline.run(CURRICULUM.chapters[0], {})

        assert "verify_content" not in service.calls

    asyncio.run(_run())


def test_draft_stream_is_retried_with_backoff_and_stream_buffer_reset() -> None:
    async def _run() -> None:
        service = _FakeContentService()
        service.draft_failures = 2
        sleeper = _NoSleep()
        hub = ChapterStreamHub()
        pipeline = _pipeline(service, sleeper=sleeper, hub=hub)

        await pipeline.run(CURRICULUM.chapters[0], {})

        assert service.calls.count("stream_chapter_draft") == 3
        assert sleeper.delays == [2.0, 4.0]
        assert hub.buffer("intro") == "<h2>Lenses</h2><p>Refraction</p>"
        assert hub.get("intro").closed

    asyncio.run(_run())


def test_empty_finalized_content_is_malformed() -> None:
    async def _run() -> None:
        service = _FakeContentService()
        service.finalize_content = "   "
        pipeline = _pipeline(service)

        with pytest.raises(MalformedResponseError):
            await pipeline.run(CURRICULUM.chapters[0], {})

    asyncio.run(_run())


def test_slow_call_times_out_as_transient_error() -> None:
    async def _run() -> None:
        service = _FakeContentService()
        service.hang_on = "finalize_chapter_draft"
        repo = InMemorySynthesisRepository()
        pipeline = _pipeline(service, repo, call_timeout_seconds=0.01)

        with pytest.raises(TransientServiceError, match="timed out"):
            await pipeline.run(CURRICULUM.chapters[0], {})

        assert repo.chapters("deck-1") == {}

    asyncio.run(_run())


def test_cancellation_mid_stream_stops_before_commit() -> None:
    async def _run() -> None:
        service = _FakeContentService()
        token = CancellationToken()
        repo = InMemorySynthesisRepository()
        service.stream_hook = lambda index: token.cancel() if index == 1 else None
        pipeline = _pipeline(service, repo, token=token)

        with pytest.raises(SynthesisCancelled) as excinfo:
            await pipeline.run(CURRICULUM.chapters[0], {})

        assert excinfo.value.stage == "draft_stream"
        assert "finalize_chapter_draft" not in service.calls
        assert service.streams_closed == 1
        assert repo.chapters("deck-1") == {}

    asyncio.run(_run())


def test_draft_context_carries_position_and_persona() -> None:
    pipeline = _pipeline(_FakeContentService())

    context = pipeline.draft_context(CURRICULUM.chapters[1])

    assert context.chapter_index == 1
    assert context.total_chapters == 2
    assert context.target_chapter_words == 1500


def test_chapter_stream_survives_a_failed_attempt_and_carries_the_retry() -> None:
    async def _run() -> None:
        service = _FakeContentService()
        service.finalize_failures = 1
        hub = ChapterStreamHub()
        pipeline = _pipeline(service, hub=hub)
        intro = CURRICULUM.chapters[0]

        early = asyncio.create_task(_collect(hub.subscribe("intro")))
        await asyncio.sleep(0)

        with pytest.raises(TransientServiceError):
            await pipeline.run(intro, {}, attempt=1)
        assert not hub.get("intro").closed

        late = asyncio.create_task(_collect(hub.subscribe("intro")))
        await asyncio.sleep(0)

        await pipeline.run(intro, {}, attempt=2)
        early_events = await early
        late_events = await late

        assert [(e.kind, e.text) for e in early_events] == [
            (StreamEventKind.CHUNK, "<h2>Lenses</h2>"),
            (StreamEventKind.CHUNK, "<p>Refraction</p>"),
            (StreamEventKind.RESET, ""),
            (StreamEventKind.CHUNK, "<h2>Lenses</h2>"),
            (StreamEventKind.CHUNK, "<p>Refraction</p>"),
        ]
        assert [e.kind for e in late_events] == [
            StreamEventKind.SNAPSHOT,
            StreamEventKind.RESET,
            StreamEventKind.CHUNK,
            StreamEventKind.CHUNK,
        ]
        assert hub.buffer("intro") == "<h2>Lenses</h2><p>Refraction</p>"
        assert hub.get("intro").closed

    asyncio.run(_run())
