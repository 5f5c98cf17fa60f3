import asyncio

import pytest
from pydantic import ValidationError

from curriculum_synth.core.settings import Settings
from curriculum_synth.core.synthesis_options import SynthesisOptions
from curriculum_synth.domain.schemas.curriculum import ChapterSpec, CurriculumSpec
from curriculum_synth.domain.synthesis.checkpoint import GenerationCheckpoint
from curriculum_synth.domain.synthesis.run_status import CourseStatus
from curriculum_synth.infrastructure.repositories.in_memory_synthesis_repository import (
    InMemorySynthesisRepository,
)

CURRICULUM = CurriculumSpec(
    name="Optics",
    chapters=[ChapterSpec(id="a", title="A"), ChapterSpec(id="b", title="B", prerequisite_ids=["a"])],
)


def test_in_memory_repository_keeps_commit_order_and_updates_in_place() -> None:
    async def _run() -> None:
        repo = InMemorySynthesisRepository()
        await repo.append_chapter_result("deck-1", "b", "<p>b</p>", [])
        await repo.append_chapter_result("deck-1", "a", "<p>a</p>", [])
        await repo.update_chapter_content("deck-1", "b", "<p>b2</p>")
        await repo.set_course_status("deck-1", CourseStatus.GENERATING)

        assert await repo.list_chapter_results("deck-1") == {"b": "<p>b2</p>", "a": "<p>a</p>"}
        assert repo.status("deck-1") == CourseStatus.GENERATING
        assert await repo.list_chapter_results("other") == {}
        with pytest.raises(KeyError):
            await repo.update_chapter_content("deck-1", "zz", "<p>?</p>")

    asyncio.run(_run())


def test_checkpoint_serializes_with_camel_case_aliases() -> None:
    snapshot = GenerationCheckpoint(
        curriculum_id="cur-1",
        deck_id="deck-1",
        topic="Optics",
        curriculum=CURRICULUM,
        completed_chapter_ids=("a",),
        summaries={"a": "summary"},
        retry_counts={"b": 1},
    )

    record = snapshot.to_record()
    restored = GenerationCheckpoint.model_validate(record)

    assert record["completedChapterIds"] == ["a"]
    assert record["curriculum"]["chapters"][1]["prerequisiteIds"] == ["a"]
    assert restored.completed_chapter_ids == ("a",)
    assert restored.curriculum.get_chapter("b").prerequisite_ids == frozenset({"a"})


def test_checkpoint_rejects_unknown_or_duplicate_chapters() -> None:
    with pytest.raises(ValidationError):
        GenerationCheckpoint(
            curriculum_id="c", deck_id="d", topic="t", curriculum=CURRICULUM, completed_chapter_ids=("zz",)
        )
    with pytest.raises(ValidationError):
        GenerationCheckpoint(
            curriculum_id="c", deck_id="d", topic="t", curriculum=CURRICULUM, completed_chapter_ids=("a", "a")
        )
    with pytest.raises(ValidationError):
        GenerationCheckpoint(
            curriculum_id="c", deck_id="d", topic="t", curriculum=CURRICULUM, retry_counts={"a": -1}
        )


def test_options_follow_settings_and_overrides(monkeypatch) -> None:
    monkeypatch.setenv("SYNTHESIS_MAX_CONCURRENCY", "0")
    monkeypatch.setenv("SYNTHESIS_MAX_CHAPTER_RETRIES", "5")
    monkeypatch.setenv("SYNTHESIS_ENABLE_ENRICHMENT", "true")
    monkeypatch.setenv("SYNTHESIS_CALL_TIMEOUT_SECONDS", "0")

    options = SynthesisOptions.from_settings(Settings(_env_file=None))

    assert options.max_concurrency == 1
    assert options.max_chapter_retries == 5
    assert options.enable_enrichment is True
    assert options.call_timeout_seconds is None

    tuned = options.with_overrides(max_concurrency=4, enable_verification=None)
    assert tuned.max_concurrency == 4
    assert tuned.enable_verification is True


def test_settings_accept_service_role_alias(monkeypatch) -> None:
    monkeypatch.setenv("NEXT_PUBLIC_SUPABASE_URL", "https://example.supabase.co")
    monkeypatch.setenv("SUPABASE_SERVICE_ROLE_KEY", "service-key")
    monkeypatch.delenv("SUPABASE_URL", raising=False)
    monkeypatch.delenv("SUPABASE_SERVICE_KEY", raising=False)

    cfg = Settings(_env_file=None)

    assert cfg.SUPABASE_URL == "https://example.supabase.co"
    assert cfg.SUPABASE_SERVICE_KEY == "service-key"
