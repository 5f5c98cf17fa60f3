import pytest

from curriculum_synth.domain.exceptions import RunStateViolation
from curriculum_synth.domain.schemas.curriculum import ChapterSpec, CurriculumSpec
from curriculum_synth.domain.synthesis.checkpoint import GenerationCheckpoint
from curriculum_synth.domain.synthesis.run_state import RunState
from curriculum_synth.domain.synthesis.run_status import ChapterRunState, UnresolvedReason


def _curriculum(*edges: tuple[str, tuple[str, ...]]) -> CurriculumSpec:
    return CurriculumSpec(
        name="Course",
        chapters=[
            ChapterSpec(id=cid, title=f"Chapter {cid}", prerequisite_ids=list(prereqs))
            for cid, prereqs in edges
        ],
    )


def _diamond() -> CurriculumSpec:
    return _curriculum(("A", ()), ("B", ("A",)), ("C", ("A",)), ("D", ("B", "C")))


def test_ready_set_only_contains_chapters_with_completed_prerequisites() -> None:
    state = RunState(curriculum=_diamond(), max_concurrency=3, max_retries=3)
    assert [c.id for c in state.ready_set()] == ["A"]

    state.mark_active(state.curriculum.get_chapter("A"))
    assert state.ready_set() == []

    state.mark_complete("A", "summary A")
    assert [c.id for c in state.ready_set()] == ["B", "C"]


def test_mark_active_rejects_unmet_prerequisites_and_leaves_state_untouched() -> None:
    state = RunState(curriculum=_diamond(), max_concurrency=3, max_retries=3)

    with pytest.raises(RunStateViolation, match="before prerequisites"):
        state.mark_active(state.curriculum.get_chapter("D"))

    assert state.active_chapter_ids == set()


def test_mark_active_respects_concurrency_bound() -> None:
    curriculum = _curriculum(("A", ()), ("B", ()), ("C", ()))
    state = RunState(curriculum=curriculum, max_concurrency=2, max_retries=3)
    state.mark_active(curriculum.get_chapter("A"))
    state.mark_active(curriculum.get_chapter("B"))

    assert state.free_slots == 0
    with pytest.raises(RunStateViolation, match="concurrency bound"):
        state.mark_active(curriculum.get_chapter("C"))


def test_mark_active_rejects_completed_and_duplicate_dispatch() -> None:
    curriculum = _curriculum(("A", ()))
    state = RunState(curriculum=curriculum, max_concurrency=2, max_retries=3)
    chapter = curriculum.get_chapter("A")
    state.mark_active(chapter)

    with pytest.raises(RunStateViolation, match="already active"):
        state.mark_active(chapter)

    state.mark_complete("A", "done")
    with pytest.raises(RunStateViolation, match="already complete"):
        state.mark_active(chapter)


def test_mark_failed_counts_attempts_until_exhausted() -> None:
    curriculum = _curriculum(("A", ()))
    state = RunState(curriculum=curriculum, max_concurrency=1, max_retries=2)
    chapter = curriculum.get_chapter("A")

    state.mark_active(chapter)
    assert state.mark_failed("A") == ChapterRunState.FAILED_RETRYABLE
    assert state.ready_set() == [chapter]

    state.mark_active(chapter)
    assert state.mark_failed("A") == ChapterRunState.FAILED_EXHAUSTED
    assert state.retry_counts["A"] == 2
    assert state.ready_set() == []
    with pytest.raises(RunStateViolation, match="no retries left"):
        state.mark_active(chapter)


def test_release_does_not_charge_retry_budget() -> None:
    curriculum = _curriculum(("A", ()))
    state = RunState(curriculum=curriculum, max_concurrency=1, max_retries=1)
    state.mark_active(curriculum.get_chapter("A"))

    state.release("A")

    assert state.retry_counts.get("A", 0) == 0
    assert state.state_of("A") == ChapterRunState.PENDING


def test_prerequisite_summaries_follow_curriculum_order() -> None:
    state = RunState(curriculum=_diamond(), max_concurrency=3, max_retries=3)
    for cid in ("A", "C", "B"):
        state.mark_active(state.curriculum.get_chapter(cid))
        state.mark_complete(cid, f"summary {cid}")

    summaries = state.prerequisite_summaries(state.curriculum.get_chapter("D"))

    assert list(summaries) == ["B", "C"]
    assert summaries["C"] == "summary C"


def test_unresolved_distinguishes_exhausted_blocked_and_unreachable() -> None:
    curriculum = _curriculum(
        ("A", ()),
        ("B", ("A",)),
        ("C", ("B",)),
        ("X", ("Y",)),
        ("Y", ("X",)),
    )
    state = RunState(curriculum=curriculum, max_concurrency=1, max_retries=1)
    state.mark_active(curriculum.get_chapter("A"))
    state.mark_failed("A")

    reasons = {item.chapter_id: item.reason for item in state.unresolved()}

    assert reasons == {
        "A": UnresolvedReason.EXHAUSTED,
        "B": UnresolvedReason.BLOCKED,
        "C": UnresolvedReason.BLOCKED,
        "X": UnresolvedReason.UNREACHABLE,
        "Y": UnresolvedReason.UNREACHABLE,
    }


def test_unresolved_marks_remaining_chapters_cancelled() -> None:
    state = RunState(curriculum=_diamond(), max_concurrency=3, max_retries=3)
    state.mark_active(state.curriculum.get_chapter("A"))
    state.mark_complete("A", "s")

    unresolved = state.unresolved(cancelled=True)

    assert {u.chapter_id for u in unresolved} == {"B", "C", "D"}
    assert all(u.reason == UnresolvedReason.CANCELLED for u in unresolved)
    blocking = {u.chapter_id: u.blocking_prerequisites for u in unresolved}
    assert blocking["D"] == ("B", "C")


def test_checkpoint_round_trip_preserves_progress() -> None:
    state = RunState(curriculum=_diamond(), max_concurrency=2, max_retries=3)
    state.mark_active(state.curriculum.get_chapter("A"))
    state.mark_complete("A", "summary A")
    state.mark_active(state.curriculum.get_chapter("B"))
    state.mark_failed("B")

    snapshot = state.to_checkpoint(curriculum_id="cur-1", deck_id="deck-1", topic="Optics")
    restored = RunState.from_checkpoint(snapshot, max_concurrency=2, max_retries=3)

    assert restored.completed_chapter_ids == ["A"]
    assert restored.summaries == {"A": "summary A"}
    assert restored.retry_counts == {"B": 1}
    assert restored.active_chapter_ids == set()
    assert [c.id for c in restored.ready_set()] == ["B", "C"]


def test_restored_retry_counts_are_clamped_to_the_current_budget() -> None:
    checkpoint = GenerationCheckpoint(
        curriculum_id="cur-1",
        deck_id="deck-1",
        topic="Optics",
        curriculum=_diamond(),
        completed_chapter_ids=("A",),
        summaries={"A": "summary A"},
        retry_counts={"B": 7, "C": 1},
    )

    restored = RunState.from_checkpoint(checkpoint, max_concurrency=2, max_retries=3)

    assert restored.retry_counts == {"B": 3, "C": 1}
    assert all(count <= restored.max_retries for count in restored.retry_counts.values())
    assert restored.state_of("B") == ChapterRunState.FAILED_EXHAUSTED
    assert [c.id for c in restored.ready_set()] == ["C"]
