from typing import Protocol

from curriculum_synth.domain.synthesis.run_status import ChapterPhase


class SynthesisObserver(Protocol):
    """Presentation-side sink for chapter phase transitions."""

    def on_phase(self, chapter_id: str, phase: ChapterPhase) -> None: ...


class NullSynthesisObserver:
    def on_phase(self, chapter_id: str, phase: ChapterPhase) -> None:
        return None
