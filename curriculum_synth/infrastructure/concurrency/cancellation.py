import asyncio
from typing import Optional

from curriculum_synth.domain.exceptions import SynthesisCancelled


class CancellationToken:
    """
    Single cooperative stop signal shared by the scheduler and every pipeline.
    Held by the presentation layer; observed at stage boundaries.
    """

    def __init__(self) -> None:
        self._event = asyncio.Event()
        self.reason: Optional[str] = None

    @property
    def is_cancelled(self) -> bool:
        return self._event.is_set()

    def cancel(self, reason: Optional[str] = None) -> None:
        if not self._event.is_set():
            self.reason = reason
        self._event.set()

    def raise_if_cancelled(self, stage: str, chapter_id: Optional[str] = None) -> None:
        if self._event.is_set():
            raise SynthesisCancelled(stage=stage, chapter_id=chapter_id)

    async def wait(self) -> None:
        await self._event.wait()
