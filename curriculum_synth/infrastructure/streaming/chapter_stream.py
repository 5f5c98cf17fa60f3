"""
Live draft streaming.

A chapter publishes its draft chunks on one ChapterStream for all of its
attempts; a retried attempt starts with a reset event. A subscriber attaching
mid-stream first receives the accumulated buffer as a snapshot event, then
every later event, until the chapter completes or is exhausted and the stream
is closed. Consumers going away never affects the producer.
"""

from __future__ import annotations

import asyncio
from dataclasses import dataclass
from enum import Enum
from typing import AsyncIterator, Dict, List, Optional, Set

import structlog

logger = structlog.get_logger(__name__)


class StreamEventKind(str, Enum):
    SNAPSHOT = "snapshot"
    CHUNK = "chunk"
    RESET = "reset"


@dataclass(frozen=True)
class StreamEvent:
    chapter_id: str
    kind: StreamEventKind
    text: str = ""


_CLOSED = object()


class ChapterStream:
    def __init__(self, chapter_id: str):
        self.chapter_id = chapter_id
        self._chunks: List[str] = []
        self._subscribers: Set[asyncio.Queue] = set()
        self._closed = False

    @property
    def buffer(self) -> str:
        return "".join(self._chunks)

    @property
    def closed(self) -> bool:
        return self._closed

    @property
    def subscriber_count(self) -> int:
        return len(self._subscribers)

    def publish(self, chunk: str) -> None:
        if self._closed:
            raise RuntimeError(f"stream for chapter {self.chapter_id} is closed")
        if not chunk:
            return
        self._chunks.append(chunk)
        self._broadcast(StreamEvent(self.chapter_id, StreamEventKind.CHUNK, chunk))

    def reset(self) -> None:
        """Discards the buffer when a draft is retried from scratch."""
        if self._closed:
            return
        self._chunks.clear()
        self._broadcast(StreamEvent(self.chapter_id, StreamEventKind.RESET))

    def close(self) -> None:
        if self._closed:
            return
        self._closed = True
        for queue in list(self._subscribers):
            queue.put_nowait(_CLOSED)

    async def subscribe(self) -> AsyncIterator[StreamEvent]:
        queue: asyncio.Queue = asyncio.Queue()
        # No await between snapshot and registration: nothing can interleave.
        snapshot = self.buffer
        already_closed = self._closed
        if not already_closed:
            self._subscribers.add(queue)
        try:
            if snapshot:
                yield StreamEvent(self.chapter_id, StreamEventKind.SNAPSHOT, snapshot)
            if already_closed:
                return
            while True:
                item = await queue.get()
                if item is _CLOSED:
                    return
                yield item
        finally:
            self._subscribers.discard(queue)

    def _broadcast(self, event: StreamEvent) -> None:
        for queue in list(self._subscribers):
            queue.put_nowait(event)


class ChapterStreamHub:
    """Registry of per-chapter streams shared by pipelines and observers."""

    def __init__(self) -> None:
        self._streams: Dict[str, ChapterStream] = {}

    def channel(self, chapter_id: str) -> ChapterStream:
        """Returns the open stream for a chapter, starting a new one after a close."""
        stream = self._streams.get(chapter_id)
        if stream is None or stream.closed:
            stream = ChapterStream(chapter_id)
            self._streams[chapter_id] = stream
        return stream

    def get(self, chapter_id: str) -> Optional[ChapterStream]:
        return self._streams.get(chapter_id)

    def subscribe(self, chapter_id: str) -> AsyncIterator[StreamEvent]:
        """Attaches to the latest stream; a finished chapter yields its final buffer and ends."""
        stream = self._streams.get(chapter_id) or self.channel(chapter_id)
        return stream.subscribe()

    def close(self, chapter_id: str) -> None:
        stream = self._streams.get(chapter_id)
        if stream is not None:
            stream.close()

    def buffer(self, chapter_id: str) -> str:
        stream = self._streams.get(chapter_id)
        return stream.buffer if stream else ""

    def close_all(self) -> None:
        for stream in self._streams.values():
            stream.close()
        logger.debug("chapter_streams_closed", count=len(self._streams))
