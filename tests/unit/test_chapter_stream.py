import asyncio

import pytest

from curriculum_synth.infrastructure.streaming.chapter_stream import (
    ChapterStreamHub,
    StreamEventKind,
)


async def _collect(iterator) -> list:
    return [event async for event in iterator]


def test_late_subscriber_gets_snapshot_then_live_chunks() -> None:
    async def _run() -> None:
        hub = ChapterStreamHub()
        stream = hub.channel("c1")
        stream.publish("<h2>Intro</h2>")
        stream.publish("<p>one</p>")

        consumer = asyncio.create_task(_collect(hub.subscribe("c1")))
        await asyncio.sleep(0)
        stream.publish("<p>two</p>")
        stream.close()
        events = await consumer

        assert [e.kind for e in events] == [StreamEventKind.SNAPSHOT, StreamEventKind.CHUNK]
        assert events[0].text == "<h2>Intro</h2><p>one</p>"
        assert events[1].text == "<p>two</p>"
        assert stream.subscriber_count == 0

    asyncio.run(_run())


def test_reset_clears_buffer_and_notifies_subscribers() -> None:
    async def _run() -> None:
        hub = ChapterStreamHub()
        stream = hub.channel("c1")
        consumer = asyncio.create_task(_collect(hub.subscribe("c1")))
        await asyncio.sleep(0)

        stream.publish("partial")
        stream.reset()
        stream.publish("fresh")
        stream.close()
        events = await consumer

        assert [e.kind for e in events] == [
            StreamEventKind.CHUNK,
            StreamEventKind.RESET,
            StreamEventKind.CHUNK,
        ]
        assert stream.buffer == "fresh"

    asyncio.run(_run())


def test_subscribing_to_finished_chapter_yields_final_buffer_and_ends() -> None:
    async def _run() -> None:
        hub = ChapterStreamHub()
        stream = hub.channel("c1")
        stream.publish("final text")
        stream.close()

        events = await _collect(hub.subscribe("c1"))

        assert len(events) == 1
        assert events[0].kind == StreamEventKind.SNAPSHOT
        assert events[0].text == "final text"

    asyncio.run(_run())


def test_cancelled_consumer_does_not_affect_producer() -> None:
    async def _run() -> None:
        hub = ChapterStreamHub()
        stream = hub.channel("c1")
        consumer = asyncio.create_task(_collect(hub.subscribe("c1")))
        await asyncio.sleep(0)
        assert stream.subscriber_count == 1

        consumer.cancel()
        with pytest.raises(asyncio.CancelledError):
            await consumer

        stream.publish("still going")
        assert stream.buffer == "still going"
        assert stream.subscriber_count == 0

    asyncio.run(_run())


def test_channel_after_close_starts_a_new_stream() -> None:
    hub = ChapterStreamHub()
    first = hub.channel("c1")
    first.publish("attempt one")
    first.close()

    second = hub.channel("c1")

    assert second is not first
    assert second.buffer == ""
    assert hub.buffer("c1") == ""
    with pytest.raises(RuntimeError):
        first.publish("late")
