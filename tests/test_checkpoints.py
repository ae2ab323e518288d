"""Tests for checkpoint delivery."""

from __future__ import annotations

import asyncio

import pytest

from editstream.ai.orchestration.checkpoints import CheckpointEvent, CheckpointPublisher


@pytest.mark.asyncio
async def test_publish_delivers_in_order_and_drops_duplicates() -> None:
    received: list[CheckpointEvent] = []
    publisher = CheckpointPublisher(received.append, coalesce=False)

    assert publisher.publish("chat", "a") is True
    assert publisher.publish("chat", "a") is False
    assert publisher.publish("chat", "ab") is True
    publisher.publish_end("chat", "ab")
    await publisher.flush("chat")

    assert [(event.type, event.transcript) for event in received] == [("chunk", "a"), ("chunk", "ab"), ("end", "ab")]
    assert [event.sequence for event in received] == [1, 2, 3]
    await publisher.aclose()


@pytest.mark.asyncio
async def test_slow_observer_never_blocks_publisher() -> None:
    release = asyncio.Event()
    received: list[str] = []

    async def slow_observer(event: CheckpointEvent) -> None:
        await release.wait()
        received.append(event.transcript or "")

    publisher = CheckpointPublisher(slow_observer)
    for end in range(1, 6):
        publisher.publish("chat", "abcde"[:end])

    assert received == []
    release.set()
    await publisher.flush()

    assert received[-1] == "abcde"
    assert all(later.startswith(earlier) for earlier, later in zip(received, received[1:]))
    await publisher.aclose()


@pytest.mark.asyncio
async def test_backlog_of_chunks_coalesces_to_latest() -> None:
    gate = asyncio.Event()
    received: list[CheckpointEvent] = []

    async def observer(event: CheckpointEvent) -> None:
        if event.transcript == "first":
            await gate.wait()
        received.append(event)

    publisher = CheckpointPublisher(observer)
    publisher.publish("chat", "first")
    await asyncio.sleep(0)
    for text in ("first-1", "first-12", "first-123"):
        publisher.publish("chat", text)
    publisher.publish_end("chat")
    gate.set()
    await publisher.flush("chat")

    assert [(event.type, event.transcript) for event in received] == [
        ("chunk", "first"),
        ("chunk", "first-123"),
        ("end", None),
    ]
    await publisher.aclose()


@pytest.mark.asyncio
async def test_conversations_are_independent() -> None:
    received: list[tuple[object, str | None]] = []
    publisher = CheckpointPublisher(lambda event: received.append((event.conversation_id, event.transcript)))

    publisher.publish("a", "x")
    publisher.publish("b", "x")
    await publisher.flush()

    assert sorted(received) == [("a", "x"), ("b", "x")]
    await publisher.aclose()


@pytest.mark.asyncio
async def test_observer_failure_is_logged_not_raised(caplog: pytest.LogCaptureFixture) -> None:
    def broken(event: CheckpointEvent) -> None:
        raise RuntimeError("observer down")

    publisher = CheckpointPublisher(broken)
    publisher.publish("chat", "x")
    publisher.publish_error("chat", "boom")
    await publisher.flush()

    assert "Checkpoint observer failed" in caplog.text
    await publisher.aclose()


@pytest.mark.asyncio
async def test_forget_allows_republishing_same_transcript() -> None:
    received: list[CheckpointEvent] = []
    publisher = CheckpointPublisher(received.append, coalesce=False)

    publisher.publish("chat", "same")
    publisher.forget("chat")
    assert publisher.publish("chat", "same") is True
    await publisher.flush()

    assert len(received) == 2
    await publisher.aclose()


@pytest.mark.asyncio
async def test_publisher_without_observer_is_a_no_op() -> None:
    publisher = CheckpointPublisher()

    assert publisher.publish("chat", "x") is True
    publisher.publish_error("chat", "e")
    await publisher.flush()
    await publisher.aclose()
