"""Tests for buffered token persistence."""
import pytest

import relaychat as rc
from relaychat.agent.token_sink import TokenSink


class FakeClock:
    def __init__(self):
        self.now = 0.0

    def __call__(self):
        return self.now


@pytest.mark.asyncio
async def test_buffers_until_size_threshold(relay_client):
    clock = FakeClock()
    sink = TokenSink(relay_client, "turn-1", flush_interval_ms=60, max_chars=100, clock=clock)

    await sink.absorb("a" * 60)
    assert await rc.agent.chats.list_tokens(relay_client, "turn-1") == []

    await sink.absorb("b" * 50)
    rows = await rc.agent.chats.list_tokens(relay_client, "turn-1")
    assert len(rows) == 1
    assert rows[0]["token_text"] == "a" * 60 + "b" * 50
    assert rows[0]["token_number"] == 0
    assert sink.buffer == ""


@pytest.mark.asyncio
async def test_flushes_when_interval_elapsed(relay_client):
    clock = FakeClock()
    sink = TokenSink(relay_client, "turn-1", flush_interval_ms=60, max_chars=100, clock=clock)

    await sink.absorb("Hel")
    clock.now = 0.03
    await sink.absorb("lo")
    assert await rc.agent.chats.list_tokens(relay_client, "turn-1") == []

    clock.now = 0.061
    await sink.absorb(" world")
    rows = await rc.agent.chats.list_tokens(relay_client, "turn-1")
    assert [r["token_text"] for r in rows] == ["Hello world"]


@pytest.mark.asyncio
async def test_flush_writes_remainder_with_increasing_numbers(relay_client):
    clock = FakeClock()
    sink = TokenSink(relay_client, "turn-1", flush_interval_ms=60, max_chars=5, clock=clock)

    await sink.absorb("abcdef")
    await sink.absorb("gh")
    await sink.flush()
    await sink.flush()

    rows = await rc.agent.chats.list_tokens(relay_client, "turn-1")
    assert [r["token_number"] for r in rows] == [0, 1]
    assert "".join(r["token_text"] for r in rows) == "abcdefgh"
    assert sink.token_number == 2


@pytest.mark.asyncio
async def test_empty_text_is_ignored(relay_client):
    sink = TokenSink(relay_client, "turn-1", flush_interval_ms=0, max_chars=0)
    await sink.absorb("")
    await sink.flush()
    assert await rc.agent.chats.list_tokens(relay_client, "turn-1") == []


def test_defaults_come_from_environment(monkeypatch):
    monkeypatch.setenv("TOKEN_FLUSH_INTERVAL_MS", "25")
    monkeypatch.setenv("TOKEN_FLUSH_MAX_CHARS", "7")
    sink = TokenSink(client=None, turn_id="turn-1")
    assert sink.flush_interval_ms == 25.0
    assert sink.max_chars == 7
