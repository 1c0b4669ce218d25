"""Tests for the chat HTTP endpoints; agent turns run against a scripted LLM."""
from unittest.mock import AsyncMock, patch

import httpx
import pytest
import pytest_asyncio

import relaychat as rc
from app.main import app

from .conftest_utils import ScriptedLLM, text_chunk


@pytest_asyncio.fixture
async def api(relay_client, monkeypatch):
    monkeypatch.setattr(rc.llm, "stream_completion", ScriptedLLM([text_chunk("Hello from the agent")]))
    monkeypatch.setattr(rc.llm, "generate_chat_name", AsyncMock(return_value="Greeting"))
    transport = httpx.ASGITransport(app=app)
    async with httpx.AsyncClient(transport=transport, base_url="http://test") as client:
        yield client
    await rc.agent.wait_for_turns()
    await rc.agent.chats.drain_token_purges()


@pytest.mark.asyncio
async def test_create_chat_starts_agent_turn(api, relay_client):
    resp = await api.post("/api/chats", json={"message": "Hi there", "user": "alice"})

    assert resp.status_code == 201
    chat = resp.json()["chat"]
    assert chat["name"] == "Hi there"
    user_message, turn = chat["messages"]
    assert user_message["role"] == "user"
    assert user_message["user_name"] == "alice"
    assert turn["role"] == "agent"
    assert turn["status"] == "pending"
    assert turn["user_name"] == "AI Assistant"

    await rc.agent.wait_for_turns()
    resp = await api.get(f"/api/chats/{chat['id']}")
    assert resp.status_code == 200
    fetched = resp.json()["chat"]
    assert fetched["name"] == "Greeting"
    assert fetched["messages"][1]["status"] == "completed"
    assert fetched["messages"][1]["content"] == "Hello from the agent"


@pytest.mark.asyncio
async def test_create_chat_with_client_id(api):
    chat_id = "65a1b2c3d4e5f60718293a4b"
    resp = await api.post("/api/chats", json={"id": chat_id, "message": "Hi", "user": "bob"})
    assert resp.status_code == 201
    assert resp.json()["chat"]["id"] == chat_id

    again = await api.post("/api/chats", json={"id": chat_id, "message": "Hi", "user": "bob"})
    assert again.status_code == 409

    bad = await api.post("/api/chats", json={"id": "not-an-id", "message": "Hi", "user": "bob"})
    assert bad.status_code == 400


@pytest.mark.asyncio
async def test_create_chat_requires_message_and_user(api):
    resp = await api.post("/api/chats", json={"message": "", "user": "alice"})
    assert resp.status_code == 422
    resp = await api.post("/api/chats", json={"message": "Hi"})
    assert resp.status_code == 422


@pytest.mark.asyncio
async def test_long_first_message_is_cut_for_initial_name(api, relay_client):
    with patch.object(rc.llm, "generate_chat_name", new=AsyncMock(return_value=None)):
        resp = await api.post("/api/chats", json={"message": "x" * 200, "user": "alice"})
        await rc.agent.wait_for_turns()

    assert resp.json()["chat"]["name"] == "x" * 120


@pytest.mark.asyncio
async def test_add_message_to_chat(api):
    chat_id = (await api.post("/api/chats", json={"message": "Hi", "user": "alice"})).json()["chat"]["id"]
    await rc.agent.wait_for_turns()

    resp = await api.post(f"/api/chats/{chat_id}/messages", json={"message": "And again", "user": "carol"})

    assert resp.status_code == 201
    user_message, turn = resp.json()["messages"]
    assert user_message["content"] == "And again"
    assert user_message["user_name"] == "carol"
    assert turn["status"] == "pending"

    missing = await api.post("/api/chats/65a1b2c3d4e5f60718293a4b/messages", json={"message": "x", "user": "y"})
    assert missing.status_code == 404


@pytest.mark.asyncio
async def test_get_unknown_chat(api):
    assert (await api.get("/api/chats/65a1b2c3d4e5f60718293a4b")).status_code == 404
    assert (await api.get("/api/chats/garbage")).status_code == 404


@pytest.mark.asyncio
async def test_abort_message(api, relay_client):
    chat = await rc.agent.chats.create_chat(relay_client, "Abort test")
    turn = await rc.agent.chats.create_turn(relay_client, str(chat["_id"]))
    turn_id = str(turn["_id"])

    resp = await api.post(f"/api/messages/{turn_id}/abort")
    assert resp.status_code == 200
    assert resp.json() == {"success": True}
    stored = await rc.agent.chats.get_message(relay_client, turn_id)
    assert stored["status"] == "aborted"

    again = await api.post(f"/api/messages/{turn_id}/abort")
    assert again.status_code == 400
    assert again.json()["detail"] == "Only pending messages can be aborted"

    missing = await api.post("/api/messages/65a1b2c3d4e5f60718293a4b/abort")
    assert missing.status_code == 404
