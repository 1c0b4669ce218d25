"""Tests for tool definitions and dispatch."""
import re
from unittest.mock import AsyncMock, patch

import pytest

import relaychat as rc
from relaychat.agent.tool_calls import ToolCall
from relaychat.agent.tool_registry import (
    READ_ONLY_TOOLS,
    TOOL_HANDLERS,
    get_tool_definitions,
    is_excluded,
    process_tool_call,
)

from ..conftest_utils import new_chat_with_turn, tool_context


def test_definitions_use_function_format():
    definitions = get_tool_definitions()
    assert len(definitions) == len(TOOL_HANDLERS)
    for d in definitions:
        assert d["type"] == "function"
        assert d["function"]["parameters"]["type"] == "object"
        assert d["function"]["description"]


def test_read_only_tools_have_no_similarity_predicate():
    for name in READ_ONLY_TOOLS:
        assert TOOL_HANDLERS[name].check_if_similar is None


@pytest.mark.parametrize("name,exclude,expected", [
    ("pin_chat", None, False),
    ("pin_chat", ["pin_chat"], True),
    ("pin_chat", ["pin"], False),
    ("create_todo_item", [re.compile("todo")], True),
    ("read_file", [re.compile("todo"), "rename_chat"], False),
])
def test_is_excluded(name, exclude, expected):
    assert is_excluded(name, exclude) is expected


@pytest.mark.asyncio
async def test_schema_violation_is_reported_inline(relay_client):
    chat_id, turn_id, _ = await new_chat_with_turn(relay_client)
    context = tool_context(relay_client, chat_id, turn_id)

    result = await process_tool_call(context, ToolCall(id="c", name="pin_chat", arguments='{"pinned": "yes"}'))
    assert result.content.startswith("\n\nError processing pin_chat: Invalid arguments:")

    result = await process_tool_call(context, ToolCall(id="c", name="create_todo_list", arguments="[1, 2]"))
    assert result.content == "\n\nError processing create_todo_list: Arguments must be a JSON object"


@pytest.mark.asyncio
async def test_successful_call_is_recorded(relay_client, test_db):
    chat_id, turn_id, _ = await new_chat_with_turn(relay_client)
    context = tool_context(relay_client, chat_id, turn_id)

    result = await process_tool_call(
        context, ToolCall(id="c", name="create_todo_list", arguments='{"name": "Errands"}')
    )

    assert result.requires_reentry
    assert result.entity_type == "list"
    last = await rc.agent.action_log.find_last_tool_call(relay_client, chat_id, "create_todo_list")
    assert last["args"] == {"name": "Errands"}
    assert last["result"].startswith('Created new todo list: "Errands"')
    assert last["entity_id"] == result.entity_id
    stored = await rc.agent.action_log.fetch_system_messages(relay_client, chat_id)
    assert [m["content"][:34] for m in stored] == ["TOOL EXECUTION [create_todo_list]:"]
    turn = await rc.agent.chats.get_message(relay_client, turn_id)
    assert turn["thinking_text"] == ""


@pytest.mark.asyncio
async def test_handler_exception_is_recorded_as_tool_error(relay_client):
    chat_id, turn_id, _ = await new_chat_with_turn(relay_client)
    context = tool_context(relay_client, chat_id, turn_id)
    handler = TOOL_HANDLERS["pin_chat"]

    with patch.object(handler, "process", new=AsyncMock(side_effect=ValueError("disk full"))):
        result = await process_tool_call(context, ToolCall(id="c", name="pin_chat", arguments='{"pinned": true}'))

    assert result.content == "\n\nError processing pin_chat: disk full"
    stored = await rc.agent.action_log.fetch_system_messages(relay_client, chat_id)
    assert stored[-1]["content"] == "TOOL ERROR [pin_chat]: disk full"
    last = await rc.agent.action_log.find_last_tool_call(relay_client, chat_id, "pin_chat")
    assert last["result"] == "Error: disk full"
    assert last["entity_type"] == "error"


@pytest.mark.asyncio
async def test_pin_chat(relay_client):
    chat_id, turn_id, _ = await new_chat_with_turn(relay_client)
    context = tool_context(relay_client, chat_id, turn_id)

    result = await process_tool_call(context, ToolCall(id="c", name="pin_chat", arguments='{"pinned": true}'))

    assert result.content == "\n\nI've pinned this chat."
    assert not result.requires_reentry
    chat = await rc.agent.chats.get_chat(relay_client, chat_id)
    assert chat["pinned"] is True


@pytest.mark.asyncio
async def test_rename_chat_uses_generated_name(relay_client):
    chat_id, turn_id, _ = await new_chat_with_turn(relay_client)
    context = tool_context(relay_client, chat_id, turn_id)

    with patch("relaychat.llm.generate_chat_name", new_callable=AsyncMock, return_value="Trip planning") as generate:
        result = await process_tool_call(
            context, ToolCall(id="c", name="rename_chat", arguments='{"context": "planning a trip to Rome"}')
        )

    generate.assert_awaited_once_with("planning a trip to Rome")
    assert result.content == '\n\nI\'ve renamed this chat to: "Trip planning"'
    chat = await rc.agent.chats.get_chat(relay_client, chat_id)
    assert chat["name"] == "Trip planning"


@pytest.mark.asyncio
async def test_rename_chat_failure(relay_client):
    chat_id, turn_id, _ = await new_chat_with_turn(relay_client)
    context = tool_context(relay_client, chat_id, turn_id)

    with patch("relaychat.llm.generate_chat_name", new_callable=AsyncMock, return_value=None):
        result = await process_tool_call(context, ToolCall(id="c", name="rename_chat", arguments='{"context": "x"}'))

    assert result.content == "\n\nFailed to rename chat."
