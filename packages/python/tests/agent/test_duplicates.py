"""Tests for the repeated-mutation guard."""
import json
from datetime import datetime, timedelta, UTC

import pytest

import relaychat as rc
from relaychat.agent.duplicates import describe_age, levenshtein
from relaychat.agent.tool_calls import ToolCall

from ..conftest_utils import new_chat_with_turn, tool_context


@pytest.mark.parametrize("a,b,expected", [
    ("", "", 0),
    ("milk", "", 4),
    ("Buy milk", "Buy milk", 0),
    ("Buy milk", "Buy milks", 1),
    ("kitten", "sitting", 3),
])
def test_levenshtein(a, b, expected):
    assert levenshtein(a, b) == expected


def test_describe_age():
    now = datetime(2024, 5, 1, 12, 0, tzinfo=UTC)
    assert describe_age(now - timedelta(seconds=20), now) == "just now"
    assert describe_age(now - timedelta(minutes=5), now) == "5 minute(s) ago"
    assert describe_age(now - timedelta(hours=3, minutes=10), now) == "3 hour(s) ago"
    # naive values are read as UTC
    assert describe_age((now - timedelta(minutes=2)).replace(tzinfo=None), now) == "2 minute(s) ago"


def _call(name, args, call_id="call_1"):
    return ToolCall(id=call_id, name=name, arguments=json.dumps(args))


async def _setup(relay_client):
    chat_id, turn_id, _ = await new_chat_with_turn(relay_client)
    context = tool_context(relay_client, chat_id, turn_id)
    created = await rc.agent.tool_registry.process_tool_call(context, _call("create_todo_list", {"name": "Groceries"}))
    return context, created.entity_id


@pytest.mark.asyncio
async def test_repeated_item_creation_is_held_back(relay_client, test_db):
    context, list_id = await _setup(relay_client)
    registry = rc.agent.tool_registry

    first = await registry.process_tool_call(context, _call("create_todo_item", {"list_id": list_id, "task": "Buy milk"}))
    assert "Created new todo item" in first.system_message

    # A later turn repeats the call
    context = tool_context(relay_client, context["chat_id"], context["turn_id"])
    second = await registry.process_tool_call(context, _call("create_todo_item", {"list_id": list_id, "task": "buy milk"}))
    assert second.requires_reentry
    assert second.system_message.startswith("WARNING: You are attempting to call create_todo_item")
    assert "just now" in second.system_message
    assert "Buy milk" in second.system_message
    assert await test_db.todo_items.count_documents({"list_id": list_id}) == 1


@pytest.mark.asyncio
async def test_different_task_is_not_a_duplicate(relay_client, test_db):
    context, list_id = await _setup(relay_client)
    registry = rc.agent.tool_registry

    await registry.process_tool_call(context, _call("create_todo_item", {"list_id": list_id, "task": "Buy milk"}))
    result = await registry.process_tool_call(context, _call("create_todo_item", {"list_id": list_id, "task": "Buy bread"}))

    assert not result.system_message.startswith("WARNING")
    assert await test_db.todo_items.count_documents({"list_id": list_id}) == 2


@pytest.mark.asyncio
async def test_repeat_after_warning_in_same_turn_goes_through(relay_client, test_db):
    context, list_id = await _setup(relay_client)
    registry = rc.agent.tool_registry
    args = {"list_id": list_id, "task": "Buy milk"}

    await registry.process_tool_call(context, _call("create_todo_item", args))
    warned = await registry.process_tool_call(context, _call("create_todo_item", args))
    assert warned.system_message.startswith("WARNING")

    confirmed = await registry.process_tool_call(context, _call("create_todo_item", args))
    assert confirmed.system_message.startswith("Created new todo item")
    assert await test_db.todo_items.count_documents({"list_id": list_id}) == 2


@pytest.mark.asyncio
async def test_read_only_tools_are_never_held_back(relay_client):
    context, _ = await _setup(relay_client)
    registry = rc.agent.tool_registry

    for _ in range(2):
        result = await registry.process_tool_call(context, _call("list_todo_lists", {}))
        assert result.system_message.startswith("Found 1 todo list(s)")


@pytest.mark.asyncio
async def test_only_most_recent_call_is_compared(relay_client, test_db):
    context, list_id = await _setup(relay_client)
    registry = rc.agent.tool_registry

    await registry.process_tool_call(context, _call("create_todo_item", {"list_id": list_id, "task": "Buy milk"}))
    await registry.process_tool_call(context, _call("create_todo_item", {"list_id": list_id, "task": "Walk the dog"}))
    result = await registry.process_tool_call(context, _call("create_todo_item", {"list_id": list_id, "task": "Buy milk"}))

    assert result.system_message.startswith("Created new todo item")
    assert await test_db.todo_items.count_documents({"list_id": list_id}) == 3
