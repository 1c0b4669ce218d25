"""Tests for the todo list processing loop."""
import asyncio
from unittest.mock import patch

import pytest
import pytest_asyncio

import relaychat as rc
from relaychat.agent.agent_loop import TurnOutcome
from relaychat.agent.cancellation import CancellationScope
from relaychat.agent.todo_processing import (
    TodoProcessingResult,
    format_processing_summary,
    process_todo_list_items,
)
from relaychat.agent.tools import process_tools, todo_tools

from ..conftest_utils import ScriptedLLM, new_chat_with_turn, text_chunk, tool_context


@pytest_asyncio.fixture
async def context(relay_client):
    chat_id, turn_id, _ = await new_chat_with_turn(relay_client, "Process my list")
    return tool_context(relay_client, chat_id, turn_id)


async def _list_with_items(context, *tasks, name="Chores"):
    list_id = (await todo_tools.create_todo_list(context, {"name": name})).entity_id
    item_ids = []
    for task in tasks:
        item_ids.append((await todo_tools.create_todo_item(context, {"list_id": list_id, "task": task})).entity_id)
    return list_id, item_ids


async def _items(context, list_id):
    return await todo_tools.get_list_items(context["client"], list_id)


async def _notices(context):
    messages = await rc.agent.chats.list_messages(context["client"], context["chat_id"])
    return [m["content"] for m in messages if m["role"] == "agent" and m["status"] == "completed" and m["content"]]


@pytest.mark.asyncio
async def test_processes_open_items_with_nested_turns(context, monkeypatch):
    llm = ScriptedLLM([text_chunk("Done.")])
    monkeypatch.setattr(rc.llm, "stream_completion", llm)
    list_id, _ = await _list_with_items(context, "Wash car", "Water plants")

    result = await process_todo_list_items(context, list_id, watch_mode=False, cancellation=CancellationScope())

    assert result.status == "completed"
    assert result.completed_tasks == ["Wash car", "Water plants"]
    assert result.aborted_tasks == []
    assert all(i["done"] for i in await _items(context, list_id))

    # Nested turns answer the task instruction without todo or chat-management tools
    assert llm.calls[0]["messages"][-2] == {
        "role": "user",
        "content": "Complete the following task and report the result: Wash car",
    }
    tool_names = {t["function"]["name"] for t in llm.calls[0]["tools"]}
    assert not any("todo" in n for n in tool_names)
    assert "rename_chat" not in tool_names

    notices = await _notices(context)
    assert '✓ Completed task: "Wash car" in list "Chores"' in notices
    assert '✓ Completed task: "Water plants" in list "Chores"' in notices
    assert "Done." in notices

    actions = await rc.agent.action_log.get_recent_actions(context["client"], context["chat_id"])
    assert actions[0]["action_type"] == "complete_item"
    assert actions[0]["metadata"]["relationships"][0]["name"] == "Chores"
    await rc.agent.chats.drain_token_purges()


@pytest.mark.asyncio
async def test_item_completed_elsewhere_is_reported_as_aborted(context, test_db):
    list_id, (first_id, second_id) = await _list_with_items(context, "First", "Second")

    async def fake_task_turn(ctx, task, cancellation):
        # Someone else ticks off the second item while the first is worked on
        await test_db.todo_items.update_one({"task": "Second"}, {"$set": {"done": True}})
        return TurnOutcome(status="completed", content="ok")

    with patch("relaychat.agent.todo_processing.run_task_turn", side_effect=fake_task_turn) as m:
        result = await process_todo_list_items(context, list_id, watch_mode=False, cancellation=CancellationScope())

    assert m.call_count == 1
    assert result.completed_tasks == ["First"]
    assert result.aborted_tasks == ["Second"]
    second = await test_db.todo_items.find_one({"task": "Second"})
    assert second is not None


@pytest.mark.asyncio
async def test_failed_task_is_marked_with_error(context, test_db):
    list_id, (item_id,) = await _list_with_items(context, "Fix printer")

    async def failing_turn(ctx, task, cancellation):
        return TurnOutcome(status="completed", content="", error="model unavailable")

    with patch("relaychat.agent.todo_processing.run_task_turn", side_effect=failing_turn):
        result = await process_todo_list_items(context, list_id, watch_mode=False, cancellation=CancellationScope())

    assert result.status == "completed"
    assert result.completed_tasks == []
    items = await _items(context, list_id)
    assert items[0]["task"] == "Fix printer [ERROR: model unavailable]"
    assert items[0]["done"] is False
    assert '❌ Failed to process task: "Fix printer" - model unavailable' in await _notices(context)
    turn = await rc.agent.chats.get_message(context["client"], context["turn_id"])
    assert turn["thinking_text"] == ""


@pytest.mark.asyncio
async def test_watch_mode_picks_up_new_items_until_cancelled(context):
    list_id, _ = await _list_with_items(context, "Existing")
    seen = []

    async def fake_task_turn(ctx, task, cancellation):
        seen.append(task)
        return TurnOutcome(status="completed", content="ok")

    scope = CancellationScope()

    async def add_item_then_stop():
        await asyncio.sleep(0.05)
        await todo_tools.create_todo_item(context, {"list_id": list_id, "task": "Added later"})
        for _ in range(200):
            await asyncio.sleep(0.01)
            turn = await rc.agent.chats.get_message(context["client"], context["turn_id"])
            if "Added later" in seen and turn["thinking_text"] == "Watching for changes...":
                break
        scope.cancel("aborted")

    with patch("relaychat.agent.todo_processing.run_task_turn", side_effect=fake_task_turn):
        driver = asyncio.create_task(add_item_then_stop())
        result = await asyncio.wait_for(
            process_todo_list_items(context, list_id, watch_mode=True, cancellation=scope), timeout=5
        )
        await driver

    assert result.status == "aborted"
    assert seen == ["Existing", "Added later"]
    assert result.completed_tasks == ["Existing", "Added later"]
    turn = await rc.agent.chats.get_message(context["client"], context["turn_id"])
    assert turn["thinking_text"] == "Watching for changes..."


@pytest.mark.asyncio
async def test_process_tool_reports_missing_list(context):
    result = await process_tools.process_todo_list(context, {"list_id": "0" * 24})
    assert result.system_message == f"Error: Todo list with ID {'0' * 24} not found"


@pytest.mark.asyncio
async def test_process_tool_times_out(context, monkeypatch):
    monkeypatch.setenv("TODO_PROCESS_TIMEOUT_SECS", "0.05")
    list_id, (item_id,) = await _list_with_items(context, "Slow task")

    async def slow_turn(ctx, task, cancellation):
        await cancellation.wait()
        return TurnOutcome(status="aborted", content="")

    with patch("relaychat.agent.todo_processing.run_task_turn", side_effect=slow_turn):
        result = await process_tools.process_todo_list(context, {"list_id": list_id})

    assert result.system_message.startswith('Processing of todo list "Chores" was aborted.')
    assert "No tasks were completed." in result.system_message
    items = await _items(context, list_id)
    assert items[0]["task"] == "Slow task"


def test_format_processing_summary():
    result = TodoProcessingResult(status="completed", completed_tasks=["A", "B"], aborted_tasks=["C"])
    assert format_processing_summary("Chores", result) == (
        'Completed processing todo list "Chores".\n\n'
        'Completed 2 tasks:\n- "A"\n- "B"\n\n'
        '1 tasks were already completed or marked as done during processing:\n- "C"'
    )
