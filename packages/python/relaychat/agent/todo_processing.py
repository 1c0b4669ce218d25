"""
Reactive processing of a todo list.

The loop follows the list's items through watch_rows and works through open
items in order_key order, running a nested agent turn per item. Items that were
seen open and then get marked done by someone else are reported as aborted and
left untouched. In watch mode the loop keeps waiting for new items until its
cancellation scope fires.
"""
from __future__ import annotations

import logging
import re
from dataclasses import dataclass, field
from datetime import datetime, UTC

import relaychat as rc

from .cancellation import CancellationBridge, CancellationScope, OperationCancelled

logger = logging.getLogger(__name__)

ITEM_SORT = [("order_key", 1), ("_id", 1)]

# Tools a nested task turn may not use
NESTED_TURN_EXCLUDED_TOOLS: list[str | re.Pattern] = [
    re.compile("todo"),
    "rename_chat",
    "rename_chat_to",
    "pin_chat",
]

TASK_INSTRUCTION = "Complete the following task and report the result: {task}"


class TaskFailed(Exception):
    pass


@dataclass
class TodoProcessingResult:
    status: str = "completed"
    completed_tasks: list[str] = field(default_factory=list)
    aborted_tasks: list[str] = field(default_factory=list)


def format_processing_summary(list_name: str, result: TodoProcessingResult) -> str:
    if result.status == "aborted":
        message = f'Processing of todo list "{list_name}" was aborted.'
    else:
        message = f'Completed processing todo list "{list_name}".'

    if result.completed_tasks:
        message += f"\n\nCompleted {len(result.completed_tasks)} tasks:"
        for task in result.completed_tasks:
            message += f'\n- "{task}"'
    else:
        message += "\n\nNo tasks were completed."

    if result.aborted_tasks:
        message += (
            f"\n\n{len(result.aborted_tasks)} tasks were already completed or marked as done during processing:"
        )
        for task in result.aborted_tasks:
            message += f'\n- "{task}"'
    return message


async def run_task_turn(context: dict, task: str, cancellation: CancellationScope):
    """Run a nested agent turn in the chat that works on one task."""
    client = context["client"]
    chat_id = context["chat_id"]
    turn = await rc.agent.chats.create_turn(client, chat_id)
    turn_id = str(turn["_id"])
    bridge = CancellationBridge(client, turn_id, parent=cancellation).start()
    try:
        return await rc.agent.agent_loop.run_turn(
            client,
            chat_id,
            turn_id,
            history=[{"role": "user", "content": TASK_INSTRUCTION.format(task=task)}],
            cancellation=bridge,
            exclude_tools=NESTED_TURN_EXCLUDED_TOOLS,
            db_url=context.get("db_url"),
            model=context.get("model"),
        )
    finally:
        await bridge.aclose()


def _note_external_completions(rows: list[dict], processed: set, seen_open: set, result: TodoProcessingResult) -> None:
    for row in rows:
        item_id = str(row["_id"])
        if not row.get("done"):
            seen_open.add(item_id)
        elif item_id not in processed:
            processed.add(item_id)
            if item_id in seen_open:
                result.aborted_tasks.append(row["task"])


def _next_eligible(rows: list[dict], processed: set, in_progress: set) -> dict | None:
    for row in rows:
        item_id = str(row["_id"])
        if item_id in processed or item_id in in_progress or row.get("done"):
            continue
        return row
    return None


async def _process_item(
    context: dict,
    list_id: str,
    item: dict,
    cancellation: CancellationScope,
    processed: set,
    in_progress: set,
    result: TodoProcessingResult,
) -> None:
    client = context["client"]
    chat_id = context["chat_id"]
    turn_id = context["turn_id"]
    db = rc.common.get_async_db(client)
    item_id = str(item["_id"])
    task = item["task"]

    in_progress.add(item_id)
    try:
        await rc.agent.chats.set_thinking_text(client, turn_id, f'Processing task: "{task}"...')

        current = await db.todo_items.find_one({"_id": item["_id"]})
        if current is None or current.get("done"):
            result.aborted_tasks.append(task)
            return

        logger.info(f"Processing task {item_id}: {task}")
        try:
            outcome = await run_task_turn(context, task, cancellation)
            if cancellation.cancelled:
                return
            if outcome.status == "aborted":
                raise TaskFailed("Task turn was aborted")
            if outcome.error:
                raise TaskFailed(outcome.error)

            await db.todo_items.update_one(
                {"_id": item["_id"]},
                {"$set": {"done": True, "updated_at": datetime.now(UTC)}},
            )
            todo_list = await db.todo_lists.find_one({"_id": rc.agent.tools.common.to_object_id(list_id)})
            list_name = todo_list["name"] if todo_list else "unknown"
            await rc.agent.action_log.record_action(
                client,
                chat_id,
                "complete_item",
                item_id,
                task,
                [{"type": "belongs_to_list", "id": list_id, "name": list_name}],
            )
            result.completed_tasks.append(task)
            await rc.agent.chats.post_agent_notice(client, chat_id, f'✓ Completed task: "{task}" in list "{list_name}"')
        except Exception as e:
            logger.exception(f"Error processing task {item_id}")
            await db.todo_items.update_one(
                {"_id": item["_id"]},
                {"$set": {"task": f"{task} [ERROR: {e}]", "updated_at": datetime.now(UTC)}},
            )
            await rc.agent.chats.post_agent_notice(client, chat_id, f'❌ Failed to process task: "{task}" - {e}')
    finally:
        in_progress.discard(item_id)
        processed.add(item_id)
        await rc.agent.chats.set_thinking_text(client, turn_id, "")


async def process_todo_list_items(
    context: dict,
    list_id: str,
    watch_mode: bool,
    cancellation: CancellationScope,
) -> TodoProcessingResult:
    """
    Work through the open items of a list.

    Args:
        context: Tool context of the enclosing turn (client, chat_id, turn_id, ...)
        list_id: The todo list to process
        watch_mode: Keep waiting for new items instead of finishing when none are left
        cancellation: Scope ending the loop; it finishes "aborted" when this fires

    Returns:
        TodoProcessingResult: status plus the completed and aborted task texts
    """
    client = context["client"]
    result = TodoProcessingResult()
    processed: set[str] = set()
    in_progress: set[str] = set()
    seen_open: set[str] = set()

    rows_iter = rc.live.watch_rows(client, "todo_items", {"list_id": list_id}, sort=ITEM_SORT)
    try:
        while True:
            try:
                rows = await cancellation.race(anext(rows_iter))
            except OperationCancelled:
                result.status = "aborted"
                return result

            while True:
                _note_external_completions(rows, processed, seen_open, result)
                item = _next_eligible(rows, processed, in_progress)
                if item is None:
                    break
                await _process_item(context, list_id, item, cancellation, processed, in_progress, result)
                if cancellation.cancelled:
                    result.status = "aborted"
                    return result
                rows = await rc.agent.tools.todo_tools.get_list_items(client, list_id)

            if not watch_mode:
                result.status = "completed"
                return result
            await rc.agent.chats.set_thinking_text(client, context["turn_id"], "Watching for changes...")
    finally:
        await rows_iter.aclose()
