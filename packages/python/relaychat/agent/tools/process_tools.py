"""
Tools that hand a todo list to the processing loop.
"""
from __future__ import annotations

import logging

import relaychat as rc

from .common import ToolHandler, ToolResult, reply, to_object_id, _db

logger = logging.getLogger(__name__)


async def _process_list(context: dict, params: dict, watch_mode: bool) -> ToolResult:
    list_id = params["list_id"]
    oid = to_object_id(list_id)
    todo_list = await _db(context).todo_lists.find_one({"_id": oid}) if oid else None
    if not todo_list:
        return reply(f"Error: Todo list with ID {list_id} not found")

    processing = rc.agent.todo_processing
    scope = rc.agent.cancellation.CancellationScope(parent=context.get("cancellation"))
    if not watch_mode:
        scope.cancel_after(rc.common.config.get_todo_process_timeout_secs())
    try:
        result = await processing.process_todo_list_items(context, list_id, watch_mode, scope)
    except Exception as e:
        logger.exception(f"Error processing todo list {list_id}")
        return reply(f"Error processing todo list: {e}")
    finally:
        scope.close()

    logger.info(
        f"Todo list {list_id} processing {result.status}: "
        f"{len(result.completed_tasks)} completed, {len(result.aborted_tasks)} aborted"
    )
    return reply(
        processing.format_processing_summary(todo_list["name"], result),
        entity_id=list_id,
        entity_name=todo_list["name"],
        entity_type="list",
    )


async def process_todo_list(context: dict, params: dict) -> ToolResult:
    return await _process_list(context, params, watch_mode=False)


async def watch_and_process_todo_list(context: dict, params: dict) -> ToolResult:
    return await _process_list(context, params, watch_mode=True)


def _same_list(current: dict, previous: dict) -> bool:
    return current.get("list_id") == previous.get("list_id")


HANDLERS: list[ToolHandler] = [
    ToolHandler(
        name="process_todo_list",
        description=(
            "Reads a todo list and automatically performs all the tasks in it until completion. Subscribes to "
            "the list to detect changes, and will abort tasks that are marked as done during processing."
        ),
        parameters={
            "type": "object",
            "properties": {"list_id": {"type": "string", "description": "The ID of the todo list to process"}},
            "required": ["list_id"],
        },
        thinking_text=lambda args: f"Processing todo list {args.get('list_id')}...",
        process=process_todo_list,
        check_if_similar=_same_list,
    ),
    ToolHandler(
        name="watch_and_process_todo_list",
        description=(
            "Watches a todo list for new items and processes them automatically. Continues running until the "
            "conversation ends, processing both existing and new tasks as they are added."
        ),
        parameters={
            "type": "object",
            "properties": {
                "list_id": {"type": "string", "description": "The ID of the todo list to watch and process"},
            },
            "required": ["list_id"],
        },
        thinking_text=lambda args: f"Watching and processing todo list {args.get('list_id')}...",
        process=watch_and_process_todo_list,
        check_if_similar=_same_list,
    ),
]
