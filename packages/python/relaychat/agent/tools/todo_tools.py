"""
Todo list and item tools for the agent.

Todo lists are shared across chats; every mutation is also recorded in the
calling chat's action log so later turns can describe recent activity.
"""
from __future__ import annotations

import json
import logging
import time
from datetime import datetime, UTC

import relaychat as rc

from .common import ToolHandler, ToolResult, _db, json_default, reply, to_object_id

logger = logging.getLogger(__name__)

SIMILAR_TASK_MAX_DISTANCE = 3


def _new_order_key() -> str:
    return f"{time.time_ns():020d}"


async def _get_list(context: dict, list_id: str) -> dict | None:
    oid = to_object_id(list_id)
    if oid is None:
        return None
    return await _db(context).todo_lists.find_one({"_id": oid})


async def _get_item(context: dict, item_id: str) -> dict | None:
    oid = to_object_id(item_id)
    if oid is None:
        return None
    return await _db(context).todo_items.find_one({"_id": oid})


async def _list_name(context: dict, list_id: str) -> str:
    todo_list = await _get_list(context, list_id)
    return todo_list["name"] if todo_list else "unknown"


def _belongs_to(list_id: str, list_name: str) -> list[dict]:
    return [{"type": "belongs_to_list", "id": list_id, "name": list_name}]


async def _record(context: dict, action: str, entity_id: str, name: str, relationships=None, metadata=None) -> None:
    await rc.agent.action_log.record_action(
        context["client"], context["chat_id"], action, entity_id, name, relationships, metadata
    )


async def list_todo_lists(context: dict, params: dict) -> ToolResult:
    cursor = _db(context).todo_lists.find({}).sort([("created_at", -1), ("_id", -1)])
    lists = await cursor.to_list(length=None)
    if not lists:
        return reply("No todo lists found. You can create a new one with the create_todo_list tool.")
    formatted = [{"id": str(t["_id"]), "name": t["name"], "created_at": t["created_at"]} for t in lists]
    return reply(f"Found {len(lists)} todo list(s):\n{json.dumps(formatted, indent=2, default=json_default)}")


async def get_todo_items(context: dict, params: dict) -> ToolResult:
    list_id = params["list_id"]
    if not await _get_list(context, list_id):
        return reply(f"Error fetching todo items: Todo list with ID {list_id} not found")
    items = await get_list_items(context["client"], list_id)
    if not items:
        return reply("No todo items found in this list. You can create a new one with the create_todo_item tool.")
    formatted = [{"id": str(i["_id"]), "task": i["task"], "done": i["done"]} for i in items]
    return reply(f"Found {len(items)} todo item(s) in list {list_id}:\n{json.dumps(formatted, indent=2)}")


async def get_list_items(client, list_id: str) -> list[dict]:
    cursor = rc.common.get_async_db(client).todo_items.find({"list_id": list_id}).sort([("order_key", 1), ("_id", 1)])
    return await cursor.to_list(length=None)


async def create_todo_list(context: dict, params: dict) -> ToolResult:
    name = params["name"]
    now = datetime.now(UTC)
    result = await _db(context).todo_lists.insert_one({"name": name, "created_at": now, "updated_at": now})
    list_id = str(result.inserted_id)
    await _record(context, "create_list", list_id, name)
    return reply(
        f'Created new todo list: "{name}" with ID: {list_id}',
        entity_id=list_id,
        entity_name=name,
        entity_type="list",
    )


async def rename_todo_list(context: dict, params: dict) -> ToolResult:
    list_id = params["list_id"]
    name = params["name"]
    if not await _get_list(context, list_id):
        return reply(f"Error renaming todo list: Todo list with ID {list_id} not found")
    await _db(context).todo_lists.update_one(
        {"_id": to_object_id(list_id)},
        {"$set": {"name": name, "updated_at": datetime.now(UTC)}},
    )
    await _record(context, "update_list", list_id, name)
    return reply(f'Renamed todo list {list_id} to "{name}"', entity_id=list_id, entity_name=name, entity_type="list")


async def delete_todo_list(context: dict, params: dict) -> ToolResult:
    list_id = params["list_id"]
    todo_list = await _get_list(context, list_id)
    if not todo_list:
        return reply(f"Error deleting todo list: Todo list with ID {list_id} not found")
    db = _db(context)
    await db.todo_items.delete_many({"list_id": list_id})
    await db.todo_lists.delete_one({"_id": todo_list["_id"]})
    await _record(context, "delete_list", list_id, todo_list["name"])
    return reply(
        f'Deleted todo list "{todo_list["name"]}" (ID: {list_id})',
        entity_id=list_id,
        entity_name=todo_list["name"],
        entity_type="list",
    )


async def create_todo_item(context: dict, params: dict) -> ToolResult:
    list_id = (params.get("list_id") or "").strip()
    task = params["task"]
    if not list_id:
        return reply("Error creating todo item: A valid list_id is required to create a todo item")
    todo_list = await _get_list(context, list_id)
    if not todo_list:
        return reply(
            f"Error creating todo item: Todo list with ID {list_id} not found. "
            "Use the list_todo_lists tool to get valid list IDs."
        )
    now = datetime.now(UTC)
    result = await _db(context).todo_items.insert_one({
        "list_id": list_id,
        "task": task,
        "done": False,
        "order_key": _new_order_key(),
        "created_at": now,
        "updated_at": now,
    })
    item_id = str(result.inserted_id)
    await _record(context, "create_item", item_id, task, _belongs_to(list_id, todo_list["name"]))
    return reply(
        f'Created new todo item: "{task}" with ID: {item_id} in list "{todo_list["name"]}"',
        entity_id=item_id,
        entity_name=task,
        entity_type="item",
    )


async def update_todo_item(context: dict, params: dict) -> ToolResult:
    item_id = params["item_id"]
    task = params.get("task")
    done = params.get("done")
    item = await _get_item(context, item_id)
    if not item:
        return reply(f"Error updating todo item: Todo item with ID {item_id} not found")

    if done is not None:
        update_type = "marked as done" if done else "marked as not done"
    elif task:
        update_type = "task text updated"
    else:
        update_type = "updated"

    fields = {"updated_at": datetime.now(UTC)}
    if task is not None:
        fields["task"] = task
    if done is not None:
        fields["done"] = done
    await _db(context).todo_items.update_one({"_id": item["_id"]}, {"$set": fields})

    list_name = await _list_name(context, item["list_id"])
    await _record(
        context,
        "update_item",
        item_id,
        task if task is not None else item["task"],
        _belongs_to(item["list_id"], list_name),
        {"update_type": update_type},
    )
    return reply(
        f'Updated todo item "{item["task"]}" (ID: {item_id}), {update_type}',
        entity_id=item_id,
        entity_name=item["task"],
        entity_type="item",
    )


async def delete_todo_item(context: dict, params: dict) -> ToolResult:
    item_id = params["item_id"]
    item = await _get_item(context, item_id)
    if not item:
        return reply(f"Error deleting todo item: Todo item with ID {item_id} not found")
    await _db(context).todo_items.delete_one({"_id": item["_id"]})
    list_name = await _list_name(context, item["list_id"])
    await _record(context, "delete_item", item_id, item["task"], _belongs_to(item["list_id"], list_name))
    return reply(
        f'Deleted todo item "{item["task"]}" (ID: {item_id}) from list "{list_name}"',
        entity_id=item_id,
        entity_name=item["task"],
        entity_type="item",
    )


async def get_todo_state(context: dict, params: dict) -> ToolResult:
    db = _db(context)
    lists = await db.todo_lists.find({}).sort([("created_at", -1), ("_id", -1)]).to_list(length=None)
    if not lists:
        return reply("No todo lists found. You can create a new one with the create_todo_list tool.")
    lines = []
    total_items = 0
    for todo_list in lists:
        list_id = str(todo_list["_id"])
        items = await get_list_items(context["client"], list_id)
        total_items += len(items)
        lines.append(f'List: "{todo_list["name"]}" (ID: {list_id})')
        if not items:
            lines.append("  No items in this list.")
        for item in items:
            lines.append(f'  {"[x]" if item["done"] else "[ ]"} "{item["task"]}" (ID: {item["_id"]})')
        lines.append("")
    header = f"Found {len(lists)} todo list(s) with a total of {total_items} item(s):\n\n"
    return reply(header + "\n".join(lines))


def _same_name(current: dict, previous: dict) -> bool:
    a, b = current.get("name"), previous.get("name")
    return bool(a and b and a.lower() == b.lower())


def similar_create_item(current: dict, previous: dict) -> bool:
    if current.get("list_id") != previous.get("list_id"):
        return False
    a, b = current.get("task"), previous.get("task")
    if not a or not b:
        return False
    if a.lower() == b.lower():
        return True
    return rc.agent.duplicates.levenshtein(a, b) < SIMILAR_TASK_MAX_DISTANCE


def similar_update_item(current: dict, previous: dict) -> bool:
    if current.get("item_id") != previous.get("item_id"):
        return False
    a, b = current.get("task"), previous.get("task")
    if a is not None and b is not None and a.lower() == b.lower():
        return True
    done_a, done_b = current.get("done"), previous.get("done")
    return done_a is not None and done_b is not None and done_a == done_b


def _same_key(key: str):
    return lambda current, previous: current.get(key) is not None and current.get(key) == previous.get(key)


_LIST_ID = {"type": "string", "description": "The ID of the todo list"}
_ITEM_ID = {"type": "string", "description": "The ID of the todo item"}

HANDLERS: list[ToolHandler] = [
    ToolHandler(
        name="list_todo_lists",
        description="List all available todo lists",
        parameters={"type": "object", "properties": {}},
        thinking_text=lambda args: "Fetching all todo lists...",
        process=list_todo_lists,
    ),
    ToolHandler(
        name="get_todo_items",
        description="Get all todo items from a specific todo list",
        parameters={"type": "object", "properties": {"list_id": _LIST_ID}, "required": ["list_id"]},
        thinking_text=lambda args: f"Fetching todo items from list {args.get('list_id')}...",
        process=get_todo_items,
    ),
    ToolHandler(
        name="create_todo_list",
        description="Create a new todo list",
        parameters={
            "type": "object",
            "properties": {"name": {"type": "string", "description": "The name of the new todo list"}},
            "required": ["name"],
        },
        thinking_text=lambda args: f'Creating new todo list "{args.get("name")}"...',
        process=create_todo_list,
        check_if_similar=_same_name,
    ),
    ToolHandler(
        name="rename_todo_list",
        description="Rename an existing todo list",
        parameters={
            "type": "object",
            "properties": {
                "list_id": _LIST_ID,
                "name": {"type": "string", "description": "The new name for the todo list"},
            },
            "required": ["list_id", "name"],
        },
        thinking_text=lambda args: f'Renaming todo list {args.get("list_id")} to "{args.get("name")}"...',
        process=rename_todo_list,
        check_if_similar=lambda current, previous: (
            current.get("list_id") == previous.get("list_id") and _same_name(current, previous)
        ),
    ),
    ToolHandler(
        name="delete_todo_list",
        description="Delete a todo list and all its items",
        parameters={"type": "object", "properties": {"list_id": _LIST_ID}, "required": ["list_id"]},
        thinking_text=lambda args: f"Deleting todo list {args.get('list_id')}...",
        process=delete_todo_list,
        check_if_similar=_same_key("list_id"),
    ),
    ToolHandler(
        name="create_todo_item",
        description="Create a new todo item in a specific list",
        parameters={
            "type": "object",
            "properties": {
                "list_id": _LIST_ID,
                "task": {"type": "string", "description": "The task text for the new todo item"},
            },
            "required": ["list_id", "task"],
        },
        thinking_text=lambda args: f'Creating new todo item "{args.get("task")}" in list {args.get("list_id")}...',
        process=create_todo_item,
        check_if_similar=similar_create_item,
    ),
    ToolHandler(
        name="update_todo_item",
        description="Update an existing todo item",
        parameters={
            "type": "object",
            "properties": {
                "item_id": _ITEM_ID,
                "task": {"type": "string", "description": "The new task text (optional)"},
                "done": {"type": "boolean", "description": "Whether the task is complete (optional)"},
            },
            "required": ["item_id"],
        },
        thinking_text=lambda args: f"Updating todo item {args.get('item_id')}...",
        process=update_todo_item,
        check_if_similar=similar_update_item,
    ),
    ToolHandler(
        name="delete_todo_item",
        description="Delete a todo item",
        parameters={"type": "object", "properties": {"item_id": _ITEM_ID}, "required": ["item_id"]},
        thinking_text=lambda args: f"Deleting todo item {args.get('item_id')}...",
        process=delete_todo_item,
        check_if_similar=_same_key("item_id"),
    ),
    ToolHandler(
        name="get_todo_state",
        description=(
            "Get the complete state of all todo lists and their items. Use this to understand the current "
            'context before performing operations, especially when references like "that" or "it" are used.'
        ),
        parameters={"type": "object", "properties": {}},
        thinking_text=lambda args: "Fetching complete todo state...",
        process=get_todo_state,
    ),
]
