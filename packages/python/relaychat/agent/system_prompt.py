"""
System messages for the chat agent: the base prompt, the current-context boundary
(recent todo lists, items and actions), the previous-tool-operations summary and
the reference documentation block.
"""
from __future__ import annotations

import logging
from typing import Any

import relaychat as rc

logger = logging.getLogger(__name__)

# Estimated prompt tokens above which the full documentation is replaced by a note
DOCS_INLINE_MAX_TOKENS = 15000

SYSTEM_PROMPT = """You are a helpful assistant taking part in a shared, multi-user chat.

You can:
- rename or pin the current chat
- create, edit, rename, read and delete files attached to the chat
- inspect the schema of the user's PostgreSQL database and run read-only queries against it
- fetch reference documentation
- manage todo lists and items, and work through a todo list task by task

Use the tools when they help with the user's request. Tool results arrive as system
messages; continue the conversation using them. Before creating or changing todo
lists or items, check the current context state so you do not repeat an operation
that was already done."""


def build_system_message() -> dict[str, Any]:
    return {"role": "system", "content": SYSTEM_PROMPT}


async def build_context_boundary(client, chat_id: str) -> dict[str, Any] | None:
    """
    Summarize recent todo lists, items and this chat's recent actions.

    Returns None when there is nothing to summarize.
    """
    db = rc.common.get_async_db(client)
    recent_lists = await db.todo_lists.find({}).sort([("updated_at", -1), ("_id", -1)]).limit(5).to_list(length=5)
    recent_items = await db.todo_items.find({}).sort([("updated_at", -1), ("_id", -1)]).limit(10).to_list(length=10)
    recent_actions = await rc.agent.action_log.get_recent_actions(client, chat_id, 10)

    if not recent_lists and not recent_items and not recent_actions:
        return None

    list_names = {str(t["_id"]): t["name"] for t in recent_lists}
    missing = {i["list_id"] for i in recent_items} - set(list_names)
    for list_id in missing:
        oid = rc.agent.tools.common.to_object_id(list_id)
        todo_list = await db.todo_lists.find_one({"_id": oid}) if oid else None
        list_names[list_id] = todo_list["name"] if todo_list else "unknown"

    most_recent = "todo management"
    if recent_actions:
        most_recent = rc.agent.action_log.format_action_description(recent_actions[0])

    lists_text = "\n".join(f'- "{t["name"]}" (ID: {t["_id"]})' for t in recent_lists)
    items_text = "\n".join(
        f'- {"[x]" if i.get("done") else "[ ]"} "{i["task"]}" (ID: {i["_id"]}, List: "{list_names[i["list_id"]]}")'
        for i in recent_items
    )
    actions_text = "\n".join(
        f"- {rc.agent.action_log.format_action_description(a)}" for a in recent_actions
    )

    content = (
        "\n=== CURRENT CONTEXT STATE ===\n\n"
        f"Todo Lists:\n{lists_text}\n\n"
        f"Recent Items:\n{items_text}\n\n"
        f"Recent Actions:\n{actions_text}\n\n"
        "Current Context: You're helping with todo list management. "
        f'The most recent interaction was about "{most_recent}".\n\n'
        "=== END OF CONTEXT STATE ===\n"
    )
    return {"role": "system", "content": content}


def build_tool_summary(system_messages: list[dict[str, Any]]) -> dict[str, Any] | None:
    """Summary of earlier successful tool executions, or None if there were none."""
    executions = [
        m["content"].replace("TOOL EXECUTION ", "", 1)
        for m in system_messages
        if isinstance(m.get("content"), str) and m["content"].startswith("TOOL EXECUTION")
    ]
    if not executions:
        return None
    lines = "\n".join(f"- {e}" for e in executions)
    return {
        "role": "system",
        "content": (
            "=== PREVIOUS TOOL OPERATIONS SUMMARY ===\n"
            "The following tool operations have already been performed in this conversation:\n"
            f"{lines}\n\n"
            "Please avoid repeating these operations unless specifically requested by the user.\n"
            "=== END OF TOOL OPERATIONS SUMMARY ==="
        ),
    }


def build_docs_message(docs: str, estimated_tokens: int) -> dict[str, Any]:
    """The full documentation if the prompt has room for it, else a pointer to the fetch tool."""
    if estimated_tokens < DOCS_INLINE_MAX_TOKENS:
        return {"role": "system", "content": f"Here's the complete reference documentation:\n{docs}"}
    return {
        "role": "system",
        "content": "Reference documentation is available. Use the fetch_docs tool to get specific documentation when needed.",
    }
