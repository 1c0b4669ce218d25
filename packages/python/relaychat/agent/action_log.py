"""
Per-chat log of agent actions (ai_actions) and replayable tool outcomes
(system_messages).

Tool invocations are stored with action_type "tool_call:<name>"; domain actions
(create_list, complete_item, ...) use their own action_type and carry
relationships in metadata.
"""
from __future__ import annotations

import logging
from datetime import datetime, UTC
from typing import Any

import relaychat as rc

logger = logging.getLogger(__name__)

TOOL_CALL_PREFIX = "tool_call:"
RESULT_MAX_LEN = 500


def _db(client):
    return rc.common.get_async_db(client)


async def prune_actions(client, chat_id: str, keep: int | None = None) -> int:
    """Delete all but the newest `keep` action records of a chat."""
    if keep is None:
        keep = rc.common.config.get_action_log_max_per_chat()
    db = _db(client)
    if await db.ai_actions.count_documents({"chat_id": chat_id}) <= keep:
        return 0
    cursor = db.ai_actions.find({"chat_id": chat_id}, {"_id": 1}).sort([("created_at", -1), ("_id", -1)]).skip(keep)
    stale_ids = [doc["_id"] async for doc in cursor]
    if not stale_ids:
        return 0
    result = await db.ai_actions.delete_many({"_id": {"$in": stale_ids}})
    logger.info(f"Pruned {result.deleted_count} action records for chat {chat_id}")
    return result.deleted_count


async def record_action(
    client,
    chat_id: str,
    action_type: str,
    entity_id: str,
    entity_name: str,
    relationships: list[dict] | None = None,
    metadata: dict | None = None,
) -> str:
    """Insert an action record and return its id."""
    meta = dict(metadata or {})
    if relationships is not None:
        meta["relationships"] = relationships
    doc = {
        "chat_id": chat_id,
        "action_type": action_type,
        "entity_id": entity_id,
        "entity_name": entity_name,
        "metadata": meta,
        "created_at": datetime.now(UTC),
    }
    result = await _db(client).ai_actions.insert_one(doc)
    logger.info(f"Recorded action: {action_type} on {entity_name} ({entity_id})")
    await prune_actions(client, chat_id)
    return str(result.inserted_id)


async def store_tool_call(
    client,
    chat_id: str,
    tool_name: str,
    args: Any,
    result: str,
    entity_id: str | None = None,
    entity_name: str | None = None,
    entity_type: str | None = None,
) -> str:
    return await record_action(
        client,
        chat_id,
        TOOL_CALL_PREFIX + tool_name,
        entity_id or "none",
        entity_name or tool_name,
        metadata={
            "args": args,
            "result": (result or "")[:RESULT_MAX_LEN],
            "entity_type": entity_type or "none",
        },
    )


async def find_last_tool_call(client, chat_id: str, tool_name: str) -> dict | None:
    """
    Most recent recorded call to tool_name in this chat, as a summary dict with
    tool_name, args, result and created_at; None if the tool was never called.
    """
    cursor = (
        _db(client)
        .ai_actions.find({"chat_id": chat_id, "action_type": TOOL_CALL_PREFIX + tool_name})
        .sort([("created_at", -1), ("_id", -1)])
        .limit(1)
    )
    docs = await cursor.to_list(length=1)
    if not docs:
        return None
    call = docs[0]
    meta = call.get("metadata") or {}
    return {
        "tool_name": tool_name,
        "args": meta.get("args") or {},
        "result": meta.get("result", ""),
        "created_at": call["created_at"],
        "entity_id": call.get("entity_id") if call.get("entity_id") != "none" else None,
        "entity_type": meta.get("entity_type") if meta.get("entity_type") != "none" else None,
    }


async def get_recent_actions(client, chat_id: str, limit: int = 10) -> list[dict]:
    cursor = _db(client).ai_actions.find({"chat_id": chat_id}).sort([("created_at", -1), ("_id", -1)]).limit(limit)
    return await cursor.to_list(length=limit)


def format_action_description(action: dict) -> str:
    meta = action.get("metadata") or {}
    relationships = meta.get("relationships") or []
    action_type = action.get("action_type")
    name = action.get("entity_name")

    if action_type == "create_list":
        return f'Created todo list "{name}" ({action.get("entity_id")})'
    if action_type == "create_item":
        list_rel = next((r for r in relationships if r.get("type") == "belongs_to_list"), None)
        list_name = list_rel.get("name") if list_rel else "unknown"
        return f'Created todo item "{name}" in list "{list_name}"'
    if action_type == "update_item":
        return f'Updated todo item "{name}" ({meta.get("update_type", "properties")})'
    if action_type == "delete_item":
        return f'Deleted todo item "{name}"'
    return f'{action_type}: "{name}" ({action.get("entity_id")})'


async def store_system_message(client, chat_id: str, content: str) -> None:
    await _db(client).system_messages.insert_one({
        "chat_id": chat_id,
        "content": content,
        "created_at": datetime.now(UTC),
    })


async def fetch_system_messages(client, chat_id: str) -> list[dict]:
    """Stored tool outcomes for the chat as LLM system messages, oldest first."""
    cursor = _db(client).system_messages.find({"chat_id": chat_id}).sort([("created_at", 1), ("_id", 1)])
    return [{"role": "system", "content": doc["content"]} async for doc in cursor]
