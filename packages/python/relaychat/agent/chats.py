"""
Chats, messages and token chunks in MongoDB.

A turn is a message with role "agent". Its status moves from "pending" to one of
"completed", "failed" or "aborted". Turns are never deleted here.
"""
from __future__ import annotations

import asyncio
import logging
from datetime import datetime, UTC
from typing import Any

from bson import ObjectId

import relaychat as rc

logger = logging.getLogger(__name__)

AGENT_USER_NAME = "AI Assistant"

# Delayed token purges; held so the tasks are not garbage collected mid-sleep
_purge_tasks: set[asyncio.Task] = set()


def _db(client):
    return rc.common.get_async_db(client)


def _oid(value: str | ObjectId) -> ObjectId:
    return value if isinstance(value, ObjectId) else ObjectId(value)


def message_to_api(doc: dict) -> dict[str, Any]:
    """Convert a messages document to its API shape."""
    return {
        "id": str(doc["_id"]),
        "chat_id": doc["chat_id"],
        "content": doc.get("content", ""),
        "user_name": doc.get("user_name"),
        "role": doc.get("role"),
        "status": doc.get("status"),
        "thinking_text": doc.get("thinking_text", ""),
        "attachment": doc.get("attachment"),
        "created_at": doc.get("created_at"),
        "updated_at": doc.get("updated_at"),
    }


def chat_to_api(doc: dict, messages: list[dict] | None = None) -> dict[str, Any]:
    out = {
        "id": str(doc["_id"]),
        "name": doc.get("name", ""),
        "pinned": doc.get("pinned", False),
        "created_at": doc.get("created_at"),
        "updated_at": doc.get("updated_at"),
    }
    if messages is not None:
        out["messages"] = [message_to_api(m) for m in messages]
    return out


async def create_chat(client, name: str, chat_id: str | None = None) -> dict:
    now = datetime.now(UTC)
    doc = {
        "name": name,
        "pinned": False,
        "docs_topic_active": False,
        "created_at": now,
        "updated_at": now,
    }
    if chat_id:
        doc["_id"] = _oid(chat_id)
    result = await _db(client).chats.insert_one(doc)
    doc["_id"] = result.inserted_id
    return doc


async def get_chat(client, chat_id: str) -> dict | None:
    if not rc.common.is_valid_object_id(chat_id):
        return None
    return await _db(client).chats.find_one({"_id": ObjectId(chat_id)})


async def update_chat(client, chat_id: str, **fields) -> bool:
    """Set fields on a chat. Returns False if the chat does not exist."""
    fields["updated_at"] = datetime.now(UTC)
    result = await _db(client).chats.update_one({"_id": _oid(chat_id)}, {"$set": fields})
    return result.matched_count > 0


async def create_message(
    client,
    chat_id: str,
    content: str,
    user_name: str,
    role: str = "user",
    status: str = "completed",
    attachment: str | None = None,
) -> dict:
    now = datetime.now(UTC)
    doc = {
        "chat_id": chat_id,
        "content": content,
        "user_name": user_name,
        "role": role,
        "status": status,
        "thinking_text": "",
        "created_at": now,
        "updated_at": now,
    }
    if attachment:
        doc["attachment"] = attachment
    result = await _db(client).messages.insert_one(doc)
    doc["_id"] = result.inserted_id
    return doc


async def create_turn(client, chat_id: str) -> dict:
    """Insert an empty pending agent turn."""
    return await create_message(client, chat_id, "", AGENT_USER_NAME, role="agent", status="pending")


async def post_agent_notice(client, chat_id: str, content: str) -> dict:
    """Insert an already-completed agent message."""
    return await create_message(client, chat_id, content, AGENT_USER_NAME, role="agent", status="completed")


async def get_message(client, message_id: str) -> dict | None:
    if not rc.common.is_valid_object_id(message_id):
        return None
    return await _db(client).messages.find_one({"_id": ObjectId(message_id)})


async def list_messages(client, chat_id: str) -> list[dict]:
    cursor = _db(client).messages.find({"chat_id": chat_id}).sort([("created_at", 1), ("_id", 1)])
    return await cursor.to_list(length=None)


async def set_thinking_text(client, turn_id: str, text: str) -> None:
    await _db(client).messages.update_one(
        {"_id": _oid(turn_id)},
        {"$set": {"thinking_text": text, "updated_at": datetime.now(UTC)}},
    )


async def finalize_turn(client, turn_id: str, content: str, status: str = "completed") -> str:
    """
    Write the final content of a turn and move it to a terminal status.

    An "aborted" status already in the store wins over the requested one.

    Returns:
        str: The status the turn ended in
    """
    db = _db(client)
    now = datetime.now(UTC)
    await db.messages.update_one(
        {"_id": _oid(turn_id)},
        {"$set": {"content": content, "thinking_text": "", "updated_at": now}},
    )
    result = await db.messages.update_one(
        {"_id": _oid(turn_id), "status": {"$ne": "aborted"}},
        {"$set": {"status": status}},
    )
    if result.matched_count == 0:
        return "aborted"
    return status


async def mark_turn_terminal(client, turn_id: str, status: str) -> None:
    """Move a turn that is still pending to status."""
    await _db(client).messages.update_one(
        {"_id": _oid(turn_id), "status": "pending"},
        {"$set": {"status": status, "thinking_text": "", "updated_at": datetime.now(UTC)}},
    )


async def abort_message(client, message_id: str) -> tuple[dict | None, bool]:
    """
    Abort a pending message.

    Returns:
        (message, aborted): message is None if it does not exist; aborted is
        False if the message exists but was not pending.
    """
    if not rc.common.is_valid_object_id(message_id):
        return None, False
    db = _db(client)
    updated = await db.messages.find_one_and_update(
        {"_id": ObjectId(message_id), "status": "pending"},
        {"$set": {"status": "aborted", "updated_at": datetime.now(UTC)}},
    )
    if updated:
        logger.info(f"Aborted message {message_id}")
        return updated, True
    existing = await db.messages.find_one({"_id": ObjectId(message_id)})
    return existing, False


async def insert_token(client, turn_id: str, token_number: int, token_text: str) -> None:
    await _db(client).tokens.insert_one({
        "turn_id": turn_id,
        "token_number": token_number,
        "token_text": token_text,
        "created_at": datetime.now(UTC),
    })


async def list_tokens(client, turn_id: str) -> list[dict]:
    cursor = _db(client).tokens.find({"turn_id": turn_id}).sort("token_number", 1)
    return await cursor.to_list(length=None)


async def delete_tokens(client, turn_id: str) -> int:
    result = await _db(client).tokens.delete_many({"turn_id": turn_id})
    return result.deleted_count


async def _purge_tokens_later(client, turn_id: str, delay: float) -> None:
    await asyncio.sleep(delay)
    try:
        deleted = await delete_tokens(client, turn_id)
        logger.debug(f"Purged {deleted} token rows for turn {turn_id}")
    except Exception as e:
        logger.error(f"Error deleting tokens for turn {turn_id}: {e}")


def schedule_token_purge(client, turn_id: str, delay: float | None = None) -> asyncio.Task:
    """Delete the turn's token rows after a grace delay, in the background."""
    if delay is None:
        delay = rc.common.config.get_token_purge_delay_secs()
    task = asyncio.create_task(_purge_tokens_later(client, turn_id, delay))
    _purge_tasks.add(task)
    task.add_done_callback(_purge_tasks.discard)
    return task


async def drain_token_purges() -> None:
    """Wait for all scheduled token purges to run."""
    while _purge_tasks:
        await asyncio.gather(*list(_purge_tasks), return_exceptions=True)
