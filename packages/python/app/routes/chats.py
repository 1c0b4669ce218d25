# chats.py: Chat, message and abort endpoints.

import asyncio
import logging

from fastapi import APIRouter, Body, HTTPException, status
from pydantic import BaseModel, Field

import relaychat as rc

logger = logging.getLogger(__name__)

chats_router = APIRouter(tags=["chats"])

# Extract chat name from first message (limit to 120 characters)
INITIAL_CHAT_NAME_MAX_LEN = 120

_naming_tasks: set[asyncio.Task] = set()


class CreateChatRequest(BaseModel):
    message: str = Field(..., min_length=1, description="First message of the chat")
    user: str = Field(..., min_length=1, description="Name of the user posting the message")
    id: str | None = Field(default=None, description="Client-chosen chat ID (24-char hex)")
    attachment: str | None = Field(default=None, description="Text content of an attached file")
    db_url: str | None = Field(default=None, description="PostgreSQL URL for the database tools; not stored")


class CreateMessageRequest(BaseModel):
    message: str = Field(..., min_length=1)
    user: str = Field(..., min_length=1)
    attachment: str | None = None
    db_url: str | None = Field(default=None, description="PostgreSQL URL for the database tools; not stored")


def _history(messages: list[dict]) -> list[dict]:
    """Messages a new turn answers: everything but turns still in flight."""
    return [m for m in messages if m.get("status") != "pending"]


async def _name_chat(client, chat_id: str, message: str) -> None:
    name = await rc.llm.generate_chat_name(message)
    if not name:
        return
    try:
        await rc.agent.chats.update_chat(client, chat_id, name=name)
        logger.info(f"Updated chat {chat_id} name to: {name}")
    except Exception as e:
        logger.error(f"Error updating chat name: {e}")


@chats_router.get("/api/chats/{chat_id}")
async def get_chat(chat_id: str):
    """Chat details with all of its messages, oldest first."""
    client = rc.common.get_relay_client()
    chat = await rc.agent.chats.get_chat(client, chat_id)
    if not chat:
        raise HTTPException(status_code=404, detail="Chat not found")
    messages = await rc.agent.chats.list_messages(client, chat_id)
    return {"chat": rc.agent.chats.chat_to_api(chat, messages)}


@chats_router.post("/api/chats", status_code=status.HTTP_201_CREATED)
async def create_chat(request: CreateChatRequest = Body(...)):
    """
    Create a chat with its first message, start the agent turn answering it and
    generate a better chat name in the background.
    """
    client = rc.common.get_relay_client()
    if request.id is not None:
        if not rc.common.is_valid_object_id(request.id):
            raise HTTPException(status_code=400, detail="Invalid chat ID")
        if await rc.agent.chats.get_chat(client, request.id):
            raise HTTPException(status_code=409, detail="Chat already exists")

    chat = await rc.agent.chats.create_chat(client, request.message[:INITIAL_CHAT_NAME_MAX_LEN], request.id)
    chat_id = str(chat["_id"])
    user_message = await rc.agent.chats.create_message(
        client, chat_id, request.message, request.user, attachment=request.attachment
    )

    task = asyncio.create_task(_name_chat(client, chat_id, request.message))
    _naming_tasks.add(task)
    task.add_done_callback(_naming_tasks.discard)

    history = _history(await rc.agent.chats.list_messages(client, chat_id))
    turn = await rc.agent.start_turn(client, chat_id, history, db_url=request.db_url)
    return {"chat": rc.agent.chats.chat_to_api(chat, [user_message, turn])}


@chats_router.post("/api/chats/{chat_id}/messages", status_code=status.HTTP_201_CREATED)
async def create_message(chat_id: str, request: CreateMessageRequest = Body(...)):
    """Add a user message and start the agent turn answering it."""
    client = rc.common.get_relay_client()
    chat = await rc.agent.chats.get_chat(client, chat_id)
    if not chat:
        raise HTTPException(status_code=404, detail="Chat not found")

    user_message = await rc.agent.chats.create_message(
        client, chat_id, request.message, request.user, attachment=request.attachment
    )
    history = _history(await rc.agent.chats.list_messages(client, chat_id))
    turn = await rc.agent.start_turn(client, chat_id, history, db_url=request.db_url)
    return {
        "messages": [
            rc.agent.chats.message_to_api(user_message),
            rc.agent.chats.message_to_api(turn),
        ]
    }


@chats_router.post("/api/messages/{message_id}/abort")
async def abort_message(message_id: str):
    """Abort a pending agent turn. Only pending messages can be aborted."""
    client = rc.common.get_relay_client()
    message, aborted = await rc.agent.chats.abort_message(client, message_id)
    if message is None:
        raise HTTPException(status_code=404, detail="Message not found")
    if not aborted:
        raise HTTPException(status_code=400, detail="Only pending messages can be aborted")
    return {"success": True}
