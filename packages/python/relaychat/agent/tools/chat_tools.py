"""
Conversation-management tools: rename and pin the current chat.
"""
from __future__ import annotations

import logging

import relaychat as rc

from .common import ToolHandler, ToolResult

logger = logging.getLogger(__name__)


async def rename_chat(context: dict, params: dict) -> ToolResult:
    """Generate a name from the supplied summary and apply it."""
    new_name = await rc.llm.generate_chat_name(params.get("context", ""))
    if not new_name:
        return ToolResult(content="\n\nFailed to rename chat.")
    await rc.agent.chats.update_chat(context["client"], context["chat_id"], name=new_name)
    logger.info(f"Renamed chat {context['chat_id']} to {new_name!r}")
    return ToolResult(
        content=f'\n\nI\'ve renamed this chat to: "{new_name}"',
        entity_id=context["chat_id"],
        entity_name=new_name,
        entity_type="chat",
    )


async def rename_chat_to(context: dict, params: dict) -> ToolResult:
    new_name = (params.get("name") or "")[: rc.llm.CHAT_NAME_MAX_LEN]
    if not new_name:
        return ToolResult(content="\n\nFailed to rename chat.")
    await rc.agent.chats.update_chat(context["client"], context["chat_id"], name=new_name)
    return ToolResult(
        content=f'\n\nI\'ve renamed this chat to: "{new_name}"',
        entity_id=context["chat_id"],
        entity_name=new_name,
        entity_type="chat",
    )


async def pin_chat(context: dict, params: dict) -> ToolResult:
    pinned = bool(params.get("pinned"))
    found = await rc.agent.chats.update_chat(context["client"], context["chat_id"], pinned=pinned)
    if not found:
        return ToolResult(content="\n\nFailed to update pin status.")
    return ToolResult(
        content=f"\n\nI've {'pinned' if pinned else 'unpinned'} this chat.",
        entity_id=context["chat_id"],
        entity_type="chat",
    )


HANDLERS: list[ToolHandler] = [
    ToolHandler(
        name="rename_chat",
        description="Rename the current chat session based on its content",
        parameters={
            "type": "object",
            "properties": {
                "context": {
                    "type": "string",
                    "description": "A summary of the chat context to use for generating the new name",
                },
            },
            "required": ["context"],
        },
        thinking_text=lambda args: "Renaming chat...",
        process=rename_chat,
    ),
    ToolHandler(
        name="rename_chat_to",
        description="Rename the current chat session to a specific name provided by the user",
        parameters={
            "type": "object",
            "properties": {
                "name": {"type": "string", "description": "The exact name to rename the chat to"},
            },
            "required": ["name"],
        },
        thinking_text=lambda args: f'Renaming chat to "{args.get("name", "")}"...',
        process=rename_chat_to,
    ),
    ToolHandler(
        name="pin_chat",
        description="Pin the current chat to keep it at the top of the sidebar",
        parameters={
            "type": "object",
            "properties": {
                "pinned": {"type": "boolean", "description": "Whether to pin (true) or unpin (false) the chat"},
            },
            "required": ["pinned"],
        },
        thinking_text=lambda args: "Pinning chat..." if args.get("pinned") else "Unpinning chat...",
        process=pin_chat,
    ),
]
