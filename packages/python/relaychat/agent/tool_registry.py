"""
Tool definitions and dispatch for the chat agent.
get_tool_definitions() is sent to the LLM; process_tool_call runs one streamed call
with (context, args) and records it in the chat's action log.
"""
from __future__ import annotations

import json
import logging
import re
from typing import Any

import jsonschema

import relaychat as rc

from . import tools as agent_tools
from .cancellation import OperationCancelled
from .tool_calls import ToolCall
from .tools.common import ToolHandler, ToolResult

logger = logging.getLogger(__name__)

# Read-only tools: repeating them is harmless, so none has a similarity predicate.
READ_ONLY_TOOLS: frozenset[str] = frozenset({
    "list_todo_lists",
    "get_todo_items",
    "get_todo_state",
    "read_file",
    "get_database_schema",
    "execute_postgres_query",
    "fetch_docs",
})

TOOL_HANDLERS: dict[str, ToolHandler] = {
    handler.name: handler
    for handler in [
        *agent_tools.chat_tools.HANDLERS,
        *agent_tools.docs_tools.HANDLERS,
        *agent_tools.file_tools.HANDLERS,
        *agent_tools.database_tools.HANDLERS,
        *agent_tools.todo_tools.HANDLERS,
        *agent_tools.process_tools.HANDLERS,
    ]
}


def is_excluded(name: str, exclude: list[str | re.Pattern] | None) -> bool:
    """True if name equals an excluded string or matches an excluded pattern."""
    for rule in exclude or []:
        if isinstance(rule, str):
            if name == rule:
                return True
        elif rule.search(name):
            return True
    return False


def get_tool_definitions(exclude: list[str | re.Pattern] | None = None) -> list[dict[str, Any]]:
    """OpenAI function definitions for every registered tool not excluded."""
    return [h.definition for name, h in TOOL_HANDLERS.items() if not is_excluded(name, exclude)]


def _duplicate_key(name: str, args: dict) -> str:
    return f"{name}:{json.dumps(args, sort_keys=True, default=str)}"


async def process_tool_call(context: dict, call: ToolCall) -> ToolResult:
    """
    Execute one tool call on behalf of the turn in context.

    context keys: client, chat_id, turn_id, cancellation, and optionally
    db_url, model, exclude_tools and duplicate_warnings (the repeated-call
    keys already warned about in this turn).

    Malformed or unknown calls come back as inline error content. A repeat of a
    recent mutating call comes back as a warning the model must re-decide on;
    repeating the exact call after the warning within the same turn goes through.
    """
    client = context["client"]
    chat_id = context["chat_id"]
    turn_id = context["turn_id"]
    name = call.name

    try:
        args = json.loads(call.arguments) if call.arguments.strip() else {}
    except json.JSONDecodeError as e:
        logger.warning(f"Invalid JSON arguments for tool {name}: {e}")
        return ToolResult(content=f"\n\nError processing tool call: Invalid JSON arguments for {name}: {e}")

    handler = TOOL_HANDLERS.get(name)
    if handler is None or is_excluded(name, context.get("exclude_tools")):
        return ToolResult(content=f"\n\nUnsupported tool call: {name}")

    if not isinstance(args, dict):
        return ToolResult(content=f"\n\nError processing {name}: Arguments must be a JSON object")
    try:
        jsonschema.validate(args, handler.parameters)
    except jsonschema.ValidationError as e:
        return ToolResult(content=f"\n\nError processing {name}: Invalid arguments: {e.message}")

    logger.info(f"Processing tool call {name} for turn {turn_id}: {args}")

    warned = context.setdefault("duplicate_warnings", set())
    key = _duplicate_key(name, args)
    if key not in warned:
        warning = await rc.agent.duplicates.check_duplicate(client, chat_id, handler, args)
        if warning:
            warned.add(key)
            return ToolResult(system_message=warning, requires_reentry=True)

    await rc.agent.chats.set_thinking_text(client, turn_id, handler.thinking_text(args))
    try:
        result = await handler.process(context, args)
    except OperationCancelled:
        await rc.agent.chats.set_thinking_text(client, turn_id, "")
        raise
    except Exception as e:
        logger.exception(f"Tool {name} failed")
        await rc.agent.chats.set_thinking_text(client, turn_id, "")
        await rc.agent.action_log.store_system_message(client, chat_id, f"TOOL ERROR [{name}]: {e}")
        await rc.agent.action_log.store_tool_call(
            client, chat_id, name, args, f"Error: {e}", entity_type="error"
        )
        return ToolResult(content=f"\n\nError processing {name}: {e}")

    await rc.agent.chats.set_thinking_text(client, turn_id, "")
    await rc.agent.action_log.store_tool_call(
        client,
        chat_id,
        name,
        args,
        result.system_message or "Success",
        entity_id=result.entity_id,
        entity_name=result.entity_name,
        entity_type=result.entity_type,
    )
    if result.system_message:
        await rc.agent.action_log.store_system_message(
            client, chat_id, f"TOOL EXECUTION [{name}]: {result.system_message}"
        )
    return result
