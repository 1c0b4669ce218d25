"""
Soft guard against the model repeating a mutating tool call.

The most recent recorded call to the same tool is compared with the current
arguments through the tool's similarity predicate. A match on a mutating tool
skips execution and hands the model a warning to re-decide on.
"""
from __future__ import annotations

import json
import logging
from datetime import datetime, UTC

import relaychat as rc

logger = logging.getLogger(__name__)

MUTATING_TOOLS: frozenset[str] = frozenset({
    "create_todo_list",
    "rename_todo_list",
    "delete_todo_list",
    "create_todo_item",
    "update_todo_item",
    "delete_todo_item",
})


def levenshtein(a: str, b: str) -> int:
    """Edit distance between two strings."""
    if a == b:
        return 0
    if not a:
        return len(b)
    if not b:
        return len(a)
    previous = list(range(len(b) + 1))
    for i, ca in enumerate(a, start=1):
        current = [i]
        for j, cb in enumerate(b, start=1):
            current.append(min(
                previous[j] + 1,
                current[j - 1] + 1,
                previous[j - 1] + (ca != cb),
            ))
        previous = current
    return previous[-1]


def describe_age(then: datetime, now: datetime | None = None) -> str:
    if then.tzinfo is None:
        # Naive datetimes from Mongo are UTC
        then = then.replace(tzinfo=UTC)
    now = now or datetime.now(UTC)
    minutes = int((now - then).total_seconds() // 60)
    if minutes < 1:
        return "just now"
    if minutes < 60:
        return f"{minutes} minute(s) ago"
    return f"{minutes // 60} hour(s) ago"


def format_duplicate_warning(tool_name: str, previous: dict, age: str) -> str:
    return (
        f"WARNING: You are attempting to call {tool_name} with similar arguments to a previous call made {age}.\n"
        f"\n"
        f"Previous call details:\n"
        f"Tool: {previous['tool_name']}\n"
        f"Arguments: {json.dumps(previous['args'], indent=2, default=str)}\n"
        f"Result: {previous['result']}\n"
        f"\n"
        f"If you're intentionally repeating this operation, please proceed. Otherwise, consider if this is "
        f"necessary or if you might be duplicating a previous action."
    )


async def check_duplicate(client, chat_id: str, handler, args: dict) -> str | None:
    """
    Returns:
        str | None: The warning text if the call should be held back, else None
    """
    if handler.check_if_similar is None or handler.name not in MUTATING_TOOLS:
        return None
    previous = await rc.agent.action_log.find_last_tool_call(client, chat_id, handler.name)
    if previous is None:
        return None
    if not handler.check_if_similar(args, previous["args"]):
        return None
    logger.info(f"Detected similar previous call to {handler.name} in chat {chat_id}")
    return format_duplicate_warning(handler.name, previous, describe_age(previous["created_at"]))
