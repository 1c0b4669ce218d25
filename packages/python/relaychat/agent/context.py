"""
Conversation history to LLM messages, bounded by an estimated token budget.
"""
from __future__ import annotations

import math
from typing import Any

CHARS_PER_TOKEN = 3
MAX_CONTEXT_TOKENS = 20000


def estimate_tokens(text: str | None) -> int:
    return math.ceil(len(text or "") / CHARS_PER_TOKEN)


def estimate_messages_tokens(messages: list[dict[str, Any]]) -> int:
    return sum(estimate_tokens(m.get("content")) for m in messages)


def limit_context_size(history: list[dict[str, Any]], max_tokens: int = MAX_CONTEXT_TOKENS) -> list[dict[str, Any]]:
    """Keep the most recent messages whose estimated size fits in max_tokens."""
    total = 0
    kept: list[dict[str, Any]] = []
    for message in reversed(history):
        tokens = estimate_tokens(message.get("content"))
        if total + tokens > max_tokens:
            break
        total += tokens
        kept.append(message)
    kept.reverse()
    return kept


def to_llm_message(message: dict[str, Any]) -> dict[str, Any]:
    """Map a stored message to an LLM message; agent turns become assistant messages."""
    content = message.get("content") or ""
    attachment = message.get("attachment")
    if attachment:
        content += f"\n\n[ATTACHED FILE CONTENT]\n{attachment}\n[END OF ATTACHED FILE]"
    role = "assistant" if message.get("role") == "agent" else "user"
    return {"role": role, "content": content}
