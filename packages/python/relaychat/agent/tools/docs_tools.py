"""
Reference documentation fetched over HTTP and cached in-process.

Once a chat touches the documentation topic its docs_topic_active flag is set and
later top-level turns include the documentation in the prompt.
"""
from __future__ import annotations

import logging
import time

import httpx

import relaychat as rc

from .common import ToolHandler, ToolResult, reply

logger = logging.getLogger(__name__)

DEFAULT_DOCS_URL = "https://electric-sql.com/llms.txt"
DEFAULT_TOPIC_KEYWORDS = ["electric", "electric-sql", "electric sql"]
FETCH_TIMEOUT_SECS = 30.0

_cache: dict[str, tuple[float, str]] = {}


def get_docs_url() -> str:
    return rc.common.config.get_str_env("DOCS_URL", DEFAULT_DOCS_URL)


def mentions_docs_topic(history: list[dict]) -> bool:
    """True if any user message mentions one of the topic keywords."""
    keywords = [k.lower() for k in rc.common.config.get_list_env("DOCS_TOPIC_KEYWORDS", DEFAULT_TOPIC_KEYWORDS)]
    for msg in history:
        if msg.get("role") != "user":
            continue
        text = (msg.get("content") or "").lower()
        if any(k in text for k in keywords):
            return True
    return False


def clear_docs_cache() -> None:
    _cache.clear()


async def fetch_reference_docs() -> str:
    """
    Fetch the documentation text, served from cache for DOCS_CACHE_SECS.

    Returns:
        str: The documentation, or "" if it could not be fetched
    """
    url = get_docs_url()
    ttl = rc.common.config.get_float_env("DOCS_CACHE_SECS", 3600.0)
    cached = _cache.get(url)
    now = time.monotonic()
    if cached and now - cached[0] < ttl:
        return cached[1]
    try:
        async with httpx.AsyncClient(timeout=FETCH_TIMEOUT_SECS, follow_redirects=True) as client:
            resp = await client.get(url)
            resp.raise_for_status()
    except httpx.HTTPError as e:
        logger.error(f"Error fetching documentation from {url}: {e}")
        return ""
    _cache[url] = (now, resp.text)
    return resp.text


async def fetch_docs(context: dict, params: dict) -> ToolResult:
    query = params.get("query", "")
    await rc.agent.chats.update_chat(context["client"], context["chat_id"], docs_topic_active=True)
    docs = await fetch_reference_docs()
    if not docs:
        return ToolResult(content="\n\nFailed to fetch documentation.")
    return reply(f'Here\'s the relevant documentation for "{query}":\n{docs}')


HANDLERS: list[ToolHandler] = [
    ToolHandler(
        name="fetch_docs",
        description=(
            "Fetch the latest reference documentation to help answer questions about its features, "
            "best practices, and solutions"
        ),
        parameters={
            "type": "object",
            "properties": {
                "query": {
                    "type": "string",
                    "description": "The specific query or topic to look up in the documentation",
                },
            },
            "required": ["query"],
        },
        thinking_text=lambda args: "Fetching documentation...",
        process=fetch_docs,
    ),
]
