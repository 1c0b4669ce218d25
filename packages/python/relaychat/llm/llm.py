import logging
from typing import Any, Dict, List, Optional, Union

import litellm
import stamina

import relaychat as rc

logger = logging.getLogger(__name__)

# Drop unsupported provider/model params automatically
litellm.drop_params = True

CHAT_NAME_MAX_LEN = 50

CHAT_NAME_PROMPT = (
    "Create a short, concise human readable name (maximum 50 characters) that summarizes "
    "the following message. Return only the name, no quotes or explanation. "
    "It will be used in the UI as the chat name."
)


def is_retryable_error(exception) -> bool:
    """
    Check if an exception is retryable based on error patterns.

    Args:
        exception: The exception to check

    Returns:
        bool: True if the exception is retryable, False otherwise
    """
    if not isinstance(exception, Exception):
        return False

    error_message = str(exception).lower()

    retryable_patterns = [
        "503",
        "model is overloaded",
        "unavailable",
        "rate limit",
        "timeout",
        "connection error",
        "internal server error",
        "service unavailable",
        "temporarily unavailable",
    ]

    for pattern in retryable_patterns:
        if pattern in error_message:
            return True

    return False


@stamina.retry(on=is_retryable_error)
async def _litellm_acompletion_with_retry(
    model: str,
    messages: list,
    tools: Optional[List[Dict]] = None,
    tool_choice: Optional[Union[str, Dict]] = None,
    stream: bool = False,
    max_tokens: Optional[int] = None,
):
    """
    Make an LLM call with stamina retry mechanism.

    With stream=True only opening the stream is retried; errors raised while
    iterating the returned stream propagate to the caller.

    Raises:
        Exception: If the call fails after all retries
    """
    params: Dict[str, Any] = {
        "model": model,
        "messages": messages,
    }
    if max_tokens is not None:
        params["max_tokens"] = max_tokens
    if tools:
        params["tools"] = tools
        params["tool_choice"] = tool_choice if tool_choice is not None else "auto"
    if stream:
        params["stream"] = True

    return await litellm.acompletion(**params)


async def stream_completion(
    messages: list,
    tools: Optional[List[Dict]] = None,
    model: Optional[str] = None,
    max_tokens: int = 4000,
):
    """
    Open a streaming chat completion. Returns an async iterator of chunks.
    """
    model = model or rc.common.config.get_llm_model()
    logger.info(f"Opening completion stream model={model} messages={len(messages)} tools={len(tools or [])}")
    return await _litellm_acompletion_with_retry(
        model=model,
        messages=messages,
        tools=tools,
        tool_choice="auto" if tools else None,
        stream=True,
        max_tokens=max_tokens,
    )


def _field(obj, name: str):
    """Read a field from a litellm object or a plain dict."""
    if obj is None:
        return None
    if isinstance(obj, dict):
        return obj.get(name)
    return getattr(obj, name, None)


def parse_stream_chunk(chunk) -> tuple[str, list[dict]]:
    """
    Split a streamed chunk into its text content and tool-call fragments.

    Returns:
        (content, fragments) where each fragment is a dict with keys
        id, index, name and arguments (any of which may be None).
    """
    choices = _field(chunk, "choices") or []
    if not choices:
        return "", []
    delta = _field(choices[0], "delta")
    if delta is None:
        return "", []

    content = _field(delta, "content") or ""
    fragments = []
    for tool_call in _field(delta, "tool_calls") or []:
        function = _field(tool_call, "function")
        fragments.append({
            "id": _field(tool_call, "id"),
            "index": _field(tool_call, "index"),
            "name": _field(function, "name"),
            "arguments": _field(function, "arguments"),
        })
    return content, fragments


async def generate_chat_name(message: str, model: Optional[str] = None) -> str | None:
    """
    Ask the model for a short chat name summarizing the message.

    Returns:
        str | None: The name truncated to 50 characters, or None on failure
    """
    model = model or rc.common.config.get_chat_name_model()
    try:
        response = await _litellm_acompletion_with_retry(
            model=model,
            messages=[
                {"role": "system", "content": CHAT_NAME_PROMPT},
                {"role": "user", "content": message},
            ],
            max_tokens=50,
        )
    except Exception as e:
        logger.error(f"Error generating chat name: {e}")
        return None

    name = (response.choices[0].message.content or "").strip()
    if not name:
        return None
    return name[:CHAT_NAME_MAX_LEN]
