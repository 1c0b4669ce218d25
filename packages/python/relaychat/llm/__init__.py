from .llm import (
    CHAT_NAME_MAX_LEN,
    is_retryable_error,
    stream_completion,
    parse_stream_chunk,
    generate_chat_name,
)

__all__ = [
    "CHAT_NAME_MAX_LEN",
    "is_retryable_error",
    "stream_completion",
    "parse_stream_chunk",
    "generate_chat_name",
]
