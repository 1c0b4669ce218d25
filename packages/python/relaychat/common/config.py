"""
Environment-backed settings. Values are read at call time so tests and
long-running processes pick up changes without a restart.
"""
import os


def get_int_env(name: str, default: int) -> int:
    try:
        return int(os.getenv(name, str(default)))
    except ValueError:
        return default


def get_float_env(name: str, default: float) -> float:
    try:
        return float(os.getenv(name, str(default)))
    except ValueError:
        return default


def get_str_env(name: str, default: str) -> str:
    value = os.getenv(name)
    return value if value else default


def get_list_env(name: str, default: list[str]) -> list[str]:
    """Comma-separated list; blank entries are dropped."""
    raw = os.getenv(name)
    if not raw:
        return list(default)
    return [part.strip() for part in raw.split(",") if part.strip()]


def get_llm_model() -> str:
    return get_str_env("LLM_MODEL", "gpt-4o-mini")


def get_chat_name_model() -> str:
    return get_str_env("CHAT_NAME_MODEL", get_llm_model())


def get_max_recursion_depth() -> int:
    return get_int_env("MAX_RECURSION_DEPTH", 10)


def get_token_flush_interval_ms() -> float:
    return get_float_env("TOKEN_FLUSH_INTERVAL_MS", 60.0)


def get_token_flush_max_chars() -> int:
    return get_int_env("TOKEN_FLUSH_MAX_CHARS", 100)


def get_token_purge_delay_secs() -> float:
    return get_float_env("TOKEN_PURGE_DELAY_SECS", 1.0)


def get_todo_process_timeout_secs() -> float:
    return get_float_env("TODO_PROCESS_TIMEOUT_SECS", 5 * 60.0)


def get_live_poll_interval_secs() -> float:
    return get_float_env("LIVE_POLL_INTERVAL_SECS", 0.5)


def get_action_log_max_per_chat() -> int:
    return get_int_env("ACTION_LOG_MAX_PER_CHAT", 500)
