from .setup import setup
from .client import RelayClient, get_relay_client, set_relay_client, get_async_db
from .id import is_valid_object_id
from . import config

__all__ = [
    "setup",
    "RelayClient",
    "get_relay_client",
    "set_relay_client",
    "get_async_db",
    "is_valid_object_id",
    "config",
]
