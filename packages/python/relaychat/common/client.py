"""
MongoDB client wiring. One RelayClient per worker/process; the database name
is the ENV value so dev, test and prod data never mix.
"""
import logging
import os

from motor.motor_asyncio import AsyncIOMotorClient

logger = logging.getLogger(__name__)

_default_client = None


class RelayClient:
    def __init__(self, env: str = "dev", name: str | None = None, mongodb_async=None):
        self.env = env
        self.name = name
        if mongodb_async is None:
            mongo_uri = os.getenv("MONGODB_URI", "mongodb://localhost:27017")
            mongodb_async = AsyncIOMotorClient(mongo_uri, appname=name, tz_aware=True)
        self.mongodb_async = mongodb_async
        logger.info(f"Created RelayClient env={env} name={name}")


def get_relay_client(env: str | None = None, name: str | None = None) -> RelayClient:
    """
    Get a RelayClient. Without arguments, returns the process-wide default client.

    Args:
        env: Database name; defaults to the ENV environment variable
        name: Optional application name reported to MongoDB

    Returns:
        RelayClient: The client
    """
    global _default_client
    if env is None and name is None:
        if _default_client is None:
            _default_client = RelayClient(env=os.getenv("ENV", "dev"))
        return _default_client
    return RelayClient(env=env or os.getenv("ENV", "dev"), name=name)


def set_relay_client(client) -> None:
    """Replace the process-wide default client (used by the app lifespan and tests)."""
    global _default_client
    _default_client = client


def get_async_db(client=None):
    """Return the async database handle for the client's env."""
    if client is None:
        client = get_relay_client()
    return client.mongodb_async[client.env]
