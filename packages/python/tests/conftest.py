import sys
from pathlib import Path

import pytest
from mongomock_motor import AsyncMongoMockClient

sys.path.insert(0, str(Path(__file__).resolve().parents[1]))

import relaychat as rc


@pytest.fixture(autouse=True)
def fast_timings(monkeypatch):
    """Poll quickly and purge tokens without the grace delay."""
    monkeypatch.setenv("LIVE_POLL_INTERVAL_SECS", "0.01")
    monkeypatch.setenv("TOKEN_PURGE_DELAY_SECS", "0")
    monkeypatch.setenv("DOCS_TOPIC_KEYWORDS", "electric")
    rc.agent.tools.docs_tools.clear_docs_cache()


@pytest.fixture
def relay_client():
    """RelayClient backed by an in-memory MongoDB, installed as the process default."""
    client = rc.common.RelayClient(env="relaychat_test", mongodb_async=AsyncMongoMockClient())
    rc.common.set_relay_client(client)
    yield client
    rc.common.set_relay_client(None)


@pytest.fixture
def test_db(relay_client):
    return rc.common.get_async_db(relay_client)
