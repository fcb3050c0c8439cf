"""
Shared fixtures: memory-backed service, mock chat platform, ASGI test client.
"""

import httpx
import pytest

from jira_relay.api import create_app
from jira_relay.chat import ChatClient
from jira_relay.config import RelayConfig
from jira_relay.service import SubscriptionService
from jira_relay.store import MemoryKVStore

from fakes import BOT_USER_ID, WEBHOOK_SECRET
from mock_servers import create_chat_app


@pytest.fixture
def store():
    return MemoryKVStore()


@pytest.fixture
def service(store):
    return SubscriptionService(store)


@pytest.fixture
def chat_app():
    app = create_chat_app()
    app.state.chat.users["jira"] = BOT_USER_ID
    return app


@pytest.fixture
async def chat_client(chat_app):
    client = ChatClient(
        "http://chat.test",
        token="chat-token",
        transport=httpx.ASGITransport(app=chat_app),
    )
    await client.open()
    yield client
    await client.close()


@pytest.fixture
def relay_config(monkeypatch):
    monkeypatch.setenv("TEST_RELAY_SECRET", WEBHOOK_SECRET)
    return RelayConfig.model_validate({
        "store": {"backend": "memory"},
        "chat": {"url": "http://chat.test", "bot_username": "jira"},
        "webhook": {"secret_env": "TEST_RELAY_SECRET"},
        "logging": {"level": "debug", "format": "text"},
    })


@pytest.fixture
def relay_app(relay_config, store, chat_client):
    return create_app(relay_config, store=store, chat=chat_client)


@pytest.fixture
async def client(relay_app):
    async with httpx.AsyncClient(
        transport=httpx.ASGITransport(app=relay_app), base_url="http://test"
    ) as ac:
        yield ac
