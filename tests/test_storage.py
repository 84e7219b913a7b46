import json
from datetime import timedelta
from unittest.mock import AsyncMock, MagicMock

import pytest

from sonar_bot.config import RedisConfig
from sonar_bot.core.types import MessageRole, Platform, UserRole
from sonar_bot.storage.memory import InMemorySessionStorage
from sonar_bot.storage.models import ConversationMessage, UserSession, session_key, utcnow
from sonar_bot.storage.redis_store import KEY_PREFIX, RedisSessionStorage


def _session() -> UserSession:
    session = UserSession(user_id="42", platform=Platform.WHATSAPP, role=UserRole.ADMIN)
    session.conversation_history.append(ConversationMessage(role=MessageRole.USER, content="hi"))
    session.model_override = "sonar"
    session.temperature_override = 0.4
    session.last_activity_at = utcnow() - timedelta(minutes=5)
    return session


def test_session_serialization_keeps_timestamps():
    session = _session()
    restored = UserSession.from_dict(json.loads(json.dumps(session.to_dict())))

    assert restored == session
    assert restored.last_activity_at.tzinfo is not None
    assert restored.conversation_history[0].role is MessageRole.USER


def test_session_key():
    assert session_key(Platform.TELEGRAM, "7") == "telegram:7"
    assert _session().key == "whatsapp:42"


async def test_memory_storage():
    storage = InMemorySessionStorage()
    session = _session()

    await storage.set(session.key, session)
    assert await storage.get(session.key) is session
    assert await storage.list_keys() == ["whatsapp:42"]

    await storage.delete(session.key)
    await storage.delete(session.key)
    assert await storage.get(session.key) is None


@pytest.fixture
def redis_client() -> AsyncMock:
    return AsyncMock()


@pytest.fixture
def redis_storage(redis_client) -> RedisSessionStorage:
    return RedisSessionStorage(RedisConfig(enabled=True), ttl_seconds=3600, client=redis_client)


async def test_redis_set_writes_json_with_expiry(redis_storage, redis_client):
    session = _session()

    await redis_storage.set(session.key, session)

    redis_client.set.assert_awaited_once()
    args, kwargs = redis_client.set.call_args
    assert args[0] == KEY_PREFIX + "whatsapp:42"
    assert json.loads(args[1])["model_override"] == "sonar"
    assert kwargs == {"ex": 3600}


async def test_redis_get_parses_session(redis_storage, redis_client):
    session = _session()
    redis_client.get.return_value = json.dumps(session.to_dict())

    loaded = await redis_storage.get(session.key)

    redis_client.get.assert_awaited_once_with("session:whatsapp:42")
    assert loaded == session


async def test_redis_get_missing_or_corrupt(redis_storage, redis_client):
    redis_client.get.return_value = None
    assert await redis_storage.get("telegram:1") is None

    redis_client.get.return_value = "{broken"
    assert await redis_storage.get("telegram:1") is None


async def test_redis_list_keys_strips_prefix(redis_storage, redis_client):
    async def scan(match):
        for key in ("session:telegram:1", "session:whatsapp:2"):
            yield key

    redis_client.scan_iter = MagicMock(side_effect=scan)

    assert await redis_storage.list_keys() == ["telegram:1", "whatsapp:2"]
    redis_client.scan_iter.assert_called_once_with(match="session:*")


async def test_redis_delete_ping_and_close(redis_storage, redis_client):
    await redis_storage.delete("telegram:1")
    redis_client.delete.assert_awaited_once_with("session:telegram:1")

    redis_client.ping.return_value = True
    assert await redis_storage.ping() is True
    redis_client.ping.side_effect = ConnectionError("down")
    assert await redis_storage.ping() is False

    await redis_storage.close()
    redis_client.aclose.assert_awaited_once()
    assert redis_storage.backend_name == "redis"
