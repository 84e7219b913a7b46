"""Redis-backed session storage using redis.asyncio."""

from __future__ import annotations

import json
from typing import Optional

import redis.asyncio as aioredis

from sonar_bot.config import RedisConfig
from sonar_bot.log import get_logger
from sonar_bot.storage.base import SessionStorage
from sonar_bot.storage.models import UserSession

logger = get_logger(__name__)

KEY_PREFIX = "session:"


class RedisSessionStorage(SessionStorage):
    """Stores each session as a JSON string with a server-side expiry.

    The expiry equals the session timeout, so Redis drops idle sessions even if
    the sweep never sees them.
    """

    def __init__(
        self,
        config: RedisConfig,
        ttl_seconds: int,
        client: Optional[aioredis.Redis] = None,
    ):
        self._ttl = ttl_seconds
        self._client = client or aioredis.Redis(
            host=config.host,
            port=config.port,
            password=config.password or None,
            db=config.db,
            decode_responses=True,
            socket_timeout=5.0,
            socket_connect_timeout=5.0,
        )

    @property
    def backend_name(self) -> str:
        return "redis"

    async def get(self, key: str) -> Optional[UserSession]:
        raw = await self._client.get(KEY_PREFIX + key)
        if not raw:
            return None
        try:
            return UserSession.from_dict(json.loads(raw))
        except (ValueError, KeyError, TypeError) as e:
            logger.warning("redis_session_decode_error", key=key, error=str(e))
            return None

    async def set(self, key: str, session: UserSession) -> None:
        await self._client.set(KEY_PREFIX + key, json.dumps(session.to_dict()), ex=self._ttl)

    async def delete(self, key: str) -> None:
        await self._client.delete(KEY_PREFIX + key)

    async def list_keys(self) -> list[str]:
        keys: list[str] = []
        async for full_key in self._client.scan_iter(match=KEY_PREFIX + "*"):
            keys.append(full_key[len(KEY_PREFIX):])
        return keys

    async def ping(self) -> bool:
        try:
            return bool(await self._client.ping())
        except Exception as e:
            logger.warning("redis_ping_failed", error=str(e))
            return False

    async def close(self) -> None:
        await self._client.aclose()
        logger.info("redis_session_storage_closed")
