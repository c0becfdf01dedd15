"""
Redis coordination store.

The gates never share in-process state: every bit of coordination (batch
lists, batch locks, stop flags) lives in Redis. This module defines the small
store contract the gates rely on and the redis-py implementation of it.

Each operation is atomic on its own; no operation spans several keys.
"""
import asyncio
import logging
import os
from typing import Optional, Protocol, runtime_checkable

import redis.asyncio as redis_async
from dotenv import load_dotenv
from redis.exceptions import RedisError

from conversation_gate.core.errors import GateConfigurationError
from conversation_gate.core.settings import GateSettings

logger = logging.getLogger(__name__)


@runtime_checkable
class CoordinationStore(Protocol):
    """Key-value operations the gates coordinate through. Durations are in ms."""

    async def ensure_connected(self) -> None: ...

    async def append(self, list_key: str, value: str) -> None: ...

    async def set_expiry(self, key: str, duration_ms: int) -> None: ...

    async def read_last(self, list_key: str) -> Optional[str]: ...

    async def read_all(self, list_key: str) -> list[str]: ...

    async def delete(self, key: str) -> None: ...

    async def conditional_set(self, key: str, value: str, duration_ms: int) -> bool: ...

    async def get(self, key: str) -> Optional[str]: ...


class RedisCoordinationStore:
    """
    CoordinationStore backed by a Redis server through ``redis.asyncio``.

    The client is created eagerly but connects lazily: the first gate call
    runs :meth:`ensure_connected`, which pings the server once. A failed
    ping leaves the store unconnected so the next call tries again.

    Attributes:
        redis_url: Connection string the client was built from
    """

    def __init__(
        self,
        redis_url: Optional[str] = None,
        socket_timeout_seconds: float = 5.0,
        client: Optional[redis_async.Redis] = None,
    ):
        """
        Initialize the store.

        Args:
            redis_url: Redis connection string. Falls back to REDIS_URL.
            socket_timeout_seconds: Socket timeout for every Redis command
            client: Pre-built redis.asyncio client (takes precedence over the URL)

        Raises:
            GateConfigurationError: If no client is given and no URL can be found
        """
        if client is None:
            if not redis_url:
                load_dotenv()
                redis_url = os.getenv("REDIS_URL") or None
            if not redis_url:
                raise GateConfigurationError(
                    "RedisCoordinationStore: REDIS_URL is not set. "
                    "Provide it in the constructor or .env file."
                )
            client = redis_async.from_url(
                redis_url,
                decode_responses=True,
                socket_timeout=socket_timeout_seconds,
                socket_connect_timeout=socket_timeout_seconds,
            )
        self.redis_url = redis_url
        self._client = client
        self._connected = False
        self._connect_lock = asyncio.Lock()

    @classmethod
    def from_settings(cls, settings: GateSettings) -> "RedisCoordinationStore":
        return cls(
            redis_url=settings.require_redis_url(),
            socket_timeout_seconds=settings.socket_timeout_seconds,
        )

    @property
    def connected(self) -> bool:
        return self._connected

    async def ensure_connected(self) -> None:
        """Ping Redis once per store; concurrent callers share the same attempt."""
        if self._connected:
            return
        async with self._connect_lock:
            if self._connected:
                return
            try:
                await self._client.ping()
            except RedisError as e:
                logger.error(f"Redis connection failed ({self.redis_url}): {e}")
                raise
            self._connected = True
            logger.debug(f"Connected to Redis at {self.redis_url}")

    async def _run(self, operation: str, key: str, awaitable):
        try:
            return await awaitable
        except RedisError as e:
            logger.error(f"Redis error during {operation} on {key}: {e}")
            raise

    # ------------------------------------------------------------------
    # Coordination operations
    # ------------------------------------------------------------------

    async def append(self, list_key: str, value: str) -> None:
        await self._run("append", list_key, self._client.rpush(list_key, value))

    async def set_expiry(self, key: str, duration_ms: int) -> None:
        """Refresh the TTL of *key*. Redis ignores this when the key is absent."""
        await self._run("set_expiry", key, self._client.pexpire(key, duration_ms))

    async def read_last(self, list_key: str) -> Optional[str]:
        return await self._run("read_last", list_key, self._client.lindex(list_key, -1))

    async def read_all(self, list_key: str) -> list[str]:
        return await self._run("read_all", list_key, self._client.lrange(list_key, 0, -1))

    async def delete(self, key: str) -> None:
        await self._run("delete", key, self._client.delete(key))

    async def conditional_set(self, key: str, value: str, duration_ms: int) -> bool:
        """SET NX PX: True only for the caller that created *key*."""
        result = await self._run(
            "conditional_set", key, self._client.set(key, value, px=duration_ms, nx=True)
        )
        return bool(result)

    async def get(self, key: str) -> Optional[str]:
        return await self._run("get", key, self._client.get(key))

    # ------------------------------------------------------------------
    # Operator helpers
    # ------------------------------------------------------------------

    async def set(self, key: str, value: str) -> None:
        await self._run("set", key, self._client.set(key, value))

    async def pttl(self, key: str) -> Optional[int]:
        """Remaining TTL in ms, or None when the key is missing or never expires."""
        ttl = await self._run("pttl", key, self._client.pttl(key))
        return ttl if ttl is not None and ttl >= 0 else None

    async def ping(self) -> bool:
        return bool(await self._run("ping", "-", self._client.ping()))

    async def close(self) -> None:
        await self._client.aclose()
        self._connected = False

    def __repr__(self) -> str:
        return f"RedisCoordinationStore(redis_url={self.redis_url!r}, connected={self._connected})"
