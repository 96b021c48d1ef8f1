"""Best-effort durable mirror of channel documents."""

from __future__ import annotations

from typing import TYPE_CHECKING, Protocol

from redis.asyncio import Redis

if TYPE_CHECKING:
    from livestate.storage.redis import RedisManager

STATE_KEY_PREFIX = "state"


class PersistenceAdapter(Protocol):
    """Load/save/delete one JSON blob per channel id."""

    async def load(self, channel_id: str) -> bytes | None: ...

    async def save(self, channel_id: str, blob: bytes) -> None: ...

    async def delete(self, channel_id: str) -> None: ...

    async def aclose(self) -> None: ...


def state_key(channel_id: str) -> str:
    return f"{STATE_KEY_PREFIX}:{channel_id}"


class RedisPersistence:
    """PersistenceAdapter backed by a single Redis key per channel."""

    def __init__(self, redis_manager: RedisManager, label: str = "default"):
        self.redis_manager = redis_manager
        self.label = label

    @property
    def redis_client(self) -> Redis:
        return self.redis_manager.get_cache_client(self.label)

    async def load(self, channel_id: str) -> bytes | None:
        data = await self.redis_client.get(state_key(channel_id))
        if isinstance(data, str):
            return data.encode("utf-8")
        return data

    async def save(self, channel_id: str, blob: bytes) -> None:
        await self.redis_client.set(state_key(channel_id), blob)

    async def delete(self, channel_id: str) -> None:
        await self.redis_client.delete(state_key(channel_id))

    async def aclose(self) -> None:
        await self.redis_manager.close_cache_client(self.label)


__all__ = [
    "PersistenceAdapter",
    "RedisPersistence",
    "state_key",
]
