"""Channel id to ChannelState registry."""

from __future__ import annotations

import asyncio

from loguru import logger

from livestate.config import DEFAULT_MAX_CHANNELS, DEFAULT_PERSIST_TIMEOUT
from livestate.errors import CapacityExceeded

from .channel_models import Document
from .persistence import PersistenceAdapter
from .state import ChannelState


class ChannelRegistry:
    """
    Owns every ChannelState of the process.

    Creation is construct-once: concurrent first accesses for the same unseen
    channel id share one pending future, so exactly one ChannelState is built
    and loaded. Channels being created count toward `max_channels`.

    Channels are kept for the life of the process; there is no eviction.
    """

    def __init__(
        self,
        persistence: PersistenceAdapter | None = None,
        *,
        max_channels: int = DEFAULT_MAX_CHANNELS,
        timeout: float = DEFAULT_PERSIST_TIMEOUT,
    ):
        self._persistence = persistence
        self.max_channels = max_channels
        self._timeout = timeout
        self._channels: dict[str, ChannelState] = {}
        self._pending: dict[str, asyncio.Future[ChannelState]] = {}

    @property
    def persistence_enabled(self) -> bool:
        return self._persistence is not None

    def count(self) -> int:
        return len(self._channels)

    def get(self, channel_id: str) -> ChannelState | None:
        return self._channels.get(channel_id)

    def __contains__(self, channel_id: str) -> bool:
        return channel_id in self._channels

    async def get_or_create(self, channel_id: str, initial: Document | None = None) -> ChannelState:
        """
        Return the channel's state, creating and loading it on first access.

        Raises:
            CapacityExceeded: if the channel is unseen and the registry is full
        """
        while True:
            state = self._channels.get(channel_id)
            if state is not None:
                return state

            pending = self._pending.get(channel_id)
            if pending is None:
                break
            try:
                return await asyncio.shield(pending)
            except asyncio.CancelledError:
                # the creating task was cancelled, not us: try again
                if not pending.cancelled() or asyncio.current_task().cancelling():
                    raise

        if len(self._channels) + len(self._pending) >= self.max_channels:
            logger.warning(
                "Channel capacity reached: max={} rejected={}", self.max_channels, channel_id
            )
            raise CapacityExceeded(f"Max of {self.max_channels} channels reached")

        future: asyncio.Future[ChannelState] = asyncio.get_running_loop().create_future()
        self._pending[channel_id] = future
        try:
            state = ChannelState(channel_id, self._persistence, initial, timeout=self._timeout)
            await state.load()
        except asyncio.CancelledError:
            self._pending.pop(channel_id, None)
            future.cancel()
            raise
        except Exception as e:
            self._pending.pop(channel_id, None)
            future.set_exception(e)
            # waiters re-raise it; mark retrieved when there are none
            future.exception()
            raise

        self._channels[channel_id] = state
        self._pending.pop(channel_id, None)
        future.set_result(state)
        logger.info("Channel created: {} (count={})", channel_id, len(self._channels))
        return state

    async def delete(self, channel_id: str) -> bool:
        """
        Remove a channel and request deletion of its persisted record.

        Idempotent. Returns True if the channel was tracked in memory. A
        channel still being created is waited for, then removed.
        """
        pending = self._pending.get(channel_id)
        if pending is not None:
            try:
                await asyncio.shield(pending)
            except asyncio.CancelledError:
                if not pending.cancelled() or asyncio.current_task().cancelling():
                    raise
            except Exception as e:
                logger.debug("Creation of {} failed before delete: {!r}", channel_id, e)

        state = self._channels.pop(channel_id, None)
        if state is not None:
            state.discard()
            logger.info("Channel deleted: {} (count={})", channel_id, len(self._channels))

        if self._persistence is not None:
            try:
                await asyncio.wait_for(self._persistence.delete(channel_id), self._timeout)
            except TimeoutError:
                logger.warning(
                    "Delete timed out after {}s: channel={}", self._timeout, channel_id
                )
            except Exception as e:
                logger.error("Failed to delete state: channel={} error={!r}", channel_id, e)

        return state is not None

    async def shutdown(self) -> None:
        """Wait briefly for in-flight saves, then release the persistence adapter."""
        if self._persistence is None:
            return

        tasks = [task for state in self._channels.values() for task in state.pending_saves]
        if tasks:
            _, pending = await asyncio.wait(tasks, timeout=self._timeout)
            if pending:
                logger.warning("Shutting down with {} saves still in flight", len(pending))

        try:
            await self._persistence.aclose()
        except Exception as e:
            logger.error("Error closing persistence adapter: {!r}", e)
        logger.info("Channel registry shut down (channels={})", len(self._channels))
