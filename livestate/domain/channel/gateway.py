"""Topic-based fan-out to open connections."""

from __future__ import annotations

import asyncio
from collections.abc import Awaitable, Callable

from loguru import logger

from livestate.config import DEFAULT_OUTBOX_SIZE
from livestate.domain.utils.idgen import new_connection_id

from .channel_models import ConnectionState

Sender = Callable[[str], Awaitable[None]]
Closer = Callable[[], Awaitable[None]]


class Connection:
    """
    One client connection subscribed to a channel topic.

    Frames are queued to a bounded outbox and written by `run_writer`, so
    publishing never waits on a slow client. A client that lets its outbox
    fill up is closed instead of losing frames: it reconnects and starts over
    from a fresh snapshot.
    """

    def __init__(
        self,
        channel_id: str,
        sender: Sender,
        *,
        outbox_size: int = DEFAULT_OUTBOX_SIZE,
        connection_id: str | None = None,
        closer: Closer | None = None,
    ):
        self.id = connection_id or new_connection_id()
        self.channel_id = channel_id
        self.state = ConnectionState.CONNECTING
        # None wakes the writer up to stop
        self.outbox: asyncio.Queue[str | None] = asyncio.Queue(maxsize=outbox_size)
        self.overflowed = False
        self._sender = sender
        self._closer = closer

    def __repr__(self) -> str:
        return f"Connection(id={self.id!r}, channel_id={self.channel_id!r}, state={self.state})"

    @property
    def is_open(self) -> bool:
        return self.state is ConnectionState.OPEN

    def deliver(self, frame: str) -> bool:
        """
        Queue a frame without blocking.

        Returns False once closed. A full outbox closes the connection and
        returns False.
        """
        if self.state is ConnectionState.CLOSED:
            return False
        try:
            self.outbox.put_nowait(frame)
        except asyncio.QueueFull:
            logger.warning(
                "Outbox full ({} frames), closing slow connection: {} channel={}",
                self.outbox.maxsize,
                self.id,
                self.channel_id,
            )
            self.overflowed = True
            self.close()
            return False
        return True

    async def run_writer(self) -> None:
        """
        Write queued frames until the connection closes or the sender fails.

        After an overflow the transport is closed through `closer`.
        """
        while True:
            frame = await self.outbox.get()
            if frame is None or self.state is ConnectionState.CLOSED:
                break
            await self._sender(frame)

        if self.overflowed and self._closer is not None:
            await self._closer()

    def close(self) -> None:
        """Mark the connection closed, discard queued frames and stop the writer."""
        if self.state is ConnectionState.CLOSED:
            return
        self.state = ConnectionState.CLOSED
        while not self.outbox.empty():
            self.outbox.get_nowait()
        self.outbox.put_nowait(None)


class ConnectionGateway:
    """Tracks open connections per channel topic and fans frames out to them."""

    def __init__(self):
        self._topics: dict[str, set[Connection]] = {}

    def subscribe(self, connection: Connection) -> None:
        self._topics.setdefault(connection.channel_id, set()).add(connection)
        logger.debug("Subscribed {} to {}", connection.id, connection.channel_id)

    def unsubscribe(self, connection: Connection) -> None:
        connections = self._topics.get(connection.channel_id)
        if not connections:
            return
        connections.discard(connection)
        if not connections:
            self._topics.pop(connection.channel_id, None)
        logger.debug("Unsubscribed {} from {}", connection.id, connection.channel_id)

    def publish(self, channel_id: str, frame: str, *, exclude: Connection | None = None) -> int:
        """
        Queue `frame` to every subscriber of `channel_id`. Returns the fan-out count.

        Subscribers that are closed, or that close on a full outbox, are
        unsubscribed.
        """
        delivered = 0
        for connection in list(self._topics.get(channel_id, ())):
            if connection is exclude:
                continue
            if connection.deliver(frame):
                delivered += 1
            else:
                self.unsubscribe(connection)
        return delivered

    def subscriber_count(self, channel_id: str) -> int:
        return len(self._topics.get(channel_id, ()))

    def connection_count(self) -> int:
        return sum(len(connections) for connections in self._topics.values())
