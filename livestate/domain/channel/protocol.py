"""
Message contract between the connection gateway and channel states.

Wire shapes (JSON text frames):
- client -> server: {"<key>": <value>}, only the first field is honored
- server -> client on join: the full document, {} when there is none
- server -> client on update: {"<key>": <stored value>}
"""

from __future__ import annotations

from typing import Any

import orjson
from loguru import logger
from pydantic import ValidationError

from livestate.config import DEFAULT_MAX_MESSAGE_BYTES
from livestate.errors import ChannelError, MalformedMessage, UnknownChannel

from .channel_models import ChannelEvent, ConnectionState, Document, JsonValue, SelfDelivery
from .gateway import Connection, ConnectionGateway
from .registry import ChannelRegistry


def encode_frame(payload: Document) -> str:
    return orjson.dumps(payload).decode("utf-8")


class BroadcastProtocol:
    """Drives connection open/message/close events against the registry."""

    def __init__(
        self,
        registry: ChannelRegistry,
        gateway: ConnectionGateway,
        *,
        self_delivery: SelfDelivery = SelfDelivery.EXCLUDE,
        max_message_bytes: int = DEFAULT_MAX_MESSAGE_BYTES,
        event_model: type[ChannelEvent] = ChannelEvent,
    ):
        self.registry = registry
        self.gateway = gateway
        self.self_delivery = self_delivery
        self.max_message_bytes = max_message_bytes
        self.event_model = event_model

    def decode_event(self, raw: str | bytes) -> ChannelEvent:
        """
        Parse one inbound frame into a key/value event.

        Raises:
            MalformedMessage: oversized frame, invalid JSON, not an object,
                no fields, or a key/value rejected by `event_model`
        """
        data = raw.encode("utf-8") if isinstance(raw, str) else raw
        if len(data) > self.max_message_bytes:
            raise MalformedMessage(
                f"Message of {len(data)} bytes exceeds {self.max_message_bytes} bytes"
            )

        try:
            payload: Any = orjson.loads(data)
        except orjson.JSONDecodeError as e:
            raise MalformedMessage(f"Bad JSON: {e}") from e

        if not isinstance(payload, dict) or not payload:
            raise MalformedMessage("Message must be a JSON object with one field")

        key, value = next(iter(payload.items()))
        try:
            return self.event_model(key=key, value=value)
        except ValidationError as e:
            raise MalformedMessage(f"Invalid event: {e.errors()}") from e

    async def on_open(self, connection: Connection) -> Document | None:
        """
        Subscribe the connection and queue the current snapshot to it.

        Subscription and snapshot happen under the channel lock, so any update
        applied after the snapshot is also published to this connection.

        Raises:
            CapacityExceeded: the channel is unseen and the registry is full
        """
        state = await self.registry.get_or_create(connection.channel_id)
        async with state.locked():
            self.gateway.subscribe(connection)
            document = state.get_all()
            connection.state = ConnectionState.OPEN
            connection.deliver(encode_frame(document or {}))

        logger.info(
            "Connection opened: {} channel={} subscribers={}",
            connection.id,
            connection.channel_id,
            self.gateway.subscriber_count(connection.channel_id),
        )
        return document

    async def apply(self, channel_id: str, event: ChannelEvent) -> JsonValue:
        """
        Apply one event to an existing channel and return the stored value.

        Raises:
            UnknownChannel: the channel is not in the registry
            MalformedMessage: the value is not JSON-serializable
        """
        state = self.registry.get(channel_id)
        if state is None:
            raise UnknownChannel(f"Channel not found: {channel_id}")
        return await state.set(event.key, event.value)

    async def on_message(self, connection: Connection, raw: str | bytes) -> ChannelEvent | None:
        """
        Apply an inbound frame and broadcast the result.

        Malformed frames and frames for unknown channels are dropped; the
        connection stays open. Returns the applied event, or None if dropped.
        """
        if not connection.is_open:
            logger.debug("Ignoring message on {} connection {}", connection.state, connection.id)
            return None

        try:
            event = self.decode_event(raw)
            stored = await self.apply(connection.channel_id, event)
        except UnknownChannel as e:
            logger.debug("Dropped message for {}: {}", connection.channel_id, e.errmesg)
            return None
        except ChannelError as e:
            logger.warning(
                "{} {} connection={} msg={}", e.errcode, e.erresid, connection.id, e.errmesg
            )
            return None

        exclude = connection if self.self_delivery is SelfDelivery.EXCLUDE else None
        self.gateway.publish(
            connection.channel_id, encode_frame({event.key: stored}), exclude=exclude
        )
        return ChannelEvent(key=event.key, value=stored)

    async def on_close(self, connection: Connection) -> None:
        self.gateway.unsubscribe(connection)
        if connection.state is ConnectionState.CLOSED:
            return
        connection.close()
        logger.info("Connection closed: {} channel={}", connection.id, connection.channel_id)


__all__ = [
    "BroadcastProtocol",
    "encode_frame",
]
