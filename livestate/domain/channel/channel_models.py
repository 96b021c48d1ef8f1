"""Channel domain models."""

from enum import Enum
from typing import Any, TypeAlias

from pydantic import BaseModel, ConfigDict, Field

JsonValue: TypeAlias = None | bool | int | float | str | list["JsonValue"] | dict[str, "JsonValue"]
Document: TypeAlias = dict[str, JsonValue]


class ConnectionState(str, Enum):
    """Connection lifecycle states.

    CONNECTING → OPEN → CLOSED

    - CONNECTING: Transport accepted, channel not resolved yet.
    - OPEN: Subscribed to the channel topic, snapshot queued.
    - CLOSED: Unsubscribed. Terminal; clients reconnect as a new connection.
    """

    CONNECTING = "connecting"
    OPEN = "open"
    CLOSED = "closed"

    def __str__(self) -> str:
        return self.value


class SelfDelivery(str, Enum):
    """Whether the sender of an update receives its own broadcast."""

    EXCLUDE = "exclude"
    INCLUDE = "include"

    def __str__(self) -> str:
        return self.value


class ChannelEvent(BaseModel):
    """
    A single key/value mutation.

    Subclass and pass to BroadcastProtocol to enforce a stricter schema.
    """

    model_config = ConfigDict(frozen=True)

    key: str = Field(min_length=1)
    value: Any = None


__all__ = [
    "ChannelEvent",
    "ConnectionState",
    "Document",
    "JsonValue",
    "SelfDelivery",
]
