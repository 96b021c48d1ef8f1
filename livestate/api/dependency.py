from typing import Annotated

from fastapi import Depends
from starlette.requests import HTTPConnection

from livestate.config import AppSettings
from livestate.domain.channel.gateway import ConnectionGateway
from livestate.domain.channel.protocol import BroadcastProtocol
from livestate.domain.channel.registry import ChannelRegistry
from livestate.domain.utils.idgen import new_channel_id

CHANNEL_COOKIE = "channelId"


def get_settings(conn: HTTPConnection) -> AppSettings:
    return conn.app.state.settings


def get_registry(conn: HTTPConnection) -> ChannelRegistry:
    return conn.app.state.registry


def get_gateway(conn: HTTPConnection) -> ConnectionGateway:
    return conn.app.state.gateway


def get_protocol(conn: HTTPConnection) -> BroadcastProtocol:
    return conn.app.state.protocol


def resolve_channel_id(conn: HTTPConnection) -> str:
    """Query param first, then the channel cookie, else a fresh id."""
    channel_id = (conn.query_params.get(CHANNEL_COOKIE) or "").strip()
    if not channel_id:
        channel_id = (conn.cookies.get(CHANNEL_COOKIE) or "").strip()
    return channel_id or new_channel_id()


Settings = Annotated[AppSettings, Depends(get_settings)]
Registry = Annotated[ChannelRegistry, Depends(get_registry)]
Gateway = Annotated[ConnectionGateway, Depends(get_gateway)]
Protocol = Annotated[BroadcastProtocol, Depends(get_protocol)]
ChannelId = Annotated[str, Depends(resolve_channel_id)]

__all__ = [
    "CHANNEL_COOKIE",
    "ChannelId",
    "Gateway",
    "Protocol",
    "Registry",
    "Settings",
]
