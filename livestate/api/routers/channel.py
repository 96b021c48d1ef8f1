import asyncio

from fastapi import APIRouter, WebSocket, WebSocketDisconnect, status
from fastapi.responses import ORJSONResponse, Response
from loguru import logger

from livestate.api.dependency import CHANNEL_COOKIE, ChannelId, Protocol, Registry, Settings
from livestate.domain.channel.gateway import Connection
from livestate.errors import CapacityExceeded

router = APIRouter()

THIRTY_DAYS = 60 * 60 * 24 * 30


def set_channel_cookie(response: Response, channel_id: str) -> None:
    response.set_cookie(
        CHANNEL_COOKIE,
        channel_id,
        max_age=THIRTY_DAYS,
        path="/",
        samesite="lax",
        httponly=False,
        secure=False,
    )


def channel_cookie_header(channel_id: str) -> tuple[bytes, bytes]:
    response = Response()
    set_channel_cookie(response, channel_id)
    return b"set-cookie", response.headers["set-cookie"].encode("latin-1")


@router.get("/")
async def get_channel_state(channel_id: ChannelId, registry: Registry) -> Response:
    """Return the channel's document (null if it has none) and issue the channel cookie."""
    state = await registry.get_or_create(channel_id)
    response = ORJSONResponse(await state.snapshot())
    set_channel_cookie(response, channel_id)
    return response


async def stop_writer(writer: asyncio.Task, connection: Connection) -> None:
    """Cancel a connection's writer task and wait for it, logging a failed writer."""
    writer.cancel()
    await asyncio.wait({writer})
    if not writer.cancelled() and writer.exception() is not None:
        logger.warning("Writer failed: {} error={!r}", connection.id, writer.exception())


@router.websocket("/")
async def channel_stream(
    websocket: WebSocket,
    channel_id: ChannelId,
    protocol: Protocol,
    settings: Settings,
):
    """Bidirectional state stream: snapshot on join, then one frame per update."""

    async def close_slow_client() -> None:
        await websocket.close(code=status.WS_1013_TRY_AGAIN_LATER, reason="Outbox overflow")

    connection = Connection(
        channel_id,
        websocket.send_text,
        outbox_size=settings.outbox_size,
        closer=close_slow_client,
    )

    try:
        await protocol.on_open(connection)
    except CapacityExceeded as e:
        logger.warning("Rejected connection for {}: {}", channel_id, e.errmesg)
        await websocket.close(code=status.WS_1013_TRY_AGAIN_LATER, reason=e.errmesg)
        return

    writer: asyncio.Task | None = None
    try:
        await websocket.accept(headers=[channel_cookie_header(channel_id)])
        writer = asyncio.create_task(connection.run_writer(), name=f"ws-writer:{connection.id}")

        while True:
            message = await websocket.receive()
            if message["type"] == "websocket.disconnect":
                break
            raw = message.get("text")
            if raw is None:
                raw = message.get("bytes")
            if raw is None:
                continue
            await protocol.on_message(connection, raw)
    except WebSocketDisconnect:
        pass
    finally:
        if writer is not None:
            await stop_writer(writer, connection)
        await protocol.on_close(connection)
