from fastapi import APIRouter, Depends

from livestate.api.dependency import Gateway, Registry
from livestate.api.utils import ApiSuccess, verify_api_key
from livestate.errors import UnknownChannel

router = APIRouter(prefix="/admin/channels", dependencies=[Depends(verify_api_key)], tags=["Admin"])


@router.get("/stats")
async def channel_stats(registry: Registry, gateway: Gateway) -> ApiSuccess:
    return ApiSuccess(
        results={
            "channels": registry.count(),
            "max_channels": registry.max_channels,
            "connections": gateway.connection_count(),
            "persistence": registry.persistence_enabled,
        }
    )


@router.get("/{channel_id}")
async def get_channel(channel_id: str, registry: Registry, gateway: Gateway) -> ApiSuccess:
    """Inspect a loaded channel without creating it."""
    state = registry.get(channel_id)
    if state is None:
        raise UnknownChannel(f"Channel not found: {channel_id}")

    return ApiSuccess(
        results={
            "channel_id": channel_id,
            "document": await state.snapshot(),
            "version": state.version,
            "subscribers": gateway.subscriber_count(channel_id),
        }
    )


@router.delete("/{channel_id}")
async def delete_channel(channel_id: str, registry: Registry) -> ApiSuccess:
    """Drop a channel from memory and its persisted record. Idempotent."""
    deleted = await registry.delete(channel_id)
    return ApiSuccess(results={"channel_id": channel_id, "deleted": deleted})
