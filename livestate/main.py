import time
import uuid
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import ORJSONResponse
from granian import Granian
from loguru import logger
from starlette.middleware.base import BaseHTTPMiddleware

from livestate.api.errors import app_error_handler, app_validation_exception_handler
from livestate.api.routers import admin, channel, health
from livestate.api.utils import api_failure, format_error, init_logger
from livestate.config import AppSettings, EnvironConfig
from livestate.domain.channel.gateway import ConnectionGateway
from livestate.domain.channel.persistence import RedisPersistence
from livestate.domain.channel.protocol import BroadcastProtocol
from livestate.domain.channel.registry import ChannelRegistry
from livestate.errors import ChannelError, ChannelErrorCode
from livestate.storage.redis import RedisManager


class HTTPLoggingMiddleware(BaseHTTPMiddleware):
    async def dispatch(self, request: Request, call_next):  # type: ignore
        start_time = time.time()
        request_id = str(uuid.uuid4())[:8]

        logger.info(f"[{request_id}] {request.method} {request.url.path}")

        try:
            response = await call_next(request)
            process_time = (time.time() - start_time) * 1000
            logger.info(
                f"[{request_id}] {request.method} {request.url.path} - "
                f"Status: {response.status_code} - "
                f"Duration: {process_time:.2f}ms"
            )
            return response

        except Exception as exc:
            process_time = (time.time() - start_time) * 1000
            logger.error(
                f"[{request_id}] Unhandled exception in {request.method} {request.url.path} - "
                f"Duration: {process_time:.2f}ms - "
                f"Error: {type(exc).__name__}: {exc}\n"
                f"Traceback:\n{format_error(exc)}"
            )
            failure = api_failure(
                errcode=ChannelErrorCode.E_INTERNAL_ERROR,
                errmesg=f"Internal server error (request_id: {request_id})",
            )
            return ORJSONResponse(status_code=500, content=failure.model_dump())


@asynccontextmanager
async def lifespan(server: FastAPI):
    settings: AppSettings = server.state.settings
    init_logger(settings.debug)

    logger.info("Application startup...")

    redis_manager = None
    persistence = None
    if settings.redis_url:
        redis_manager = RedisManager({"default": settings.redis_url})
        persistence = RedisPersistence(redis_manager)
    else:
        logger.info("No Redis URL configured, channel state is kept in memory only")

    registry = ChannelRegistry(
        persistence,
        max_channels=settings.max_channels,
        timeout=settings.persist_timeout,
    )
    gateway = ConnectionGateway()

    server.state.registry = registry
    server.state.gateway = gateway
    server.state.protocol = BroadcastProtocol(
        registry,
        gateway,
        self_delivery=settings.self_delivery,
        max_message_bytes=settings.max_message_bytes,
    )
    logger.info(
        "Channel registry ready: max_channels={} self_delivery={}",
        settings.max_channels,
        settings.self_delivery,
    )

    yield

    logger.info("Application shutdown...")

    await registry.shutdown()
    if redis_manager is not None:
        await redis_manager.close_all()


def create_app(settings: AppSettings | None = None) -> FastAPI:
    if settings is None:
        settings = AppSettings.from_config(EnvironConfig())

    server = FastAPI(
        version="1.0",
        title="livestate",
        docs_url=None,
        redoc_url=None,
        openapi_url=None,
        default_response_class=ORJSONResponse,
        lifespan=lifespan,
    )
    server.state.settings = settings

    server.add_middleware(HTTPLoggingMiddleware)
    server.add_middleware(
        CORSMiddleware,  # type: ignore
        allow_origins=settings.cors_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    server.add_exception_handler(RequestValidationError, app_validation_exception_handler)  # type: ignore
    server.add_exception_handler(ChannelError, app_error_handler)  # type: ignore

    server.include_router(health.router)
    server.include_router(admin.router)
    server.include_router(channel.router)

    return server


app = create_app()


def build_granian_kwargs(config: EnvironConfig):
    return {
        "interface": "asgi",
        "address": config.get("API_HOST", "0.0.0.0"),
        "port": int(config.get("API_PORT", 3001)),
        # channel state lives in process memory, so exactly one worker
        "workers": 1,
        "reload": config.get_bool("DEBUG"),
    }


def main():
    Granian("livestate.main:app", **build_granian_kwargs(EnvironConfig())).serve()


if __name__ == "__main__":
    main()
