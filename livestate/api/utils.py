import sys
from functools import lru_cache
from os import environ
from pathlib import Path
from traceback import TracebackException
from typing import Any, Literal
from uuid import uuid4

from fastapi import Header, HTTPException, Request
from fastapi.responses import ORJSONResponse
from loguru import logger
from pydantic import BaseModel, Field

from livestate.errors import ChannelErrorCode, HttpStatusCode


def format_error(ex: BaseException) -> str:
    return "".join(TracebackException.from_exception(ex).format())


class ApiResponse(BaseModel):
    version: str | None = Field(default_factory=lambda: environ.get("BUILD_COMMIT", "dev"))


class ApiSuccess(ApiResponse):
    success: Literal[True] = True
    results: Any = "OK"


class ApiFailure(ApiResponse):
    success: Literal[False] = False
    errcode: str = ChannelErrorCode.E_INTERNAL_ERROR.value
    erresid: str = Field(default_factory=lambda: uuid4().hex[:10])
    errmesg: str = "We are sorry, an error occurred."


def api_failure(
    errcode: str | None = None, errmesg: Exception | str | None = None, *, trace: Any = None
) -> ApiFailure:
    if not errcode:
        errcode = ApiFailure.model_fields["errcode"].default

    if isinstance(errmesg, Exception):
        errmesg = format_error(errmesg)

    if not errmesg:
        errmesg = ApiFailure.model_fields["errmesg"].default

    failure = ApiFailure(errcode=str(errcode), errmesg=errmesg)
    logger.warning(f"{failure.errcode} {failure.erresid}\n{failure.errmesg} trace={trace}")
    return failure


def make_response(results: Any, *, status_code: int | None = None) -> ORJSONResponse:
    if isinstance(results, Exception):
        results = api_failure(errmesg=results)
        status_code = status_code or 500
    elif isinstance(results, ApiFailure):
        if status_code is None:
            is_internal = results.errcode == ChannelErrorCode.E_INTERNAL_ERROR.value
            status_code = 500 if is_internal else 400
    else:
        status_code = status_code or 200

    content = results.model_dump() if hasattr(results, "model_dump") else results
    return ORJSONResponse(status_code=status_code, content=content)


async def verify_api_key(request: Request, x_api_key: str | None = Header(default=None)):
    expected = request.app.state.settings.internal_api_key
    if not expected or x_api_key != expected:
        logger.warning("Invalid API key attempt: path={}", request.url.path)
        raise HTTPException(status_code=HttpStatusCode.UNAUTHORIZED, detail="Invalid API key")


@lru_cache
def get_worker_info():
    project_root = Path(__file__).parent.parent.parent
    worker_name = environ.get("WORKER_NAME", project_root.name)

    parts = environ.get("BUILD_COMMIT", "").split("-")
    commit_id = parts[1] if len(parts) > 1 else "dev"

    return worker_name, commit_id


def init_logger(debug: bool = False):
    logger.remove()

    worker_name, commit_id = get_worker_info()

    if debug:
        logger_level = "DEBUG"
        logger_format = (
            f"<yellow>{worker_name}:{commit_id}</yellow> | "
            "<green>{time:MM-DD HH:mm:ss.SSS}</green> | "
            "<level>{level: <8}</level> | "
            "<cyan>{name}</cyan>:<cyan>{function}</cyan>:<cyan>{line}</cyan> | "
            "<level>{message}</level>"
        )
    else:
        logger_level = "INFO"
        logger_format = (
            f"{worker_name}:{commit_id} | "
            "{time:MM-DD HH:mm:ss.SSS} | "
            "{level: <8} | "
            "{name}:{function}:{line} | "
            "{message}"
        )
    logger.add(sys.stderr, level=logger_level, format=logger_format)
