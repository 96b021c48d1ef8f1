from fastapi import Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import ORJSONResponse
from loguru import logger

from livestate.errors import ChannelError, ChannelErrorCode, HttpStatusCode

from .utils import ApiFailure, api_failure, make_response


async def app_error_handler(request: Request, exc: ChannelError) -> ORJSONResponse:
    """Convert a ChannelError into the ApiFailure envelope."""
    log_msg = f"{exc.errcode} {exc.erresid} msg={exc.errmesg} caller={exc.caller_info}"
    if exc.status_code >= 500 and exc.errcode == ChannelErrorCode.E_INTERNAL_ERROR:
        logger.error(log_msg)
    else:
        logger.warning(log_msg)

    failure = ApiFailure(errcode=exc.errcode.value, errmesg=exc.errmesg, erresid=exc.erresid)
    return make_response(failure, status_code=exc.status_code)


async def app_validation_exception_handler(
    request: Request, exc: RequestValidationError
) -> ORJSONResponse:
    errors = exc.errors()

    logger.warning(
        "Validation error: path={} method={} errors={}",
        request.url.path,
        request.method,
        errors,
    )

    failure = api_failure(ChannelErrorCode.E_INVALID_PARAMS, errmesg=str(errors))
    return make_response(failure, status_code=HttpStatusCode.UNPROCESSABLE_ENTITY)
