import inspect
from enum import Enum, IntEnum
from uuid import uuid4


class HttpStatusCode(IntEnum):
    BAD_REQUEST = 400
    UNAUTHORIZED = 401
    NOT_FOUND = 404
    UNPROCESSABLE_ENTITY = 422
    INTERNAL_SERVER_ERROR = 500
    SERVICE_UNAVAILABLE = 503


class ChannelErrorCode(str, Enum):
    E_INTERNAL_ERROR = "E_INTERNAL_ERROR"
    E_INVALID_PARAMS = "E_INVALID_PARAMS"
    E_CAPACITY_EXCEEDED = "E_CAPACITY_EXCEEDED"
    E_MALFORMED_MESSAGE = "E_MALFORMED_MESSAGE"
    E_UNKNOWN_CHANNEL = "E_UNKNOWN_CHANNEL"

    def __str__(self) -> str:
        return self.value


class ChannelError(Exception):
    """
    Base error of the broadcast engine.

    Captures the raising call site so handlers can log where the error came
    from without a full traceback.
    """

    errcode: ChannelErrorCode = ChannelErrorCode.E_INTERNAL_ERROR
    status_code: int = HttpStatusCode.INTERNAL_SERVER_ERROR

    def __init__(
        self,
        errmesg: str,
        *,
        errcode: ChannelErrorCode | None = None,
        status_code: int | None = None,
    ):
        super().__init__(errmesg)
        self.errmesg = errmesg
        if errcode is not None:
            self.errcode = errcode
        if status_code is not None:
            self.status_code = status_code
        self.erresid = uuid4().hex[:10]
        self.caller_info = _caller_info()


class CapacityExceeded(ChannelError):
    errcode = ChannelErrorCode.E_CAPACITY_EXCEEDED
    status_code = HttpStatusCode.SERVICE_UNAVAILABLE


class MalformedMessage(ChannelError):
    errcode = ChannelErrorCode.E_MALFORMED_MESSAGE
    status_code = HttpStatusCode.BAD_REQUEST


class UnknownChannel(ChannelError):
    errcode = ChannelErrorCode.E_UNKNOWN_CHANNEL
    status_code = HttpStatusCode.NOT_FOUND


def _caller_info() -> str:
    frame = inspect.currentframe()
    frame = frame.f_back if frame else None
    # skip the __init__ frames of the error classes
    while frame is not None and frame.f_code.co_name == "__init__":
        frame = frame.f_back
    if frame is None:
        return "unknown"
    module_name = frame.f_globals.get("__name__", frame.f_code.co_filename)
    return f"{module_name}:{frame.f_code.co_name}:{frame.f_lineno}"


__all__ = [
    "CapacityExceeded",
    "ChannelError",
    "ChannelErrorCode",
    "HttpStatusCode",
    "MalformedMessage",
    "UnknownChannel",
]
