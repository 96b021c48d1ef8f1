import pytest

from livestate.errors import (
    CapacityExceeded,
    ChannelError,
    ChannelErrorCode,
    MalformedMessage,
    UnknownChannel,
)


@pytest.mark.parametrize(
    "error_cls, errcode, status_code",
    [
        (ChannelError, ChannelErrorCode.E_INTERNAL_ERROR, 500),
        (CapacityExceeded, ChannelErrorCode.E_CAPACITY_EXCEEDED, 503),
        (MalformedMessage, ChannelErrorCode.E_MALFORMED_MESSAGE, 400),
        (UnknownChannel, ChannelErrorCode.E_UNKNOWN_CHANNEL, 404),
    ],
)
def test_error_codes(error_cls, errcode, status_code):
    err = error_cls("boom")
    assert err.errcode is errcode
    assert err.status_code == status_code
    assert len(err.erresid) == 10
    assert ":test_error_codes:" in err.caller_info


def test_error_codes_are_all_in_use():
    # E_INVALID_PARAMS is the request validation handler's code
    assert {code.value for code in ChannelErrorCode} == {
        "E_INTERNAL_ERROR",
        "E_INVALID_PARAMS",
        "E_CAPACITY_EXCEEDED",
        "E_MALFORMED_MESSAGE",
        "E_UNKNOWN_CHANNEL",
    }


def test_overrides():
    err = ChannelError("nope", errcode=ChannelErrorCode.E_INVALID_PARAMS, status_code=422)
    assert err.errcode is ChannelErrorCode.E_INVALID_PARAMS
    assert err.status_code == 422
    assert err.errmesg == "nope"
