from ulid import ULID

CHANNEL_ID_LENGTH = 8


def new_ulid(prefix: str | None = None) -> str:
    value = str(ULID()).lower()
    return f"{prefix}{value}" if prefix else value


def new_channel_id() -> str:
    # tail of the ULID is its random part
    return new_ulid()[-CHANNEL_ID_LENGTH:]


def new_connection_id() -> str:
    return new_ulid("cn_")
