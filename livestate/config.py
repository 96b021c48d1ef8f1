"""
Centralized configuration management.

Values are read from, in priority order (later overrides earlier):
1) `env.example` (committed, safe placeholders)
2) `env.local` (optional, MUST NOT be committed)
3) System environment variables (highest priority)
"""

import os
from pathlib import Path

from dotenv import dotenv_values
from loguru import logger
from pydantic import BaseModel, Field

from .domain.channel.channel_models import SelfDelivery


DEFAULT_MAX_CHANNELS = 100_000
DEFAULT_PERSIST_TIMEOUT = 2.0
DEFAULT_MAX_MESSAGE_BYTES = 1_000_000
DEFAULT_OUTBOX_SIZE = 100


class EnvironConfig:
    """
    Loads environment variables from env files and the system environment,
    providing dictionary-like access with default values.
    """

    def __init__(self, root: Path | None = None):
        self._root = root or Path(__file__).parent.parent
        self._config = {}
        self._load_config()

    def _load_config(self):
        example_path = self._root / "env.example"
        if example_path.exists():
            self._config.update(dotenv_values(example_path))
            logger.info("Loaded environment variables from {}", example_path)

        local_path = self._root / "env.local"
        if local_path.exists():
            self._config.update(dotenv_values(local_path))
            logger.info("Loaded and overrode environment variables from {}", local_path)

        self._config.update(os.environ)

    def __getitem__(self, key):
        if key not in self._config:
            raise KeyError(f"Configuration key '{key}' not found")
        return self._config[key]

    def get(self, key, default=None):
        value = self._config.get(key)
        # dotenv yields None for bare keys and "" for `KEY=`
        if value is None or value == "":
            return default
        return value

    def reload(self):
        """Reload configuration from files and environment."""
        self._config.clear()
        self._load_config()
        logger.info("Configuration reloaded")

    def __contains__(self, key):
        return key in self._config

    def items(self):
        return self._config.items()

    def get_bool(self, key: str, default: bool = False) -> bool:
        value = self.get(key)
        if value is None:
            return default
        return str(value).strip().lower() in {"1", "true", "yes", "on"}

    def get_redis_url(self) -> str | None:
        """
        Get the persistence Redis URL.

        REDIS_URL_DEFAULT wins over REDIS_URL. Returns None when neither is
        set, which disables persistence.
        """
        return self.get("REDIS_URL_DEFAULT") or self.get("REDIS_URL")

    def get_max_channels(self) -> int:
        return self._get_positive_int("MAX_CHANNELS", DEFAULT_MAX_CHANNELS)

    def get_max_message_bytes(self) -> int:
        return self._get_positive_int("MAX_MESSAGE_BYTES", DEFAULT_MAX_MESSAGE_BYTES)

    def get_outbox_size(self) -> int:
        return self._get_positive_int("OUTBOX_SIZE", DEFAULT_OUTBOX_SIZE)

    def get_persist_timeout(self) -> float:
        raw = self.get("PERSIST_TIMEOUT_SECONDS", DEFAULT_PERSIST_TIMEOUT)
        try:
            timeout = float(raw)
        except (ValueError, TypeError):
            logger.warning(
                "Invalid PERSIST_TIMEOUT_SECONDS value '{}', defaulting to {}",
                raw,
                DEFAULT_PERSIST_TIMEOUT,
            )
            return DEFAULT_PERSIST_TIMEOUT
        if timeout <= 0:
            logger.warning(
                "PERSIST_TIMEOUT_SECONDS value {} must be positive, defaulting to {}",
                timeout,
                DEFAULT_PERSIST_TIMEOUT,
            )
            return DEFAULT_PERSIST_TIMEOUT
        return timeout

    def get_self_delivery(self) -> SelfDelivery:
        if self.get_bool("BROADCAST_TO_SENDER"):
            return SelfDelivery.INCLUDE
        return SelfDelivery.EXCLUDE

    def get_cors_origins(self) -> list[str]:
        raw = self.get("API_CORS_ORIGINS", "*")
        return [x.strip() for x in str(raw).split(",") if x.strip()]

    def _get_positive_int(self, key: str, default: int) -> int:
        raw = self.get(key, default)
        try:
            value = int(raw)
        except (ValueError, TypeError):
            logger.warning("Invalid {} value '{}', defaulting to {}", key, raw, default)
            return default
        if value <= 0:
            logger.warning("{} value {} must be positive, defaulting to {}", key, value, default)
            return default
        return value


class AppSettings(BaseModel):
    """Typed view of the configuration consumed by the app factory."""

    redis_url: str | None = None
    max_channels: int = Field(default=DEFAULT_MAX_CHANNELS, gt=0)
    persist_timeout: float = Field(default=DEFAULT_PERSIST_TIMEOUT, gt=0)
    self_delivery: SelfDelivery = SelfDelivery.EXCLUDE
    max_message_bytes: int = Field(default=DEFAULT_MAX_MESSAGE_BYTES, gt=0)
    outbox_size: int = Field(default=DEFAULT_OUTBOX_SIZE, gt=0)
    cors_origins: list[str] = Field(default_factory=lambda: ["*"])
    internal_api_key: str | None = None
    debug: bool = False

    @classmethod
    def from_config(cls, config: EnvironConfig) -> "AppSettings":
        return cls(
            redis_url=config.get_redis_url(),
            max_channels=config.get_max_channels(),
            persist_timeout=config.get_persist_timeout(),
            self_delivery=config.get_self_delivery(),
            max_message_bytes=config.get_max_message_bytes(),
            outbox_size=config.get_outbox_size(),
            cors_origins=config.get_cors_origins(),
            internal_api_key=config.get("INTERNAL_API_KEY"),
            debug=config.get_bool("DEBUG"),
        )
