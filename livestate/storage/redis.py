"""
Simple Redis client manager that creates and tracks clients.
"""

import threading
from typing import Dict
from urllib.parse import parse_qsl, urlencode, urlsplit, urlunsplit

from loguru import logger
from redis.asyncio import Redis
from redis.asyncio.cluster import RedisCluster


class RedisManager:
    """
    Redis client manager.

    Features:
    - Creates and tracks Redis clients per label
    - Supports both standalone and cluster modes (`?mode=cluster`)
    - Never logs passwords

    One instance is owned by the application lifespan.
    """

    def __init__(self, connection_strings: Dict[str, str]):
        self._clients: Dict[str, Redis] = {}
        self._connection_strings: Dict[str, str] = {}
        self._connection_modes: Dict[str, str] = {}
        self._lock = threading.Lock()

        for label, value in connection_strings.items():
            self._connection_strings[label] = value
            mode = self._extract_mode_from_url(value)
            self._connection_modes[label] = mode
            logger.info(
                "Loaded Redis connection string for label '{}' (mode: {}): {}",
                label,
                mode,
                self._hide_password_in_connection_string(value),
            )

    def _extract_mode_from_url(self, connection_string: str) -> str:
        query = dict(parse_qsl(urlsplit(connection_string).query))
        mode = query.get("mode")
        if mode in ("cluster", "standalone"):
            return mode
        return "standalone"

    def _clean_connection_string(self, connection_string: str) -> str:
        """Remove the mode parameter, which redis-py does not understand."""
        parts = urlsplit(connection_string)
        params = [(k, v) for k, v in parse_qsl(parts.query) if k != "mode"]
        return urlunsplit(parts._replace(query=urlencode(params)))

    def _hide_password_in_connection_string(self, connection_string: str) -> str:
        parts = urlsplit(connection_string)
        if not parts.password:
            return connection_string
        host = parts.netloc.rsplit("@", 1)[-1]
        user = parts.username or ""
        return urlunsplit(parts._replace(netloc=f"{user}:***@{host}"))

    def get_cache_client(self, label: str = "default") -> Redis:
        """
        Get Redis client by label.

        Raises:
            ValueError: If label not found
        """
        with self._lock:
            if label not in self._clients:
                if label not in self._connection_strings:
                    raise ValueError(f"No Redis connection string found for label '{label}'")

                mode = self._connection_modes.get(label, "standalone")
                clean_url = self._clean_connection_string(self._connection_strings[label])

                logger.info("Open Redis cache client for label '{}' (mode: {})", label, mode)

                if mode == "cluster":
                    self._clients[label] = RedisCluster.from_url(clean_url)
                else:
                    self._clients[label] = Redis.from_url(clean_url)

            return self._clients[label]

    async def close_cache_client(self, label: str):
        with self._lock:
            client = self._clients.pop(label, None)
        if client is None:
            return
        try:
            await client.aclose()
            logger.info("Closed Redis cache client for label '{}'", label)
        except Exception as e:
            logger.error("Error closing Redis cache client for label '{}': {}", label, e)

    async def close_all(self):
        with self._lock:
            labels = list(self._clients.keys())
        for label in labels:
            await self.close_cache_client(label)
