"""Per-channel key/value document."""

from __future__ import annotations

import asyncio
import copy
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from typing import Any

import orjson
from loguru import logger

from livestate.config import DEFAULT_PERSIST_TIMEOUT
from livestate.errors import MalformedMessage

from .channel_models import Document, JsonValue
from .persistence import PersistenceAdapter


def normalize_value(value: Any) -> bytes:
    """Serialize a value, rejecting anything that is not plain JSON."""
    try:
        return orjson.dumps(value)
    except TypeError as e:
        raise MalformedMessage(f"Value is not JSON-serializable: {e}") from e


class ChannelState:
    """
    Owns one channel's document.

    `set` is serialized by a per-channel lock. Every successful `set` schedules
    a save to the persistence adapter that the caller never waits for. Saves
    run one at a time and always write the latest document, so a slow older
    save cannot overwrite a newer one.
    """

    def __init__(
        self,
        channel_id: str,
        persistence: PersistenceAdapter | None = None,
        initial: Document | None = None,
        *,
        timeout: float = DEFAULT_PERSIST_TIMEOUT,
    ):
        self.channel_id = channel_id
        self._persistence = persistence
        self._timeout = timeout
        self._document: Document | None = copy.deepcopy(initial) if initial is not None else None
        self._lock = asyncio.Lock()
        self._save_lock = asyncio.Lock()
        self._version = 0
        self._saved_version = 0
        self._save_tasks: set[asyncio.Task] = set()
        self._discarded = False

    def __repr__(self) -> str:
        keys = None if self._document is None else len(self._document)
        return f"ChannelState(channel_id={self.channel_id!r}, keys={keys}, version={self._version})"

    @property
    def version(self) -> int:
        return self._version

    @property
    def pending_saves(self) -> set[asyncio.Task]:
        return set(self._save_tasks)

    @property
    def has_document(self) -> bool:
        return self._document is not None

    async def load(self) -> None:
        """Replace the document with the persisted record, if any. Never raises."""
        if self._persistence is None:
            return

        try:
            blob = await asyncio.wait_for(self._persistence.load(self.channel_id), self._timeout)
        except TimeoutError:
            logger.warning("Load timed out after {}s: channel={}", self._timeout, self.channel_id)
            return
        except Exception as e:
            logger.warning("Failed to load state: channel={} error={!r}", self.channel_id, e)
            return

        if blob is None:
            return

        try:
            document = orjson.loads(blob)
        except orjson.JSONDecodeError as e:
            logger.warning("Corrupt state record: channel={} error={}", self.channel_id, e)
            return

        if not isinstance(document, dict):
            logger.warning(
                "State record is not an object: channel={} type={}",
                self.channel_id,
                type(document).__name__,
            )
            return

        self._document = document
        logger.debug("Loaded state: channel={} keys={}", self.channel_id, len(document))

    def get(self, key: str) -> JsonValue | None:
        if self._document is None:
            return None
        return copy.deepcopy(self._document.get(key))

    def get_all(self) -> Document | None:
        """Copy of the document; None when the channel has no document yet."""
        if self._document is None:
            return None
        return copy.deepcopy(self._document)

    async def snapshot(self) -> Document | None:
        async with self._lock:
            return self.get_all()

    @asynccontextmanager
    async def locked(self) -> AsyncIterator[ChannelState]:
        """Hold the mutation lock, e.g. to subscribe and snapshot atomically."""
        async with self._lock:
            yield self

    async def set(self, key: str, value: Any) -> JsonValue:
        """
        Store `value` under `key` and return the stored value.

        The returned value is what was persisted after JSON normalization
        (e.g. tuples become lists).
        """
        if not isinstance(key, str) or not key:
            raise MalformedMessage(f"Key must be a non-empty string, got {key!r}")

        blob = normalize_value(value)

        async with self._lock:
            if self._document is None:
                self._document = {}
            self._document[key] = orjson.loads(blob)
            self._version += 1

        self._schedule_save()
        return orjson.loads(blob)

    def _schedule_save(self) -> None:
        if self._persistence is None or self._discarded:
            return
        task = asyncio.create_task(self._save(), name=f"save-state:{self.channel_id}")
        self._save_tasks.add(task)
        task.add_done_callback(self._save_tasks.discard)

    async def _save(self) -> None:
        async with self._save_lock:
            version = self._version
            if self._discarded or version <= self._saved_version:
                return

            blob = orjson.dumps(self._document)
            try:
                await asyncio.wait_for(
                    self._persistence.save(self.channel_id, blob), self._timeout
                )
            except TimeoutError:
                logger.warning(
                    "Save timed out after {}s: channel={} version={}",
                    self._timeout,
                    self.channel_id,
                    version,
                )
                return
            except Exception as e:
                logger.error(
                    "Failed to save state: channel={} version={} error={!r}",
                    self.channel_id,
                    version,
                    e,
                )
                return

            self._saved_version = version

    async def wait_saved(self, timeout: float | None = None) -> bool:
        """Wait for in-flight saves. Returns False if some are still pending."""
        tasks = set(self._save_tasks)
        if not tasks:
            return True
        _, pending = await asyncio.wait(tasks, timeout=timeout)
        return not pending

    def discard(self) -> None:
        """Stop persisting this channel; pending saves are cancelled."""
        self._discarded = True
        for task in list(self._save_tasks):
            task.cancel()
