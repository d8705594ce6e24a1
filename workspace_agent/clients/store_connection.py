"""Lifecycle management for the process-wide document store handle."""

from __future__ import annotations

import asyncio
import logging
from typing import Callable, Optional, Union

from workspace_agent.clients.dynamodb import DynamoDBStore
from workspace_agent.clients.sqlite_store import SQLiteStore
from workspace_agent.core.errors import StoreUnavailableError
from workspace_agent.utils.retry import RetryConfig, retry_async

logger = logging.getLogger(__name__)

DocumentStore = Union[SQLiteStore, DynamoDBStore]


class StoreConnection:
    """Lazily opens one shared store handle and keeps track of its health.

    Concurrent ``acquire()`` calls during establishment await the same
    in-flight task, so a cold start never opens more than one connection.
    """

    def __init__(
        self,
        opener: Callable[[], DocumentStore],
        *,
        retry_config: RetryConfig | None = None,
        connect_timeout_seconds: float = 10.0,
        name: str = "document store",
    ) -> None:
        self._opener = opener
        self._retry = retry_config or RetryConfig(attempts=3, backoff_seconds=2.0)
        self._connect_timeout = connect_timeout_seconds
        self._name = name
        self._store: Optional[DocumentStore] = None
        self._opening: Optional[asyncio.Task] = None

    @property
    def is_connected(self) -> bool:
        return self._store is not None

    async def acquire(self) -> DocumentStore:
        """Return the live store handle, connecting first when necessary."""
        if self._store is not None:
            return self._store
        if self._opening is None:
            self._opening = asyncio.create_task(self._establish())
            self._opening.add_done_callback(self._opening_finished)
        return await asyncio.shield(self._opening)

    open = acquire

    def _opening_finished(self, task: asyncio.Task) -> None:
        if self._opening is task:
            self._opening = None

    async def _establish(self) -> DocumentStore:
        async def _attempt() -> DocumentStore:
            return await asyncio.wait_for(
                asyncio.to_thread(self._opener), timeout=self._connect_timeout
            )

        try:
            store = await retry_async(
                _attempt,
                # Configuration mistakes will not fix themselves between attempts.
                is_retryable=lambda exc: not isinstance(exc, ValueError),
                retry_config=self._retry,
                operation=f"Connecting to {self._name}",
            )
        except Exception as exc:
            logger.error(
                "Failed to connect to %s after %s attempts: %s",
                self._name,
                self._retry.attempts,
                exc,
            )
            raise StoreUnavailableError(
                f"Failed to connect to {self._name}: {exc}"
            ) from exc

        self._store = store
        logger.info("Connected to %s", self._name)
        return store

    async def health_check(self) -> bool:
        """Ping the live handle; demote to disconnected when the ping fails."""
        store = self._store
        if store is None:
            logger.warning("Health check failed: %s is not connected", self._name)
            return False

        try:
            await asyncio.to_thread(store.ping)
        except Exception as exc:
            logger.error("Health check failed for %s: %s", self._name, exc)
            await self._discard(store)
            return False
        return True

    async def _discard(self, store: DocumentStore) -> None:
        if self._store is store:
            self._store = None
        try:
            await asyncio.to_thread(store.close)
        except Exception as exc:
            logger.warning("Error closing stale %s handle: %s", self._name, exc)

    async def close(self) -> None:
        """Wait for any pending open, then close the handle."""
        pending = self._opening
        if pending is not None:
            try:
                await pending
            except StoreUnavailableError:
                pass

        store, self._store = self._store, None
        if store is None:
            return
        logger.info("Disconnecting from %s...", self._name)
        await asyncio.to_thread(store.close)
        logger.info("Disconnected from %s", self._name)


__all__ = ["DocumentStore", "StoreConnection"]
