"""Async access to the shared document store."""

from __future__ import annotations

import asyncio
import logging
import sqlite3
from typing import Any

from botocore.exceptions import BotoCoreError, ClientError

from workspace_agent.clients.store_connection import StoreConnection
from workspace_agent.core.errors import StoreUnavailableError

logger = logging.getLogger(__name__)

_BACKEND_ERRORS = (sqlite3.Error, BotoCoreError, ClientError, OSError)


class DocumentRepository:
    """Run blocking store calls off the event loop and normalize their failures."""

    def __init__(self, connection: StoreConnection) -> None:
        self._connection = connection

    async def _call(self, operation: str, *args: Any, **kwargs: Any) -> Any:
        store = await self._connection.acquire()
        try:
            return await asyncio.to_thread(getattr(store, operation), *args, **kwargs)
        except _BACKEND_ERRORS as exc:
            logger.error("Document store %s failed: %s", operation, exc)
            raise StoreUnavailableError(f"Document store {operation} failed: {exc}") from exc


__all__ = ["DocumentRepository"]
