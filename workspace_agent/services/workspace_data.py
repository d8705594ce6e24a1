"""
Mail, files and calendar retrieval with demo fallback.
"""

from __future__ import annotations

import asyncio
import logging
from datetime import datetime
from typing import Awaitable, Callable, List, Optional, TypeVar

from google.oauth2.credentials import Credentials

from workspace_agent.clients.gmail import GmailClient
from workspace_agent.clients.google_calendar import GoogleCalendarClient
from workspace_agent.clients.google_drive import GoogleDriveClient
from workspace_agent.core.config import ProviderSettings
from workspace_agent.core.errors import (
    NotAuthenticatedError,
    ProviderError,
    StoreUnavailableError,
    TokenRefreshUnavailableError,
)
from workspace_agent.schemas.google import (
    FallbackReason,
    FetchResult,
    NormalizedEvent,
    NormalizedFile,
    NormalizedMessage,
)
from workspace_agent.services import demo_data
from workspace_agent.services.resilience import ResilientCaller

logger = logging.getLogger(__name__)

T = TypeVar("T")


class WorkspaceDataService:
    """Fetch a user's Gmail, Drive and Calendar data.

    Without a signed-in user, in demo mode, or when the provider, the token
    endpoint or the store fails while demo fallback is enabled, demo items are
    returned instead and the result says why. ``store_error`` carries a store
    outage hit before the user could be identified.
    """

    def __init__(
        self,
        caller: ResilientCaller,
        settings: ProviderSettings,
        *,
        gmail_client: Optional[GmailClient] = None,
        drive_client: Optional[GoogleDriveClient] = None,
        calendar_client: Optional[GoogleCalendarClient] = None,
    ) -> None:
        self._caller = caller
        self._settings = settings
        self._gmail = gmail_client or GmailClient()
        self._drive = drive_client or GoogleDriveClient()
        self._calendar = calendar_client or GoogleCalendarClient()

    async def fetch_mail(
        self,
        user_id: Optional[str],
        *,
        max_results: Optional[int] = None,
        demo: bool = False,
        store_error: Optional[StoreUnavailableError] = None,
    ) -> FetchResult[NormalizedMessage]:
        """Newest messages with headers; messages whose details fail are left out."""
        limit = max_results or self._settings.mail_page_size

        async def _list_with_details(credentials: Credentials) -> List[NormalizedMessage]:
            message_ids = await self._gmail.list_message_ids(credentials, max_results=limit)
            logger.info("Found %s Gmail message ids, fetching details", len(message_ids))
            details = await asyncio.gather(
                *(self._fetch_message(credentials, message_id) for message_id in message_ids)
            )
            return [message for message in details if message is not None]

        return await self._fetch(
            "Gmail",
            user_id,
            demo=demo,
            store_error=store_error,
            operation=_list_with_details,
            demo_items=demo_data.demo_messages,
        )

    async def _fetch_message(
        self, credentials: Credentials, message_id: str
    ) -> Optional[NormalizedMessage]:
        timeout = self._settings.item_timeout_seconds
        try:
            return await asyncio.wait_for(
                self._gmail.get_message(credentials, message_id), timeout=timeout
            )
        except asyncio.TimeoutError:
            logger.warning(
                "Timed out after %.1fs fetching Gmail message %s; skipping", timeout, message_id
            )
        except Exception as exc:
            logger.warning("Failed to fetch Gmail message %s; skipping: %s", message_id, exc)
        return None

    async def fetch_files(
        self,
        user_id: Optional[str],
        *,
        page_size: Optional[int] = None,
        demo: bool = False,
        store_error: Optional[StoreUnavailableError] = None,
    ) -> FetchResult[NormalizedFile]:
        """Most recently modified Drive files."""
        size = page_size or self._settings.files_page_size
        return await self._fetch(
            "Google Drive",
            user_id,
            demo=demo,
            store_error=store_error,
            operation=lambda credentials: self._drive.list_recent_files(
                credentials, page_size=size
            ),
            demo_items=demo_data.demo_files,
        )

    async def fetch_events(
        self,
        user_id: Optional[str],
        max_results: int = 20,
        time_min: Optional[datetime] = None,
        *,
        demo: bool = False,
        store_error: Optional[StoreUnavailableError] = None,
    ) -> FetchResult[NormalizedEvent]:
        """Upcoming events on the primary calendar."""
        return await self._fetch(
            "Google Calendar",
            user_id,
            demo=demo,
            store_error=store_error,
            operation=lambda credentials: self._calendar.list_events(
                credentials, max_results=max_results, time_min=time_min
            ),
            demo_items=demo_data.demo_events,
        )

    async def _fetch(
        self,
        api: str,
        user_id: Optional[str],
        *,
        demo: bool,
        store_error: Optional[StoreUnavailableError] = None,
        operation: Callable[[Credentials], Awaitable[List[T]]],
        demo_items: Callable[[], List[T]],
    ) -> FetchResult[T]:
        if store_error is not None:
            if not self._settings.demo_fallback_enabled:
                raise store_error
            return self._fallback(
                api, demo_items, "database_unavailable", detail=store_error.message
            )
        if user_id is None:
            if not self._settings.demo_fallback_enabled:
                raise NotAuthenticatedError()
            return self._fallback(api, demo_items, "not_authenticated")
        if demo:
            return self._fallback(api, demo_items, "demo_mode")

        try:
            items = await self._caller.call(user_id, api, operation)
        except (ProviderError, TokenRefreshUnavailableError) as exc:
            if not self._settings.demo_fallback_enabled:
                raise
            return self._fallback(api, demo_items, "api_error", detail=exc.message)
        except StoreUnavailableError as exc:
            if not self._settings.demo_fallback_enabled:
                raise
            return self._fallback(api, demo_items, "database_unavailable", detail=exc.message)

        logger.info("Fetched %s items from %s for user %s", len(items), api, user_id)
        return FetchResult(items=items)

    @staticmethod
    def _fallback(
        api: str,
        demo_items: Callable[[], List[T]],
        reason: FallbackReason,
        *,
        detail: Optional[str] = None,
    ) -> FetchResult[T]:
        items = demo_items()
        if detail:
            logger.warning(
                "Serving %s demo items for %s (%s): %s", len(items), api, reason, detail
            )
        else:
            logger.warning("Serving %s demo items for %s (%s)", len(items), api, reason)
        return FetchResult(
            items=items, is_fallback=True, fallback_reason=reason, fallback_detail=detail
        )


__all__ = ["WorkspaceDataService"]
