"""Gmail client wrapper."""

from __future__ import annotations

import asyncio
from typing import Any, Dict, List, Optional

from google.oauth2.credentials import Credentials

from workspace_agent.clients.google_api import ServiceFactory, build_service
from workspace_agent.schemas.google import NormalizedMessage

_METADATA_HEADERS = ["Subject", "From", "To", "Date"]


def normalize_message(message: Dict[str, Any]) -> NormalizedMessage:
    headers = {
        header.get("name", "").lower(): header.get("value", "")
        for header in (message.get("payload") or {}).get("headers", [])
    }
    internal_date = message.get("internalDate")
    return NormalizedMessage(
        id=message["id"],
        thread_id=message.get("threadId"),
        subject=headers.get("subject") or "(No subject)",
        sender=headers.get("from", ""),
        to=headers.get("to", ""),
        date=headers.get("date"),
        snippet=message.get("snippet", ""),
        label_ids=list(message.get("labelIds") or []),
        internal_date=int(internal_date) if internal_date else None,
    )


class GmailClient:
    """Read message lists and message metadata from a user's mailbox."""

    def __init__(self, service_factory: ServiceFactory = build_service) -> None:
        self._service_factory = service_factory

    async def list_message_ids(
        self,
        credentials: Credentials,
        *,
        max_results: int = 10,
        query: Optional[str] = None,
    ) -> List[str]:
        """Return ids of the newest messages, newest first."""

        def _execute_list() -> List[str]:
            service = self._service_factory("gmail", "v1", credentials)
            params: Dict[str, Any] = {"userId": "me", "maxResults": max_results}
            if query:
                params["q"] = query
            response = service.users().messages().list(**params).execute()
            return [item["id"] for item in response.get("messages", []) if item.get("id")]

        return await asyncio.to_thread(_execute_list)

    async def get_message(self, credentials: Credentials, message_id: str) -> NormalizedMessage:
        """Fetch headers and snippet of a single message."""

        def _execute_get() -> Dict[str, Any]:
            service = self._service_factory("gmail", "v1", credentials)
            return (
                service.users()
                .messages()
                .get(
                    userId="me",
                    id=message_id,
                    format="metadata",
                    metadataHeaders=_METADATA_HEADERS,
                )
                .execute()
            )

        return normalize_message(await asyncio.to_thread(_execute_get))


__all__ = ["GmailClient", "normalize_message"]
