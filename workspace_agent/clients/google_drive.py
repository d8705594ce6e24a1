"""Google Drive client wrapper."""

from __future__ import annotations

import asyncio
from typing import Any, Dict, List

from google.oauth2.credentials import Credentials

from workspace_agent.clients.google_api import ServiceFactory, build_service
from workspace_agent.schemas.google import FileOwner, NormalizedFile

_FILE_FIELDS = "files(id,name,mimeType,modifiedTime,webViewLink,iconLink,owners)"


def normalize_file(item: Dict[str, Any]) -> NormalizedFile:
    return NormalizedFile(
        id=item["id"],
        name=item.get("name", ""),
        mime_type=item.get("mimeType"),
        modified_time=item.get("modifiedTime"),
        web_view_link=item.get("webViewLink"),
        icon_link=item.get("iconLink"),
        owners=[
            FileOwner(
                display_name=owner.get("displayName"),
                email_address=owner.get("emailAddress"),
            )
            for owner in item.get("owners", [])
        ],
    )


class GoogleDriveClient:
    """List files from a user's Drive."""

    def __init__(self, service_factory: ServiceFactory = build_service) -> None:
        self._service_factory = service_factory

    async def list_recent_files(
        self, credentials: Credentials, *, page_size: int = 10
    ) -> List[NormalizedFile]:
        """Return the most recently modified files, newest first."""

        def _execute_list() -> List[Dict[str, Any]]:
            service = self._service_factory("drive", "v3", credentials)
            response = (
                service.files()
                .list(pageSize=page_size, orderBy="modifiedTime desc", fields=_FILE_FIELDS)
                .execute()
            )
            return response.get("files", [])

        return [normalize_file(item) for item in await asyncio.to_thread(_execute_list)]


__all__ = ["GoogleDriveClient", "normalize_file"]
