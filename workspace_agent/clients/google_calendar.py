"""Google Calendar client wrapper."""

from __future__ import annotations

import asyncio
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

from google.oauth2.credentials import Credentials

from workspace_agent.clients.google_api import ServiceFactory, build_service
from workspace_agent.schemas.google import NormalizedEvent


def _event_time(value: Optional[Dict[str, Any]]) -> str:
    value = value or {}
    return value.get("dateTime") or value.get("date") or ""


def normalize_event(event: Dict[str, Any]) -> NormalizedEvent:
    return NormalizedEvent(
        id=event.get("id", ""),
        summary=event.get("summary") or "(No title)",
        description=event.get("description") or "",
        start_time=_event_time(event.get("start")),
        end_time=_event_time(event.get("end")),
        creator=(event.get("creator") or {}).get("email", ""),
        attendees=[
            attendee["email"] for attendee in event.get("attendees", []) if attendee.get("email")
        ],
        location=event.get("location") or "",
        hangout_link=event.get("hangoutLink") or "",
        html_link=event.get("htmlLink") or "",
    )


class GoogleCalendarClient:
    """Read upcoming events from a user's primary calendar."""

    def __init__(self, service_factory: ServiceFactory = build_service) -> None:
        self._service_factory = service_factory

    async def list_events(
        self,
        credentials: Credentials,
        *,
        max_results: int = 20,
        time_min: Optional[datetime] = None,
    ) -> List[NormalizedEvent]:
        """Return single (expanded) events starting at ``time_min`` or now."""
        start = time_min or datetime.now(timezone.utc)
        if start.tzinfo is None:
            start = start.replace(tzinfo=timezone.utc)

        def _execute_list() -> List[Dict[str, Any]]:
            service = self._service_factory("calendar", "v3", credentials)
            response = (
                service.events()
                .list(
                    calendarId="primary",
                    timeMin=start.isoformat(),
                    singleEvents=True,
                    orderBy="startTime",
                    maxResults=max_results,
                )
                .execute()
            )
            return response.get("items", [])

        return [normalize_event(item) for item in await asyncio.to_thread(_execute_list)]


__all__ = ["GoogleCalendarClient", "normalize_event"]
