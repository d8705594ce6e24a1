"""
Normalized Gmail, Drive and Calendar payloads returned to API callers.
"""

from __future__ import annotations

from typing import Generic, List, Literal, Optional, TypeVar

from pydantic import BaseModel, Field

T = TypeVar("T")

FallbackReason = Literal["not_authenticated", "demo_mode", "database_unavailable", "api_error"]


class NormalizedMessage(BaseModel):
    """A Gmail message reduced to the fields the dashboard and agent read."""

    id: str
    thread_id: Optional[str] = None
    subject: str = "(No subject)"
    sender: str = Field("", description="Raw From header.")
    to: str = ""
    date: Optional[str] = Field(None, description="Raw Date header.")
    snippet: str = ""
    label_ids: List[str] = Field(default_factory=list)
    internal_date: Optional[int] = Field(
        None, description="Gmail receive time in epoch milliseconds."
    )

    @property
    def is_unread(self) -> bool:
        return "UNREAD" in self.label_ids


class FileOwner(BaseModel):
    display_name: Optional[str] = None
    email_address: Optional[str] = None


class NormalizedFile(BaseModel):
    """A Drive file as listed by ``files.list``."""

    id: str
    name: str
    mime_type: Optional[str] = None
    modified_time: Optional[str] = None
    web_view_link: Optional[str] = None
    icon_link: Optional[str] = None
    owners: List[FileOwner] = Field(default_factory=list)


class NormalizedEvent(BaseModel):
    """A Calendar event; all-day events carry dates instead of date-times."""

    id: str
    summary: str = "(No title)"
    description: str = ""
    start_time: str = Field("", description="ISO date-time, or date for all-day events.")
    end_time: str = ""
    creator: str = ""
    attendees: List[str] = Field(default_factory=list)
    location: str = ""
    hangout_link: str = ""
    html_link: str = Field("", description="Link that opens the event in Google Calendar.")


class FetchResult(BaseModel, Generic[T]):
    """Items from a provider, or demo items tagged with why they were served."""

    items: List[T] = Field(default_factory=list)
    is_fallback: bool = False
    fallback_reason: Optional[FallbackReason] = None
    fallback_detail: Optional[str] = None

    @property
    def count(self) -> int:
        return len(self.items)


__all__ = [
    "FallbackReason",
    "FetchResult",
    "FileOwner",
    "NormalizedEvent",
    "NormalizedFile",
    "NormalizedMessage",
]
