"""Demo mailbox, Drive and calendar content served when live data is unavailable."""

from __future__ import annotations

from datetime import datetime, timedelta, timezone
from email.utils import format_datetime
from typing import List, Optional

from workspace_agent.schemas.google import (
    FileOwner,
    NormalizedEvent,
    NormalizedFile,
    NormalizedMessage,
)

_ICON_BASE = "https://drive-thirdparty.googleusercontent.com/16/type/"

# (subject, sender, to, snippet, hours ago, unread, starred)
_MESSAGES = [
    (
        "Q4 Planning Meeting - Action Items",
        "Sarah Chen <sarah.chen@company.com>",
        "team@company.com",
        "Hi team, Following up on yesterday's Q4 planning session. Here are the key "
        "action items we discussed: 1) Finalize budget proposals by Friday...",
        1,
        True,
        True,
    ),
    (
        "Re: Project Deadline Extension Request",
        "Michael Torres <m.torres@client.org>",
        "me@company.com",
        "Thanks for the update. We've reviewed the timeline and can accommodate the "
        "two-week extension. Please ensure the revised milestones are documented...",
        3,
        True,
        False,
    ),
    (
        "Your weekly digest is ready",
        "Analytics Team <analytics@company.com>",
        "me@company.com",
        "Your weekly performance report is now available. Key highlights: Website "
        "traffic increased 23% week-over-week, conversion rate improved to 4.2%...",
        5,
        False,
        False,
    ),
    (
        "Invoice #INV-2024-0892 - Payment Confirmation",
        "Billing <billing@vendor.io>",
        "accounts@company.com",
        "This email confirms your payment of $2,450.00 for Invoice #INV-2024-0892 has "
        "been received and processed. Thank you for your business.",
        8,
        False,
        False,
    ),
    (
        "Design Review: Homepage Redesign v2",
        "Alex Kim <alex.kim@design.co>",
        "me@company.com, design-team@company.com",
        "Hey everyone, I've uploaded the revised homepage mockups. The main changes "
        "include an updated hero section, simplified navigation and a new palette...",
        12,
        True,
        True,
    ),
    (
        "Reminder: Team Offsite Next Week",
        "HR Department <hr@company.com>",
        "all-staff@company.com",
        "Friendly reminder that our team offsite is scheduled for next Thursday and "
        "Friday. Please confirm your attendance by EOD Monday...",
        24,
        False,
        False,
    ),
    (
        "Re: API Integration Questions",
        "David Park <david@techpartner.com>",
        "me@company.com",
        "Good question! For the webhook authentication, you'll need to include the "
        "API key in the Authorization header. Let me know if you need more details.",
        26,
        False,
        True,
    ),
    (
        'New Comment on Document: "2024 Strategy"',
        "Google Docs <comments-noreply@google.com>",
        "me@company.com",
        'Jennifer Walsh left a comment on "2024 Strategy": "I think we should '
        'reconsider the timeline for Phase 2..."',
        48,
        False,
        False,
    ),
    (
        "Your flight itinerary - Confirmation #ABC123",
        "United Airlines <noreply@united.com>",
        "me@company.com",
        "Your upcoming trip is confirmed! Flight UA 1234 departing San Francisco (SFO) "
        "at 8:30 AM, arriving New York (JFK) at 5:15 PM.",
        72,
        False,
        True,
    ),
    (
        "GitHub: [company/repo] Pull request merged",
        "GitHub <notifications@github.com>",
        "me@company.com",
        "Merged #847: Fix authentication bug in login flow. Users were occasionally "
        "logged out during session refresh. Changes include updated token handling...",
        96,
        False,
        False,
    ),
]

# (name, mime type, hours ago, owner name, owner email)
_FILES = [
    ("Q4 Product Roadmap", "application/vnd.google-apps.document", 2, "Priya Sharma", "priya@company.com"),
    ("Budget Analysis 2024", "application/vnd.google-apps.spreadsheet", 5, "Marcus Johnson", "marcus@company.com"),
    ("Team Presentation - Final", "application/vnd.google-apps.presentation", 8, "Jordan Rivera", "jordan@company.com"),
    ("Meeting Notes - Dec 4", "application/vnd.google-apps.document", 24, "Amara Okonkwo", "amara@company.com"),
    ("Design Assets", "application/vnd.google-apps.folder", 26, "Wei Chen", "wei@company.com"),
    ("Contract_Template.pdf", "application/pdf", 48, "Fatima Al-Hassan", "fatima@company.com"),
    ("User Research Findings", "application/vnd.google-apps.document", 72, "Elena Rodriguez", "elena@company.com"),
    ("Sprint Planning Board", "application/vnd.google-apps.spreadsheet", 74, "Kenji Tanaka", "kenji@company.com"),
    ("Brand Guidelines 2024", "application/pdf", 120, "Jordan Rivera", "jordan@company.com"),
    ("logo-final.png", "image/png", 168, "Wei Chen", "wei@company.com"),
]

# (summary, hours from now, duration in minutes, location, attendees)
_EVENTS = [
    ("Daily Standup", 2, 15, "", ["team@company.com"]),
    ("Design Review: Homepage Redesign", 5, 60, "Conference Room B", ["alex.kim@design.co"]),
    ("1:1 with Sarah", 26, 30, "", ["sarah.chen@company.com"]),
    ("Q4 Budget Sync", 50, 45, "", ["marcus@company.com", "priya@company.com"]),
    ("Team Offsite", 120, 480, "Riverside Conference Center", ["all-staff@company.com"]),
]


def _now(now: Optional[datetime]) -> datetime:
    return now or datetime.now(timezone.utc)


def demo_messages(now: Optional[datetime] = None) -> List[NormalizedMessage]:
    current = _now(now)
    messages = []
    for index, (subject, sender, to, snippet, hours, unread, starred) in enumerate(
        _MESSAGES, start=1
    ):
        sent = current - timedelta(hours=hours)
        labels = ["INBOX"]
        if unread:
            labels.append("UNREAD")
        if starred:
            labels.append("STARRED")
        messages.append(
            NormalizedMessage(
                id=f"mock_{index:03d}",
                thread_id=f"thread_{index:03d}",
                subject=subject,
                sender=sender,
                to=to,
                date=format_datetime(sent),
                snippet=snippet,
                label_ids=labels,
                internal_date=int(sent.timestamp() * 1000),
            )
        )
    return messages


def demo_files(now: Optional[datetime] = None) -> List[NormalizedFile]:
    current = _now(now)
    return [
        NormalizedFile(
            id=f"mock_file_{index:03d}",
            name=name,
            mime_type=mime_type,
            modified_time=(current - timedelta(hours=hours)).isoformat(),
            web_view_link="#",
            icon_link=f"{_ICON_BASE}{mime_type}",
            owners=[FileOwner(display_name=owner, email_address=email)],
        )
        for index, (name, mime_type, hours, owner, email) in enumerate(_FILES, start=1)
    ]


def demo_events(now: Optional[datetime] = None) -> List[NormalizedEvent]:
    current = _now(now)
    events = []
    for index, (summary, hours, minutes, location, attendees) in enumerate(_EVENTS, start=1):
        start = current + timedelta(hours=hours)
        events.append(
            NormalizedEvent(
                id=f"mock_event_{index:03d}",
                summary=summary,
                start_time=start.isoformat(),
                end_time=(start + timedelta(minutes=minutes)).isoformat(),
                creator="me@company.com",
                attendees=attendees,
                location=location,
            )
        )
    return events


__all__ = ["demo_events", "demo_files", "demo_messages"]
