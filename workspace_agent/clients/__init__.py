"""Expose constructed client wrappers."""

from .dynamodb import DynamoDBStore
from .gmail import GmailClient
from .google_auth import GoogleOAuthClient, OAuthStateEncoder
from .google_calendar import GoogleCalendarClient
from .google_drive import GoogleDriveClient
from .sqlite_store import SQLiteStore
from .store_connection import StoreConnection

__all__ = [
    "DynamoDBStore",
    "GmailClient",
    "GoogleCalendarClient",
    "GoogleDriveClient",
    "GoogleOAuthClient",
    "OAuthStateEncoder",
    "SQLiteStore",
    "StoreConnection",
]
