"""Public schema exports."""

from .auth import AuthStatus, AuthUser, HandshakeResult, HandshakeStart
from .google import (
    FallbackReason,
    FetchResult,
    FileOwner,
    NormalizedEvent,
    NormalizedFile,
    NormalizedMessage,
)

__all__ = [
    "AuthStatus",
    "AuthUser",
    "FallbackReason",
    "FetchResult",
    "FileOwner",
    "HandshakeResult",
    "HandshakeStart",
    "NormalizedEvent",
    "NormalizedFile",
    "NormalizedMessage",
]
