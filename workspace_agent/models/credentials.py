"""
Domain models for OAuth credential persistence.
"""

from __future__ import annotations

import re
import time
import uuid
from typing import Optional

from pydantic import BaseModel, Field

from workspace_agent.core.errors import InputValidationError

_USER_ID_PATTERN = re.compile(r"^[0-9a-f]{32}$")


def now_ms() -> int:
    """Current wall-clock time in epoch milliseconds."""
    return int(time.time() * 1000)


def new_user_id() -> str:
    return uuid.uuid4().hex


def validate_user_id(user_id: object) -> str:
    """Reject identifiers that could never have been issued by ``new_user_id``."""
    if not isinstance(user_id, str) or not _USER_ID_PATTERN.match(user_id):
        raise InputValidationError(
            f"Invalid user id {user_id!r}: expected 32 lowercase hex characters."
        )
    return user_id


def compute_expires_at(
    *,
    now: int,
    expiry_date: Optional[int] = None,
    expires_in: Optional[float] = None,
    default_ttl_seconds: int = 3600,
) -> int:
    """Resolve an absolute expiry (epoch ms) from whatever the token endpoint sent.

    Prefers an absolute ``expiry_date``, then a relative ``expires_in`` in
    seconds, then ``default_ttl_seconds``.
    """
    if expiry_date:
        return int(expiry_date)
    if expires_in:
        return now + int(float(expires_in) * 1000)
    return now + default_ttl_seconds * 1000


class CredentialRecord(BaseModel):
    """OAuth token set persisted for one user."""

    user_id: str = Field(..., description="Stable application-level user identifier.")
    email: str = Field(..., description="Provider-asserted unique email address.")
    name: Optional[str] = None
    picture: Optional[str] = None
    access_token: str
    refresh_token: Optional[str] = Field(
        None, description="Absent when the provider never issued one."
    )
    scope: str = ""
    token_type: str = "Bearer"
    expires_at: int = Field(
        ..., description="Absolute expiry of access_token in epoch milliseconds."
    )
    created_at: Optional[int] = None
    updated_at: Optional[int] = None

    def is_expired(self, now: int) -> bool:
        return now >= self.expires_at

    def needs_refresh(self, now: int, buffer_ms: int) -> bool:
        """True when expired or close enough to expiry to race a request."""
        return self.is_expired(now) or self.expires_at - now < buffer_ms


__all__ = [
    "CredentialRecord",
    "compute_expires_at",
    "new_user_id",
    "now_ms",
    "validate_user_id",
]
