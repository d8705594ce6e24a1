"""Schemas related to OAuth flows."""

from __future__ import annotations

from typing import Optional

from pydantic import BaseModel, Field


class HandshakeStart(BaseModel):
    """Everything the sign-in route needs to send the user to Google."""

    authorization_url: str = Field(..., description="Google consent URL to redirect to.")
    state: str = Field(..., description="Signed anti-CSRF state token.")
    issued_at: int = Field(..., description="State issue time in epoch milliseconds.")


class HandshakeResult(BaseModel):
    """Identity established by a completed handshake."""

    user_id: str
    email: str
    name: str
    return_to: Optional[str] = Field(
        None, description="Local path the user started sign-in from, if any."
    )


class AuthUser(BaseModel):
    email: str
    name: Optional[str] = None
    picture: Optional[str] = None


class AuthStatus(BaseModel):
    """Response of the auth status endpoint."""

    authenticated: bool
    user: Optional[AuthUser] = None


__all__ = ["AuthStatus", "AuthUser", "HandshakeResult", "HandshakeStart"]
