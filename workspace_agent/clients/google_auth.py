"""
Google OAuth utilities.

These helpers sign the anti-CSRF state carried through the consent redirect
and talk to Google's authorization, token and userinfo endpoints.
"""

from __future__ import annotations

import base64
import binascii
import hmac
import json
import secrets
from dataclasses import dataclass
from hashlib import sha256
from typing import Any, Dict, Optional
from urllib.parse import urlencode

import httpx
from google.auth import jwt as google_jwt

from workspace_agent.core.config import GoogleSettings, OAuthSettings
from workspace_agent.core.errors import ExpiredOAuthStateError, InvalidOAuthStateError

_SIGNATURE_BYTES = 32
_CLOCK_SKEW_MS = 60_000
_IDENTITY_SCOPES = ("openid", "email", "profile")
_SCOPE_ALIASES = {
    "https://www.googleapis.com/auth/userinfo.email": "email",
    "https://www.googleapis.com/auth/userinfo.profile": "profile",
}


def _b64decode(segment: str) -> bytes:
    padded = segment + "=" * (-len(segment) % 4)
    return base64.b64decode(padded.encode("ascii"), altchars=b"-_", validate=True)


@dataclass(frozen=True)
class SignedState:
    """A verified (or freshly issued) OAuth state token."""

    nonce: str
    issued_at: int
    token: str
    return_to: Optional[str] = None


class OAuthStateEncoder:
    """Encode and decode OAuth state values to guard against tampering."""

    def __init__(self, secret_key: str, *, ttl_seconds: int = 600) -> None:
        if not secret_key:
            raise ValueError("OAuth state secret must be provided.")
        self._secret_key = secret_key.encode("utf-8")
        self._ttl_ms = ttl_seconds * 1000

    def encode(self, payload: Dict[str, Any]) -> str:
        serialized = json.dumps(payload, separators=(",", ":"), sort_keys=True)
        signature = hmac.new(self._secret_key, serialized.encode("utf-8"), sha256).digest()
        return base64.urlsafe_b64encode(signature + serialized.encode("utf-8")).decode("utf-8")

    def decode(self, token: str) -> Dict[str, Any]:
        """Return the signed payload; any defect raises ``InvalidOAuthStateError``."""
        if not token:
            raise InvalidOAuthStateError()
        try:
            decoded = _b64decode(token)
        except (binascii.Error, ValueError):
            raise InvalidOAuthStateError() from None

        signature, serialized = decoded[:_SIGNATURE_BYTES], decoded[_SIGNATURE_BYTES:]
        if len(signature) != _SIGNATURE_BYTES or not serialized:
            raise InvalidOAuthStateError()
        expected_signature = hmac.new(self._secret_key, serialized, sha256).digest()
        if not hmac.compare_digest(signature, expected_signature):
            raise InvalidOAuthStateError()

        try:
            payload = json.loads(serialized)
        except ValueError:
            raise InvalidOAuthStateError() from None
        if not isinstance(payload, dict):
            raise InvalidOAuthStateError()
        return payload

    def issue(
        self, *, now: int, nonce: Optional[str] = None, return_to: Optional[str] = None
    ) -> SignedState:
        nonce = nonce or secrets.token_hex(32)
        payload: Dict[str, Any] = {"nonce": nonce, "issued_at": now}
        if return_to:
            payload["return_to"] = return_to
        return SignedState(
            nonce=nonce, issued_at=now, token=self.encode(payload), return_to=return_to
        )

    def verify(self, token: str, *, now: int) -> SignedState:
        """Check signature and recency of a state token returned by the callback."""
        payload = self.decode(token)
        nonce = payload.get("nonce")
        issued_at = payload.get("issued_at")
        if not isinstance(nonce, str) or not nonce:
            raise InvalidOAuthStateError()
        if isinstance(issued_at, bool) or not isinstance(issued_at, int):
            raise InvalidOAuthStateError()
        if issued_at - now > _CLOCK_SKEW_MS:
            raise InvalidOAuthStateError()
        if now - issued_at >= self._ttl_ms:
            raise ExpiredOAuthStateError()
        return_to = payload.get("return_to")
        return SignedState(
            nonce=nonce,
            issued_at=issued_at,
            token=token,
            return_to=return_to if isinstance(return_to, str) else None,
        )


class OAuthTokenExchangeError(Exception):
    """Raised when the token endpoint returns an error or cannot be reached.

    ``status_code`` is ``None`` for transport failures.
    """

    def __init__(
        self,
        message: str,
        *,
        status_code: Optional[int] = None,
        error: Optional[str] = None,
    ) -> None:
        self.status_code = status_code
        self.error = error
        super().__init__(message)


@dataclass(frozen=True)
class TokenGrant:
    """Normalized token endpoint response."""

    access_token: str
    refresh_token: Optional[str] = None
    expires_in: Optional[float] = None
    expiry_date: Optional[int] = None
    scope: Optional[str] = None
    token_type: Optional[str] = None
    id_token: Optional[str] = None

    @classmethod
    def from_payload(cls, payload: Dict[str, Any]) -> "TokenGrant":
        return cls(
            access_token=payload.get("access_token") or "",
            refresh_token=payload.get("refresh_token"),
            expires_in=payload.get("expires_in"),
            expiry_date=payload.get("expiry_date"),
            scope=payload.get("scope"),
            token_type=payload.get("token_type"),
            id_token=payload.get("id_token"),
        )


def decode_id_token(id_token: str) -> Dict[str, Any]:
    """Decode the claims of a JWT ID token without verifying its signature.

    The token arrives straight from Google's token endpoint over TLS, so the
    claims are only parsed. Raises ``ValueError`` when malformed.
    """
    claims = google_jwt.decode(id_token, verify=False)
    if not isinstance(claims, dict):
        raise ValueError("ID token payload is not a JSON object")
    return claims


class GoogleOAuthClient:
    """Build Google authorization URLs and call the token and userinfo endpoints."""

    AUTH_BASE_URL = "https://accounts.google.com/o/oauth2/v2/auth"
    TOKEN_URL = "https://oauth2.googleapis.com/token"
    USERINFO_URL = "https://www.googleapis.com/oauth2/v2/userinfo"

    def __init__(
        self,
        google_settings: GoogleSettings,
        oauth_settings: OAuthSettings,
        *,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ) -> None:
        self._google = google_settings
        self._oauth = oauth_settings
        self._transport = transport

    @property
    def scopes(self) -> list[str]:
        scopes: list[str] = []
        for scope in (*self._oauth.scopes, *_IDENTITY_SCOPES):
            scope = _SCOPE_ALIASES.get(scope, scope)
            if scope not in scopes:
                scopes.append(scope)
        return scopes

    def build_authorization_url(self, state: str, access_type: str = "offline") -> str:
        """Construct the Google OAuth consent URL."""
        params = {
            "client_id": self._google.client_id,
            "redirect_uri": str(self._google.redirect_uri),
            "response_type": "code",
            "scope": " ".join(self.scopes),
            "access_type": access_type,
            "include_granted_scopes": "true",
            # Forces a refresh token on every consent, not just the first.
            "prompt": "consent",
            "state": state,
        }
        query = urlencode(params)
        return f"{self.AUTH_BASE_URL}?{query}"

    def _http(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(
            timeout=self._oauth.http_timeout_seconds, transport=self._transport
        )

    async def _post_token(self, payload: Dict[str, str]) -> Dict[str, Any]:
        try:
            async with self._http() as client:
                response = await client.post(self.TOKEN_URL, data=payload)
        except httpx.HTTPError as exc:
            raise OAuthTokenExchangeError(f"Token endpoint unreachable: {exc}") from exc

        try:
            body = response.json()
        except ValueError:
            body = {}
        if not isinstance(body, dict):
            body = {}

        if response.status_code != httpx.codes.OK:
            error = body.get("error") if isinstance(body.get("error"), str) else None
            description = body.get("error_description") or error or response.text
            raise OAuthTokenExchangeError(
                f"Token endpoint returned {response.status_code}: {description}",
                status_code=response.status_code,
                error=error,
            )
        return body

    async def exchange_authorization_code(self, code: str) -> TokenGrant:
        """Exchange an authorization code for tokens."""
        payload = {
            "code": code,
            "client_id": self._google.client_id,
            "client_secret": self._google.client_secret,
            "redirect_uri": str(self._google.redirect_uri),
            "grant_type": "authorization_code",
        }
        grant = TokenGrant.from_payload(await self._post_token(payload))
        if not grant.access_token:
            raise OAuthTokenExchangeError("No access token received from Google.")
        return grant

    async def refresh_token(self, refresh_token: str) -> TokenGrant:
        """Refresh the access token using a stored refresh token."""
        payload = {
            "client_id": self._google.client_id,
            "client_secret": self._google.client_secret,
            "refresh_token": refresh_token,
            "grant_type": "refresh_token",
        }
        return TokenGrant.from_payload(await self._post_token(payload))

    async def fetch_userinfo(self, access_token: str) -> Dict[str, Any]:
        """Fetch the signed-in user's profile with a fresh access token."""
        async with self._http() as client:
            response = await client.get(
                self.USERINFO_URL,
                headers={"Authorization": f"Bearer {access_token}"},
            )
        response.raise_for_status()
        return response.json()


__all__ = [
    "GoogleOAuthClient",
    "OAuthStateEncoder",
    "OAuthTokenExchangeError",
    "SignedState",
    "TokenGrant",
    "decode_id_token",
]
