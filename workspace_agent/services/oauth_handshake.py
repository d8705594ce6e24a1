"""
Google sign-in: consent redirect, callback verification and credential capture.
"""

from __future__ import annotations

import hmac
import logging
from dataclasses import dataclass
from typing import Any, Callable, Dict, Optional

import httpx

from workspace_agent.clients.google_auth import (
    GoogleOAuthClient,
    OAuthStateEncoder,
    OAuthTokenExchangeError,
    TokenGrant,
    decode_id_token,
)
from workspace_agent.core.config import OAuthSettings
from workspace_agent.core.errors import (
    MissingHandshakeParameterError,
    ProfileResolutionError,
    ReplayedOAuthStateError,
    TokenExchangeFailedError,
)
from workspace_agent.models.credentials import compute_expires_at, now_ms
from workspace_agent.schemas.auth import HandshakeResult, HandshakeStart
from workspace_agent.services.credential_store import CredentialStore
from workspace_agent.services.session_store import SessionStore

logger = logging.getLogger(__name__)


def is_local_path(value: Optional[str]) -> bool:
    """Only same-origin absolute paths are accepted as post sign-in targets."""
    return bool(value) and value.startswith("/") and not value.startswith("//") and "\\" not in value


@dataclass(frozen=True)
class _Profile:
    provider_id: str
    email: str
    name: str
    picture: Optional[str]


class OAuthHandshakeService:
    """Runs the authorization-code flow and persists the resulting credentials.

    The signed state token is the anti-CSRF check. Copies of the state kept
    in the session or a cookie are compared for diagnostics only.
    """

    def __init__(
        self,
        oauth_client: GoogleOAuthClient,
        state_encoder: OAuthStateEncoder,
        credential_store: CredentialStore,
        session_store: SessionStore,
        oauth_settings: OAuthSettings,
        *,
        clock: Callable[[], int] = now_ms,
    ) -> None:
        self._oauth = oauth_client
        self._encoder = state_encoder
        self._credentials = credential_store
        self._sessions = session_store
        self._settings = oauth_settings
        self._clock = clock

    def start_handshake(self, return_to: Optional[str] = None) -> HandshakeStart:
        """Issue a signed state and build the Google consent URL."""
        if return_to is not None and not is_local_path(return_to):
            logger.warning("Ignoring non-local return_to %r", return_to)
            return_to = None

        signed = self._encoder.issue(now=self._clock(), return_to=return_to)
        authorization_url = self._oauth.build_authorization_url(state=signed.token)
        logger.info("Starting OAuth handshake (state nonce %s...)", signed.nonce[:8])
        return HandshakeStart(
            authorization_url=authorization_url,
            state=signed.token,
            issued_at=signed.issued_at,
        )

    async def complete_handshake(
        self,
        code: Optional[str],
        state: Optional[str],
        *,
        session_state: Optional[str] = None,
    ) -> HandshakeResult:
        """Verify the callback, exchange the code and upsert the user's credentials."""
        if not code or not state:
            raise MissingHandshakeParameterError("Missing code or state parameter")

        now = self._clock()
        signed = self._encoder.verify(state, now=now)

        if session_state is None:
            logger.info("No stored copy of the OAuth state; relying on its signature")
        elif not hmac.compare_digest(session_state.encode("utf-8"), state.encode("utf-8")):
            logger.warning(
                "Stored OAuth state differs from the callback state (nonce %s...); "
                "accepting the signed state",
                signed.nonce[:8],
            )

        first_use = await self._sessions.consume_state_nonce(
            signed.nonce, now=now, ttl_seconds=self._settings.state_ttl_seconds
        )
        if not first_use:
            logger.warning("Rejected replayed OAuth state (nonce %s...)", signed.nonce[:8])
            raise ReplayedOAuthStateError()

        try:
            grant = await self._oauth.exchange_authorization_code(code)
        except OAuthTokenExchangeError as exc:
            logger.error("Authorization code exchange failed: %s", exc)
            raise TokenExchangeFailedError(
                f"Failed to exchange authorization code: {exc}"
            ) from exc

        profile = await self._resolve_profile(grant)
        record = await self._credentials.upsert_by_email(
            email=profile.email,
            name=profile.name,
            picture=profile.picture,
            access_token=grant.access_token,
            refresh_token=grant.refresh_token,
            scope=grant.scope or " ".join(self._oauth.scopes),
            token_type=grant.token_type or "Bearer",
            expires_at=compute_expires_at(
                now=self._clock(),
                expiry_date=grant.expiry_date,
                expires_in=grant.expires_in,
                default_ttl_seconds=self._settings.default_token_ttl_seconds,
            ),
        )
        if not record.refresh_token:
            logger.warning(
                "No refresh token on file for user %s; re-consent will be needed "
                "once the access token expires",
                record.user_id,
            )

        logger.info("OAuth handshake completed for user %s", record.user_id)
        return HandshakeResult(
            user_id=record.user_id,
            email=record.email,
            name=profile.name,
            return_to=signed.return_to,
        )

    async def _resolve_profile(self, grant: TokenGrant) -> _Profile:
        if grant.id_token:
            try:
                profile = self._profile_from(decode_id_token(grant.id_token), id_key="sub")
            except ValueError as exc:
                logger.warning("Could not decode ID token, using userinfo: %s", exc)
            else:
                if profile is not None:
                    return profile
                logger.info("ID token lacks profile claims, using userinfo")

        try:
            userinfo = await self._oauth.fetch_userinfo(grant.access_token)
        except (httpx.HTTPError, ValueError) as exc:
            logger.error("Failed to fetch user info: %s", exc)
            raise ProfileResolutionError(f"Failed to fetch user profile: {exc}") from exc

        profile = self._profile_from(userinfo, id_key="id")
        if profile is None:
            raise ProfileResolutionError(
                "Failed to get user info from Google: missing email, id or name."
            )
        return profile

    @staticmethod
    def _profile_from(claims: Dict[str, Any], *, id_key: str) -> Optional[_Profile]:
        email = claims.get("email")
        provider_id = claims.get(id_key)
        name = claims.get("name")
        if not (isinstance(email, str) and email and provider_id and isinstance(name, str) and name):
            return None
        picture = claims.get("picture")
        return _Profile(
            provider_id=str(provider_id),
            email=email,
            name=name,
            picture=picture if isinstance(picture, str) else None,
        )


__all__ = ["OAuthHandshakeService", "is_local_path"]
