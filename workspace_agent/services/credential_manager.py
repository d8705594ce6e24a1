"""
Hands out ready-to-use Google credentials, refreshing and persisting tokens.
"""

from __future__ import annotations

import asyncio
import logging
from datetime import datetime, timezone
from typing import Callable, Dict, Optional

from google.oauth2.credentials import Credentials

from workspace_agent.clients.google_auth import (
    GoogleOAuthClient,
    OAuthTokenExchangeError,
    TokenGrant,
)
from workspace_agent.core.config import OAuthSettings
from workspace_agent.core.errors import (
    CredentialNotFoundError,
    InvalidAccessTokenError,
    ReauthenticationRequiredError,
    TokenRefreshUnavailableError,
)
from workspace_agent.models.credentials import (
    CredentialRecord,
    compute_expires_at,
    now_ms,
    validate_user_id,
)
from workspace_agent.services.credential_store import CredentialStore
from workspace_agent.utils.retry import RetryConfig, retry_async

logger = logging.getLogger(__name__)

_REVOKED_ERRORS = frozenset({"invalid_grant", "invalid_token", "unauthorized_client"})
_RETRYABLE_STATUSES = frozenset({408, 429, 500, 502, 503, 504})


def _is_revoked(exc: OAuthTokenExchangeError) -> bool:
    return exc.error in _REVOKED_ERRORS or exc.status_code in (400, 401)


def _is_retryable_refresh_error(exc: Exception) -> bool:
    if not isinstance(exc, OAuthTokenExchangeError) or _is_revoked(exc):
        return False
    return exc.status_code is None or exc.status_code in _RETRYABLE_STATUSES


class CredentialManager:
    """Manages access to persisted Google OAuth credentials.

    Tokens are refreshed proactively once they are within the refresh buffer
    of expiry. Concurrent callers that need a refresh for the same user share
    a single in-flight refresh, and a refreshed token is always written to the
    store before any caller receives it.
    """

    def __init__(
        self,
        store: CredentialStore,
        oauth_client: GoogleOAuthClient,
        oauth_settings: OAuthSettings,
        *,
        clock: Callable[[], int] = now_ms,
    ) -> None:
        self._store = store
        self._oauth = oauth_client
        self._oauth_settings = oauth_settings
        self._clock = clock
        self._buffer_ms = oauth_settings.refresh_buffer_seconds * 1000
        self._retry = RetryConfig(
            attempts=oauth_settings.refresh_attempts,
            backoff_seconds=oauth_settings.refresh_backoff_seconds,
        )
        self._inflight: Dict[str, asyncio.Task] = {}

    async def get_client_for_user(
        self, user_id: str, *, force_refresh: bool = False
    ) -> Credentials:
        """Return credentials carrying an access token valid beyond the buffer.

        ``force_refresh`` mints a new token even when the stored one looks
        fresh; callers use it after Google rejected the token mid-flight.
        """
        validate_user_id(user_id)
        record = await self._load(user_id)

        if force_refresh or record.needs_refresh(self._clock(), self._buffer_ms):
            stale_token = record.access_token if force_refresh else None
            record = await self._refresh_once(user_id, stale_token=stale_token)

        return self._build_credentials(record)

    async def _load(self, user_id: str) -> CredentialRecord:
        record = await self._store.get(user_id)
        if record is None:
            logger.error("No credential record found for user %s", user_id)
            raise CredentialNotFoundError(
                f"User not found: {user_id}. Please sign in again."
            )
        return record

    async def _refresh_once(
        self, user_id: str, *, stale_token: Optional[str]
    ) -> CredentialRecord:
        task = self._inflight.get(user_id)
        if task is None:
            task = asyncio.create_task(self._refresh(user_id, stale_token=stale_token))
            self._inflight[user_id] = task
            task.add_done_callback(lambda done: self._forget(user_id, done))
        else:
            logger.debug("Joining in-flight token refresh for user %s", user_id)
        # A cancelled caller must not cancel the refresh other callers await.
        return await asyncio.shield(task)

    def _forget(self, user_id: str, task: asyncio.Task) -> None:
        if self._inflight.get(user_id) is task:
            del self._inflight[user_id]

    async def _refresh(
        self, user_id: str, *, stale_token: Optional[str]
    ) -> CredentialRecord:
        # Re-read: another request may have refreshed since the caller looked.
        record = await self._load(user_id)
        now = self._clock()
        still_fresh = not record.needs_refresh(now, self._buffer_ms)
        if still_fresh and (stale_token is None or record.access_token != stale_token):
            logger.info("Credential for user %s already refreshed elsewhere", user_id)
            return record

        if not record.refresh_token:
            logger.error(
                "Token for user %s needs refresh but no refresh token is stored", user_id
            )
            raise ReauthenticationRequiredError(
                f"Access token expired and no refresh token available for user "
                f"{user_id}. Please re-authenticate."
            )

        logger.info(
            "Refreshing access token for user %s (expires_at=%s, now=%s)",
            user_id,
            record.expires_at,
            now,
        )
        grant = await self._request_refresh(user_id, record.refresh_token)
        if not grant.access_token:
            logger.error("Token refresh response for user %s lacks an access token", user_id)
            raise InvalidAccessTokenError(
                "Invalid token response from Google: missing access_token. "
                "Please re-authenticate."
            )

        refreshed_at = self._clock()
        updated = record.model_copy(
            update={
                "access_token": grant.access_token,
                "refresh_token": grant.refresh_token or record.refresh_token,
                "scope": grant.scope or record.scope,
                "token_type": grant.token_type or record.token_type,
                "expires_at": compute_expires_at(
                    now=refreshed_at,
                    expiry_date=grant.expiry_date,
                    expires_in=grant.expires_in,
                    default_ttl_seconds=self._oauth_settings.default_token_ttl_seconds,
                ),
            }
        )
        saved = await self._store.save(updated)
        logger.info(
            "Token refreshed for user %s; expires in %s minutes",
            user_id,
            round((saved.expires_at - refreshed_at) / 60000),
        )
        return saved

    async def _request_refresh(self, user_id: str, refresh_token: str) -> TokenGrant:
        try:
            return await retry_async(
                lambda: self._oauth.refresh_token(refresh_token),
                is_retryable=_is_retryable_refresh_error,
                retry_config=self._retry,
                operation=f"Token refresh for user {user_id}",
            )
        except OAuthTokenExchangeError as exc:
            logger.error("Failed to refresh access token for user %s: %s", user_id, exc)
            if _is_revoked(exc):
                raise ReauthenticationRequiredError(
                    "Refresh token is invalid or revoked. Please re-authenticate."
                ) from exc
            if _is_retryable_refresh_error(exc):
                raise TokenRefreshUnavailableError(
                    f"Token refresh failed after {self._retry.attempts} attempts. "
                    "Please try again later."
                ) from exc
            raise ReauthenticationRequiredError(
                f"Token refresh failed: {exc}. Please re-authenticate."
            ) from exc

    def _build_credentials(self, record: CredentialRecord) -> Credentials:
        token = record.access_token
        if not token or token != token.strip() or any(char.isspace() for char in token):
            logger.error("Invalid access token format for user %s", record.user_id)
            raise InvalidAccessTokenError(
                f"No valid access token found for user {record.user_id}. "
                "Please re-authenticate."
            )

        # No refresh material: refreshing is this manager's job, so the Google
        # client library cannot mint tokens that never reach the store.
        credentials = Credentials(
            token=token,
            scopes=record.scope.split() or list(self._oauth_settings.scopes),
            expiry=datetime.fromtimestamp(record.expires_at / 1000, tz=timezone.utc).replace(
                tzinfo=None
            ),
        )
        if credentials.token != token:
            raise InvalidAccessTokenError(
                f"Failed to set access token on credentials for user {record.user_id}."
            )
        return credentials


__all__ = ["CredentialManager"]
