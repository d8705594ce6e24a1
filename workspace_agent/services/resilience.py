"""
Retry, error classification and token-rejection recovery for Google API calls.
"""

from __future__ import annotations

import asyncio
import json
import logging
from typing import Any, Awaitable, Callable, List, Tuple, TypeVar

import httplib2
from google.auth.exceptions import RefreshError, TransportError
from google.oauth2.credentials import Credentials
from googleapiclient.errors import HttpError

from workspace_agent.core.config import ProviderSettings
from workspace_agent.core.errors import (
    PermissionDeniedError,
    ProviderAuthError,
    ProviderError,
    ProviderRequestError,
    TransientProviderError,
    UnauthorizedProviderError,
    WorkspaceAgentError,
)
from workspace_agent.services.credential_manager import CredentialManager
from workspace_agent.utils.retry import RetryConfig, retry_async

logger = logging.getLogger(__name__)

T = TypeVar("T")

RETRYABLE_STATUSES = frozenset({408, 429, 500, 502, 503, 504})

_RATE_LIMIT_REASONS = frozenset({"ratelimitexceeded", "userratelimitexceeded"})
_API_DISABLED_MARKERS = (
    "accessnotconfigured",
    "service_disabled",
    "has not been used",
    "unregistered callers",
)
_SCOPE_MARKERS = (
    "insufficientpermissions",
    "access_token_scope_insufficient",
    "insufficient authentication scopes",
    "insufficient permission",
)
_NETWORK_ERRORS = (
    asyncio.TimeoutError,
    TimeoutError,
    TransportError,
    httplib2.HttpLib2Error,
    OSError,
)


def _http_error_details(exc: HttpError) -> Tuple[str, List[str]]:
    """Pull the provider's message and reason codes out of an error payload."""
    message = ""
    reasons: List[str] = []
    content = exc.content.decode("utf-8", "replace") if isinstance(exc.content, bytes) else ""
    try:
        payload: Any = json.loads(content) if content else {}
    except ValueError:
        payload = {}

    error = payload.get("error") if isinstance(payload, dict) else None
    if isinstance(error, dict):
        message = str(error.get("message") or "")
        if error.get("status"):
            reasons.append(str(error["status"]))
        for item in error.get("errors") or []:
            if isinstance(item, dict) and item.get("reason"):
                reasons.append(str(item["reason"]))
        for item in error.get("details") or []:
            if isinstance(item, dict) and item.get("reason"):
                reasons.append(str(item["reason"]))
    elif isinstance(error, str):
        message = error

    if not message:
        message = getattr(exc, "reason", "") or ""
    return message, reasons


def _matches(haystack: str, markers: Tuple[str, ...]) -> bool:
    return any(marker in haystack for marker in markers)


def _classify_forbidden(api: str, message: str, reasons: List[str]) -> ProviderError:
    lowered_reasons = {reason.lower() for reason in reasons}
    if lowered_reasons & _RATE_LIMIT_REASONS:
        return TransientProviderError(
            f"{api} rate limit exceeded: {message or 'too many requests'}",
            api=api,
            status_code=403,
        )

    haystack = " ".join([message, *reasons]).lower()
    if _matches(haystack, _API_DISABLED_MARKERS):
        return PermissionDeniedError(
            f"{api} API is not enabled for this Google Cloud project. "
            "Enable it in the Google Cloud Console and try again.",
            api=api,
            reason="api_not_enabled",
        )
    if _matches(haystack, _SCOPE_MARKERS):
        return PermissionDeniedError(
            f"The app was not granted access to {api}. "
            f"Sign out and sign in again, allowing {api} access.",
            api=api,
            reason="insufficient_scope",
        )
    return PermissionDeniedError(
        f"Access denied to {api} (403). {message or 'Check your permissions and API settings.'}",
        api=api,
        reason="forbidden",
    )


def classify_google_error(exc: BaseException, api: str) -> ProviderError:
    """Map an exception raised by a Google API call onto the provider error family."""
    if isinstance(exc, ProviderError):
        return exc

    if isinstance(exc, HttpError):
        status = int(exc.resp.status)
        message, reasons = _http_error_details(exc)
        if status == 401:
            return UnauthorizedProviderError(
                f"{api} rejected the access token: {message or 'unauthorized'}",
                api=api,
                status_code=status,
            )
        if status == 403:
            return _classify_forbidden(api, message, reasons)
        if status in RETRYABLE_STATUSES:
            return TransientProviderError(
                f"{api} returned {status}: {message or 'temporary failure'}",
                api=api,
                status_code=status,
            )
        if 400 <= status < 500:
            return ProviderRequestError(
                f"{api} rejected the request ({status}): {message or 'bad request'}",
                api=api,
                status_code=status,
            )
        return ProviderError(
            f"Failed to fetch data from {api} ({status}): {message or 'unknown error'}",
            api=api,
            status_code=status,
        )

    if isinstance(exc, RefreshError):
        # The library could not use the token it was handed.
        return UnauthorizedProviderError(f"{api} credentials were rejected: {exc}", api=api)

    if isinstance(exc, _NETWORK_ERRORS):
        return TransientProviderError(
            f"{api} request failed: {str(exc) or type(exc).__name__}", api=api
        )

    return ProviderError(
        f"Failed to fetch data from {api}: {str(exc) or 'unknown error'}", api=api
    )


class ResilientCaller:
    """Run Google API operations with bounded retries and one forced token refresh.

    Transient failures are retried with exponential backoff. A rejected
    access token triggers exactly one forced refresh through the credential
    manager; a second rejection is fatal.
    """

    def __init__(
        self, credential_manager: CredentialManager, settings: ProviderSettings
    ) -> None:
        self._credentials = credential_manager
        self._retry = RetryConfig(
            attempts=settings.max_retries + 1, backoff_seconds=settings.backoff_seconds
        )

    async def call(
        self,
        user_id: str,
        api: str,
        operation: Callable[[Credentials], Awaitable[T]],
    ) -> T:
        credentials = await self._credentials.get_client_for_user(user_id)
        try:
            return await self._with_retries(api, operation, credentials)
        except UnauthorizedProviderError as exc:
            logger.warning(
                "%s rejected the token for user %s; forcing one refresh (%s)",
                api,
                user_id,
                exc.message,
            )

        credentials = await self._credentials.get_client_for_user(user_id, force_refresh=True)
        try:
            return await self._with_retries(api, operation, credentials)
        except UnauthorizedProviderError as exc:
            logger.error("%s rejected a freshly refreshed token for user %s", api, user_id)
            raise ProviderAuthError(
                f"Authentication failed. Please re-authenticate to access {api}."
            ) from exc

    async def _with_retries(
        self,
        api: str,
        operation: Callable[[Credentials], Awaitable[T]],
        credentials: Credentials,
    ) -> T:
        async def _attempt() -> T:
            try:
                return await operation(credentials)
            except WorkspaceAgentError:
                raise
            except Exception as exc:
                raise classify_google_error(exc, api) from exc

        try:
            return await retry_async(
                _attempt,
                is_retryable=lambda exc: isinstance(exc, TransientProviderError),
                retry_config=self._retry,
                operation=f"{api} request",
            )
        except TransientProviderError as exc:
            logger.error(
                "%s still failing after %s attempts: %s", api, self._retry.attempts, exc.message
            )
            raise TransientProviderError(
                f"{api} is temporarily unavailable. Please try again later.",
                api=api,
                status_code=exc.status_code,
            ) from exc


__all__ = ["RETRYABLE_STATUSES", "ResilientCaller", "classify_google_error"]
