"""Exception hierarchy shared by the credential, handshake and data layers.

All exceptions inherit from ``WorkspaceAgentError`` and carry a human-readable
``message``. The route layer maps each family to an HTTP status code.
"""

from __future__ import annotations

from typing import Literal, Optional


class WorkspaceAgentError(Exception):
    """Base exception for all workspace agent errors.

    Attributes:
        message: Human-readable error description.
    """

    def __init__(self, message: str) -> None:
        self.message = message
        super().__init__(message)


class InputValidationError(WorkspaceAgentError):
    """Raised for malformed caller input before any I/O happens."""


class StoreUnavailableError(WorkspaceAgentError):
    """Raised when the document store cannot be reached or written."""


# Authentication that cannot be repaired by retrying.


class FatalAuthError(WorkspaceAgentError):
    """The user has to sign in (again) before the request can succeed."""


class NotAuthenticatedError(FatalAuthError):
    """Raised when a request carries no signed-in user."""

    def __init__(self, message: str = "Please sign in to access this data.") -> None:
        super().__init__(message)


class CredentialNotFoundError(FatalAuthError):
    """Raised when no persisted OAuth credential exists for a user."""


class ReauthenticationRequiredError(FatalAuthError):
    """Raised when the stored refresh token is missing, invalid or revoked."""


class InvalidAccessTokenError(FatalAuthError):
    """Raised when a credential fails verification after a successful refresh."""


class ProviderAuthError(FatalAuthError):
    """Raised when Google keeps rejecting a freshly refreshed access token."""


# Failures reported by Google resource APIs.


class ProviderError(WorkspaceAgentError):
    """Base class for Gmail, Drive and Calendar API failures.

    Attributes:
        api: Label of the API that failed (e.g. ``"Gmail"``).
        status_code: HTTP status returned by the provider, when known.
    """

    def __init__(
        self, message: str, *, api: str, status_code: Optional[int] = None
    ) -> None:
        self.api = api
        self.status_code = status_code
        super().__init__(message)


class TransientProviderError(ProviderError):
    """Rate limiting, 5xx or network failure that outlasted the retry budget."""


class ProviderRequestError(ProviderError):
    """The provider rejected the request itself; retrying will not help."""


PermissionReason = Literal["api_not_enabled", "insufficient_scope", "forbidden"]


class PermissionDeniedError(ProviderError):
    """Valid token, but the project or the grant does not allow the call."""

    def __init__(
        self,
        message: str,
        *,
        api: str,
        reason: PermissionReason,
        status_code: Optional[int] = 403,
    ) -> None:
        self.reason = reason
        super().__init__(message, api=api, status_code=status_code)


class UnauthorizedProviderError(ProviderError):
    """Google rejected the access token mid-flight (HTTP 401)."""


class TokenRefreshUnavailableError(WorkspaceAgentError):
    """The token endpoint stayed unavailable for every refresh attempt."""


# OAuth handshake.


class HandshakeError(WorkspaceAgentError):
    """Base class for failures while completing the OAuth handshake."""


class MissingHandshakeParameterError(HandshakeError):
    """Raised when the callback lacks ``code`` or ``state``."""


class InvalidOAuthStateError(HandshakeError):
    """Raised for missing, malformed, unsigned or tampered state tokens."""

    def __init__(self, message: str = "Invalid state parameter") -> None:
        super().__init__(message)


class ExpiredOAuthStateError(HandshakeError):
    """Raised when a correctly signed state is older than the allowed window."""

    def __init__(self, message: str = "State parameter expired") -> None:
        super().__init__(message)


class ReplayedOAuthStateError(HandshakeError):
    """Raised when a state token that was already consumed is presented again."""

    def __init__(self, message: str = "State parameter already used") -> None:
        super().__init__(message)


class TokenExchangeFailedError(HandshakeError):
    """Raised when the authorization code cannot be exchanged for tokens."""


class ProfileResolutionError(HandshakeError):
    """Raised when neither the ID token nor userinfo yields a usable profile."""


class SessionPersistenceError(HandshakeError):
    """Raised when the session could not be durably saved after sign-in."""


__all__ = [
    "CredentialNotFoundError",
    "ExpiredOAuthStateError",
    "FatalAuthError",
    "HandshakeError",
    "InputValidationError",
    "InvalidAccessTokenError",
    "InvalidOAuthStateError",
    "MissingHandshakeParameterError",
    "NotAuthenticatedError",
    "PermissionDeniedError",
    "PermissionReason",
    "ProfileResolutionError",
    "ProviderAuthError",
    "ProviderError",
    "ProviderRequestError",
    "ReauthenticationRequiredError",
    "ReplayedOAuthStateError",
    "SessionPersistenceError",
    "StoreUnavailableError",
    "TokenExchangeFailedError",
    "TokenRefreshUnavailableError",
    "TransientProviderError",
    "UnauthorizedProviderError",
    "WorkspaceAgentError",
]
