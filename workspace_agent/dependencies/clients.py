"""
Factory functions to provide shared clients and services as FastAPI dependencies.
"""

from functools import lru_cache

from workspace_agent.clients import (
    DynamoDBStore,
    GmailClient,
    GoogleCalendarClient,
    GoogleDriveClient,
    GoogleOAuthClient,
    OAuthStateEncoder,
    SQLiteStore,
    StoreConnection,
)
from workspace_agent.clients.store_connection import DocumentStore
from workspace_agent.core.config import get_settings
from workspace_agent.services import (
    CredentialManager,
    CredentialStore,
    OAuthHandshakeService,
    ResilientCaller,
    SessionStore,
    TokenCipherService,
    WorkspaceDataService,
)
from workspace_agent.utils.retry import RetryConfig


@lru_cache()
def _settings():
    """Internal helper to cache settings for client factories."""
    return get_settings()


@lru_cache()
def get_store_connection() -> StoreConnection:
    """Provide the process-wide document store connection."""
    store_settings = _settings().store

    def _open() -> DocumentStore:
        if store_settings.backend == "dynamodb":
            return DynamoDBStore(store_settings).open()
        return SQLiteStore(store_settings.sqlite_db_path).open()

    return StoreConnection(
        _open,
        retry_config=RetryConfig(
            attempts=store_settings.connect_attempts,
            backoff_seconds=store_settings.connect_backoff_seconds,
        ),
        connect_timeout_seconds=store_settings.connect_timeout_seconds,
        name=f"{store_settings.backend} document store",
    )


@lru_cache()
def get_oauth_state_encoder() -> OAuthStateEncoder:
    """Provide an OAuth state encoder keyed by the session secret."""
    settings = _settings()
    secret = settings.security.session_secret or settings.google.client_secret
    return OAuthStateEncoder(secret_key=secret, ttl_seconds=settings.oauth.state_ttl_seconds)


@lru_cache()
def get_google_oauth_client() -> GoogleOAuthClient:
    """Create a singleton Google OAuth client."""
    settings = _settings()
    return GoogleOAuthClient(settings.google, settings.oauth)


@lru_cache()
def get_token_cipher_service() -> TokenCipherService:
    """Provide symmetric encryption helper for token storage."""
    settings = _settings()
    secret = settings.security.token_encryption_secret or settings.google.client_secret
    return TokenCipherService(
        secret=secret,
        previous_secrets=settings.security.token_encryption_previous_secrets,
    )


@lru_cache()
def get_credential_store() -> CredentialStore:
    return CredentialStore(get_store_connection(), get_token_cipher_service())


@lru_cache()
def get_session_store() -> SessionStore:
    settings = _settings()
    return SessionStore(
        get_store_connection(), ttl_seconds=settings.security.session_ttl_seconds
    )


@lru_cache()
def get_credential_manager() -> CredentialManager:
    """Provide the single owner of token refreshes."""
    settings = _settings()
    return CredentialManager(
        store=get_credential_store(),
        oauth_client=get_google_oauth_client(),
        oauth_settings=settings.oauth,
    )


@lru_cache()
def get_handshake_service() -> OAuthHandshakeService:
    settings = _settings()
    return OAuthHandshakeService(
        oauth_client=get_google_oauth_client(),
        state_encoder=get_oauth_state_encoder(),
        credential_store=get_credential_store(),
        session_store=get_session_store(),
        oauth_settings=settings.oauth,
    )


@lru_cache()
def get_workspace_data_service() -> WorkspaceDataService:
    """Provide the Gmail, Drive and Calendar data service."""
    settings = _settings()
    return WorkspaceDataService(
        caller=ResilientCaller(get_credential_manager(), settings.providers),
        settings=settings.providers,
        gmail_client=GmailClient(),
        drive_client=GoogleDriveClient(),
        calendar_client=GoogleCalendarClient(),
    )


__all__ = [
    "get_credential_manager",
    "get_credential_store",
    "get_google_oauth_client",
    "get_handshake_service",
    "get_oauth_state_encoder",
    "get_session_store",
    "get_store_connection",
    "get_token_cipher_service",
    "get_workspace_data_service",
]
