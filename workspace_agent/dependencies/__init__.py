"""Expose dependency helpers for FastAPI routers."""

from .clients import (
    get_credential_manager,
    get_credential_store,
    get_google_oauth_client,
    get_handshake_service,
    get_oauth_state_encoder,
    get_session_store,
    get_store_connection,
    get_token_cipher_service,
    get_workspace_data_service,
)
from .config import get_app_settings

__all__ = [
    "get_app_settings",
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
