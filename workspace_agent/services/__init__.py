"""Service layer exports."""

from .credential_manager import CredentialManager
from .credential_store import CredentialStore
from .oauth_handshake import OAuthHandshakeService
from .resilience import ResilientCaller
from .session_store import SessionRecord, SessionStore
from .token_cipher import TokenCipherService
from .workspace_data import WorkspaceDataService

__all__ = [
    "CredentialManager",
    "CredentialStore",
    "OAuthHandshakeService",
    "ResilientCaller",
    "SessionRecord",
    "SessionStore",
    "TokenCipherService",
    "WorkspaceDataService",
]
