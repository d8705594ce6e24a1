"""Server-side sessions and single-use OAuth state bookkeeping."""

from __future__ import annotations

import logging
import secrets
from dataclasses import asdict, dataclass
from typing import Optional

from workspace_agent.clients.store_connection import StoreConnection
from workspace_agent.models.credentials import now_ms
from workspace_agent.services.repository import DocumentRepository

logger = logging.getLogger(__name__)


@dataclass(slots=True)
class SessionRecord:
    """Maps a session cookie to a user plus transient handshake state."""

    session_id: str
    created_at: int
    expires_at: int
    user_id: Optional[str] = None
    oauth_state: Optional[str] = None
    oauth_state_timestamp: Optional[int] = None


class SessionStore(DocumentRepository):
    """Document-store backed session records keyed by an opaque session id."""

    _SORT_KEY = "session"
    _CONSUMED_SORT_KEY = "consumed"

    def __init__(self, connection: StoreConnection, *, ttl_seconds: int = 86400) -> None:
        super().__init__(connection)
        self._ttl_ms = ttl_seconds * 1000

    @staticmethod
    def _key(session_id: str) -> str:
        return f"session#{session_id}"

    def new_session(self, *, now: Optional[int] = None) -> SessionRecord:
        """Create an unsaved session with a fresh unguessable id."""
        now = now if now is not None else now_ms()
        return SessionRecord(
            session_id=secrets.token_urlsafe(32),
            created_at=now,
            expires_at=now + self._ttl_ms,
        )

    async def get(self, session_id: str, *, now: Optional[int] = None) -> Optional[SessionRecord]:
        """Load a live session; expired sessions are deleted and reported as absent."""
        if not session_id:
            return None
        item = await self._call(
            "get_item", partition_key=self._key(session_id), sort_key=self._SORT_KEY
        )
        if not item:
            return None
        now = now if now is not None else now_ms()
        if item.get("expires_at", 0) <= now:
            logger.info("Discarding expired session %s...", session_id[:8])
            await self.destroy(session_id)
            return None
        return SessionRecord(
            session_id=session_id,
            created_at=item["created_at"],
            expires_at=item["expires_at"],
            user_id=item.get("user_id"),
            oauth_state=item.get("oauth_state"),
            oauth_state_timestamp=item.get("oauth_state_timestamp"),
        )

    async def save(self, session: SessionRecord) -> None:
        item = {
            key: value for key, value in asdict(session).items() if value is not None
        }
        item.update({"pk": self._key(session.session_id), "sk": self._SORT_KEY})
        await self._call("put_item", item)

    async def destroy(self, session_id: str) -> None:
        await self._call(
            "delete_item", partition_key=self._key(session_id), sort_key=self._SORT_KEY
        )

    async def consume_state_nonce(self, nonce: str, *, now: int, ttl_seconds: int) -> bool:
        """Atomically mark a handshake nonce as used. False means it was used before."""
        expires_at = now + ttl_seconds * 1000
        return await self._call(
            "put_item_if_absent",
            {
                "pk": f"oauth_state#{nonce}",
                "sk": self._CONSUMED_SORT_KEY,
                "consumed_at": now,
                "expires_at": expires_at,
                # Epoch seconds, usable as a DynamoDB TTL attribute.
                "ttl": expires_at // 1000,
            },
        )


__all__ = ["SessionRecord", "SessionStore"]
