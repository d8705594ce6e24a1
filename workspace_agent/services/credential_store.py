"""
Persistence of per-user Google OAuth credentials.
"""

from __future__ import annotations

import logging
from typing import Any, Dict, Optional

from workspace_agent.clients.store_connection import StoreConnection
from workspace_agent.core.errors import (
    InputValidationError,
    ReauthenticationRequiredError,
    StoreUnavailableError,
)
from workspace_agent.models.credentials import CredentialRecord, new_user_id, now_ms
from workspace_agent.services.repository import DocumentRepository
from workspace_agent.services.token_cipher import TokenCipherService

logger = logging.getLogger(__name__)


class CredentialStore(DocumentRepository):
    """Stores one encrypted credential record per user, upserted by email."""

    _SORT_KEY = "oauth#google"
    _EMAIL_SORT_KEY = "user"

    def __init__(self, connection: StoreConnection, token_cipher: TokenCipherService) -> None:
        super().__init__(connection)
        self._cipher = token_cipher

    @staticmethod
    def _user_key(user_id: str) -> str:
        return f"user#{user_id}"

    @staticmethod
    def _email_key(email: str) -> str:
        return f"email#{email}"

    async def get(self, user_id: str) -> Optional[CredentialRecord]:
        item = await self._call(
            "get_item",
            partition_key=self._user_key(user_id),
            sort_key=self._SORT_KEY,
        )
        if not item:
            return None
        return self._from_item(item)

    async def save(self, record: CredentialRecord) -> CredentialRecord:
        """Write the whole record in a single put so token and expiry never drift."""
        if not record.access_token:
            raise ValueError("Refusing to persist a credential without an access token.")
        now = now_ms()
        record = record.model_copy(
            update={"created_at": record.created_at or now, "updated_at": now}
        )
        await self._call("put_item", self._to_item(record))
        return record

    async def resolve_user_id(self, email: str) -> str:
        """Return the user id bound to ``email``, allocating one on first sign-in."""
        candidate = new_user_id()
        created = await self._call(
            "put_item_if_absent",
            {
                "pk": self._email_key(email),
                "sk": self._EMAIL_SORT_KEY,
                "user_id": candidate,
                "email": email,
            },
        )
        if created:
            logger.info("Allocated user id %s for a new account", candidate)
            return candidate

        item = await self._call(
            "get_item",
            partition_key=self._email_key(email),
            sort_key=self._EMAIL_SORT_KEY,
        )
        if not item or not item.get("user_id"):
            raise StoreUnavailableError("Email index entry disappeared during upsert.")
        return item["user_id"]

    async def upsert_by_email(
        self,
        *,
        email: str,
        name: Optional[str],
        picture: Optional[str],
        access_token: str,
        refresh_token: Optional[str],
        scope: str,
        token_type: str,
        expires_at: int,
    ) -> CredentialRecord:
        normalized_email = email.strip().lower()
        if "@" not in normalized_email:
            raise InputValidationError(f"Invalid email address: {email!r}")

        user_id = await self.resolve_user_id(normalized_email)
        try:
            existing = await self.get(user_id)
        except ReauthenticationRequiredError:
            existing = None

        if not refresh_token and existing is not None:
            # Google omits the refresh token when the user already granted offline access.
            refresh_token = existing.refresh_token

        record = CredentialRecord(
            user_id=user_id,
            email=normalized_email,
            name=name,
            picture=picture,
            access_token=access_token,
            refresh_token=refresh_token,
            scope=scope,
            token_type=token_type,
            expires_at=expires_at,
            created_at=existing.created_at if existing else None,
        )
        saved = await self.save(record)
        logger.info(
            "Stored credentials for user %s (refresh token: %s)",
            user_id,
            "yes" if saved.refresh_token else "no",
        )
        return saved

    def _to_item(self, record: CredentialRecord) -> Dict[str, Any]:
        item: Dict[str, Any] = {
            "pk": self._user_key(record.user_id),
            "sk": self._SORT_KEY,
            "user_id": record.user_id,
            "email": record.email,
            "access_token_encrypted": self._cipher.encrypt(record.access_token),
            "scope": record.scope,
            "token_type": record.token_type,
            "expires_at": record.expires_at,
            "created_at": record.created_at,
            "updated_at": record.updated_at,
        }
        refresh_token_encrypted = self._cipher.encrypt_optional(record.refresh_token)
        if refresh_token_encrypted:
            item["refresh_token_encrypted"] = refresh_token_encrypted
        if record.name:
            item["name"] = record.name
        if record.picture:
            item["picture"] = record.picture
        return item

    def _from_item(self, item: Dict[str, Any]) -> CredentialRecord:
        encrypted_access_token = item.get("access_token_encrypted")
        expires_at = item.get("expires_at")
        if not encrypted_access_token or expires_at is None or not item.get("email"):
            raise ReauthenticationRequiredError(
                "Stored OAuth credential is missing required fields. Please re-authenticate."
            )
        try:
            access_token = self._cipher.decrypt(encrypted_access_token)
            refresh_token = self._cipher.decrypt_optional(item.get("refresh_token_encrypted"))
        except ValueError as exc:
            raise ReauthenticationRequiredError(
                "Stored OAuth credential could not be decrypted. Please re-authenticate."
            ) from exc

        return CredentialRecord(
            user_id=item["user_id"],
            email=item["email"],
            name=item.get("name"),
            picture=item.get("picture"),
            access_token=access_token,
            refresh_token=refresh_token,
            scope=item.get("scope") or "",
            token_type=item.get("token_type") or "Bearer",
            expires_at=int(expires_at),
            created_at=item.get("created_at"),
            updated_at=item.get("updated_at"),
        )


__all__ = ["CredentialStore"]
