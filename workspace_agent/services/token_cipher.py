"""Symmetric encryption utilities for protecting stored OAuth tokens."""

from __future__ import annotations

import base64
import hashlib
from typing import Iterable, Optional

from cryptography.fernet import Fernet, InvalidToken, MultiFernet


def _derive_key(secret: str) -> bytes:
    digest = hashlib.sha256(secret.encode("utf-8")).digest()
    return base64.urlsafe_b64encode(digest)


class TokenCipherService:
    """Encrypt and decrypt token strings using Fernet keys derived from secrets.

    The first secret encrypts; any of ``previous_secrets`` may still decrypt,
    so the encryption secret can be rotated without forcing every user to
    sign in again.
    """

    def __init__(self, *, secret: str, previous_secrets: Iterable[str] = ()) -> None:
        if not secret:
            raise ValueError("Token encryption secret must be provided.")
        keys = [Fernet(_derive_key(secret))]
        keys.extend(Fernet(_derive_key(old)) for old in previous_secrets if old)
        self._fernet = MultiFernet(keys)

    def encrypt(self, plaintext: str) -> str:
        """Encrypt a plaintext string and return the ciphertext."""
        token = self._fernet.encrypt(plaintext.encode("utf-8"))
        return token.decode("utf-8")

    def decrypt(self, ciphertext: str) -> str:
        """Decrypt a ciphertext string and return the plaintext."""
        try:
            plaintext = self._fernet.decrypt(ciphertext.encode("utf-8"))
        except InvalidToken as exc:
            raise ValueError(
                "Failed to decrypt token; invalid ciphertext provided."
            ) from exc
        return plaintext.decode("utf-8")

    def encrypt_optional(self, plaintext: Optional[str]) -> Optional[str]:
        return self.encrypt(plaintext) if plaintext else None

    def decrypt_optional(self, ciphertext: Optional[str]) -> Optional[str]:
        return self.decrypt(ciphertext) if ciphertext else None


__all__ = ["TokenCipherService"]
