"""
Credential Vault

Encrypts long-lived third-party credentials (GitHub access tokens) at rest.

Blob format (base64 of):

    salt(16) | nonce(12) | tag(16) | ciphertext

Each blob gets a fresh salt and nonce. The AES-256-GCM key is derived per
blob from the server-wide ENCRYPTION_KEY and the salt with PBKDF2-SHA512,
so key material is never reused verbatim.

Security:
- Never logs plaintext, keys or blobs
- Encryption failures raise (plaintext is never stored as a fallback)
- Decryption failures return "" so callers take the "not connected" path
"""

import base64
import binascii
import logging
import os
from typing import Optional

from cryptography.exceptions import InvalidTag
from cryptography.hazmat.primitives import hashes
from cryptography.hazmat.primitives.ciphers.aead import AESGCM
from cryptography.hazmat.primitives.kdf.pbkdf2 import PBKDF2HMAC

from app.errors import ConfigurationError, ProviderError, ValidationError

logger = logging.getLogger(__name__)

SALT_LENGTH = 16
NONCE_LENGTH = 12
TAG_LENGTH = 16
KEY_LENGTH = 32
KDF_ITERATIONS = 100_000

TAG_POSITION = SALT_LENGTH + NONCE_LENGTH
CIPHERTEXT_POSITION = TAG_POSITION + TAG_LENGTH


class CredentialVault:
    """AES-256-GCM credential encryption keyed by a server secret."""

    def __init__(self, secret: str, iterations: int = KDF_ITERATIONS):
        self._secret = secret.encode("utf-8") if secret else b""
        self.iterations = iterations

    def __repr__(self):
        return f"<CredentialVault configured={bool(self._secret)}>"

    def _derive_key(self, salt: bytes) -> bytes:
        kdf = PBKDF2HMAC(
            algorithm=hashes.SHA512(),
            length=KEY_LENGTH,
            salt=salt,
            iterations=self.iterations,
        )
        return kdf.derive(self._secret)

    def encrypt(self, plaintext: str) -> str:
        """
        Encrypt a credential.

        Args:
            plaintext: Credential to protect

        Returns:
            Opaque base64 blob

        Raises:
            ValidationError: If plaintext is empty
            ConfigurationError: If ENCRYPTION_KEY is not set
            ProviderError: If the cipher fails
        """
        if not plaintext:
            raise ValidationError("Token is required for encryption")

        if not self._secret:
            raise ConfigurationError("ENCRYPTION_KEY is not configured")

        try:
            salt = os.urandom(SALT_LENGTH)
            nonce = os.urandom(NONCE_LENGTH)
            key = self._derive_key(salt)

            # AESGCM appends the tag to the ciphertext
            sealed = AESGCM(key).encrypt(nonce, plaintext.encode("utf-8"), None)
            ciphertext, tag = sealed[:-TAG_LENGTH], sealed[-TAG_LENGTH:]

            return base64.b64encode(salt + nonce + tag + ciphertext).decode("ascii")
        except Exception as e:
            logger.error(f"Credential encryption failed: {type(e).__name__}")
            raise ProviderError("Failed to encrypt credential", provider="vault") from e

    def decrypt(self, blob: Optional[str]) -> str:
        """
        Decrypt a credential blob.

        Returns:
            The plaintext, or "" if the blob is empty, malformed, was
            encrypted under another key, or fails authentication.
        """
        if not blob:
            return ""

        if not self._secret:
            logger.error("ENCRYPTION_KEY is not configured - credential unavailable")
            return ""

        try:
            combined = base64.b64decode(blob, validate=True)
        except (binascii.Error, ValueError):
            logger.warning("Credential blob is not valid base64")
            return ""

        if len(combined) <= CIPHERTEXT_POSITION:
            logger.warning("Credential blob is truncated")
            return ""

        salt = combined[:SALT_LENGTH]
        nonce = combined[SALT_LENGTH:TAG_POSITION]
        tag = combined[TAG_POSITION:CIPHERTEXT_POSITION]
        ciphertext = combined[CIPHERTEXT_POSITION:]

        try:
            key = self._derive_key(salt)
            plaintext = AESGCM(key).decrypt(nonce, ciphertext + tag, None)
        except InvalidTag:
            logger.warning("Credential blob failed authentication")
            return ""

        try:
            return plaintext.decode("utf-8")
        except UnicodeDecodeError:
            logger.warning("Credential plaintext is not valid UTF-8")
            return ""
