"""
Encryption of TOTP secrets at rest.

AES-256-GCM with a random 96-bit nonce per message. The owning user id is
bound as associated data, so a ciphertext issued for one user's pending setup
fails authentication when presented for another user.

Token layout: urlsafe_b64( nonce[12] || ciphertext || tag[16] )
"""

import base64
import binascii
import logging
import os
from typing import Optional, Union

from cryptography.exceptions import InvalidTag
from cryptography.hazmat.primitives import hashes
from cryptography.hazmat.primitives.ciphers.aead import AESGCM
from cryptography.hazmat.primitives.kdf.hkdf import HKDF

from twofa_service.core.config import settings
from twofa_service.core.exceptions import ConfigurationError, DecryptionError

logger = logging.getLogger(__name__)

NONCE_SIZE = 12  # 96-bit nonce for GCM
TAG_SIZE = 16
KEY_SIZE = 32


def parse_key(raw: str) -> bytes:
    """
    Decode an encryption key given as 64 hex characters or base64

    Raises:
        ConfigurationError: If the value does not decode to exactly 32 bytes
    """
    raw = raw.strip()
    key: Optional[bytes] = None
    if len(raw) == KEY_SIZE * 2:
        try:
            key = bytes.fromhex(raw)
        except ValueError:
            key = None
    if key is None:
        try:
            key = base64.urlsafe_b64decode(raw.replace("+", "-").replace("/", "_"))
        except (binascii.Error, ValueError) as e:
            raise ConfigurationError(f"TWO_FACTOR_ENCRYPTION_KEY is neither hex nor base64: {e}")
    if len(key) != KEY_SIZE:
        raise ConfigurationError(
            f"TWO_FACTOR_ENCRYPTION_KEY must decode to exactly {KEY_SIZE} bytes, got {len(key)}"
        )
    return key


def _context_bytes(context: Union[str, int, None]) -> Optional[bytes]:
    if context is None:
        return None
    return f"user:{context}".encode("utf-8")


class SecretCodec:
    """Symmetric encrypt/decrypt of TOTP secrets for storage"""

    def __init__(self, encryption_key: Optional[bytes] = None):
        """
        Args:
            encryption_key: 32-byte key. If None, read from TWO_FACTOR_ENCRYPTION_KEY.

        Raises:
            ConfigurationError: If no usable key is configured
        """
        if encryption_key is None:
            raw = settings.TWO_FACTOR_ENCRYPTION_KEY
            if not raw:
                raise ConfigurationError(
                    "TWO_FACTOR_ENCRYPTION_KEY environment variable is required. "
                    "Generate a key with: python -c 'import os; print(os.urandom(32).hex())'"
                )
            encryption_key = parse_key(raw)

        if len(encryption_key) != KEY_SIZE:
            raise ConfigurationError(
                f"Encryption key must be exactly {KEY_SIZE} bytes, got {len(encryption_key)} bytes"
            )

        self._key = encryption_key
        self._cipher = AESGCM(encryption_key)

    def encrypt(self, secret: str, *, context: Union[str, int, None] = None) -> str:
        """
        Encrypt a secret

        Args:
            secret: Plaintext value
            context: Owner binding (user id); must be supplied again to decrypt

        Returns:
            URL-safe base64 token, different on every call
        """
        nonce = os.urandom(NONCE_SIZE)
        ciphertext = self._cipher.encrypt(nonce, secret.encode("utf-8"), _context_bytes(context))
        return base64.urlsafe_b64encode(nonce + ciphertext).decode("ascii")

    def decrypt(self, token: str, *, context: Union[str, int, None] = None) -> str:
        """
        Decrypt a token produced by encrypt()

        Raises:
            DecryptionError: If the token is malformed, truncated, was produced
                with another key, or is bound to another context
        """
        if not token or not isinstance(token, str):
            raise DecryptionError("Encrypted secret is empty")

        try:
            blob = base64.urlsafe_b64decode(token.encode("ascii"))
        except (binascii.Error, ValueError, UnicodeEncodeError):
            raise DecryptionError("Encrypted secret is not valid base64")

        if len(blob) < NONCE_SIZE + TAG_SIZE + 1:
            raise DecryptionError("Encrypted secret is truncated")

        nonce, ciphertext = blob[:NONCE_SIZE], blob[NONCE_SIZE:]
        try:
            plaintext = self._cipher.decrypt(nonce, ciphertext, _context_bytes(context))
        except InvalidTag:
            raise DecryptionError("Encrypted secret failed authentication")

        try:
            return plaintext.decode("utf-8")
        except UnicodeDecodeError:
            raise DecryptionError("Decrypted secret is not valid UTF-8")

    def derive_subkey(self, info: bytes) -> bytes:
        """Derive an independent 32-byte key for another purpose (HKDF-SHA256)"""
        return HKDF(
            algorithm=hashes.SHA256(),
            length=KEY_SIZE,
            salt=None,
            info=info,
        ).derive(self._key)


_codec_instance: Optional[SecretCodec] = None


def get_secret_codec() -> SecretCodec:
    """Get the process-wide codec (initialized on first use)"""
    global _codec_instance
    if _codec_instance is None:
        _codec_instance = SecretCodec()
        logger.info("Secret codec initialized")
    return _codec_instance
