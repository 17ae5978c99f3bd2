"""Credential Vault: AES-256-GCM encryption for tenant provider API keys.

Blob layout (base64 text): ``salt(32) | iv(16) | tag(16) | ciphertext``.
The cipher key is derived per blob from the operator secret with scrypt,
so a weak secret is still expensive to brute force.

Decryption fails closed: any wrong secret, malformed or tampered blob raises
``DecryptionError``; no partial plaintext is ever returned.
"""

from __future__ import annotations

import base64
import binascii
import logging
import os

from cryptography.exceptions import InvalidTag
from cryptography.hazmat.primitives.ciphers.aead import AESGCM
from cryptography.hazmat.primitives.kdf.scrypt import Scrypt

from promptgate.core.config import Settings
from promptgate.core.exceptions import ConfigurationError, DecryptionError

logger = logging.getLogger(__name__)

SALT_LENGTH = 32
IV_LENGTH = 16
TAG_LENGTH = 16
KEY_LENGTH = 32
MIN_SECRET_LENGTH = 32

# scrypt cost parameters (N=2^14, r=8, p=1)
_SCRYPT_N = 2**14
_SCRYPT_R = 8
_SCRYPT_P = 1

_HEADER_LENGTH = SALT_LENGTH + IV_LENGTH + TAG_LENGTH


def _derive_key(secret: str, salt: bytes) -> bytes:
    kdf = Scrypt(salt=salt, length=KEY_LENGTH, n=_SCRYPT_N, r=_SCRYPT_R, p=_SCRYPT_P)
    return kdf.derive(secret.encode("utf-8"))


def encrypt_api_key(api_key: str, encryption_secret: str) -> str:
    """Encrypt ``api_key``. Every call uses a fresh salt and IV."""
    salt = os.urandom(SALT_LENGTH)
    iv = os.urandom(IV_LENGTH)
    key = _derive_key(encryption_secret, salt)

    # AESGCM appends the tag to the ciphertext
    sealed = AESGCM(key).encrypt(iv, api_key.encode("utf-8"), None)
    ciphertext, tag = sealed[:-TAG_LENGTH], sealed[-TAG_LENGTH:]

    return base64.b64encode(salt + iv + tag + ciphertext).decode("ascii")


def decrypt_api_key(encrypted_api_key: str, encryption_secret: str) -> str:
    """Decrypt a blob produced by :func:`encrypt_api_key`.

    Raises:
        DecryptionError: wrong secret, malformed or tampered blob.
    """
    try:
        combined = base64.b64decode(encrypted_api_key, validate=True)
    except (binascii.Error, ValueError, TypeError):
        raise DecryptionError("Failed to decrypt API key: malformed ciphertext") from None

    if len(combined) < _HEADER_LENGTH:
        raise DecryptionError("Failed to decrypt API key: ciphertext too short")

    salt = combined[:SALT_LENGTH]
    iv = combined[SALT_LENGTH : SALT_LENGTH + IV_LENGTH]
    tag = combined[SALT_LENGTH + IV_LENGTH : _HEADER_LENGTH]
    ciphertext = combined[_HEADER_LENGTH:]

    key = _derive_key(encryption_secret, salt)
    try:
        plaintext = AESGCM(key).decrypt(iv, ciphertext + tag, None)
        return plaintext.decode("utf-8")
    except InvalidTag:
        raise DecryptionError("Failed to decrypt API key: authentication failed") from None
    except UnicodeDecodeError:
        raise DecryptionError("Failed to decrypt API key: invalid plaintext encoding") from None


def get_encryption_secret(config: Settings | None = None) -> str:
    """Return the operator secret, validated.

    Raises:
        ConfigurationError: secret unset or shorter than 32 characters.
    """
    if config is None:
        from promptgate.core.config import settings as config

    secret = config.api_key_encryption_secret
    if not secret:
        raise ConfigurationError("API_KEY_ENCRYPTION_SECRET environment variable is not set")
    if len(secret) < MIN_SECRET_LENGTH:
        raise ConfigurationError(f"API_KEY_ENCRYPTION_SECRET must be at least {MIN_SECRET_LENGTH} characters long")
    return secret


def is_encrypted_api_key(value: str) -> bool:
    """Heuristic: does ``value`` look like a vault blob rather than a legacy plaintext key?"""
    if not value:
        return False
    try:
        decoded = base64.b64decode(value, validate=True)
    except (binascii.Error, ValueError, TypeError):
        return False
    return len(decoded) >= _HEADER_LENGTH


class CredentialVault:
    """Binds the operator secret to the encrypt/decrypt helpers.

    Stateless apart from the secret; safe to share between concurrent callers.
    """

    def __init__(self, secret: str):
        if not secret or len(secret) < MIN_SECRET_LENGTH:
            raise ConfigurationError(f"Encryption secret must be at least {MIN_SECRET_LENGTH} characters long")
        self._secret = secret

    @classmethod
    def from_settings(cls, config: Settings | None = None) -> CredentialVault:
        return cls(get_encryption_secret(config))

    def __repr__(self) -> str:
        return "CredentialVault(secret=***)"

    def encrypt(self, api_key: str) -> str:
        return encrypt_api_key(api_key, self._secret)

    def decrypt(self, blob: str) -> str:
        return decrypt_api_key(blob, self._secret)

    def resolve_api_key(self, stored_value: str) -> str:
        """Plaintext API key for a stored column value.

        Values that do not look encrypted are legacy plaintext keys and are
        returned as-is until they are re-saved.
        """
        if not is_encrypted_api_key(stored_value):
            logger.warning("API key does not appear to be encrypted. Consider re-saving it.")
            return stored_value
        try:
            return self.decrypt(stored_value)
        except DecryptionError:
            logger.error("Failed to decrypt credential: wrong secret or corrupted data")
            raise
