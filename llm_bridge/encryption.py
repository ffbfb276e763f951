"""AES-256-GCM encryption for stored provider secrets.

Encrypted values are "iv:ciphertext:tag" with each part hex encoded. The key
is 32 bytes, configured as 64 hex characters in ENCRYPTION_KEY.
"""

import json
import os

from cryptography.exceptions import InvalidTag
from cryptography.hazmat.primitives.ciphers.aead import AESGCM

from .config import get_settings

IV_LENGTH = 12
TAG_LENGTH = 16
KEY_HEX_LENGTH = 64


class EncryptionKeyError(RuntimeError):
    """ENCRYPTION_KEY is missing or malformed."""


class DecryptionError(ValueError):
    """Encrypted value is malformed or was not produced with this key."""


def _get_key(key: str | None = None) -> bytes:
    key = key if key is not None else get_settings().encryption_key
    if not key:
        raise EncryptionKeyError("ENCRYPTION_KEY is not set")
    if len(key) != KEY_HEX_LENGTH:
        raise EncryptionKeyError("ENCRYPTION_KEY must be 256 bits, 64 string characters in hex format")
    try:
        return bytes.fromhex(key)
    except ValueError:
        raise EncryptionKeyError("ENCRYPTION_KEY must be hex encoded") from None


def encrypt(plain_text: str, key: str | None = None) -> str:
    """Encrypt text to the iv:ciphertext:tag format."""
    iv = os.urandom(IV_LENGTH)
    sealed = AESGCM(_get_key(key)).encrypt(iv, plain_text.encode("utf-8"), None)
    # AESGCM appends the tag to the ciphertext
    ciphertext, tag = sealed[:-TAG_LENGTH], sealed[-TAG_LENGTH:]
    return f"{iv.hex()}:{ciphertext.hex()}:{tag.hex()}"


def decrypt(encrypted: str, key: str | None = None) -> str:
    """Decrypt a value produced by encrypt().

    Raises:
        DecryptionError: Malformed value or wrong key.
    """
    parts = encrypted.split(":")
    if len(parts) != 3:
        raise DecryptionError("Invalid encrypted value format")

    try:
        iv, ciphertext, tag = (bytes.fromhex(part) for part in parts)
    except ValueError:
        raise DecryptionError("Invalid encrypted value format") from None

    try:
        plain = AESGCM(_get_key(key)).decrypt(iv, ciphertext + tag, None)
    except InvalidTag:
        raise DecryptionError("Failed to decrypt value") from None
    return plain.decode("utf-8")


def decrypt_and_parse_extra_headers(
    encrypted: str | None,
    key: str | None = None,
) -> dict[str, str] | None:
    """Decrypt a stored extra-headers blob into a header dict."""
    if not encrypted:
        return None
    return json.loads(decrypt(encrypted, key))
