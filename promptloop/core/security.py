"""Encryption helpers for channel secrets stored on job rows.

Secrets are sealed with AES-256-GCM and stored as
`base64(iv):base64(tag):base64(ciphertext)`.
"""

import base64
import hashlib
import hmac
import os
import re

from cryptography.exceptions import InvalidTag
from cryptography.hazmat.primitives.ciphers.aead import AESGCM

from promptloop.config import get_settings

IV_BYTES = 12
TAG_BYTES = 16

_HEX_KEY = re.compile(r"^[0-9a-fA-F]{64}$")


class SecretKeyError(RuntimeError):
    """Raised when no usable channel secret key is configured."""


class DecryptionError(ValueError):
    """Raised when an encrypted payload is malformed or fails authentication."""


def _key_from_settings() -> bytes:
    raw = get_settings().channel_secret_key
    if not raw:
        raise SecretKeyError("CHANNEL_SECRET_KEY is required")

    # 64 hex chars are used as the raw 32-byte key
    if _HEX_KEY.match(raw):
        return bytes.fromhex(raw)

    return hashlib.sha256(raw.encode()).digest()


def encrypt_string(value: str) -> str:
    """Encrypt a secret for storage."""
    iv = os.urandom(IV_BYTES)
    sealed = AESGCM(_key_from_settings()).encrypt(iv, value.encode("utf-8"), None)
    ciphertext, tag = sealed[:-TAG_BYTES], sealed[-TAG_BYTES:]
    return ":".join(base64.b64encode(part).decode("ascii") for part in (iv, tag, ciphertext))


def decrypt_string(value: str) -> str:
    """Decrypt a secret produced by `encrypt_string`."""
    parts = value.split(":") if isinstance(value, str) else []
    if len(parts) != 3 or not all(parts[:2]):
        raise DecryptionError("Invalid encrypted payload")

    try:
        iv, tag, ciphertext = (base64.b64decode(part) for part in parts)
    except ValueError as e:
        raise DecryptionError("Invalid encrypted payload") from e

    try:
        plaintext = AESGCM(_key_from_settings()).decrypt(iv, ciphertext + tag, None)
    except InvalidTag as e:
        raise DecryptionError("Encrypted payload failed authentication") from e
    return plaintext.decode("utf-8")


def mask_secret(value: str) -> str:
    """Mask a secret for display, keeping the first and last four characters."""
    if not value:
        return ""
    if len(value) <= 8:
        return "*" * len(value)
    return f"{value[:4]}{'*' * (len(value) - 8)}{value[-4:]}"


def verify_bearer_token(authorization: str | None, expected: str) -> bool:
    """Constant-time check of an `Authorization: Bearer <token>` header."""
    if not authorization:
        return False
    return hmac.compare_digest(authorization, f"Bearer {expected}")
