"""
crypto.py — Authenticated encryption for third-party tokens at rest

AES-256-GCM with a random 12-byte nonce per message. Stored form is
"base64(nonce):base64(tag):base64(ciphertext)" so each value carries
everything needed to verify it.

Business Rules:
- Decryption fails closed: a wrong key, truncated value or any flipped bit
  raises TokenDecryptError, never returns plaintext
- A missing or malformed ENCRYPTION_KEY raises EncryptionKeyError
- The key may be 64 hex chars, base64 of 32 bytes, or 32 raw characters

Called by: services/credential_service.py
Depends on: config.py (encryption_key)
"""

import base64
import binascii
import os
import re
from functools import lru_cache

from cryptography.exceptions import InvalidTag
from cryptography.hazmat.primitives.ciphers.aead import AESGCM

from ..config import settings

NONCE_BYTES = 12
TAG_BYTES = 16
KEY_BYTES = 32

_HEX_KEY = re.compile(r"^[0-9a-fA-F]{64}$")


class CredentialError(Exception):
    """Base for every credential failure. Always fatal to the requesting call."""


class EncryptionKeyError(CredentialError):
    """Key material is missing or unusable."""


class TokenDecryptError(CredentialError):
    """Stored ciphertext failed authentication or could not be parsed."""


@lru_cache(maxsize=8)
def _parse_key(raw: str) -> bytes:
    raw = (raw or "").strip()
    if not raw:
        raise EncryptionKeyError("ENCRYPTION_KEY is not set")
    if _HEX_KEY.match(raw):
        return bytes.fromhex(raw)
    try:
        decoded = base64.b64decode(raw, validate=True)
    except (binascii.Error, ValueError):
        decoded = b""
    if len(decoded) == KEY_BYTES:
        return decoded
    encoded = raw.encode("utf-8")
    if len(encoded) == KEY_BYTES:
        return encoded
    raise EncryptionKeyError("ENCRYPTION_KEY must be 32 bytes (64 hex chars, base64, or 32 characters)")


def _cipher(key: str | None) -> AESGCM:
    return AESGCM(_parse_key(settings.encryption_key if key is None else key))


def encrypt_token(plaintext: str, key: str | None = None) -> str:
    """Encrypt a token for storage. Returns nonce:tag:ciphertext (base64 parts)."""
    aes = _cipher(key)
    nonce = os.urandom(NONCE_BYTES)
    sealed = aes.encrypt(nonce, plaintext.encode("utf-8"), None)
    ciphertext, tag = sealed[:-TAG_BYTES], sealed[-TAG_BYTES:]
    return ":".join(base64.b64encode(part).decode("ascii") for part in (nonce, tag, ciphertext))


def decrypt_token(stored: str, key: str | None = None) -> str:
    """Decrypt a value produced by encrypt_token. Raises TokenDecryptError on any mismatch."""
    aes = _cipher(key)
    parts = (stored or "").split(":")
    if len(parts) != 3:
        raise TokenDecryptError("Encrypted token has an invalid format")
    try:
        nonce, tag, ciphertext = (base64.b64decode(p, validate=True) for p in parts)
    except (binascii.Error, ValueError) as e:
        raise TokenDecryptError("Encrypted token is not valid base64") from e
    if len(nonce) != NONCE_BYTES or len(tag) != TAG_BYTES:
        raise TokenDecryptError("Encrypted token has an invalid nonce or tag")
    try:
        plaintext = aes.decrypt(nonce, ciphertext + tag, None)
    except InvalidTag as e:
        raise TokenDecryptError("Encrypted token failed authentication") from e
    try:
        return plaintext.decode("utf-8")
    except UnicodeDecodeError as e:
        raise TokenDecryptError("Decrypted token is not valid UTF-8") from e


def mask_value(plaintext: str) -> str:
    """Mask a credential value for display: show last 4 chars only."""
    if not plaintext:
        return ""
    if len(plaintext) <= 4:
        return "****"
    return "●" * min(8, len(plaintext) - 4) + plaintext[-4:]
