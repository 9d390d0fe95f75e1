"""Encryption helpers for target credentials, built on AES-GCM.

Tokens are unpadded urlsafe base64 of a 12-byte nonce followed by the
ciphertext and tag. The 256-bit key is the SHA-256 digest of
PUBLISHER_TOKEN_KEY, read at call time.
"""

import base64
import binascii
import hashlib
import logging
import os
from typing import Optional

from cryptography.exceptions import InvalidTag
from cryptography.hazmat.primitives.ciphers.aead import AESGCM

from .config import get_publisher_token_key

logger = logging.getLogger(__name__)

_NONCE_SIZE = 12
_TAG_SIZE = 16


def _get_cipher(key: Optional[str] = None) -> AESGCM:
    raw_key = (key if key is not None else get_publisher_token_key()) or ""
    raw_key = raw_key.strip()
    if not raw_key:
        raise ValueError("missing_env_PUBLISHER_TOKEN_KEY")
    return AESGCM(hashlib.sha256(raw_key.encode("utf-8")).digest())


def _b64encode(data: bytes) -> str:
    return base64.urlsafe_b64encode(data).decode("ascii").rstrip("=")


def _b64decode(text: str) -> bytes:
    raw = text.encode("ascii")
    pad_len = (-len(raw)) % 4
    if pad_len:
        raw += b"=" * pad_len
    return base64.urlsafe_b64decode(raw)


def encrypt_secret(plaintext: str, key: Optional[str] = None) -> str:
    """Encrypt a credential for storage in a target config.

    Args:
        plaintext: The secret to encrypt.
        key: Optional key override; defaults to PUBLISHER_TOKEN_KEY.

    Returns:
        The encrypted token.

    Raises:
        ValueError: If no key is configured.
    """
    cipher = _get_cipher(key)
    nonce = os.urandom(_NONCE_SIZE)
    ciphertext = cipher.encrypt(nonce, plaintext.encode("utf-8"), None)
    return _b64encode(nonce + ciphertext)


def decrypt_secret(token: str, key: Optional[str] = None) -> str:
    """Decrypt a credential produced by encrypt_secret.

    Raises:
        ValueError: If no key is configured or the token is invalid.
    """
    cipher = _get_cipher(key)
    try:
        payload = _b64decode(token.strip())
    except (binascii.Error, ValueError, UnicodeEncodeError) as exc:
        raise ValueError("Invalid encrypted payload") from exc
    if len(payload) < _NONCE_SIZE + _TAG_SIZE:
        raise ValueError("Encrypted payload too short")
    nonce = payload[:_NONCE_SIZE]
    try:
        plaintext = cipher.decrypt(nonce, payload[_NONCE_SIZE:], None)
    except InvalidTag as exc:
        raise ValueError("Invalid encrypted payload") from exc
    return plaintext.decode("utf-8")


def decrypt_secret_fail_open(token: Optional[str], key: Optional[str] = None) -> Optional[str]:
    """Decrypt a credential, returning None on any failure.

    Used where a missing credential has a fallback (e.g. a global token).
    """
    text = str(token or "").strip()
    if not text:
        return None
    try:
        return decrypt_secret(text, key)
    except (ValueError, UnicodeDecodeError) as e:
        logger.warning(f"Could not decrypt stored credential: {e}")
        return None
