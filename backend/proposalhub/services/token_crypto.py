from __future__ import annotations

import base64
import hashlib
import json
import os
from typing import Any

from cryptography.exceptions import InvalidTag
from cryptography.hazmat.primitives.ciphers.aead import AESGCM

from ..settings import settings

_VERSION = "v1"
_DEV_KEY = "proposalhub-dev-only-key"


def _get_key() -> bytes:
    raw = settings.token_enc_key or settings.session_secret
    if not raw:
        if settings.is_production:
            raise RuntimeError("TOKEN_ENC_KEY is not set")
        raw = _DEV_KEY
    return hashlib.sha256(str(raw).encode("utf-8")).digest()


def _b64(data: bytes) -> str:
    return base64.urlsafe_b64encode(data).decode("ascii").rstrip("=")


def _unb64(text: str) -> bytes:
    return base64.urlsafe_b64decode(text + "=" * (-len(text) % 4))


def encrypt_string(plain_text: Any) -> str | None:
    """AES-GCM encrypt into a URL-safe `v1.<nonce>.<ciphertext+tag>` string."""
    if plain_text is None:
        return None

    nonce = os.urandom(12)
    ct = AESGCM(_get_key()).encrypt(nonce, str(plain_text).encode("utf-8"), None)
    return ".".join([_VERSION, _b64(nonce), _b64(ct)])


def decrypt_string(cipher_text: Any) -> str | None:
    """Inverse of encrypt_string; returns None for anything tampered or malformed."""
    if not cipher_text:
        return None

    parts = str(cipher_text).split(".")
    if len(parts) != 3 or parts[0] != _VERSION:
        return None

    try:
        nonce = _unb64(parts[1])
        data = _unb64(parts[2])
    except (ValueError, TypeError):
        return None
    if len(nonce) != 12 or len(data) < 16:
        return None

    try:
        return AESGCM(_get_key()).decrypt(nonce, data, None).decode("utf-8")
    except (InvalidTag, UnicodeDecodeError):
        return None


def encrypt_json(value: Any) -> str | None:
    if value is None:
        return None
    return encrypt_string(json.dumps(value, separators=(",", ":"), default=str))


def decrypt_json(cipher_text: Any) -> Any | None:
    raw = decrypt_string(cipher_text)
    if raw is None:
        return None
    try:
        return json.loads(raw)
    except json.JSONDecodeError:
        return None
