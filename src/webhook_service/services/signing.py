"""HMAC-SHA256 signing of webhook bodies."""
from __future__ import annotations

import base64
import hmac
import secrets
from hashlib import sha256

SECRET_BYTES = 32


def _key(secret: str | bytes) -> bytes:
    # the base64 text itself is the key, not its decoded bytes
    return secret.encode("utf-8") if isinstance(secret, str) else secret


def sign(payload: bytes, secret: str | bytes) -> str:
    """Base64-encoded HMAC-SHA256 of ``payload``."""
    digest = hmac.new(_key(secret), payload, sha256).digest()
    return base64.b64encode(digest).decode("ascii")


def verify(payload: bytes, signature: str | None, secret: str | bytes | None) -> bool:
    if not signature or not secret:
        return False
    expected = sign(payload, secret)
    return hmac.compare_digest(expected.encode("ascii"), signature.encode("utf-8"))


def generate_secret() -> str:
    """256-bit random secret as base64 text."""
    return base64.b64encode(secrets.token_bytes(SECRET_BYTES)).decode("ascii")
