"""Per-response masking of the CSRF secret (BREACH mitigation).

Wire format: ``base64url(pad || pad XOR secret)`` without padding, where
``pad`` is fresh randomness of the same length as the secret. Every call to
``mask`` therefore yields different bytes for the same secret, and every
well-formed token unmasks back to the secret it was built from.
"""

from __future__ import annotations

import base64
import binascii
import hmac
import re
import secrets

SECRET_BYTES = 32
_WIRE_ALPHABET = re.compile(r"[A-Za-z0-9_-]+")


def generate_secret() -> bytes:
    """Return a new random CSRF secret (256 bits)."""
    return secrets.token_bytes(SECRET_BYTES)


def encode_secret(secret: bytes) -> str:
    """Encode a raw secret for server-side storage (never sent to clients)."""
    return base64.urlsafe_b64encode(secret).decode("ascii").rstrip("=")


def decode_secret(value: str) -> bytes:
    return _b64decode(value)


def _xor(left: bytes, right: bytes) -> bytes:
    return bytes(a ^ b for a, b in zip(left, right, strict=True))


def _b64decode(value: str) -> bytes:
    padded = value + "=" * (-len(value) % 4)
    return base64.urlsafe_b64decode(padded.encode("ascii"))


def mask(secret: bytes) -> str:
    """Return a freshly masked wire token for ``secret``."""
    pad = secrets.token_bytes(len(secret))
    return base64.urlsafe_b64encode(pad + _xor(pad, secret)).decode("ascii").rstrip("=")


def unmask(token: str | None) -> bytes | None:
    """Recover the secret from a wire token.

    Returns:
        The secret, or None when the token is malformed (bad encoding or a
        length that cannot hold a pad and a secret)
    """
    if not token or not _WIRE_ALPHABET.fullmatch(token):
        return None
    try:
        raw = _b64decode(token)
    except (binascii.Error, ValueError):
        return None
    if len(raw) != 2 * SECRET_BYTES:
        return None
    pad, masked = raw[:SECRET_BYTES], raw[SECRET_BYTES:]
    return _xor(pad, masked)


def secrets_match(recovered: bytes, expected: bytes) -> bool:
    """Constant-time comparison of a recovered secret with the expected one."""
    return hmac.compare_digest(recovered, expected)


def token_matches(token: str | None, expected: bytes) -> bool:
    recovered = unmask(token)
    if recovered is None:
        return False
    return secrets_match(recovered, expected)


__all__ = [
    "SECRET_BYTES",
    "decode_secret",
    "encode_secret",
    "generate_secret",
    "mask",
    "secrets_match",
    "token_matches",
    "unmask",
]
