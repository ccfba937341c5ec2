"""Shared JWT authentication utilities."""

import base64
from dataclasses import dataclass
from datetime import UTC, datetime, timedelta
import hashlib
import hmac
import json
import os
import secrets
from typing import Any

import redis.asyncio as aioredis

from graph.errors import UnauthenticatedError


REVOKED_JTI_PREFIX = "revoked:jti:"
_PBKDF2_ITERATIONS = 100_000


def b64url_encode(data: bytes) -> str:
    """Base64url encode bytes without padding."""
    return base64.urlsafe_b64encode(data).rstrip(b"=").decode("ascii")


def b64url_decode(data: str) -> bytes:
    """Base64url decode a string, adding padding as needed."""
    padding = 4 - len(data) % 4
    if padding != 4:
        data += "=" * padding
    return base64.urlsafe_b64decode(data)


def _sign(signing_input: bytes, secret: str) -> str:
    return b64url_encode(hmac.new(secret.encode("utf-8"), signing_input, hashlib.sha256).digest())


def create_token(user_id: str, email: str, secret: str, expire_minutes: int) -> tuple[str, int]:
    """Create a HS256 JWT access token. Returns (token, expires_in_seconds)."""
    now = datetime.now(UTC)
    payload: dict[str, Any] = {
        "sub": user_id,
        "email": email,
        "exp": int((now + timedelta(minutes=expire_minutes)).timestamp()),
        "iat": int(now.timestamp()),
        "jti": secrets.token_hex(16),
    }
    header = b64url_encode(json.dumps({"alg": "HS256", "typ": "JWT"}, separators=(",", ":")).encode())
    body = b64url_encode(json.dumps(payload, separators=(",", ":")).encode())
    signature = _sign(f"{header}.{body}".encode("ascii"), secret)
    return f"{header}.{body}.{signature}", expire_minutes * 60


def decode_token(token: str, secret: str) -> dict[str, Any]:
    """Decode and verify a HS256 JWT. Raises ValueError on failure."""
    parts = token.split(".")
    if len(parts) != 3:
        raise ValueError("Invalid token format")
    header_b64, body_b64, sig_b64 = parts
    expected_sig = _sign(f"{header_b64}.{body_b64}".encode("ascii"), secret)
    if not hmac.compare_digest(sig_b64, expected_sig):
        raise ValueError("Invalid token signature")
    payload: dict[str, Any] = json.loads(b64url_decode(body_b64))
    if not isinstance(payload, dict):
        raise ValueError("Invalid token payload")
    exp = payload.get("exp")
    if exp and datetime.fromtimestamp(int(exp), UTC) < datetime.now(UTC):
        raise ValueError("Token has expired")
    return payload


def hash_password(password: str) -> str:
    """Hash a password using PBKDF2-SHA256 with a random salt.

    Returns a string in format: <hex_salt>:<hex_key>
    """
    salt = os.urandom(32)
    key = hashlib.pbkdf2_hmac("sha256", password.encode("utf-8"), salt, _PBKDF2_ITERATIONS)
    return salt.hex() + ":" + key.hex()


def verify_password(plain_password: str, hashed_password: str) -> bool:
    """Verify a password against its PBKDF2-SHA256 hash."""
    try:
        salt_hex, key_hex = hashed_password.split(":", 1)
        salt = bytes.fromhex(salt_hex)
        expected_key = bytes.fromhex(key_hex)
        actual_key = hashlib.pbkdf2_hmac("sha256", plain_password.encode("utf-8"), salt, _PBKDF2_ITERATIONS)
        return hmac.compare_digest(actual_key, expected_key)
    except (ValueError, TypeError):
        return False


# Verified against when the user does not exist, so both login paths take the same time
DUMMY_HASH: str = hash_password("__dummy_password_for_timing__")


@dataclass(frozen=True)
class Identity:
    """The authenticated caller, resolved from a bearer token."""

    user_id: str
    email: str | None = None
    jti: str | None = None
    exp: int | None = None


class RevocationList:
    """Revoked token ids (jti) kept in Redis until the token would have expired anyway."""

    def __init__(self, redis: aioredis.Redis) -> None:
        self._redis = redis

    async def is_revoked(self, jti: str) -> bool:
        return bool(await self._redis.get(f"{REVOKED_JTI_PREFIX}{jti}"))

    async def revoke(self, jti: str, exp: int | None) -> None:
        now = int(datetime.now(UTC).timestamp())
        ttl = max(exp - now, 60) if exp else 3600
        await self._redis.setex(f"{REVOKED_JTI_PREFIX}{jti}", ttl, "1")


async def authenticate(credential: str | None, secret: str, revoked: RevocationList | None = None) -> Identity:
    """Resolve a bearer token to an Identity.

    Raises UnauthenticatedError for a missing, malformed, badly signed,
    expired or revoked token.
    """
    if not credential:
        raise UnauthenticatedError("Authentication required")
    try:
        payload = decode_token(credential, secret)
    except (ValueError, TypeError, UnicodeError) as e:
        raise UnauthenticatedError("Invalid or expired token") from e

    user_id = payload.get("sub")
    if not isinstance(user_id, str) or not user_id:
        raise UnauthenticatedError("Invalid token")

    jti = payload.get("jti")
    if jti and revoked is not None and await revoked.is_revoked(jti):
        raise UnauthenticatedError("Token has been revoked")

    exp = payload.get("exp")
    return Identity(user_id=user_id, email=payload.get("email"), jti=jti, exp=int(exp) if exp else None)
