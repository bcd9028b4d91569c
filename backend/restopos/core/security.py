"""Security utilities: JWT tokens, password hashing, table-session secrets."""

from __future__ import annotations

import hashlib
import hmac
import secrets
from datetime import datetime, timedelta, timezone
from typing import Any
import logging

import jwt
from jwt.exceptions import PyJWTError
import bcrypt

from restopos.core.config import settings

logger = logging.getLogger(__name__)

QR_TOKEN_PURPOSE = "table_qr"
REFRESH_TOKEN_PURPOSE = "refresh"


def verify_password(plain_password: str, hashed_password: str) -> bool:
    """Verify a plain password against a hash.

    Uses bcrypt's built-in timing-safe comparison.
    """
    try:
        return bcrypt.checkpw(
            plain_password.encode('utf-8'),
            hashed_password.encode('utf-8')
        )
    except ValueError as e:
        logger.warning(f"Password verification error: {e}")
        return False


def get_password_hash(password: str) -> str:
    """Hash a password using bcrypt."""
    return bcrypt.hashpw(
        password.encode('utf-8'),
        bcrypt.gensalt()
    ).decode('utf-8')


def _encode(data: dict[str, Any], expires_delta: timedelta, purpose: str | None = None) -> str:
    to_encode = data.copy()
    now = datetime.now(timezone.utc)
    to_encode.update({
        "exp": now + expires_delta,
        "iat": now,
        "jti": secrets.token_urlsafe(16),
    })
    if purpose:
        to_encode["purpose"] = purpose
    return jwt.encode(to_encode, settings.secret_key, algorithm=settings.algorithm)


def _decode(token: str) -> dict[str, Any] | None:
    try:
        return jwt.decode(
            token,
            settings.secret_key,
            algorithms=[settings.algorithm],
            options={"require_exp": True}
        )
    except PyJWTError as e:
        logger.debug(f"JWT decode error: {e}")
        return None


def create_access_token(data: dict[str, Any], expires_delta: timedelta | None = None) -> str:
    """Create a JWT access token."""
    if expires_delta is None:
        expires_delta = timedelta(minutes=settings.access_token_expire_minutes)
    return _encode(data, expires_delta)


def decode_access_token(token: str) -> dict[str, Any] | None:
    """Decode and validate an access token. Returns None when invalid."""
    payload = _decode(token)
    if payload is None or payload.get("purpose"):
        return None
    return payload


def create_refresh_token(data: dict[str, Any]) -> str:
    """Create a long-lived refresh JWT token."""
    return _encode(
        data,
        timedelta(days=settings.refresh_token_expire_days),
        purpose=REFRESH_TOKEN_PURPOSE,
    )


def decode_refresh_token(token: str) -> dict[str, Any] | None:
    """Decode and validate a refresh token. Returns payload or None."""
    payload = _decode(token)
    if payload is None or payload.get("purpose") != REFRESH_TOKEN_PURPOSE:
        return None
    return payload


def create_qr_token(table_id: int, qr_code_key: str, expires_delta: timedelta | None = None) -> str:
    """Sign the token printed in a table's QR code."""
    if expires_delta is None:
        expires_delta = timedelta(days=settings.qr_token_expire_days)
    return _encode(
        {"table_id": table_id, "qr_code_key": qr_code_key},
        expires_delta,
        purpose=QR_TOKEN_PURPOSE,
    )


def decode_qr_token(token: str) -> dict[str, Any] | None:
    """Decode a table QR token. Returns payload or None."""
    payload = _decode(token)
    if payload is None or payload.get("purpose") != QR_TOKEN_PURPOSE:
        return None
    if not isinstance(payload.get("table_id"), int) or not payload.get("qr_code_key"):
        return None
    return payload


def generate_session_secret() -> str:
    """Random credential handed to a table once, at session start."""
    return secrets.token_urlsafe(32)


def hash_session_secret(secret: str) -> str:
    return hashlib.sha256(secret.encode("utf-8")).hexdigest()


def verify_session_secret(secret: str, secret_hash: str) -> bool:
    """Constant-time check of a presented table secret against its stored digest."""
    return hmac.compare_digest(hash_session_secret(secret), secret_hash)


def generate_qr_code_key() -> str:
    return secrets.token_hex(16)
