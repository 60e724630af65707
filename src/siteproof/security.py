"""Password hashing and JWT access tokens."""

from __future__ import annotations

import hashlib
import hmac
import logging
import re
from datetime import datetime, timedelta, timezone
from typing import Any

import bcrypt
import jwt

from siteproof.config import settings

logger = logging.getLogger(__name__)

_LEGACY_HASH_RE = re.compile(r"^[0-9a-f]{64}$")


# ── Passwords ─────────────────────────────────────────────────────────────────


def hash_password(password: str) -> str:
    salt = bcrypt.gensalt(rounds=settings.bcrypt_rounds)
    return bcrypt.hashpw(password.encode("utf-8"), salt).decode("utf-8")


def _legacy_hash(password: str) -> str:
    return hashlib.sha256((password + settings.jwt_secret).encode("utf-8")).hexdigest()


def is_legacy_hash(password_hash: str) -> bool:
    return bool(_LEGACY_HASH_RE.match(password_hash))


def verify_password(password: str, password_hash: str | None) -> bool:
    """Check *password* against a bcrypt hash or a legacy salted SHA-256 hash."""
    if not password_hash:
        return False
    if is_legacy_hash(password_hash):
        return hmac.compare_digest(_legacy_hash(password), password_hash)
    try:
        return bcrypt.checkpw(password.encode("utf-8"), password_hash.encode("utf-8"))
    except ValueError:
        logger.warning("Stored password hash has an unrecognised format")
        return False


def needs_rehash(password_hash: str) -> bool:
    """Legacy hashes are upgraded to bcrypt on the next successful login."""
    return is_legacy_hash(password_hash)


# ── Tokens ────────────────────────────────────────────────────────────────────


def create_access_token(user_id: str, email: str, role: str) -> str:
    now = datetime.now(timezone.utc)
    payload = {
        "sub": user_id,
        "email": email,
        "role": role,
        # Sub-second precision so logout-all followed by login in the same
        # second still yields a usable token.
        "iat": now.timestamp(),
        "exp": now + timedelta(hours=settings.jwt_expire_hours),
    }
    return jwt.encode(payload, settings.jwt_secret, algorithm=settings.jwt_algorithm)


def decode_access_token(token: str) -> dict[str, Any] | None:
    """Decode and validate a token, returning None when it is unusable."""
    try:
        payload = jwt.decode(
            token,
            settings.jwt_secret,
            algorithms=[settings.jwt_algorithm],
            options={"require": ["sub", "iat", "exp"]},
        )
    except jwt.PyJWTError as exc:
        logger.debug("Rejected access token: %s", exc)
        return None
    return payload


def issued_before(payload: dict[str, Any], moment: datetime | None) -> bool:
    """Whether the token was issued before *moment* (e.g. a logout-all)."""
    if moment is None:
        return False
    if moment.tzinfo is None:
        moment = moment.replace(tzinfo=timezone.utc)
    return float(payload["iat"]) < moment.timestamp()
