"""Security — password hashing and JWT issue/verify.

Invariants:
    - Passwords stored only as bcrypt hashes (12 rounds)
    - Passwords over 72 UTF-8 bytes are refused with RequestValidationFailed, never truncated
    - Access and refresh tokens signed with different secrets; both carry `sub` and `exp`
    - Refresh tokens carry a `typ` claim so a refresh token never passes as access
    - decode_* raise AuthenticationError — never a library exception

Design Decisions:
    - Plain functions over a service class: no state beyond Settings
    - HS256 only: tokens are consumed by this backend alone
"""

import uuid
from datetime import datetime, timedelta, timezone
from typing import Any

import bcrypt
import jwt

from vidhub.config import Settings
from vidhub.core.errors import AuthenticationError, RequestValidationFailed

_ALGORITHM = "HS256"
_SALT_ROUNDS = 12
MAX_PASSWORD_BYTES = 72


def ensure_hashable(password: str) -> None:
    if len(password.encode("utf-8")) > MAX_PASSWORD_BYTES:
        raise RequestValidationFailed(
            f"Password must be at most {MAX_PASSWORD_BYTES} bytes", "password",
        )


def hash_password(password: str) -> str:
    ensure_hashable(password)
    return bcrypt.hashpw(
        password.encode("utf-8"), bcrypt.gensalt(rounds=_SALT_ROUNDS),
    ).decode("utf-8")


def verify_password(password: str, password_hash: str) -> bool:
    try:
        return bcrypt.checkpw(password.encode("utf-8"), password_hash.encode("utf-8"))
    except ValueError:
        return False


def _encode(claims: dict[str, Any], secret: str, ttl: timedelta) -> str:
    now = datetime.now(timezone.utc)
    payload = {**claims, "iat": now, "exp": now + ttl, "jti": uuid.uuid4().hex}
    return jwt.encode(payload, secret, algorithm=_ALGORITHM)


def _decode(token: str, secret: str) -> dict[str, Any]:
    try:
        return jwt.decode(token, secret, algorithms=[_ALGORITHM])
    except jwt.ExpiredSignatureError as e:
        raise AuthenticationError("Token expired") from e
    except jwt.InvalidTokenError as e:
        raise AuthenticationError("Invalid token") from e


def create_access_token(
    settings: Settings, user_id: str, username: str, email: str, full_name: str,
) -> str:
    return _encode(
        {"sub": user_id, "username": username, "email": email, "full_name": full_name},
        settings.access_token_secret,
        timedelta(minutes=settings.access_token_expiry_minutes),
    )


def create_refresh_token(settings: Settings, user_id: str) -> str:
    return _encode(
        {"sub": user_id, "typ": "refresh"},
        settings.refresh_token_secret,
        timedelta(days=settings.refresh_token_expiry_days),
    )


def decode_access_token(settings: Settings, token: str) -> dict[str, Any]:
    claims = _decode(token, settings.access_token_secret)
    if claims.get("typ") == "refresh":
        raise AuthenticationError("Invalid token")
    return claims


def decode_websocket_token(settings: Settings, token: str) -> dict[str, Any]:
    return _decode(token, settings.websocket_token_secret)
