"""Access and refresh tokens (python-jose)."""

from datetime import datetime, timedelta, timezone
from typing import Any

from jose import JWTError, jwt

from besttutor.config import settings

ACCESS = "access"
REFRESH = "refresh"


def _encode(claims: dict[str, Any], token_type: str, lifetime: timedelta) -> str:
    now = datetime.now(timezone.utc)
    payload = {**claims, "iat": now, "exp": now + lifetime, "type": token_type}
    return jwt.encode(payload, settings.jwt_secret_key, algorithm=settings.jwt_algorithm)


def create_access_token(user_id: str, role: str, expires_delta: timedelta | None = None) -> str:
    lifetime = expires_delta or timedelta(minutes=settings.jwt_access_token_expire_minutes)
    return _encode({"sub": user_id, "role": role}, ACCESS, lifetime)


def create_refresh_token(user_id: str, expires_delta: timedelta | None = None) -> str:
    lifetime = expires_delta or timedelta(days=settings.jwt_refresh_token_expire_days)
    return _encode({"sub": user_id}, REFRESH, lifetime)


def decode_token(token: str, expected_type: str | None = None) -> dict[str, Any]:
    """Verify ``token`` and return its claims.

    Raises ``jose.JWTError`` when the signature, expiry or token type is wrong.
    """
    payload = jwt.decode(token, settings.jwt_secret_key, algorithms=[settings.jwt_algorithm])
    if expected_type is not None and payload.get("type") != expected_type:
        raise JWTError(f"Expected a {expected_type} token")
    return payload


def create_token_pair(user_id: str, role: str) -> dict[str, str]:
    return {
        "access_token": create_access_token(user_id, role),
        "refresh_token": create_refresh_token(user_id),
        "token_type": "bearer",
    }
