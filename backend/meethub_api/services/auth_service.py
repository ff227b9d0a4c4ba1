from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Any
from uuid import uuid4

import jwt
from passlib.context import CryptContext

from ..config import Settings
from ..time_utils import UTC


# pbkdf2_sha256 needs no native backend, unlike bcrypt.
_pwd_context = CryptContext(schemes=["pbkdf2_sha256"], deprecated="auto")

SCOPE_ACCESS = "access"
SCOPE_REFRESH = "refresh"


@dataclass(frozen=True)
class TokenData:
    user_id: int
    email: str
    jti: str
    expires_at: datetime


@dataclass(frozen=True)
class RefreshClaims:
    user_id: int
    jti: str
    expires_at: datetime


def hash_password(password: str) -> str:
    return _pwd_context.hash(password)


def verify_password(password: str, password_hash: str) -> bool:
    return _pwd_context.verify(password, password_hash)


def new_jti() -> str:
    return uuid4().hex


def _encode(secret: str, payload: dict[str, Any]) -> str:
    return jwt.encode(payload, secret, algorithm="HS256")


def _decode(secret: str, token: str) -> dict[str, Any]:
    return jwt.decode(token, secret, algorithms=["HS256"])


def _user_id_from(payload: dict[str, Any]) -> int:
    sub = payload.get("sub")
    if not sub or not str(sub).isdigit():
        raise ValueError("invalid token sub")
    return int(sub)


def create_access_token(*, settings: Settings, user_id: int, email: str, jti: str | None = None) -> str:
    now = datetime.now(tz=UTC)
    exp = now + timedelta(minutes=settings.access_token_minutes)
    payload: dict[str, Any] = {
        "scope": SCOPE_ACCESS,
        "sub": str(user_id),
        "email": email,
        "jti": jti or new_jti(),
        "iat": int(now.timestamp()),
        "exp": int(exp.timestamp()),
    }
    return _encode(settings.jwt_secret, payload)


def decode_access_token(*, settings: Settings, token: str) -> TokenData:
    payload = _decode(settings.jwt_secret, token)
    if payload.get("scope") != SCOPE_ACCESS:
        raise ValueError("invalid token scope")
    email = str(payload.get("email") or "").strip()
    if not email:
        raise ValueError("invalid token email")
    jti = str(payload.get("jti") or "").strip()
    if not jti:
        raise ValueError("invalid token jti")
    return TokenData(
        user_id=_user_id_from(payload),
        email=email,
        jti=jti,
        expires_at=datetime.fromtimestamp(int(payload["exp"]), tz=UTC),
    )


def create_refresh_token(*, settings: Settings, user_id: int, jti: str, expires_at: datetime) -> str:
    payload: dict[str, Any] = {
        "scope": SCOPE_REFRESH,
        "sub": str(user_id),
        "jti": jti,
        "iat": int(datetime.now(tz=UTC).timestamp()),
        "exp": int(expires_at.timestamp()),
    }
    return _encode(settings.jwt_refresh_secret, payload)


def decode_refresh_token(*, settings: Settings, token: str) -> RefreshClaims:
    payload = _decode(settings.jwt_refresh_secret, token)
    if payload.get("scope") != SCOPE_REFRESH:
        raise ValueError("invalid token scope")
    jti = str(payload.get("jti") or "").strip()
    if not jti:
        raise ValueError("refresh token has no jti")
    return RefreshClaims(
        user_id=_user_id_from(payload),
        jti=jti,
        expires_at=datetime.fromtimestamp(int(payload["exp"]), tz=UTC),
    )
