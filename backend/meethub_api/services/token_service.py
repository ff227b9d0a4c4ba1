from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import timedelta
from typing import Any

import jwt

from ..config import Settings
from ..db import DbConnection, fetchone, row_to_dict
from ..time_utils import parse_duration, parse_iso, utc_now
from .auth_service import (
    SCOPE_ACCESS,
    SCOPE_REFRESH,
    TokenData,
    create_access_token,
    create_refresh_token,
    decode_refresh_token,
    new_jti,
)
from .refresh_token_repo import RefreshTokenRepository
from .token_blacklist import blacklist_jti, is_blacklisted


logger = logging.getLogger(__name__)

DEFAULT_REFRESH_TTL = timedelta(days=7)


class TokenError(ValueError):
    pass


@dataclass(frozen=True)
class DeviceContext:
    device_id: str | None = None
    device_info: str | None = None
    user_agent: str | None = None
    ip: str | None = None


@dataclass(frozen=True)
class TokenPair:
    access_token: str
    refresh_token: str
    expires_in: int


@dataclass(frozen=True)
class LogoutResult:
    access_token_revoked: bool
    refresh_token_revoked: bool
    all_devices_logged_out: bool
    revoked_tokens_count: int
    message: str


def refresh_ttl(settings: Settings) -> timedelta:
    try:
        return parse_duration(settings.refresh_token_ttl)
    except ValueError:
        logger.warning("invalid refresh token ttl %r, falling back to 7d", settings.refresh_token_ttl)
        return DEFAULT_REFRESH_TTL


class TokenService:
    def __init__(self, *, settings: Settings, db: DbConnection) -> None:
        self.settings = settings
        self.db = db
        self.refresh_tokens = RefreshTokenRepository(db)

    async def _mint(self, *, user_id: int, email: str, context: DeviceContext, jti: str | None = None) -> TokenPair:
        access = create_access_token(settings=self.settings, user_id=user_id, email=email)
        jti = jti or new_jti()
        expires_at = utc_now() + refresh_ttl(self.settings)
        refresh = create_refresh_token(settings=self.settings, user_id=user_id, jti=jti, expires_at=expires_at)
        await self.refresh_tokens.create(
            user_id=user_id,
            token=refresh,
            jti=jti,
            expires_at=expires_at,
            device_id=context.device_id,
            device_info=context.device_info,
            user_agent=context.user_agent,
            ip=context.ip,
        )
        return TokenPair(access_token=access, refresh_token=refresh, expires_in=self.settings.access_token_minutes * 60)

    async def issue(self, *, user_id: int, email: str, context: DeviceContext | None = None) -> TokenPair:
        pair = await self._mint(user_id=user_id, email=email, context=context or DeviceContext())
        await self.db.commit()
        return pair

    async def refresh(self, refresh_token: str, context: DeviceContext | None = None) -> tuple[TokenPair, dict[str, Any]]:
        """Rotate: returns a fresh pair and the user row. The presented token is revoked and blacklisted."""
        try:
            claims = decode_refresh_token(settings=self.settings, token=refresh_token)
        except (jwt.PyJWTError, ValueError) as e:
            raise TokenError(f"invalid refresh token: {e}") from None

        if await is_blacklisted(self.db, claims.jti, scope=SCOPE_REFRESH):
            raise TokenError("refresh token revoked")

        record = await self.refresh_tokens.find_by_jti(claims.jti)
        if not record or record.get("revoked_at"):
            raise TokenError("refresh token invalid or revoked")
        if parse_iso(str(record["expires_at"])) <= utc_now():
            raise TokenError("refresh token expired")

        user = row_to_dict(await fetchone(self.db, "SELECT id, email, name FROM users WHERE id = ?", (claims.user_id,)))
        if not user:
            raise TokenError("user not found")

        ctx = context or DeviceContext()
        inherited = DeviceContext(
            device_id=ctx.device_id or record.get("device_id"),
            device_info=ctx.device_info or record.get("device_info"),
            user_agent=ctx.user_agent or record.get("user_agent"),
            ip=ctx.ip or record.get("ip"),
        )
        new_refresh_jti = new_jti()
        if await self.refresh_tokens.revoke_by_jti(claims.jti, replaced_by=new_refresh_jti) is None:
            # Lost a race with a concurrent rotation of the same token.
            raise TokenError("refresh token already rotated")
        pair = await self._mint(
            user_id=int(user["id"]), email=str(user["email"]), context=inherited, jti=new_refresh_jti
        )
        await blacklist_jti(self.db, claims.jti, scope=SCOPE_REFRESH, expires_at=claims.expires_at)
        await self.db.commit()
        return pair, user

    async def logout(
        self,
        *,
        access: TokenData,
        refresh_token: str | None = None,
        revoke_all_devices: bool = False,
        device_id: str | None = None,
    ) -> LogoutResult:
        access_revoked = await blacklist_jti(self.db, access.jti, scope=SCOPE_ACCESS, expires_at=access.expires_at)

        refresh_revoked = False
        if refresh_token:
            try:
                claims = decode_refresh_token(settings=self.settings, token=refresh_token)
            except (jwt.PyJWTError, ValueError):
                # Expired or malformed: still revoke by hash, but only the caller's own token.
                record = await self.refresh_tokens.find_by_token(refresh_token)
                if record and int(record["user_id"]) == access.user_id:
                    refresh_revoked = await self.refresh_tokens.revoke_by_jti(str(record["jti"])) is not None
            else:
                if claims.user_id == access.user_id:
                    refresh_revoked = await self.refresh_tokens.revoke_by_jti(claims.jti) is not None
                    await blacklist_jti(self.db, claims.jti, scope=SCOPE_REFRESH, expires_at=claims.expires_at)

        count = 0
        if revoke_all_devices:
            count = await self.refresh_tokens.revoke_all_for_user(access.user_id)
            count += 1 if refresh_revoked else 0
        elif device_id:
            count = await self.refresh_tokens.revoke_by_device(access.user_id, device_id)
            count += 1 if refresh_revoked else 0
        elif refresh_revoked:
            count = 1
        await self.db.commit()

        if revoke_all_devices:
            message = f"logged out on all devices, {count} token(s) revoked"
        elif count:
            message = f"logged out, {count} token(s) revoked"
        else:
            message = "logged out"
        logger.info(
            "user %s logged out: access=%s refresh=%s all_devices=%s",
            access.user_id,
            access_revoked,
            refresh_revoked,
            revoke_all_devices,
        )
        return LogoutResult(
            access_token_revoked=access_revoked,
            refresh_token_revoked=refresh_revoked,
            all_devices_logged_out=revoke_all_devices,
            revoked_tokens_count=count,
            message=message,
        )
