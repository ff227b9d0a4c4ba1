from __future__ import annotations

from dataclasses import dataclass
from typing import AsyncIterator

from fastapi import Depends, HTTPException, Request
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer

from .config import Settings, load_settings
from .db import fetchone, open_db, row_to_dict
from .services.auth_service import SCOPE_ACCESS, TokenData, decode_access_token
from .services.event_router import EventRouter
from .services.lark_events import build_lark_router
from .services.tencent_events import build_tencent_router
from .services.token_blacklist import is_blacklisted


_bearer = HTTPBearer(auto_error=False)


@dataclass(frozen=True)
class CurrentUser:
    id: int
    email: str
    name: str
    token: TokenData


def get_settings(request: Request) -> Settings:
    settings = getattr(request.app.state, "settings", None)
    if isinstance(settings, Settings):
        return settings
    return load_settings()


async def get_db(settings: Settings = Depends(get_settings)) -> AsyncIterator:
    async with open_db(settings) as db:
        yield db


def get_tencent_router(request: Request) -> EventRouter:
    router = getattr(request.app.state, "tencent_router", None)
    if isinstance(router, EventRouter):
        return router
    return build_tencent_router()


def get_lark_router(request: Request) -> EventRouter:
    router = getattr(request.app.state, "lark_router", None)
    if isinstance(router, EventRouter):
        return router
    return build_lark_router()


async def get_current_user(
    creds: HTTPAuthorizationCredentials | None = Depends(_bearer),
    settings: Settings = Depends(get_settings),
    db=Depends(get_db),  # noqa: ANN001
) -> CurrentUser:
    if creds is None or not creds.credentials:
        raise HTTPException(status_code=401, detail="not authenticated")

    try:
        data = decode_access_token(settings=settings, token=creds.credentials.strip())
    except Exception:
        raise HTTPException(status_code=401, detail="session expired, please sign in again") from None

    if await is_blacklisted(db, data.jti, scope=SCOPE_ACCESS):
        raise HTTPException(status_code=401, detail="token revoked")

    user = row_to_dict(await fetchone(db, "SELECT id, email, name FROM users WHERE id = ?", (data.user_id,)))
    if not user:
        raise HTTPException(status_code=401, detail="user not found")

    return CurrentUser(id=int(user["id"]), email=str(user["email"]), name=str(user["name"]), token=data)
