from __future__ import annotations

from fastapi import APIRouter, Depends, HTTPException, Request
from pydantic import BaseModel, EmailStr, Field

from ..db import fetchone, row_to_dict
from ..deps import CurrentUser, get_current_user, get_db, get_settings
from ..services.auth_service import hash_password, verify_password
from ..services.token_service import DeviceContext, TokenError, TokenPair, TokenService
from ..time_utils import utc_now_iso


router = APIRouter(tags=["auth"])


class RegisterRequest(BaseModel):
    name: str = Field(min_length=1, max_length=60)
    email: EmailStr
    password: str = Field(min_length=6, max_length=128)
    device_id: str | None = Field(default=None, max_length=128)
    device_info: str | None = Field(default=None, max_length=255)


class LoginRequest(BaseModel):
    email: EmailStr
    password: str = Field(min_length=1, max_length=128)
    device_id: str | None = Field(default=None, max_length=128)
    device_info: str | None = Field(default=None, max_length=255)


class RefreshRequest(BaseModel):
    refresh_token: str = Field(min_length=1)
    device_id: str | None = Field(default=None, max_length=128)
    device_info: str | None = Field(default=None, max_length=255)


class LogoutRequest(BaseModel):
    refresh_token: str | None = None
    revoke_all_devices: bool = False
    device_id: str | None = Field(default=None, max_length=128)


class AuthResponse(BaseModel):
    access_token: str
    refresh_token: str
    token_type: str = "bearer"
    expires_in: int
    user: dict


class LogoutResponse(BaseModel):
    access_token_revoked: bool
    refresh_token_revoked: bool
    all_devices_logged_out: bool
    revoked_tokens_count: int
    message: str


class MeResponse(BaseModel):
    id: int
    email: str
    name: str


def _device_context(request: Request, device_id: str | None, device_info: str | None) -> DeviceContext:
    return DeviceContext(
        device_id=(device_id or "").strip() or None,
        device_info=(device_info or "").strip() or None,
        user_agent=request.headers.get("user-agent") or None,
        ip=request.client.host if request.client else None,
    )


def _auth_response(pair: TokenPair, user: dict) -> AuthResponse:
    return AuthResponse(
        access_token=pair.access_token,
        refresh_token=pair.refresh_token,
        expires_in=pair.expires_in,
        user={"id": int(user["id"]), "email": str(user["email"]), "name": str(user["name"])},
    )


@router.post("/auth/register", response_model=AuthResponse)
async def register(
    req: RegisterRequest,
    request: Request,
    settings=Depends(get_settings),  # noqa: ANN001
    db=Depends(get_db),  # noqa: ANN001
) -> AuthResponse:
    email = str(req.email).strip().lower()
    existing = await fetchone(db, "SELECT id FROM users WHERE email = ?", (email,))
    if existing is not None:
        raise HTTPException(status_code=409, detail="email already registered")

    name = req.name.strip()
    cur = await db.execute(
        "INSERT INTO users(email, name, password_hash, created_at) VALUES (?, ?, ?, ?)",
        (email, name, hash_password(req.password), utc_now_iso()),
    )
    user = {"id": int(cur.lastrowid), "email": email, "name": name}

    svc = TokenService(settings=settings, db=db)
    pair = await svc.issue(user_id=user["id"], email=email, context=_device_context(request, req.device_id, req.device_info))
    return _auth_response(pair, user)


@router.post("/auth/login", response_model=AuthResponse)
async def login(
    req: LoginRequest,
    request: Request,
    settings=Depends(get_settings),  # noqa: ANN001
    db=Depends(get_db),  # noqa: ANN001
) -> AuthResponse:
    email = str(req.email).strip().lower()
    user = row_to_dict(await fetchone(db, "SELECT id, email, name, password_hash FROM users WHERE email = ?", (email,)))
    if not user or not verify_password(req.password, str(user["password_hash"])):
        raise HTTPException(status_code=401, detail="invalid email or password")

    svc = TokenService(settings=settings, db=db)
    pair = await svc.issue(
        user_id=int(user["id"]), email=email, context=_device_context(request, req.device_id, req.device_info)
    )
    return _auth_response(pair, user)


@router.post("/auth/refresh", response_model=AuthResponse)
async def refresh(
    req: RefreshRequest,
    request: Request,
    settings=Depends(get_settings),  # noqa: ANN001
    db=Depends(get_db),  # noqa: ANN001
) -> AuthResponse:
    svc = TokenService(settings=settings, db=db)
    try:
        pair, user = await svc.refresh(req.refresh_token, _device_context(request, req.device_id, req.device_info))
    except TokenError:
        raise HTTPException(status_code=401, detail="invalid refresh token") from None
    return _auth_response(pair, user)


@router.post("/auth/logout", response_model=LogoutResponse)
async def logout(
    req: LogoutRequest,
    user: CurrentUser = Depends(get_current_user),
    settings=Depends(get_settings),  # noqa: ANN001
    db=Depends(get_db),  # noqa: ANN001
) -> LogoutResponse:
    svc = TokenService(settings=settings, db=db)
    result = await svc.logout(
        access=user.token,
        refresh_token=req.refresh_token,
        revoke_all_devices=req.revoke_all_devices,
        device_id=(req.device_id or "").strip() or None,
    )
    return LogoutResponse(
        access_token_revoked=result.access_token_revoked,
        refresh_token_revoked=result.refresh_token_revoked,
        all_devices_logged_out=result.all_devices_logged_out,
        revoked_tokens_count=result.revoked_tokens_count,
        message=result.message,
    )


@router.get("/me", response_model=MeResponse)
async def me(user: CurrentUser = Depends(get_current_user)) -> MeResponse:
    return MeResponse(id=user.id, email=user.email, name=user.name)
