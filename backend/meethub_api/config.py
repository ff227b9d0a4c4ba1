from __future__ import annotations

import secrets
from dataclasses import dataclass, field
from pathlib import Path

from .env_utils import env_int, env_str


def _read_text_if_exists(path: Path) -> str | None:
    try:
        if not path.exists():
            return None
        value = path.read_text(encoding="utf-8").strip()
        return value or None
    except OSError:
        return None


def _load_or_create_secret(data_dir: Path, suffix: str, filename: str) -> str:
    value = env_str(suffix, None)
    if value:
        return value
    secret_path = data_dir / filename
    value = _read_text_if_exists(secret_path)
    if not value:
        value = secrets.token_urlsafe(48)
        secret_path.write_text(value, encoding="utf-8")
    return value


@dataclass(frozen=True)
class WebhookCredentials:
    """Per-platform webhook secrets: the signature token and the 43-char EncodingAESKey."""

    token: str = ""
    encoding_aes_key: str = field(default="", repr=False)

    @property
    def configured(self) -> bool:
        return bool(self.token) and bool(self.encoding_aes_key)


@dataclass(frozen=True)
class LarkCredentials:
    verification_token: str = ""
    encrypt_key: str = field(default="", repr=False)


@dataclass(frozen=True)
class Settings:
    app_root: Path
    data_dir: Path
    db_url: str | None
    db_path: Path
    jwt_secret: str = field(repr=False)
    jwt_refresh_secret: str = field(repr=False)
    access_token_minutes: int
    refresh_token_ttl: str
    cors_origins: list[str]
    log_level: str
    tencent_webhook: WebhookCredentials
    lark: LarkCredentials


def load_settings() -> Settings:
    repo_root = Path(__file__).resolve().parents[2]

    data_dir_raw = env_str("DATA_DIR", None)
    data_dir = Path(data_dir_raw).expanduser().resolve() if data_dir_raw else (repo_root / ".meethub").resolve()
    data_dir.mkdir(parents=True, exist_ok=True)

    db_url = (env_str("DB_URL", "") or "").strip() or None
    default_db_path = data_dir / "meethub.db"
    db_path = Path(env_str("DB_PATH", str(default_db_path)) or str(default_db_path)).expanduser().resolve()

    jwt_secret = _load_or_create_secret(data_dir, "JWT_SECRET", "jwt_secret")
    jwt_refresh_secret = _load_or_create_secret(data_dir, "JWT_REFRESH_SECRET", "jwt_refresh_secret")

    cors_origins = [
        origin.strip()
        for origin in (env_str("CORS_ORIGINS", "http://localhost:5173,http://127.0.0.1:5173") or "").split(",")
        if origin.strip()
    ]

    return Settings(
        app_root=repo_root,
        data_dir=data_dir,
        db_url=db_url,
        db_path=db_path,
        jwt_secret=jwt_secret,
        jwt_refresh_secret=jwt_refresh_secret,
        access_token_minutes=env_int("ACCESS_TOKEN_MINUTES", 15),
        refresh_token_ttl=env_str("REFRESH_TOKEN_TTL", "7d") or "7d",
        cors_origins=cors_origins,
        log_level=(env_str("LOG_LEVEL", "INFO") or "INFO").upper(),
        tencent_webhook=WebhookCredentials(
            token=env_str("TENCENT_MEETING_TOKEN", "") or "",
            encoding_aes_key=env_str("TENCENT_MEETING_ENCODING_AES_KEY", "") or "",
        ),
        lark=LarkCredentials(
            verification_token=env_str("LARK_VERIFICATION_TOKEN", "") or "",
            encrypt_key=env_str("LARK_ENCRYPT_KEY", "") or "",
        ),
    )
