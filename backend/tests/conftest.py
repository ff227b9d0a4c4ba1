from __future__ import annotations

import base64
import os
import sqlite3
from pathlib import Path

import pytest


TEST_WEBHOOK_TOKEN = "test_token_123"
# 32 raw bytes -> 43-char base64 without "=" padding, the shape Tencent issues.
TEST_ENCODING_AES_KEY = base64.b64encode(bytes(range(32))).decode("ascii").rstrip("=")
TEST_LARK_TOKEN = "lark-verification-token"
TEST_LARK_ENCRYPT_KEY = "lark-encrypt-key"


@pytest.fixture(scope="session")
def db_path(tmp_path_factory: pytest.TempPathFactory) -> Path:
    return tmp_path_factory.mktemp("db") / "meethub_test.db"


@pytest.fixture(scope="session", autouse=True)
def _apply_migrations(db_path: Path) -> None:
    os.environ.pop("MEETHUB_DB_URL", None)
    os.environ["MEETHUB_DB_PATH"] = str(db_path)

    from alembic import command
    from alembic.config import Config

    cfg = Config(str(Path(__file__).resolve().parents[1] / "alembic.ini"))
    cfg.set_main_option("sqlalchemy.url", f"sqlite:///{db_path}")
    command.upgrade(cfg, "head")


@pytest.fixture(autouse=True)
def _clean_db(db_path: Path) -> None:
    # Keep alembic_version and meta; wipe everything else.
    tables = [
        "meeting_participants",
        "meetings",
        "webhook_events",
        "token_blacklist",
        "refresh_tokens",
        "users",
    ]
    conn = sqlite3.connect(db_path)
    try:
        for table in tables:
            conn.execute(f"DELETE FROM {table}")
        conn.commit()
    finally:
        conn.close()


@pytest.fixture
def settings(db_path: Path, tmp_path: Path, monkeypatch: pytest.MonkeyPatch):
    monkeypatch.delenv("MEETHUB_DB_URL", raising=False)
    monkeypatch.setenv("MEETHUB_DB_PATH", str(db_path))
    monkeypatch.setenv("MEETHUB_DATA_DIR", str(tmp_path / "data"))
    monkeypatch.setenv("MEETHUB_JWT_SECRET", "test-jwt-secret-0123456789abcdef0123456789abcdef0123456789abcdef")
    monkeypatch.setenv("MEETHUB_JWT_REFRESH_SECRET", "test-refresh-secret-fedcba9876543210fedcba9876543210fedcba98")
    monkeypatch.setenv("MEETHUB_TENCENT_MEETING_TOKEN", TEST_WEBHOOK_TOKEN)
    monkeypatch.setenv("MEETHUB_TENCENT_MEETING_ENCODING_AES_KEY", TEST_ENCODING_AES_KEY)
    monkeypatch.setenv("MEETHUB_LARK_VERIFICATION_TOKEN", TEST_LARK_TOKEN)
    monkeypatch.setenv("MEETHUB_LARK_ENCRYPT_KEY", TEST_LARK_ENCRYPT_KEY)

    from meethub_api.config import load_settings

    return load_settings()


@pytest.fixture
def app(settings):  # noqa: ANN001
    from meethub_api.app_factory import create_app

    return create_app(settings)


@pytest.fixture
async def client(app):  # noqa: ANN001
    import httpx

    transport = httpx.ASGITransport(app=app)
    async with httpx.AsyncClient(transport=transport, base_url="http://test") as c:
        yield c


@pytest.fixture
async def db(settings):  # noqa: ANN001
    from meethub_api.db import open_db

    async with open_db(settings) as conn:
        yield conn
