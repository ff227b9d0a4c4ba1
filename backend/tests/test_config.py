from __future__ import annotations

from pathlib import Path

import pytest

from meethub_api.config import load_settings


def test_prefixed_env_wins_over_bare_names(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("MEETHUB_DATA_DIR", str(tmp_path))
    monkeypatch.setenv("TENCENT_MEETING_TOKEN", "bare-token")
    monkeypatch.setenv("MEETHUB_TENCENT_MEETING_TOKEN", "prefixed-token")
    monkeypatch.setenv("TENCENT_MEETING_ENCODING_AES_KEY", "bare-key")
    monkeypatch.delenv("MEETHUB_TENCENT_MEETING_ENCODING_AES_KEY", raising=False)

    settings = load_settings()
    assert settings.tencent_webhook.token == "prefixed-token"
    assert settings.tencent_webhook.encoding_aes_key == "bare-key"
    assert settings.tencent_webhook.configured


def test_secrets_are_persisted_and_hidden(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("MEETHUB_DATA_DIR", str(tmp_path))
    for name in ("MEETHUB_JWT_SECRET", "JWT_SECRET", "MEETHUB_JWT_REFRESH_SECRET", "JWT_REFRESH_SECRET"):
        monkeypatch.delenv(name, raising=False)
    monkeypatch.setenv("MEETHUB_TENCENT_MEETING_ENCODING_AES_KEY", "super-secret-key")

    first = load_settings()
    second = load_settings()
    assert first.jwt_secret == second.jwt_secret
    assert first.jwt_secret != first.jwt_refresh_secret
    assert (tmp_path / "jwt_secret").read_text(encoding="utf-8") == first.jwt_secret

    shown = repr(first)
    assert first.jwt_secret not in shown
    assert "super-secret-key" not in shown


def test_bad_numbers_fall_back(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("MEETHUB_DATA_DIR", str(tmp_path))
    monkeypatch.setenv("MEETHUB_ACCESS_TOKEN_MINUTES", "soon")
    monkeypatch.setenv("MEETHUB_LOG_LEVEL", "debug")

    settings = load_settings()
    assert settings.access_token_minutes == 15
    assert settings.log_level == "DEBUG"
