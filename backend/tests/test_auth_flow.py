from __future__ import annotations

from datetime import timedelta

import jwt

from meethub_api.services.refresh_token_repo import RefreshTokenRepository
from meethub_api.time_utils import utc_now


async def _register(client, email: str = "owner@example.com", **extra) -> dict:  # noqa: ANN001
    resp = await client.post(
        "/api/auth/register",
        json={"name": "Owner", "email": email, "password": "password123", **extra},
    )
    assert resp.status_code == 200, resp.text
    return resp.json()


async def test_health_ok(client) -> None:  # noqa: ANN001
    resp = await client.get("/health")
    assert resp.status_code == 200
    assert resp.json().get("ok") is True


async def test_register_then_me(client, settings) -> None:  # noqa: ANN001
    body = await _register(client)
    assert body["token_type"] == "bearer"
    assert body["user"]["email"] == "owner@example.com"
    assert body["expires_in"] == settings.access_token_minutes * 60

    claims = jwt.decode(body["access_token"], settings.jwt_secret, algorithms=["HS256"])
    assert claims["scope"] == "access"
    assert claims["email"] == "owner@example.com"
    assert claims["jti"]

    refresh_claims = jwt.decode(body["refresh_token"], settings.jwt_refresh_secret, algorithms=["HS256"])
    assert refresh_claims["scope"] == "refresh"
    assert refresh_claims["sub"] == claims["sub"]

    me_resp = await client.get("/api/me", headers={"Authorization": f"Bearer {body['access_token']}"})
    assert me_resp.status_code == 200
    assert me_resp.json() == {"id": body["user"]["id"], "email": "owner@example.com", "name": "Owner"}


async def test_register_duplicate_email(client) -> None:  # noqa: ANN001
    await _register(client)
    resp = await client.post(
        "/api/auth/register",
        json={"name": "Again", "email": "OWNER@example.com", "password": "password123"},
    )
    assert resp.status_code == 409


async def test_login_rejects_wrong_password(client) -> None:  # noqa: ANN001
    await _register(client)
    resp = await client.post("/api/auth/login", json={"email": "owner@example.com", "password": "wrong-password"})
    assert resp.status_code == 401

    ok = await client.post("/api/auth/login", json={"email": "owner@example.com", "password": "password123"})
    assert ok.status_code == 200
    assert ok.json()["refresh_token"]


async def test_me_requires_token(client) -> None:  # noqa: ANN001
    assert (await client.get("/api/me")).status_code == 401
    assert (await client.get("/api/me", headers={"Authorization": "Bearer garbage"})).status_code == 401


async def test_refresh_rotates_and_old_token_is_rejected(client) -> None:  # noqa: ANN001
    body = await _register(client, device_id="laptop-1")
    old_refresh = body["refresh_token"]

    rotated = await client.post("/api/auth/refresh", json={"refresh_token": old_refresh})
    assert rotated.status_code == 200, rotated.text
    new_pair = rotated.json()
    assert new_pair["refresh_token"] != old_refresh
    assert new_pair["user"]["email"] == "owner@example.com"

    reuse = await client.post("/api/auth/refresh", json={"refresh_token": old_refresh})
    assert reuse.status_code == 401

    again = await client.post("/api/auth/refresh", json={"refresh_token": new_pair["refresh_token"]})
    assert again.status_code == 200


async def test_refresh_rejects_access_token_and_garbage(client) -> None:  # noqa: ANN001
    body = await _register(client)
    resp = await client.post("/api/auth/refresh", json={"refresh_token": body["access_token"]})
    assert resp.status_code == 401
    resp = await client.post("/api/auth/refresh", json={"refresh_token": "not-a-jwt"})
    assert resp.status_code == 401


async def test_logout_blacklists_access_and_revokes_refresh(client) -> None:  # noqa: ANN001
    body = await _register(client)
    auth = {"Authorization": f"Bearer {body['access_token']}"}

    resp = await client.post("/api/auth/logout", headers=auth, json={"refresh_token": body["refresh_token"]})
    assert resp.status_code == 200
    result = resp.json()
    assert result["access_token_revoked"] is True
    assert result["refresh_token_revoked"] is True
    assert result["revoked_tokens_count"] == 1

    assert (await client.get("/api/me", headers=auth)).status_code == 401
    refreshed = await client.post("/api/auth/refresh", json={"refresh_token": body["refresh_token"]})
    assert refreshed.status_code == 401


async def test_logout_all_devices(client) -> None:  # noqa: ANN001
    first = await _register(client, device_id="phone")
    second = await client.post(
        "/api/auth/login",
        json={"email": "owner@example.com", "password": "password123", "device_id": "laptop"},
    )
    assert second.status_code == 200
    second_body = second.json()

    resp = await client.post(
        "/api/auth/logout",
        headers={"Authorization": f"Bearer {second_body['access_token']}"},
        json={"revoke_all_devices": True},
    )
    assert resp.status_code == 200
    assert resp.json()["all_devices_logged_out"] is True
    assert resp.json()["revoked_tokens_count"] == 2

    for token in (first["refresh_token"], second_body["refresh_token"]):
        r = await client.post("/api/auth/refresh", json={"refresh_token": token})
        assert r.status_code == 401

    # The other device's access token stays valid until it expires.
    assert (await client.get("/api/me", headers={"Authorization": f"Bearer {first['access_token']}"})).status_code == 200


async def test_logout_with_unreadable_token_only_touches_own_records(client, db) -> None:  # noqa: ANN001
    alice = await _register(client, email="alice@example.com")
    bob = await _register(client, email="bob@example.com")
    repo = RefreshTokenRepository(db)
    later = utc_now() + timedelta(days=1)
    await repo.create(user_id=bob["user"]["id"], token="bob-legacy-token", jti="bob-legacy", expires_at=later)
    await repo.create(user_id=alice["user"]["id"], token="alice-legacy-token", jti="alice-legacy", expires_at=later)
    await db.commit()

    auth = {"Authorization": f"Bearer {alice['access_token']}"}
    resp = await client.post("/api/auth/logout", headers=auth, json={"refresh_token": "bob-legacy-token"})
    assert resp.status_code == 200
    assert resp.json()["refresh_token_revoked"] is False
    assert await repo.is_jti_valid("bob-legacy")

    login = await client.post("/api/auth/login", json={"email": "alice@example.com", "password": "password123"})
    auth = {"Authorization": f"Bearer {login.json()['access_token']}"}
    resp = await client.post("/api/auth/logout", headers=auth, json={"refresh_token": "alice-legacy-token"})
    assert resp.json()["refresh_token_revoked"] is True
    assert not await repo.is_jti_valid("alice-legacy")
