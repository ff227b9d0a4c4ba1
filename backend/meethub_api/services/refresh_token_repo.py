from __future__ import annotations

import hashlib
from datetime import datetime
from typing import Any

from ..db import DbConnection, fetchone, row_to_dict
from ..time_utils import parse_iso, to_iso, utc_now, utc_now_iso


def hash_token(token: str) -> str:
    return hashlib.sha256((token or "").encode("utf-8")).hexdigest()


class RefreshTokenRepository:
    """
    Refresh tokens are persisted only as a SHA-256 hash plus their jti.

    Methods do not commit; callers own the transaction.
    """

    def __init__(self, db: DbConnection) -> None:
        self.db = db

    async def create(
        self,
        *,
        user_id: int,
        token: str,
        jti: str,
        expires_at: datetime,
        device_id: str | None = None,
        device_info: str | None = None,
        user_agent: str | None = None,
        ip: str | None = None,
    ) -> dict[str, Any]:
        now = utc_now_iso()
        cur = await self.db.execute(
            """
            INSERT INTO refresh_tokens(
              user_id, token_hash, jti, expires_at, device_id, device_info, user_agent, ip, created_at
            )
            VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?)
            """,
            (user_id, hash_token(token), jti, to_iso(expires_at), device_id, device_info, user_agent, ip, now),
        )
        return {
            "id": cur.lastrowid,
            "user_id": user_id,
            "jti": jti,
            "expires_at": to_iso(expires_at),
            "device_id": device_id,
            "device_info": device_info,
            "user_agent": user_agent,
            "ip": ip,
            "created_at": now,
        }

    async def find_by_token(self, token: str) -> dict[str, Any] | None:
        row = await fetchone(self.db, "SELECT * FROM refresh_tokens WHERE token_hash = ?", (hash_token(token),))
        return row_to_dict(row)

    async def find_by_jti(self, jti: str) -> dict[str, Any] | None:
        row = await fetchone(self.db, "SELECT * FROM refresh_tokens WHERE jti = ?", (jti,))
        return row_to_dict(row)

    async def _revoke_where(self, column: str, value: str, replaced_by: str | None) -> dict[str, Any] | None:
        cur = await self.db.execute(
            f"UPDATE refresh_tokens SET revoked_at = ?, replaced_by = ? WHERE {column} = ? AND revoked_at IS NULL",
            (utc_now_iso(), replaced_by, value),
        )
        if cur.rowcount != 1:
            return None
        row = await fetchone(self.db, f"SELECT * FROM refresh_tokens WHERE {column} = ?", (value,))
        return row_to_dict(row)

    async def revoke_token(self, token: str, *, replaced_by: str | None = None) -> dict[str, Any] | None:
        """Returns the revoked record, or None when absent or already revoked."""
        return await self._revoke_where("token_hash", hash_token(token), replaced_by)

    async def revoke_by_jti(self, jti: str, *, replaced_by: str | None = None) -> dict[str, Any] | None:
        return await self._revoke_where("jti", jti, replaced_by)

    async def revoke_all_for_user(self, user_id: int, *, exclude_jti: str | None = None) -> int:
        if exclude_jti:
            cur = await self.db.execute(
                "UPDATE refresh_tokens SET revoked_at = ? WHERE user_id = ? AND revoked_at IS NULL AND jti <> ?",
                (utc_now_iso(), user_id, exclude_jti),
            )
        else:
            cur = await self.db.execute(
                "UPDATE refresh_tokens SET revoked_at = ? WHERE user_id = ? AND revoked_at IS NULL",
                (utc_now_iso(), user_id),
            )
        return cur.rowcount

    async def revoke_by_device(self, user_id: int, device_id: str) -> int:
        cur = await self.db.execute(
            "UPDATE refresh_tokens SET revoked_at = ? WHERE user_id = ? AND device_id = ? AND revoked_at IS NULL",
            (utc_now_iso(), user_id, device_id),
        )
        return cur.rowcount

    async def is_jti_valid(self, jti: str) -> bool:
        record = await self.find_by_jti(jti)
        if not record or record.get("revoked_at"):
            return False
        return parse_iso(str(record["expires_at"])) > utc_now()
