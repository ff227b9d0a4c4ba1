from __future__ import annotations

from datetime import datetime

from ..db import DbConnection, fetchone
from ..time_utils import to_iso, utc_now_iso


async def blacklist_jti(db: DbConnection, jti: str, *, scope: str, expires_at: datetime | None = None) -> bool:
    """Returns True when the jti was newly added."""
    cur = await db.execute(
        "INSERT OR IGNORE INTO token_blacklist(jti, scope, expires_at, created_at) VALUES (?, ?, ?, ?)",
        (jti, scope, to_iso(expires_at) if expires_at else None, utc_now_iso()),
    )
    return cur.rowcount == 1


async def is_blacklisted(db: DbConnection, jti: str, *, scope: str | None = None) -> bool:
    if scope:
        row = await fetchone(db, "SELECT 1 AS hit FROM token_blacklist WHERE jti = ? AND scope = ?", (jti, scope))
    else:
        row = await fetchone(db, "SELECT 1 AS hit FROM token_blacklist WHERE jti = ?", (jti,))
    return row is not None


async def purge_expired(db: DbConnection) -> int:
    cur = await db.execute(
        "DELETE FROM token_blacklist WHERE expires_at IS NOT NULL AND expires_at < ?",
        (utc_now_iso(),),
    )
    return cur.rowcount
