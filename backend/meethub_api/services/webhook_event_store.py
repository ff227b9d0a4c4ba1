from __future__ import annotations

import json
from typing import Any

from ..db import DbConnection, fetchone, row_to_dict
from ..time_utils import utc_now_iso


STATUS_RECEIVED = "received"
STATUS_PROCESSED = "processed"
STATUS_IGNORED = "ignored"
STATUS_FAILED = "failed"


async def record_event(
    db: DbConnection,
    *,
    platform: str,
    event_type: str,
    external_id: str,
    payload: dict[str, Any],
) -> tuple[int, bool]:
    """
    Store one delivery keyed by (platform, external_id).

    Returns (row id, created). created is False for a redelivery of an already stored event.
    """
    cur = await db.execute(
        """
        INSERT OR IGNORE INTO webhook_events(platform, event_type, external_id, status, payload, received_at)
        VALUES (?, ?, ?, ?, ?, ?)
        """,
        (
            platform,
            event_type or "",
            external_id,
            STATUS_RECEIVED,
            json.dumps(payload, ensure_ascii=False),
            utc_now_iso(),
        ),
    )
    created = cur.rowcount == 1
    row = await fetchone(
        db,
        "SELECT id FROM webhook_events WHERE platform = ? AND external_id = ?",
        (platform, external_id),
    )
    await db.commit()
    return int(row["id"]), created


async def mark_status(db: DbConnection, event_pk: int, status: str, *, error: str | None = None) -> None:
    await db.execute(
        "UPDATE webhook_events SET status = ?, error = ?, processed_at = ? WHERE id = ?",
        (status, error, utc_now_iso(), event_pk),
    )
    await db.commit()


async def get_event(db: DbConnection, *, platform: str, external_id: str) -> dict[str, Any] | None:
    row = await fetchone(
        db,
        "SELECT * FROM webhook_events WHERE platform = ? AND external_id = ?",
        (platform, external_id),
    )
    return row_to_dict(row)


async def claim_retry(db: DbConnection, event_pk: int) -> bool:
    """Move a failed delivery back to received. Only one concurrent redelivery wins the claim."""
    cur = await db.execute(
        "UPDATE webhook_events SET status = ?, error = NULL, processed_at = NULL WHERE id = ? AND status = ?",
        (STATUS_RECEIVED, event_pk, STATUS_FAILED),
    )
    await db.commit()
    return cur.rowcount == 1
