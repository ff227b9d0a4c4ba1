from __future__ import annotations

import json
from typing import Any

from ..db import DbConnection, fetchall, fetchone, row_to_dict, rows_to_dicts
from ..time_utils import utc_now_iso


async def get_meeting(
    db: DbConnection, *, platform: str, meeting_id: str, sub_meeting_id: str = ""
) -> dict[str, Any] | None:
    row = await fetchone(
        db,
        "SELECT * FROM meetings WHERE platform = ? AND meeting_id = ? AND sub_meeting_id = ?",
        (platform, meeting_id, sub_meeting_id or ""),
    )
    return row_to_dict(row)


async def upsert_meeting(
    db: DbConnection,
    *,
    platform: str,
    meeting_id: str,
    sub_meeting_id: str = "",
    meeting_code: str = "",
    subject: str = "",
    creator_id: str = "",
    creator_name: str = "",
    start_time: str | None = None,
    end_time: str | None = None,
) -> int:
    """Insert the meeting or fill in any fields the new event knows about; returns the row id."""
    now = utc_now_iso()
    existing = await get_meeting(db, platform=platform, meeting_id=meeting_id, sub_meeting_id=sub_meeting_id)
    if existing is None:
        cur = await db.execute(
            """
            INSERT INTO meetings(
              platform, meeting_id, sub_meeting_id, meeting_code, subject, creator_id, creator_name,
              start_time, end_time, created_at, updated_at
            )
            VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
            """,
            (
                platform,
                meeting_id,
                sub_meeting_id or "",
                meeting_code or "",
                subject or "",
                creator_id or "",
                creator_name or "",
                start_time,
                end_time,
                now,
                now,
            ),
        )
        if cur.lastrowid is not None:
            return int(cur.lastrowid)
        existing = await get_meeting(db, platform=platform, meeting_id=meeting_id, sub_meeting_id=sub_meeting_id)
        return int((existing or {})["id"])

    await db.execute(
        """
        UPDATE meetings
        SET meeting_code = ?, subject = ?, creator_id = ?, creator_name = ?,
            start_time = ?, end_time = ?, updated_at = ?
        WHERE id = ?
        """,
        (
            meeting_code or existing["meeting_code"],
            subject or existing["subject"],
            creator_id or existing["creator_id"],
            creator_name or existing["creator_name"],
            start_time or existing["start_time"],
            end_time or existing["end_time"],
            now,
            existing["id"],
        ),
    )
    return int(existing["id"])


async def set_meeting_status(
    db: DbConnection,
    meeting_pk: int,
    status: str,
    *,
    started_at: str | None = None,
    ended_at: str | None = None,
) -> None:
    await db.execute(
        """
        UPDATE meetings
        SET status = ?, started_at = COALESCE(?, started_at), ended_at = COALESCE(?, ended_at), updated_at = ?
        WHERE id = ?
        """,
        (status, started_at, ended_at, utc_now_iso(), meeting_pk),
    )


async def upsert_participant(
    db: DbConnection,
    meeting_pk: int,
    *,
    user_key: str,
    user_name: str = "",
    instance_type: int | None = None,
    joined_at: str | None = None,
    left_at: str | None = None,
) -> None:
    await db.execute(
        """
        INSERT OR IGNORE INTO meeting_participants(meeting_pk, user_key, user_name, instance_type)
        VALUES (?, ?, ?, ?)
        """,
        (meeting_pk, user_key, user_name or "", instance_type),
    )
    await db.execute(
        """
        UPDATE meeting_participants
        SET user_name = CASE WHEN ? <> '' THEN ? ELSE user_name END,
            instance_type = COALESCE(?, instance_type),
            joined_at = COALESCE(?, joined_at),
            left_at = COALESCE(?, left_at)
        WHERE meeting_pk = ? AND user_key = ?
        """,
        (user_name or "", user_name or "", instance_type, joined_at, left_at, meeting_pk, user_key),
    )


async def list_participants(db: DbConnection, meeting_pk: int) -> list[dict[str, Any]]:
    rows = await fetchall(
        db,
        "SELECT * FROM meeting_participants WHERE meeting_pk = ? ORDER BY user_key",
        (meeting_pk,),
    )
    return rows_to_dicts(rows)


async def add_recording_files(db: DbConnection, meeting_pk: int, file_ids: list[str]) -> list[str]:
    row = row_to_dict(await fetchone(db, "SELECT recording_file_ids FROM meetings WHERE id = ?", (meeting_pk,)))
    try:
        current = json.loads((row or {}).get("recording_file_ids") or "[]")
    except json.JSONDecodeError:
        current = []
    merged = list(current)
    for fid in file_ids:
        if fid and fid not in merged:
            merged.append(fid)
    await db.execute(
        "UPDATE meetings SET recording_file_ids = ?, updated_at = ? WHERE id = ?",
        (json.dumps(merged, ensure_ascii=False), utc_now_iso(), meeting_pk),
    )
    return merged
