from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any

from ..time_utils import from_epoch
from . import meeting_store
from .event_router import EventContext, EventRouter


logger = logging.getLogger(__name__)

PLATFORM = "tencent"

MEETING_STARTED = "meeting.started"
MEETING_END = "meeting.end"
PARTICIPANT_JOINED = "meeting.participant-joined"
PARTICIPANT_LEFT = "meeting.participant-left"
RECORDING_COMPLETED = "recording.completed"


@dataclass(frozen=True)
class TencentMeetingSummary:
    meeting_id: str
    sub_meeting_id: str
    meeting_code: str
    subject: str
    creator_id: str
    creator_name: str
    start_time: str | None
    end_time: str | None


def _user_key(user: dict[str, Any]) -> str:
    return str(user.get("userid") or user.get("uuid") or user.get("open_id") or "").strip()


def _int_or_none(value: Any) -> int | None:  # noqa: ANN401
    try:
        return int(value)
    except (TypeError, ValueError):
        return None


def summarize_tencent_event(item: dict[str, Any]) -> TencentMeetingSummary:
    """
    Flatten one payload item's meeting_info. For recurring meetings the sub-meeting
    start/end times win over the parent meeting's.
    """
    info = item.get("meeting_info") or {}
    if not isinstance(info, dict) or not str(info.get("meeting_id") or "").strip():
        raise ValueError("payload item has no meeting_info.meeting_id")
    creator = info.get("creator") or {}
    return TencentMeetingSummary(
        meeting_id=str(info["meeting_id"]).strip(),
        sub_meeting_id=str(info.get("sub_meeting_id") or "").strip(),
        meeting_code=str(info.get("meeting_code") or "").strip(),
        subject=str(info.get("subject") or "").strip(),
        creator_id=_user_key(creator) if isinstance(creator, dict) else "",
        creator_name=str(creator.get("user_name") or "") if isinstance(creator, dict) else "",
        start_time=from_epoch(info.get("sub_meeting_start_time") or info.get("start_time")),
        end_time=from_epoch(info.get("sub_meeting_end_time") or info.get("end_time")),
    )


def _payload_items(event: dict[str, Any]) -> list[dict[str, Any]]:
    items = event.get("payload") or []
    if not isinstance(items, list):
        raise ValueError("event payload must be a list")
    return [item for item in items if isinstance(item, dict)]


async def _upsert_from_item(ctx: EventContext, item: dict[str, Any]) -> tuple[int, TencentMeetingSummary]:
    s = summarize_tencent_event(item)
    meeting_pk = await meeting_store.upsert_meeting(
        ctx.db,
        platform=PLATFORM,
        meeting_id=s.meeting_id,
        sub_meeting_id=s.sub_meeting_id,
        meeting_code=s.meeting_code,
        subject=s.subject,
        creator_id=s.creator_id,
        creator_name=s.creator_name,
        start_time=s.start_time,
        end_time=s.end_time,
    )
    return meeting_pk, s


async def handle_meeting_started(ctx: EventContext, event: dict[str, Any]) -> None:
    for item in _payload_items(event):
        meeting_pk, s = await _upsert_from_item(ctx, item)
        started_at = from_epoch(item.get("operate_time"), millis=True) or s.start_time
        await meeting_store.set_meeting_status(ctx.db, meeting_pk, "started", started_at=started_at)
        logger.info("tencent meeting %s started", s.meeting_id)


async def handle_meeting_end(ctx: EventContext, event: dict[str, Any]) -> None:
    for item in _payload_items(event):
        meeting_pk, s = await _upsert_from_item(ctx, item)
        ended_at = from_epoch(item.get("operate_time"), millis=True) or s.end_time
        await meeting_store.set_meeting_status(ctx.db, meeting_pk, "ended", ended_at=ended_at)
        logger.info("tencent meeting %s ended", s.meeting_id)


async def _handle_participant(ctx: EventContext, event: dict[str, Any], *, joined: bool) -> None:
    for item in _payload_items(event):
        meeting_pk, _ = await _upsert_from_item(ctx, item)
        operator = item.get("operator") or {}
        user_key = _user_key(operator) if isinstance(operator, dict) else ""
        if not user_key:
            raise ValueError("participant event has no operator id")
        at = from_epoch(item.get("operate_time"), millis=True)
        await meeting_store.upsert_participant(
            ctx.db,
            meeting_pk,
            user_key=user_key,
            user_name=str(operator.get("user_name") or ""),
            instance_type=_int_or_none(operator.get("instance_id")),
            joined_at=at if joined else None,
            left_at=None if joined else at,
        )


async def handle_participant_joined(ctx: EventContext, event: dict[str, Any]) -> None:
    await _handle_participant(ctx, event, joined=True)


async def handle_participant_left(ctx: EventContext, event: dict[str, Any]) -> None:
    await _handle_participant(ctx, event, joined=False)


async def handle_recording_completed(ctx: EventContext, event: dict[str, Any]) -> None:
    for item in _payload_items(event):
        meeting_pk, s = await _upsert_from_item(ctx, item)
        files = item.get("recording_files") or []
        file_ids = [str(f.get("record_file_id") or "") for f in files if isinstance(f, dict)]
        merged = await meeting_store.add_recording_files(ctx.db, meeting_pk, [fid for fid in file_ids if fid])
        logger.info("tencent meeting %s: %d recording file(s)", s.meeting_id, len(merged))


def build_tencent_router() -> EventRouter:
    router = EventRouter(PLATFORM)
    router.register(MEETING_STARTED, handle_meeting_started)
    router.register(MEETING_END, handle_meeting_end)
    router.register(PARTICIPANT_JOINED, handle_participant_joined)
    router.register(PARTICIPANT_LEFT, handle_participant_left)
    router.register(RECORDING_COMPLETED, handle_recording_completed)
    return router
