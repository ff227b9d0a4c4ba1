from __future__ import annotations

from typing import Any

from ..time_utils import from_epoch
from . import meeting_store
from .event_router import EventContext, EventRouter


PLATFORM = "lark"

MEETING_STARTED = "vc.meeting.all_meeting_started_v1"
MEETING_ENDED = "vc.meeting.all_meeting_ended_v1"


def _lark_user_id(user: Any) -> str:  # noqa: ANN401
    if not isinstance(user, dict):
        return ""
    ids = user.get("id") or {}
    if not isinstance(ids, dict):
        return ""
    return str(ids.get("user_id") or ids.get("open_id") or ids.get("union_id") or "")


async def _upsert_meeting(ctx: EventContext, event: dict[str, Any]) -> tuple[int, dict[str, Any]]:
    body = event.get("event") or {}
    meeting = body.get("meeting") if isinstance(body, dict) else None
    if not isinstance(meeting, dict) or not str(meeting.get("id") or "").strip():
        raise ValueError("lark meeting event has no event.meeting.id")
    owner = meeting.get("owner") or meeting.get("host_user") or {}
    meeting_pk = await meeting_store.upsert_meeting(
        ctx.db,
        platform=PLATFORM,
        meeting_id=str(meeting["id"]).strip(),
        meeting_code=str(meeting.get("meeting_no") or ""),
        subject=str(meeting.get("topic") or ""),
        creator_id=_lark_user_id(owner),
        start_time=from_epoch(meeting.get("start_time")),
        end_time=from_epoch(meeting.get("end_time")),
    )
    return meeting_pk, meeting


async def handle_meeting_started(ctx: EventContext, event: dict[str, Any]) -> None:
    meeting_pk, meeting = await _upsert_meeting(ctx, event)
    await meeting_store.set_meeting_status(ctx.db, meeting_pk, "started", started_at=from_epoch(meeting.get("start_time")))


async def handle_meeting_ended(ctx: EventContext, event: dict[str, Any]) -> None:
    meeting_pk, meeting = await _upsert_meeting(ctx, event)
    await meeting_store.set_meeting_status(ctx.db, meeting_pk, "ended", ended_at=from_epoch(meeting.get("end_time")))


def build_lark_router() -> EventRouter:
    router = EventRouter(PLATFORM)
    router.register(MEETING_STARTED, handle_meeting_started)
    router.register(MEETING_ENDED, handle_meeting_ended)
    return router
