from __future__ import annotations

import pytest

from meethub_api.services.event_router import EventContext, EventRouter
from meethub_api.services.tencent_events import build_tencent_router, summarize_tencent_event
from meethub_api.time_utils import from_epoch


def test_tencent_router_supports_meeting_lifecycle() -> None:
    router = build_tencent_router()
    assert router.supported_events() == [
        "meeting.end",
        "meeting.participant-joined",
        "meeting.participant-left",
        "meeting.started",
        "recording.completed",
    ]
    assert router.handler_for("smart.transcripts") is None


def test_register_rejects_duplicates_and_blank_types() -> None:
    router = EventRouter("tencent")

    async def noop(ctx, event) -> None:  # noqa: ANN001
        return None

    router.register("meeting.started", noop)
    with pytest.raises(ValueError):
        router.register("meeting.started", noop)
    with pytest.raises(ValueError):
        router.register("  ", noop)


async def test_dispatch_statuses(db) -> None:  # noqa: ANN001
    router = EventRouter("tencent")
    seen: list[dict] = []

    async def ok(ctx, event) -> None:  # noqa: ANN001
        seen.append(event)

    async def boom(ctx, event) -> None:  # noqa: ANN001
        raise RuntimeError("handler exploded")

    router.register("ok", ok)
    router.register("boom", boom)
    ctx = EventContext(db=db, platform="tencent")

    assert (await router.dispatch("ok", {"n": 1}, ctx)).status == "processed"
    assert seen == [{"n": 1}]

    failed = await router.dispatch("boom", {}, ctx)
    assert failed.status == "failed"
    assert "handler exploded" in (failed.error or "")

    assert (await router.dispatch("unknown", {}, ctx)).status == "ignored"


def test_summary_prefers_sub_meeting_times() -> None:
    item = {
        "operate_time": 1700000100123,
        "meeting_info": {
            "meeting_id": "m-recurring",
            "meeting_code": "987654321",
            "subject": "Daily standup",
            "creator": {"userid": "creator-9", "user_name": "Carol"},
            "meeting_type": 1,
            "start_time": 1700000000,
            "end_time": 1700003600,
            "sub_meeting_id": "sub-3",
            "sub_meeting_start_time": 1700086400,
            "sub_meeting_end_time": 1700090000,
        },
    }
    summary = summarize_tencent_event(item)
    assert summary.meeting_id == "m-recurring"
    assert summary.sub_meeting_id == "sub-3"
    assert summary.creator_id == "creator-9"
    assert summary.creator_name == "Carol"
    assert summary.start_time == "2023-11-15T22:13:20+00:00"
    assert summary.end_time == "2023-11-15T23:13:20+00:00"


def test_summary_falls_back_to_parent_times() -> None:
    summary = summarize_tencent_event({"meeting_info": {"meeting_id": "m-1", "start_time": 1700000000}})
    assert summary.sub_meeting_id == ""
    assert summary.start_time == "2023-11-14T22:13:20+00:00"
    assert summary.end_time is None


def test_summary_requires_meeting_id() -> None:
    with pytest.raises(ValueError):
        summarize_tencent_event({"meeting_info": {}})


def test_from_epoch_units() -> None:
    assert from_epoch(1700000100) == "2023-11-14T22:15:00+00:00"
    assert from_epoch("1700000100123", millis=True) == "2023-11-14T22:15:00+00:00"
    assert from_epoch(0) is None
    assert from_epoch("") is None
    assert from_epoch("soon") is None
    # A millisecond value read as seconds is far outside datetime's range.
    assert from_epoch(1700000100123) is None
