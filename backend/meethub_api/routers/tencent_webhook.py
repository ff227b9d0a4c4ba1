from __future__ import annotations

import json
import logging
from typing import Any, NoReturn
from urllib.parse import unquote

from fastapi import APIRouter, Depends, HTTPException, Request
from fastapi.responses import Response

from ..config import Settings
from ..deps import get_db, get_settings, get_tencent_router
from ..services.event_router import EventRouter
from ..services.tencent_webhook import ACK_TEXT, WebhookError, event_dedup_key, open_event, verify_url
from ..services.webhook_dispatch import schedule_delivery
from ..services.webhook_event_store import claim_retry, record_event


logger = logging.getLogger(__name__)

router = APIRouter(tags=["webhooks"])

PLATFORM = "tencent"


async def _envelope_data(request: Request) -> str | None:
    try:
        body: Any = json.loads(await request.body() or b"{}")
    except (json.JSONDecodeError, UnicodeDecodeError):
        return None
    if not isinstance(body, dict):
        return None
    data = body.get("data")
    return data if isinstance(data, str) else None


def _raw_query_param(request: Request, name: str) -> str | None:
    """Value as it appeared on the wire, before any percent- or plus-decoding."""
    raw_qs = request.scope.get("query_string", b"").decode("latin-1")
    for part in raw_qs.split("&"):
        key, sep, value = part.partition("=")
        if sep and unquote(key) == name:
            return value
    return None


def _param(request: Request, name: str, *, prefer_headers: bool) -> str | None:
    from_query = request.query_params.get(name)
    from_header = request.headers.get(name)
    first, second = (from_header, from_query) if prefer_headers else (from_query, from_header)
    value = (first or "").strip() or (second or "").strip()
    return value or None


def _raise_http(e: WebhookError) -> NoReturn:
    raise HTTPException(status_code=e.status_code, detail=e.detail) from None


@router.get("/webhooks/tencent")
async def tencent_verify_url(request: Request, settings: Settings = Depends(get_settings)) -> Response:
    raw_check_str = _raw_query_param(request, "check_str")
    if raw_check_str is not None:
        # Base64 "+" must survive, so no plus-to-space decoding here.
        check_str = unquote(raw_check_str)
    else:
        check_str = _param(request, "check_str", prefer_headers=False)

    try:
        plain = verify_url(
            settings.tencent_webhook,
            check_str=check_str,
            timestamp=_param(request, "timestamp", prefer_headers=False),
            nonce=_param(request, "nonce", prefer_headers=False),
            signature=_param(request, "signature", prefer_headers=False),
            raw_check_str=raw_check_str,
        )
    except WebhookError as e:
        _raise_http(e)

    logger.info("tencent webhook url verification succeeded")
    return Response(content=plain, media_type="text/plain")


@router.post("/webhooks/tencent")
async def tencent_callback(
    request: Request,
    settings: Settings = Depends(get_settings),
    event_router: EventRouter = Depends(get_tencent_router),
    db=Depends(get_db),  # noqa: ANN001
) -> Response:
    try:
        event = open_event(
            settings.tencent_webhook,
            data=await _envelope_data(request),
            timestamp=_param(request, "timestamp", prefer_headers=True),
            nonce=_param(request, "nonce", prefer_headers=True),
            signature=_param(request, "signature", prefer_headers=True),
        )
    except WebhookError as e:
        _raise_http(e)

    event_type = str(event.get("event") or "").strip()
    external_id = event_dedup_key(event)
    event_pk, created = await record_event(
        db, platform=PLATFORM, event_type=event_type, external_id=external_id, payload=event
    )
    if not created:
        if not await claim_retry(db, event_pk):
            logger.info("tencent webhook: duplicate delivery %s (%s) acked", external_id, event_type)
            return Response(content=ACK_TEXT, media_type="text/plain")
        logger.info("tencent webhook: retrying failed delivery %s (%s)", external_id, event_type)

    # Ack ASAP to prevent retries; process in background.
    schedule_delivery(
        request.app.state.webhook_tasks,
        settings=settings,
        router=event_router,
        event_pk=event_pk,
        event_type=event_type,
        payload=event,
    )
    return Response(content=ACK_TEXT, media_type="text/plain")
