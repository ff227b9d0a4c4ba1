from __future__ import annotations

import json
import logging
import secrets
from typing import Any

from fastapi import APIRouter, Depends, HTTPException, Request

from ..config import Settings
from ..deps import get_db, get_lark_router, get_settings
from ..services.event_router import EventRouter
from ..services.lark_crypto import LarkCipher, verify_lark_signature
from ..services.webhook_crypto import WebhookCryptoError
from ..services.webhook_dispatch import schedule_delivery
from ..services.webhook_event_store import claim_retry, record_event


logger = logging.getLogger(__name__)

router = APIRouter(tags=["webhooks"])

PLATFORM = "lark"


def _token_matches(expected: str, provided: Any) -> bool:  # noqa: ANN401
    if not expected:
        return True
    return secrets.compare_digest(str(provided or "").encode("utf-8"), expected.encode("utf-8"))


@router.post("/webhooks/lark")
async def lark_callback(
    request: Request,
    settings: Settings = Depends(get_settings),
    event_router: EventRouter = Depends(get_lark_router),
    db=Depends(get_db),  # noqa: ANN001
) -> dict:
    creds = settings.lark
    body = await request.body()
    try:
        payload = json.loads(body or b"{}")
    except (json.JSONDecodeError, UnicodeDecodeError):
        raise HTTPException(status_code=400, detail="invalid JSON body") from None
    if not isinstance(payload, dict):
        raise HTTPException(status_code=400, detail="invalid JSON body")

    if payload.get("encrypt"):
        if not creds.encrypt_key:
            raise HTTPException(status_code=500, detail="lark encrypt_key not configured")
        signature = request.headers.get("x-lark-signature")
        if signature and not verify_lark_signature(
            timestamp=request.headers.get("x-lark-request-timestamp"),
            nonce=request.headers.get("x-lark-request-nonce"),
            encrypt_key=creds.encrypt_key,
            body=body,
            signature=signature,
        ):
            logger.warning("lark webhook: signature mismatch")
            raise HTTPException(status_code=401, detail="webhook signature verification failed")
        try:
            payload = LarkCipher(creds.encrypt_key).decrypt_json(str(payload["encrypt"]))
        except WebhookCryptoError as e:
            logger.warning("lark webhook decrypt failed: %s", type(e).__name__)
            raise HTTPException(status_code=400, detail="webhook payload decryption failed") from None

    if payload.get("type") == "url_verification":
        if not _token_matches(creds.verification_token, payload.get("token")):
            raise HTTPException(status_code=401, detail="verification token mismatch")
        return {"challenge": payload.get("challenge", "")}

    header = payload.get("header") or {}
    if not isinstance(header, dict):
        raise HTTPException(status_code=400, detail="missing event header")
    if not _token_matches(creds.verification_token, header.get("token") or payload.get("token")):
        logger.warning("lark webhook: verification token mismatch")
        raise HTTPException(status_code=401, detail="verification token mismatch")

    event_id = str(header.get("event_id") or "").strip()
    event_type = str(header.get("event_type") or "").strip()
    if not event_id or not event_type:
        raise HTTPException(status_code=400, detail="missing event_id or event_type")

    event_pk, created = await record_event(
        db, platform=PLATFORM, event_type=event_type, external_id=event_id, payload=payload
    )
    if not created:
        if not await claim_retry(db, event_pk):
            logger.info("lark webhook: duplicate delivery %s (%s) acked", event_id, event_type)
            return {"code": 0, "msg": "duplicate"}
        logger.info("lark webhook: retrying failed delivery %s (%s)", event_id, event_type)

    schedule_delivery(
        request.app.state.webhook_tasks,
        settings=settings,
        router=event_router,
        event_pk=event_pk,
        event_type=event_type,
        payload=payload,
    )
    return {"code": 0, "msg": "success"}
