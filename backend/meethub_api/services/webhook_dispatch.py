from __future__ import annotations

import asyncio
import logging
from typing import Any, Coroutine

from ..config import Settings
from ..db import open_db
from .event_router import DispatchResult, EventContext, EventRouter
from .webhook_event_store import STATUS_FAILED, mark_status


logger = logging.getLogger(__name__)


async def process_delivery(
    *,
    settings: Settings,
    router: EventRouter,
    event_pk: int,
    event_type: str,
    payload: dict[str, Any],
) -> DispatchResult:
    async with open_db(settings) as db:
        ctx = EventContext(db=db, platform=router.platform, event_pk=event_pk)
        result = await router.dispatch(event_type, payload, ctx)
        await mark_status(db, event_pk, result.status, error=result.error)
    logger.info("%s webhook event %s (%s): %s", router.platform, event_pk, event_type, result.status)
    return result


async def _run_logged(coro: Coroutine[Any, Any, DispatchResult], *, settings: Settings, event_pk: int) -> None:
    try:
        await coro
    except Exception as e:  # noqa: BLE001
        # Callback already acked; keep the failure on the stored delivery.
        logger.exception("webhook event %s: background processing failed", event_pk)
        try:
            async with open_db(settings) as db:
                await mark_status(db, event_pk, STATUS_FAILED, error=f"{type(e).__name__}: {e}")
        except Exception:  # noqa: BLE001
            logger.exception("webhook event %s: could not record failure", event_pk)


def schedule_delivery(
    tasks: set[asyncio.Task],
    *,
    settings: Settings,
    router: EventRouter,
    event_pk: int,
    event_type: str,
    payload: dict[str, Any],
) -> asyncio.Task:
    """Start processing after the ack. The task stays in `tasks` until done so shutdown can drain it."""
    coro = process_delivery(settings=settings, router=router, event_pk=event_pk, event_type=event_type, payload=payload)
    task = asyncio.create_task(_run_logged(coro, settings=settings, event_pk=event_pk))
    tasks.add(task)
    task.add_done_callback(tasks.discard)
    return task


async def drain_tasks(tasks: set[asyncio.Task], *, timeout: float = 10.0) -> None:
    pending = [t for t in tasks if not t.done()]
    if not pending:
        return
    logger.info("waiting for %d webhook task(s)", len(pending))
    _, still_pending = await asyncio.wait(pending, timeout=timeout)
    for t in still_pending:
        t.cancel()
