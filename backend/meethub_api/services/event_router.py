from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, Awaitable, Callable

from ..db import DbConnection
from .webhook_event_store import STATUS_FAILED, STATUS_IGNORED, STATUS_PROCESSED


logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class EventContext:
    db: DbConnection
    platform: str
    event_pk: int | None = None


@dataclass(frozen=True)
class DispatchResult:
    status: str
    error: str | None = None


EventHandler = Callable[[EventContext, dict[str, Any]], Awaitable[None]]


class EventRouter:
    """Maps event type strings to async handlers. One router per platform."""

    def __init__(self, platform: str) -> None:
        self.platform = platform
        self._handlers: dict[str, EventHandler] = {}

    def register(self, event_type: str, handler: EventHandler) -> None:
        key = (event_type or "").strip()
        if not key:
            raise ValueError("event_type is required")
        if key in self._handlers:
            raise ValueError(f"handler already registered for {key}")
        self._handlers[key] = handler

    def handler_for(self, event_type: str) -> EventHandler | None:
        return self._handlers.get((event_type or "").strip())

    def supported_events(self) -> list[str]:
        return sorted(self._handlers)

    async def dispatch(self, event_type: str, payload: dict[str, Any], context: EventContext) -> DispatchResult:
        handler = self.handler_for(event_type)
        if handler is None:
            logger.info("%s webhook: no handler for event %r", self.platform, event_type)
            return DispatchResult(STATUS_IGNORED)
        try:
            await handler(context, payload)
        except Exception as e:  # noqa: BLE001
            logger.exception("%s webhook: handler for %r failed", self.platform, event_type)
            await context.db.rollback()
            return DispatchResult(STATUS_FAILED, error=f"{type(e).__name__}: {e}")
        await context.db.commit()
        return DispatchResult(STATUS_PROCESSED)
