from __future__ import annotations

import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from .config import Settings
from .db import init_db, open_db
from .routers import auth, lark_webhook, tencent_webhook
from .services.lark_events import build_lark_router
from .services.tencent_events import build_tencent_router
from .services.tencent_webhook import WebhookConfigError, check_credentials
from .services.token_blacklist import purge_expired
from .services.webhook_dispatch import drain_tasks


logger = logging.getLogger(__name__)


def _warn_on_webhook_config(settings: Settings) -> None:
    creds = settings.tencent_webhook
    if not creds.configured:
        if creds.token or creds.encoding_aes_key:
            logger.warning("tencent meeting webhook needs both token and encoding_aes_key")
        else:
            logger.info("tencent meeting webhook not configured; /api/webhooks/tencent will answer 500")
        return
    try:
        check_credentials(creds)
    except WebhookConfigError as e:
        logger.warning("tencent meeting webhook misconfigured: %s", e.detail)


def create_app(settings: Settings) -> FastAPI:
    @asynccontextmanager
    async def lifespan(app: FastAPI):  # noqa: ANN001
        await init_db(settings)
        async with open_db(settings) as db:
            purged = await purge_expired(db)
            await db.commit()
        if purged:
            logger.info("purged %d expired blacklist entries", purged)
        _warn_on_webhook_config(settings)
        yield
        await drain_tasks(app.state.webhook_tasks)

    app = FastAPI(title="MeetHub API", version="0.1.0", lifespan=lifespan)
    app.state.settings = settings
    app.state.tencent_router = build_tencent_router()
    app.state.lark_router = build_lark_router()
    app.state.webhook_tasks = set()

    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    app.include_router(auth.router, prefix="/api")
    app.include_router(tencent_webhook.router, prefix="/api")
    app.include_router(lark_webhook.router, prefix="/api")

    @app.get("/health")
    def health() -> dict:
        return {"ok": True}

    return app
