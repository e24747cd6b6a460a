"""
FastAPI application factory.

    uvicorn genbook.api.app:create_app --factory
"""

import logging
from contextlib import asynccontextmanager
from typing import Optional

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from genbook.api.routes import (
    analytics,
    appointments,
    billing,
    chat,
    health,
    team,
    tenants,
    voice,
    webhooks,
)
from genbook.config.settings import Settings, get_settings
from genbook.entitlements.loader import get_plan_catalog
from genbook.platform.errors import register_error_handlers
from genbook.platform.log_config import configure_logging

logger = logging.getLogger(__name__)

API_PREFIX = "/api/v1"


@asynccontextmanager
async def lifespan(app: FastAPI):
    settings: Settings = app.state.settings
    # Fail fast on a broken plan catalog rather than on the first request
    get_plan_catalog()
    logger.info("Starting GenBook API", extra={"settings": settings.redacted()})
    yield
    logger.info("Stopping GenBook API")


def create_app(settings: Optional[Settings] = None) -> FastAPI:
    settings = settings or get_settings()
    configure_logging(settings.log_level)

    app = FastAPI(title="GenBook API", lifespan=lifespan)
    app.state.settings = settings

    if settings.allowed_origins:
        app.add_middleware(
            CORSMiddleware,
            allow_origins=list(settings.allowed_origins),
            allow_credentials=True,
            allow_methods=["*"],
            allow_headers=["*"],
        )
    register_error_handlers(app)

    app.include_router(health.router)
    for module in (tenants, billing, appointments, voice, chat, team, analytics, webhooks):
        app.include_router(module.router, prefix=API_PREFIX)
    return app
