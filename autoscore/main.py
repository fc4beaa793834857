"""
Entry point for the auto-score backend.

Creates the FastAPI application, includes the API routers and starts the
automation engine on the application's event loop. Run with:

    uvicorn autoscore.main:app --reload

"""

from __future__ import annotations

import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI

from .api import api_router
from .core.config import get_app_env, settings
from .core.db import SessionLocal, engine
from .core.errors import log_exception
from .core.logging_config import setup_logging
from .models import Base
from .services.automation import AutoScoreService, build_auto_score_service


async def _start_auto_score(logger: logging.Logger) -> AutoScoreService | None:
    env = get_app_env()
    data_dir = settings.data_dir
    if settings.auto_create_db:
        try:
            Base.metadata.create_all(bind=engine)
        except Exception as exc:
            log_exception(logger, "DB create_all failed", exc=exc)
            if env == "prod":
                raise
    if not settings.enable_auto_score:
        logger.info("Auto score engine disabled (ENABLE_AUTO_SCORE=false)")
        return None
    service = build_auto_score_service(data_dir, SessionLocal, tz_name=settings.autoscore_timezone)
    try:
        await service.start()
    except Exception as exc:
        log_exception(logger, "Auto score engine failed to start", extra={"data_dir": str(data_dir)}, exc=exc)
        if env == "prod":
            raise
        return None
    return service


def create_app() -> FastAPI:
    setup_logging(settings.log_level, settings.log_file)

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        # startup
        app.state.auto_score = await _start_auto_score(logging.getLogger("startup"))
        yield
        # shutdown
        service = getattr(app.state, "auto_score", None)
        if service:
            await service.dispose()
            app.state.auto_score = None

    app = FastAPI(title="Classroom Auto Score", version="0.1.0", lifespan=lifespan)
    app.include_router(api_router)
    app.state.auto_score = None
    return app


app = create_app()
