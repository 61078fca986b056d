import logging

from fastapi import FastAPI

from access_core.core.settings import settings
from access_core.db.init_db import init_db
from access_core.jobs import session_cleanup
from access_core.jobs.scheduler import scheduler

logger = logging.getLogger(__name__)


def register_event_handlers(app: FastAPI) -> None:
    @app.on_event("startup")
    async def on_startup() -> None:
        logger.info("Application startup")
        await init_db()
        if settings.scheduler_enabled:
            session_cleanup.register(scheduler)
            scheduler.start()

    @app.on_event("shutdown")
    async def on_shutdown() -> None:
        logger.info("Application shutdown")
        await scheduler.stop()
