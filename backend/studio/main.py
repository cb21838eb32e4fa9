import logging
from contextlib import asynccontextmanager
from typing import AsyncIterator

from fastapi import FastAPI

from .config import get_settings
from .database import engine, session_factory
from .deps import get_notifier
from .routers import classes, cron, holidays, packages, patterns, reservations, waitlist
from .scheduler import build_scheduler
from .utils.request_id import request_id_middleware

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    settings = get_settings()
    logging.basicConfig(
        level=settings.log_level.upper(),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    scheduler = None
    if settings.scheduler_enabled:
        scheduler = build_scheduler(session_factory, settings=settings, notifier=get_notifier())
        scheduler.start()
        logger.info("background scheduler started")
    try:
        yield
    finally:
        if scheduler is not None:
            scheduler.shutdown(wait=False)
        await engine.dispose()


app = FastAPI(title="Studio Booking API", lifespan=lifespan)
app.middleware("http")(request_id_middleware)


@app.get("/health")
async def health() -> dict[str, str]:
    return {"status": "ok"}


app.include_router(classes.router)
app.include_router(reservations.router)
app.include_router(waitlist.router)
app.include_router(packages.router)
app.include_router(patterns.router)
app.include_router(holidays.router)
app.include_router(cron.router)
