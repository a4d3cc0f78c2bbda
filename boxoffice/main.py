import asyncio
from contextlib import asynccontextmanager
import logging
import time

from fastapi import FastAPI
from sqlalchemy import text
from sqlalchemy.exc import OperationalError, SQLAlchemyError

from boxoffice.api.routes.routes import router
from boxoffice.application.hold_service import HoldService
from boxoffice.config import get_settings
from boxoffice.infrastructure.db.session import SessionLocal, engine
from boxoffice.infrastructure.db.models import Base

logger = logging.getLogger(__name__)


def _wait_for_db() -> None:
    # Handles the common case where API starts before Postgres is ready.
    settings = get_settings()
    max_retries = settings.db_connect_max_retries
    retry_delay_seconds = settings.db_connect_retry_delay

    for attempt in range(1, max_retries + 1):
        try:
            with engine.connect() as conn:
                conn.execute(text("SELECT 1"))
            logger.info("Database is reachable.")
            return
        except OperationalError:
            if attempt == max_retries:
                logger.exception(
                    "Database not reachable after %s attempts. Check DATABASE_URL and Postgres status.",
                    max_retries,
                )
                raise
            logger.warning(
                "Database not ready (attempt %s/%s). Retrying in %.1f seconds...",
                attempt,
                max_retries,
                retry_delay_seconds,
            )
            time.sleep(retry_delay_seconds)


def _purge_expired_holds() -> int:
    db = SessionLocal()
    try:
        return HoldService(db).purge_expired()
    finally:
        db.close()


async def _hold_cleanup_loop(interval_seconds: float) -> None:
    """Background task: reclaim expired hold rows. Availability never depends on it."""
    while True:
        try:
            await asyncio.to_thread(_purge_expired_holds)
        except SQLAlchemyError:
            logger.exception("Error during expired-hold cleanup.")
        await asyncio.sleep(interval_seconds)


@asynccontextmanager
async def lifespan(app: FastAPI):
    _wait_for_db()
    Base.metadata.create_all(bind=engine)

    interval = get_settings().hold_cleanup_interval_seconds
    cleanup_task = None
    if interval > 0:
        cleanup_task = asyncio.create_task(_hold_cleanup_loop(interval))
    yield

    if cleanup_task is not None:
        cleanup_task.cancel()
        try:
            await cleanup_task
        except asyncio.CancelledError:
            pass


app = FastAPI(title="Box Office Reservation Engine", lifespan=lifespan)

app.include_router(router)
