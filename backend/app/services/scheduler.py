"""Background reservation sweeper.

Uses FastAPI's lifespan context to start/stop an asyncio background loop
that marks lapsed reservations as expired every
RESERVATION_SWEEP_INTERVAL_SECONDS (default 300).

Expiry is already enforced on read (a lapsed reservation is never treated as
active); the sweep keeps reservation_status honest for reporting and for
the "expired" access message.
"""

import asyncio
import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI

from app.config import settings
from app.database import async_session
from app.services.reservations import ReservationManager
from app.utils.cache import close_redis

logger = logging.getLogger("atomity.scheduler")


async def run_expiry_sweep() -> int:
    """Release every lapsed reservation. Returns the number released."""
    async with async_session() as db:
        try:
            released = await ReservationManager(db).release_expired()
            await db.commit()
        except Exception:
            await db.rollback()
            raise
    if released:
        logger.info("Released %d expired reservation(s)", released)
    return released


async def _sweeper_loop() -> None:
    interval = settings.reservation_sweep_interval_seconds
    while True:
        await asyncio.sleep(interval)
        try:
            await run_expiry_sweep()
        except Exception:
            logger.exception("Unhandled error in reservation expiry sweep")


@asynccontextmanager
async def lifespan(app: FastAPI):
    """FastAPI lifespan: start the sweeper on startup, cancel on shutdown."""
    task = asyncio.create_task(_sweeper_loop())
    logger.info("Reservation sweeper started")
    try:
        yield
    finally:
        task.cancel()
        try:
            await task
        except asyncio.CancelledError:
            pass
        await close_redis()
        logger.info("Reservation sweeper stopped")
