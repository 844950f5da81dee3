"""Background job scheduler for calendar syncing."""
import asyncio
import logging

import httpx
from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.interval import IntervalTrigger
from sqlalchemy.engine import Engine
from sqlmodel import Session

from app.calendar.errors import AuthError, SyncError
from app.calendar.tokens import RefreshLockRegistry
from app.core.config import Settings, settings
from app.core.database import engine
from app.core.dependencies import build_calendar_sync
from app.stores.credentials import CredentialStore

logger = logging.getLogger(__name__)

scheduler = AsyncIOScheduler()


async def sync_user(
    user_id: str,
    http_client: httpx.AsyncClient,
    locks: RefreshLockRegistry,
    db_engine: Engine = engine,
    config: Settings = settings,
) -> dict | None:
    """Run a full sync for one user in its own session. Failures are logged."""
    with Session(db_engine) as session:
        sync = build_calendar_sync(session, http_client, locks, config)
        try:
            report = await sync.full_sync(user_id)
        except AuthError as e:
            logger.warning(f"Skipping sync for user {user_id}, reconnect required: {e}")
            return None
        except SyncError as e:
            logger.error(f"Background sync failed for user {user_id}: {e}")
            return None
    return report.as_dict()


async def sync_job(
    http_client: httpx.AsyncClient,
    locks: RefreshLockRegistry,
    db_engine: Engine = engine,
    config: Settings = settings,
) -> dict[str, dict | None]:
    """Full sync for every connected user, users running concurrently."""
    with Session(db_engine) as session:
        user_ids = CredentialStore(session).list_user_ids()

    results = await asyncio.gather(
        *(sync_user(user_id, http_client, locks, db_engine, config) for user_id in user_ids),
        return_exceptions=True,
    )
    summary = {}
    for user_id, result in zip(user_ids, results):
        if isinstance(result, BaseException):
            logger.error(f"Background sync crashed for user {user_id}: {result!r}")
            result = None
        summary[user_id] = result
    logger.info(f"Background sync completed for {len(user_ids)} users")
    return summary


def start_scheduler(http_client: httpx.AsyncClient, locks: RefreshLockRegistry):
    """Start the background scheduler."""
    scheduler.add_job(
        sync_job,
        trigger=IntervalTrigger(minutes=settings.sync_interval_minutes),
        args=[http_client, locks],
        id="calendar_sync",
        replace_existing=True,
        max_instances=1,
    )
    scheduler.start()
    logger.info(
        f"Scheduler started, syncing every {settings.sync_interval_minutes} minutes"
    )


def shutdown_scheduler():
    """Graceful shutdown."""
    if scheduler.running:
        scheduler.shutdown(wait=False)
    logger.info("Scheduler shut down")
