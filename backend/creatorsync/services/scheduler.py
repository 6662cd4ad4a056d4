"""
Scheduler Service

Periodically auto-syncs every creator profile whose last successful sync is
older than AUTO_SYNC_INTERVAL_HOURS.

Single-leader election via Postgres advisory locks:
- Only the instance that acquires the lock executes the tick
- Other instances silently skip
- Controlled by SCHEDULER_ENABLED env (default: true)
"""
from __future__ import annotations

import logging

from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.interval import IntervalTrigger
from sqlalchemy import select, text
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from creatorsync.db import get_session_factory
from creatorsync.models import CreatorProfile
from creatorsync.services.content_sync import check_and_auto_sync
from creatorsync.settings import get_settings

logger = logging.getLogger("scheduler")

# Advisory lock key (arbitrary int64, unique per job type)
LOCK_SYNC_PROFILES = 910_001


class SchedulerService:
    """Runs the periodic profile sync.

    Uses Postgres pg_try_advisory_lock on each tick so that only
    one backend instance (the leader) executes the job while
    other instances skip silently.
    """

    _instance: "SchedulerService | None" = None

    def __init__(self, session_factory: async_sessionmaker[AsyncSession] | None = None):
        self.scheduler = AsyncIOScheduler()
        self._session_factory = session_factory
        self._running = False

    @classmethod
    def get_instance(cls) -> "SchedulerService":
        """Get singleton instance."""
        if cls._instance is None:
            cls._instance = cls()
        return cls._instance

    @property
    def session_factory(self) -> async_sessionmaker[AsyncSession]:
        if self._session_factory is None:
            self._session_factory = get_session_factory()
        return self._session_factory

    async def _try_advisory_lock(self, session: AsyncSession, lock_key: int) -> bool:
        """Try to acquire a session-level advisory lock (non-blocking).

        Databases without advisory locks (SQLite in tests) always lead.
        """
        if session.get_bind().dialect.name != "postgresql":
            return True
        result = await session.execute(text(f"SELECT pg_try_advisory_lock({lock_key})"))
        return bool(result.scalar())

    async def _release_advisory_lock(self, session: AsyncSession, lock_key: int):
        if session.get_bind().dialect.name != "postgresql":
            return
        await session.execute(text(f"SELECT pg_advisory_unlock({lock_key})"))

    def start(self):
        """Start the scheduler (respects SCHEDULER_ENABLED env)."""
        settings = get_settings()
        if not settings.scheduler_enabled:
            logger.info("Scheduler DISABLED by SCHEDULER_ENABLED=false, skipping start")
            return

        if self._running:
            return

        self.scheduler.add_job(
            self.run_sync_profiles,
            IntervalTrigger(hours=settings.auto_sync_interval_hours),
            id="sync_profiles",
            name="Auto-sync creator profiles",
            replace_existing=True,
        )

        self.scheduler.start()
        self._running = True
        logger.info("Scheduler started (single-leader mode via advisory locks)")

    def stop(self):
        """Stop the scheduler."""
        if not self._running:
            return
        self.scheduler.shutdown(wait=False)
        self._running = False
        logger.info("Scheduler stopped")

    def is_running(self) -> bool:
        return self._running

    async def run_sync_profiles(self) -> dict | None:
        """Auto-sync all due profiles, one after another.

        Protected by advisory lock: only one instance executes per tick.
        """
        async with self.session_factory() as session:
            acquired = await self._try_advisory_lock(session, LOCK_SYNC_PROFILES)
            if not acquired:
                logger.debug("[sync_profiles] Advisory lock not acquired, another instance is leader, skipping tick")
                return None

            try:
                logger.info("[sync_profiles] LEADER, running profile sync")
                profile_ids = list((await session.scalars(select(CreatorProfile.id).order_by(CreatorProfile.id))).all())

                synced = 0
                skipped = 0
                errors = []
                for profile_id in profile_ids:
                    try:
                        result = await check_and_auto_sync(self.session_factory, profile_id)
                    except Exception as e:
                        logger.exception("Failed to sync profile %d", profile_id)
                        errors.append({"profile_id": profile_id, "error": str(e)})
                        continue
                    if result.synced:
                        synced += 1
                    else:
                        skipped += 1

                logger.info(
                    "[sync_profiles] Completed: %d synced, %d skipped, %d errors", synced, skipped, len(errors)
                )
                return {"synced": synced, "skipped": skipped, "errors": errors}
            finally:
                await self._release_advisory_lock(session, LOCK_SYNC_PROFILES)


def get_scheduler() -> SchedulerService:
    return SchedulerService.get_instance()
