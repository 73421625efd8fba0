"""APScheduler-based maintenance scheduler."""

from __future__ import annotations

import asyncio
from datetime import datetime, timedelta
from functools import partial
from typing import Callable

import structlog
from apscheduler.schedulers.asyncio import AsyncIOScheduler

from odds_harvester.browser.health import HealthMonitor
from odds_harvester.browser.pool import BrowserPool
from odds_harvester.clock import format_local, race_tz, utc_now
from odds_harvester.config import Settings
from odds_harvester.db.repository import Repository
from odds_harvester.db.retry import with_db_retry
from odds_harvester.polling.race_jobs import CollectionScheduler
from odds_harvester.scraper.discovery import RaceDiscovery
from odds_harvester.scraper.schemas import RaceInfo, RaceStatus

log = structlog.get_logger()


class Harvester:
    """Maintenance callbacks. None of them raises into the scheduler."""

    def __init__(
        self,
        settings: Settings,
        repo: Repository,
        pool: BrowserPool,
        health: HealthMonitor,
        discovery: RaceDiscovery,
        race_jobs: CollectionScheduler,
        clock: Callable[[], datetime] = utc_now,
    ) -> None:
        self._settings = settings
        self._repo = repo
        self._pool = pool
        self._health = health
        self._discovery = discovery
        self._race_jobs = race_jobs
        self._clock = clock
        self._tz = race_tz(settings.race_timezone)

    async def _db(self, operation):
        return await with_db_retry(
            operation,
            attempts=self._settings.max_retries,
            delay=self._settings.retry_delay_seconds,
        )

    async def _register_and_schedule(self, race: RaceInfo) -> None:
        await self._discovery.register_race(race)
        await self._race_jobs.schedule(race)

    async def race_day_discovery(self) -> int:
        """Discover today's races and schedule each, pausing between races."""
        try:
            races = await self._discovery.get_today_grade_races()
            await self._race_jobs.cancel_closed_races()
            if not races:
                log.info("no_races_today")
                return 0
            for race in races:
                await self._register_and_schedule(race)
                await asyncio.sleep(self._settings.registration_pause_seconds)
            log.info("race_day_discovery_done", races=len(races))
            return len(races)
        except Exception:
            log.exception("race_day_discovery_error")
            await self._health.recover_from_error("race day discovery")
            return 0

    async def check_upcoming_races(self) -> int:
        """Pick up races that appeared since the morning run.

        Races without a job are registered and scheduled in small batches.
        """
        try:
            await self._pool.reset_if_due()
            if not await self._health.health_check():
                log.error("health_check_failed", operation="check_upcoming_races")
                await self._health.recover_from_error("check_upcoming_races")

            log.info("active_jobs", count=self._race_jobs.active_job_count())
            races = await self._discovery.get_today_grade_races()
            await self._race_jobs.cancel_closed_races()
            pending =[r for r in races if not self._race_jobs.has_job(r.id)]
            if not pending:
                log.info("no_new_races")
            else:
                log.info("new_races_found", count=len(pending))

            size = self._settings.check_batch_size
            for i in range(0, len(pending), size):
                batch = pending[i:i + size]
                results = await asyncio.gather(
                    *(self._register_and_schedule(race) for race in batch),
                    return_exceptions=True,
                )
                for race, result in zip(batch, results):
                    if isinstance(result, Exception):
                        log.error("race_processing_failed", race_id=race.id, error=repr(result))
                if i + size < len(pending):
                    await asyncio.sleep(self._settings.registration_pause_seconds)

            await self._race_jobs.restore_missing_jobs()
            return len(pending)
        except Exception:
            log.exception("check_upcoming_races_error")
            await self._health.recover_from_error("scheduled check_upcoming_races")
            return 0

    async def restore_jobs(self) -> int:
        """Hourly sweep: forget stale jobs, recreate missing ones."""
        try:
            self._race_jobs.prune_stale_jobs()
            await self._race_jobs.cancel_closed_races()
            return await self._race_jobs.restore_missing_jobs()
        except Exception:
            log.exception("restore_jobs_error")
            await self._health.recover_from_error("job management check")
            return 0

    async def generate_status_report(self) -> str:
        try:
            upcoming = await self._db(partial(self._repo.find_races_by_status, RaceStatus.UPCOMING))
        except Exception as exc:
            log.exception("status_report_error")
            return f"Failed to generate status report: {exc!r}"

        uptime = self._pool.uptime()
        uptime_text = f"{uptime.total_seconds() / 3600:.2f} hours" if uptime is not None else "N/A"
        lines = [
            f"Status Report at {format_local(self._clock(), self._tz)}",
            f"Browser Status: {'active' if self._pool.is_running else 'inactive'}",
            f"Browser Uptime: {uptime_text}",
            f"Browser Contexts: {self._pool.in_use}/{self._pool.size} in use",
            f"Active Jobs: {self._race_jobs.active_job_count()}",
            f"Upcoming Races: {len(upcoming)}",
            f"Upcoming Race IDs: {', '.join(str(r['id']) for r in upcoming)}",
        ]
        return "\n".join(lines)

    async def status_report(self) -> None:
        report = await self.generate_status_report()
        log.info("status_report", report=report)

    async def scheduled_browser_reset(self) -> None:
        log.info("scheduled_browser_reset")
        try:
            if not await self._pool.reset():
                await self._health.recover_from_error("scheduled browser reset")
        except Exception:
            log.exception("scheduled_browser_reset_error")
            await self._health.recover_from_error("scheduled browser reset")

    async def daily_health_check(self) -> None:
        try:
            if await self._health.health_check():
                log.info("daily_health_check_passed")
                return
            log.error("daily_health_check_failed")
        except Exception:
            log.exception("daily_health_check_error")
        await self._health.recover_from_error("daily health check")

    async def sweep_contexts(self) -> None:
        try:
            await self._pool.sweep_idle()
        except Exception:
            log.exception("context_sweep_error")

    async def cleanup_old_races(self, days: int | None = None) -> int:
        """Delete races older than the retention period, with all their rows."""
        days = self._settings.retention_days if days is None else days
        cutoff = self._clock() - timedelta(days=days)
        log.info("cleanup_start", cutoff=format_local(cutoff, self._tz))
        try:
            rows = await self._db(partial(self._repo.find_races_started_before, cutoff))
            if not rows:
                log.info("cleanup_nothing_to_do")
                return 0
            race_ids = [row["id"] for row in rows]
            for race_id in race_ids:
                self._race_jobs.cancel(race_id)
            deleted = await self._db(partial(self._repo.delete_races_and_children, race_ids))
            log.info("cleanup_done", races=deleted)
            return deleted
        except Exception:
            log.exception("cleanup_error")
            return 0

    def shutdown(self) -> None:
        cancelled = self._race_jobs.cancel_all()
        log.info("race_jobs_cancelled", count=cancelled)


def create_scheduler(settings: Settings) -> AsyncIOScheduler:
    """Scheduler whose cron fields are read in the race calendar time zone."""
    return AsyncIOScheduler(timezone=race_tz(settings.race_timezone))


def register_maintenance_jobs(
    scheduler: AsyncIOScheduler, harvester: Harvester, settings: Settings
) -> None:
    race_days = ",".join(str(day) for day in settings.race_days)

    # Morning discovery on race days
    scheduler.add_job(
        harvester.race_day_discovery,
        "cron",
        day_of_week=race_days,
        hour=settings.discovery_hour,
        minute=settings.discovery_minute,
        id="race_day_discovery",
        name="Discover and schedule today's races",
    )

    # Daytime re-check for late additions
    scheduler.add_job(
        harvester.check_upcoming_races,
        "cron",
        day_of_week=race_days,
        hour=f"{settings.check_start_hour}-{settings.check_end_hour - 1}",
        minute=f"*/{settings.check_interval_minutes}",
        id="check_upcoming_races",
        name="Check for upcoming races",
        coalesce=True,
        max_instances=1,
    )

    scheduler.add_job(
        harvester.restore_jobs,
        "cron",
        minute=0,
        id="restore_jobs",
        name="Restore missing race jobs",
    )

    scheduler.add_job(
        harvester.status_report,
        "cron",
        minute=0,
        id="status_report",
        name="Log hourly status report",
    )

    scheduler.add_job(
        harvester.scheduled_browser_reset,
        "cron",
        hour=f"*/{settings.scheduled_reset_hours}",
        minute=0,
        id="browser_reset",
        name="Reset browser",
    )

    scheduler.add_job(
        harvester.daily_health_check,
        "cron",
        hour=settings.health_check_hour,
        minute=0,
        id="daily_health_check",
        name="Daily browser health check",
    )

    scheduler.add_job(
        harvester.sweep_contexts,
        "interval",
        seconds=settings.context_sweep_seconds,
        id="sweep_contexts",
        name="Close idle browser contexts",
    )

    # Weekly retention cleanup, Sunday evening
    scheduler.add_job(
        harvester.cleanup_old_races,
        "cron",
        day_of_week=settings.cleanup_day_of_week,
        hour=settings.cleanup_hour,
        minute=0,
        id="cleanup_old_races",
        name="Delete old races",
    )
