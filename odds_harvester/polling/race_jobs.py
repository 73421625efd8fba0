"""One recurring APScheduler job per tracked race."""

from __future__ import annotations

from datetime import datetime, timedelta
from functools import partial
from typing import Callable

import structlog
from apscheduler.job import Job
from apscheduler.jobstores.base import JobLookupError
from apscheduler.schedulers.asyncio import AsyncIOScheduler

from odds_harvester.browser.health import HealthMonitor
from odds_harvester.clock import format_local, race_tz, utc_now
from odds_harvester.collection.orchestrator import OddsCollector
from odds_harvester.config import Settings
from odds_harvester.db.repository import Repository
from odds_harvester.db.retry import with_db_retry
from odds_harvester.polling.cadence import TickAction, collection_start, decide_tick
from odds_harvester.scraper.schemas import RaceInfo, RaceStatus

log = structlog.get_logger()


def job_id(race_id: int) -> str:
    return f"race:{race_id}"


class CollectionScheduler:
    """Owns the race id -> job registry.

    Each job fires every five minutes and asks ``decide_tick`` what to do.
    A firing never raises: failures are logged and handed to recovery so the
    next firing still happens.
    """

    def __init__(
        self,
        settings: Settings,
        scheduler: AsyncIOScheduler,
        repo: Repository,
        collector: OddsCollector,
        health: HealthMonitor,
        clock: Callable[[], datetime] = utc_now,
    ) -> None:
        self._settings = settings
        self._scheduler = scheduler
        self._repo = repo
        self._collector = collector
        self._health = health
        self._clock = clock
        self._tz = race_tz(settings.race_timezone)
        self._jobs: dict[int, Job] = {}

    async def _db(self, operation):
        return await with_db_retry(
            operation,
            attempts=self._settings.max_retries,
            delay=self._settings.retry_delay_seconds,
        )

    # ── Registry ────────────────────────────────────────────────────

    def active_job_count(self) -> int:
        return len(self._jobs)

    def has_job(self, race_id: int) -> bool:
        return race_id in self._jobs

    def job_ids(self) -> list[int]:
        return sorted(self._jobs)

    def cancel(self, race_id: int) -> bool:
        """Remove the race's job. Cancelling an unknown race is a no-op."""
        job = self._jobs.pop(race_id, None)
        if job is None:
            return False
        self._unschedule(job)
        log.info("race_job_cancelled", race_id=race_id)
        return True

    def _unschedule(self, job: Job) -> None:
        try:
            self._scheduler.remove_job(job.id)
        except JobLookupError:
            pass  # already gone from the scheduler

    def cancel_all(self) -> int:
        count = 0
        for race_id in list(self._jobs):
            if self.cancel(race_id):
                count += 1
        return count

    # ── Scheduling ──────────────────────────────────────────────────

    async def schedule(self, race: RaceInfo) -> bool:
        """Create or replace the race's job, then run the first collection.

        The first collection is skipped for a grade race that has not yet
        reached its collection start.
        """
        gate = None
        if race.is_grade:
            gate = collection_start(race.start_time, self._tz, self._settings.collection_start_hour)
            log.info(
                "grade_race_collection_start",
                race_id=race.id,
                collection_start=format_local(gate, self._tz),
            )

        previous = self._jobs.pop(race.id, None)
        if previous is not None:
            self._unschedule(previous)

        try:
            job = self._scheduler.add_job(
                self.tick,
                "cron",
                minute=self._settings.race_job_minutes,
                args=[race],
                id=job_id(race.id),
                name=f"Collect odds for {race.name}",
                replace_existing=True,
                coalesce=True,
                max_instances=1,
            )
        except Exception:
            log.exception("race_job_schedule_failed", race_id=race.id)
            return False

        self._jobs[race.id] = job
        log.info(
            "race_job_scheduled",
            race_id=race.id,
            name=race.name,
            start_local=format_local(race.start_time, self._tz),
            minutes=self._settings.race_job_minutes,
        )

        now = self._clock()
        if gate is not None and now < gate:
            log.info(
                "initial_collection_skipped",
                race_id=race.id,
                collection_start=format_local(gate, self._tz),
                now_local=format_local(now, self._tz),
            )
            return True

        log.info("initial_collection", race_id=race.id)
        await self._collect(race)
        return True

    async def tick(self, race: RaceInfo) -> None:
        """Body of a race job firing."""
        try:
            now = self._clock()
            action = decide_tick(
                race,
                now,
                tz=self._tz,
                final_window=timedelta(minutes=self._settings.final_odds_window_minutes),
                start_hour=self._settings.collection_start_hour,
                overnight_suppression=self._settings.overnight_suppression,
                overnight_start_hour=self._settings.overnight_start_hour,
                overnight_end_hour=self._settings.overnight_end_hour,
            )

            if action is TickAction.WAIT:
                log.debug("race_waiting_for_collection_start", race_id=race.id)
            elif action is TickAction.RETIRE:
                await self._retire(race)
            elif action is TickAction.COLLECT:
                minutes_to_post = int((race.start_time - now).total_seconds() // 60)
                log.info("collecting_race_odds", race_id=race.id, minutes_to_post=minutes_to_post)
                await self._collect(race, recover=False)
        except Exception:
            log.exception("race_tick_failed", race_id=race.id)
            await self._health.recover_from_error(f"scheduled odds collection for race {race.id}")

    async def _collect(self, race: RaceInfo, recover: bool = True) -> None:
        try:
            outcome = await self._collector.collect_odds(race.id)
        except Exception:
            if not recover:
                raise
            log.exception("race_collection_failed", race_id=race.id)
            await self._health.recover_from_error(f"odds collection for race {race.id}")
            return
        if outcome.race_closed:
            log.info("race_closed", race_id=race.id, outcome=outcome.value)
            self.cancel(race.id)

    async def _retire(self, race: RaceInfo) -> None:
        """Stop the job, take a last look at the odds and close the race."""
        log.info("race_final_window_over", race_id=race.id)
        self.cancel(race.id)
        try:
            await self._collector.collect_odds(race.id)
        except Exception:
            log.exception("final_collection_failed", race_id=race.id)

        row = await self._db(partial(self._repo.find_race_by_id, race.id))
        if row is not None and row["status"] == RaceStatus.UPCOMING.value:
            await self._db(partial(self._repo.update_race_status, race.id, RaceStatus.DONE))
            log.info("race_marked_done", race_id=race.id)

    # ── Self-healing ────────────────────────────────────────────────

    def prune_stale_jobs(self) -> int:
        """Forget jobs the scheduler no longer holds (no next firing)."""
        stale = [
            race_id for race_id, job in self._jobs.items()
            if self._scheduler.get_job(job.id) is None
        ]
        for race_id in stale:
            log.warning("race_job_stale", race_id=race_id)
            del self._jobs[race_id]
        return len(stale)

    async def cancel_closed_races(self) -> int:
        """Cancel the jobs of tracked races whose stored status is done."""
        if not self._jobs:
            return 0
        rows = await self._db(partial(self._repo.find_races_by_status, RaceStatus.DONE))
        closed = [row["id"] for row in rows if row["id"] in self._jobs]
        for race_id in closed:
            self.cancel(race_id)
        if closed:
            log.info("closed_race_jobs_cancelled", race_ids=closed)
        return len(closed)

    async def restore_missing_jobs(self) -> int:
        """Schedule every upcoming race that has no job.

        The grade flag is not stored, so restored races are treated as grade.
        """
        log.info("restore_jobs_start", active_jobs=self.active_job_count())
        rows = await self._db(partial(self._repo.find_races_by_status, RaceStatus.UPCOMING))
        log.info("upcoming_races_found", count=len(rows))

        restored = 0
        for row in rows:
            if self.has_job(row["id"]):
                continue
            race = RaceInfo.from_row(row, is_grade=True)
            log.info("race_job_restoring", race_id=race.id)
            if await self.schedule(race):
                restored += 1

        log.info("restore_jobs_done", restored=restored, active_jobs=self.active_job_count())
        return restored
