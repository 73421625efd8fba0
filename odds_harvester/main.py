"""Entry point for Odds Harvester."""

from __future__ import annotations

import asyncio
import signal
import sys
from datetime import datetime
from zoneinfo import ZoneInfo

import structlog

from odds_harvester.browser.health import HealthMonitor
from odds_harvester.browser.pool import BrowserPool
from odds_harvester.clock import race_tz, utc_now
from odds_harvester.collection.orchestrator import OddsCollector
from odds_harvester.config import Settings
from odds_harvester.db.migrations import init_db
from odds_harvester.db.repository import Repository
from odds_harvester.polling.cadence import is_race_day
from odds_harvester.polling.race_jobs import CollectionScheduler
from odds_harvester.polling.scheduler import Harvester, create_scheduler, register_maintenance_jobs
from odds_harvester.scraper.discovery import RaceDiscovery
from odds_harvester.scraper.market_scraper import MarketScraper


def local_timestamper(tz: ZoneInfo):
    """Processor stamping events with local time and its UTC offset."""

    def stamp(logger, method_name, event_dict):
        event_dict["timestamp"] = datetime.now(tz).isoformat(timespec="milliseconds")
        return event_dict

    return stamp


def configure_logging(level: str, tz: ZoneInfo) -> None:
    structlog.configure(
        processors=[
            structlog.contextvars.merge_contextvars,
            structlog.processors.add_log_level,
            local_timestamper(tz),
            structlog.dev.ConsoleRenderer() if sys.stderr.isatty() else structlog.processors.JSONRenderer(),
        ],
        wrapper_class=structlog.make_filtering_bound_logger(
            structlog._log_levels.NAME_TO_LEVEL[level.lower()]
        ),
    )


def restart_delay(failures: int, initial: float = 30.0, cap: float = 30 * 60.0) -> float:
    """Exponential backoff: ``initial * 2**(failures - 1)``, capped."""
    return min(initial * 2 ** max(failures - 1, 0), cap)


async def run_once(settings: Settings, started: asyncio.Event | None = None) -> None:
    """Build the service, run until a shutdown signal arrives.

    Raises BrowserUnavailableError if the browser cannot be started.
    """
    log = structlog.get_logger()
    tz = race_tz(settings.race_timezone)

    db = await init_db(settings.db_path)
    repo = Repository(db)
    pool = BrowserPool(settings)
    scheduler = create_scheduler(settings)
    harvester: Harvester | None = None

    try:
        await pool.start()

        health = HealthMonitor(settings, pool)
        scraper = MarketScraper(settings, pool)
        collector = OddsCollector(settings, repo, scraper, pool, health)
        race_jobs = CollectionScheduler(settings, scheduler, repo, collector, health)
        discovery = RaceDiscovery(settings, pool, repo)
        harvester = Harvester(settings, repo, pool, health, discovery, race_jobs)
        register_maintenance_jobs(scheduler, harvester, settings)

        stop_event = asyncio.Event()

        def handle_shutdown(*_: object) -> None:
            log.info("shutdown_requested")
            stop_event.set()

        loop = asyncio.get_running_loop()
        for sig in (signal.SIGINT, signal.SIGTERM):
            try:
                loop.add_signal_handler(sig, handle_shutdown)
            except NotImplementedError:
                # Windows doesn't support add_signal_handler for SIGTERM
                pass

        scheduler.start()
        log.info("scheduler_started", jobs=len(scheduler.get_jobs()))
        if started is not None:
            started.set()

        await harvester.status_report()
        await harvester.restore_jobs()
        if is_race_day(utc_now(), tz, settings.race_days):
            await harvester.race_day_discovery()
        else:
            log.info("not_a_race_day")

        await stop_event.wait()
    finally:
        if harvester is not None:
            harvester.shutdown()
        if scheduler.running:
            scheduler.shutdown(wait=False)
        await pool.close()
        await db.close()
        log.info("shutdown_complete")


async def supervise(settings: Settings) -> int:
    """Restart ``run_once`` after failures; give up after too many in a row."""
    log = structlog.get_logger()
    failures = 0

    while True:
        log.info("starting", version="0.1.0")
        started = asyncio.Event()
        try:
            await run_once(settings, started)
            return 0
        except Exception:
            if started.is_set():
                failures = 0
            failures += 1
            log.exception(
                "fatal_error",
                failure=failures,
                max_failures=settings.max_consecutive_failures,
            )
            if failures >= settings.max_consecutive_failures:
                log.error("too_many_consecutive_failures", failures=failures)
                return 1

        delay = restart_delay(
            failures,
            settings.initial_restart_delay_seconds,
            settings.max_restart_delay_seconds,
        )
        log.info("restarting", delay_seconds=delay)
        await asyncio.sleep(delay)


def main() -> None:
    settings = Settings()
    configure_logging(settings.log_level, race_tz(settings.race_timezone))
    sys.exit(asyncio.run(supervise(settings)))


if __name__ == "__main__":
    main()
