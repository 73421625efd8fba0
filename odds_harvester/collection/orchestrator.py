"""One collection pass over every market of a race."""

from __future__ import annotations

import asyncio
from datetime import datetime
from enum import Enum
from functools import partial
from typing import Callable

import structlog
from playwright.async_api import Error as PlaywrightError

from odds_harvester.browser.health import HealthMonitor
from odds_harvester.browser.pool import BrowserPool
from odds_harvester.clock import format_local, parse_utc, race_tz, utc_now
from odds_harvester.collection.writer import OddsWriter
from odds_harvester.config import Settings
from odds_harvester.db.repository import Repository
from odds_harvester.db.retry import with_db_retry
from odds_harvester.errors import BrowserUnavailableError, MarketUnavailableError
from odds_harvester.scraper.market_scraper import MarketScraper
from odds_harvester.scraper.schemas import BET_TYPES, BetType, RaceStatus

log = structlog.get_logger()

BROWSER_FAILURES = (PlaywrightError, BrowserUnavailableError)


class CollectionOutcome(str, Enum):
    MISSING = "missing"
    ALREADY_DONE = "already_done"
    COLLECTED = "collected"
    FINALIZED = "finalized"

    @property
    def race_closed(self) -> bool:
        """No further collection will happen for this race."""
        return self is not CollectionOutcome.COLLECTED


class MarketResult(str, Enum):
    SAVED = "saved"
    EMPTY = "empty"
    UNAVAILABLE = "unavailable"
    FAILED = "failed"


class OddsCollector:
    """Collects every market of a race, at most N races at a time."""

    def __init__(
        self,
        settings: Settings,
        repo: Repository,
        scraper: MarketScraper,
        pool: BrowserPool,
        health: HealthMonitor,
        clock: Callable[[], datetime] = utc_now,
    ) -> None:
        self._settings = settings
        self._repo = repo
        self._scraper = scraper
        self._pool = pool
        self._health = health
        self._clock = clock
        self._tz = race_tz(settings.race_timezone)
        self._writer = OddsWriter(settings, repo)
        self._semaphore = asyncio.Semaphore(settings.max_concurrent_collections)
        self._active = 0

    @property
    def active(self) -> int:
        return self._active

    async def _db(self, operation):
        return await with_db_retry(
            operation,
            attempts=self._settings.max_retries,
            delay=self._settings.retry_delay_seconds,
        )

    async def collect_odds(self, race_id: int) -> CollectionOutcome:
        """Run one pass for the race; the pass after post time also closes it."""
        if self._semaphore.locked():
            log.info("collection_queued", race_id=race_id)
        async with self._semaphore:
            self._active += 1
            try:
                return await self._collect(race_id)
            finally:
                self._active -= 1

    async def _collect(self, race_id: int) -> CollectionOutcome:
        await self._pool.reset_if_due()
        if self._settings.probe_before_collect and not await self._health.health_check():
            log.error("health_check_failed", race_id=race_id)
            await self._health.recover_from_error(f"collect_odds for race {race_id}")

        race = await self._db(partial(self._repo.find_race_by_id, race_id))
        if race is None:
            log.warning("race_not_found", race_id=race_id)
            return CollectionOutcome.MISSING
        if race["status"] == RaceStatus.DONE.value:
            return CollectionOutcome.ALREADY_DONE

        now = self._clock()
        start_time = parse_utc(race["start_time"])
        log.info(
            "collect_odds_start",
            race_id=race_id,
            now_local=format_local(now, self._tz),
            start_local=format_local(start_time, self._tz),
        )

        if start_time < now:
            log.info("race_started_collecting_final_odds", race_id=race_id)
            await self.run_pass(race_id, final=True)
            await self._db(partial(self._repo.update_race_status, race_id, RaceStatus.DONE))
            log.info("race_marked_done", race_id=race_id)
            return CollectionOutcome.FINALIZED

        await self.run_pass(race_id)
        return CollectionOutcome.COLLECTED

    async def run_pass(self, race_id: int, final: bool = False) -> dict[BetType, MarketResult]:
        """Markets are processed strictly one after another."""
        results: dict[BetType, MarketResult] = {}
        for bet_type in BET_TYPES:
            results[bet_type] = await self._collect_market(race_id, bet_type, final)
        log.info(
            "collection_pass_done",
            race_id=race_id,
            final=final,
            results={bt.value: r.value for bt, r in results.items()},
        )
        return results

    async def _collect_market(self, race_id: int, bet_type: BetType, final: bool) -> MarketResult:
        attempts = self._settings.max_retries
        for attempt in range(1, attempts + 1):
            log.info(
                "market_collect_attempt",
                race_id=race_id,
                bet_type=bet_type.value,
                attempt=attempt,
                final=final,
            )
            try:
                quotes = await self._scraper.scrape_market(race_id, bet_type)
                if not quotes:
                    log.info("market_empty", race_id=race_id, bet_type=bet_type.value)
                    return MarketResult.EMPTY
                saved = await self._writer.save(bet_type, race_id, quotes)
                log.info("odds_saved", race_id=race_id, bet_type=bet_type.value, rows=saved)
                return MarketResult.SAVED
            except MarketUnavailableError:
                log.warning("market_unavailable", race_id=race_id, bet_type=bet_type.value)
                return MarketResult.UNAVAILABLE
            except Exception as exc:
                log.exception(
                    "market_collect_failed",
                    race_id=race_id,
                    bet_type=bet_type.value,
                    attempt=attempt,
                )
                if isinstance(exc, BROWSER_FAILURES):
                    self._pool.record_error(exc)
                    if self._pool.error_threshold_reached():
                        log.warning("browser_error_threshold_reached", race_id=race_id)
                        await self._pool.reset()
                if attempt < attempts:
                    await asyncio.sleep(self._settings.retry_delay_seconds)

        log.error("market_retries_exhausted", race_id=race_id, bet_type=bet_type.value)
        return MarketResult.FAILED
