"""Tests for the per-race collection pass."""

from __future__ import annotations

import asyncio
from datetime import timedelta
from unittest.mock import AsyncMock, MagicMock

import pytest
from playwright.async_api import Error as PlaywrightError

from odds_harvester.collection.orchestrator import CollectionOutcome, MarketResult, OddsCollector
from odds_harvester.errors import MarketUnavailableError
from odds_harvester.scraper.schemas import BET_TYPES, BetType, CombinationQuote, RaceStatus
from tests.conftest import NOW, make_race

RACE_ID = 202505020411


class ScriptedScraper:
    """Per bet type, a queue of results: a list of quotes or an exception."""

    def __init__(self, script: dict | None = None) -> None:
        self.script = {bt: list(steps) for bt, steps in (script or {}).items()}
        self.calls: list[BetType] = []

    async def scrape_market(self, race_id, bet_type):
        self.calls.append(bet_type)
        steps = self.script.get(bet_type)
        result = steps.pop(0) if steps else []
        if isinstance(result, Exception):
            raise result
        return result


def _pool(threshold_reached: bool = False) -> MagicMock:
    pool = MagicMock()
    pool.reset_if_due = AsyncMock(return_value=False)
    pool.reset = AsyncMock(return_value=True)
    pool.record_error = MagicMock(return_value=1)
    pool.error_threshold_reached = MagicMock(return_value=threshold_reached)
    return pool


def _health(healthy: bool = True) -> MagicMock:
    health = MagicMock()
    health.health_check = AsyncMock(return_value=healthy)
    health.recover_from_error = AsyncMock(return_value=True)
    return health


def _collector(settings, repo, clock, scraper, pool=None, health=None) -> OddsCollector:
    return OddsCollector(
        settings, repo, scraper, pool or _pool(), health or _health(), clock=clock
    )


@pytest.mark.asyncio
async def test_started_race_gets_final_pass_and_is_marked_done(settings, repo, clock):
    await repo.insert_race(make_race(RACE_ID, start_time=NOW - timedelta(minutes=10)))
    scraper = ScriptedScraper()

    outcome = await _collector(settings, repo, clock, scraper).collect_odds(RACE_ID)

    assert outcome is CollectionOutcome.FINALIZED
    assert outcome.race_closed
    assert scraper.calls == list(BET_TYPES)
    row = await repo.find_race_by_id(RACE_ID)
    assert row["status"] == RaceStatus.DONE.value


@pytest.mark.asyncio
async def test_upcoming_race_stays_upcoming(settings, repo, clock):
    await repo.insert_race(make_race(RACE_ID))
    scraper = ScriptedScraper()

    outcome = await _collector(settings, repo, clock, scraper).collect_odds(RACE_ID)

    assert outcome is CollectionOutcome.COLLECTED
    assert not outcome.race_closed
    row = await repo.find_race_by_id(RACE_ID)
    assert row["status"] == RaceStatus.UPCOMING.value


@pytest.mark.asyncio
async def test_missing_and_done_races_are_noops(settings, repo, clock):
    scraper = ScriptedScraper()
    collector = _collector(settings, repo, clock, scraper)
    assert await collector.collect_odds(RACE_ID) is CollectionOutcome.MISSING

    await repo.insert_race(make_race(RACE_ID))
    await repo.update_race_status(RACE_ID, RaceStatus.DONE)
    assert await collector.collect_odds(RACE_ID) is CollectionOutcome.ALREADY_DONE
    assert scraper.calls == []


@pytest.mark.asyncio
async def test_timeout_on_third_market_does_not_stop_the_pass(settings, repo, clock):
    third = BET_TYPES[2]
    scraper = ScriptedScraper({third: [MarketUnavailableError(RACE_ID, third.value)]})

    results = await _collector(settings, repo, clock, scraper).run_pass(RACE_ID)

    # not retried, and the four after it still ran
    assert scraper.calls == list(BET_TYPES)
    assert results[third] is MarketResult.UNAVAILABLE
    assert all(results[bt] is MarketResult.EMPTY for bt in BET_TYPES[3:])


@pytest.mark.asyncio
async def test_generic_failure_is_retried_up_to_limit(settings, repo, clock):
    boom = RuntimeError("navigation failed")
    scraper = ScriptedScraper({BetType.WIN_PLACE: [boom, boom, boom, boom]})

    results = await _collector(settings, repo, clock, scraper).run_pass(RACE_ID)

    assert scraper.calls.count(BetType.WIN_PLACE) == settings.max_retries
    assert results[BetType.WIN_PLACE] is MarketResult.FAILED
    assert scraper.calls[settings.max_retries:] == list(BET_TYPES[1:])


@pytest.mark.asyncio
async def test_success_after_retry_is_saved(settings, repo, clock):
    quotes = [
        CombinationQuote(RACE_ID, BetType.QUINELLA, (6, 2), NOW, odds=9.9),
        CombinationQuote(RACE_ID, BetType.QUINELLA, (2, 8), NOW, odds=15.0),
    ]
    scraper = ScriptedScraper({BetType.QUINELLA: [RuntimeError("flaky"), quotes]})

    results = await _collector(settings, repo, clock, scraper).run_pass(RACE_ID)

    assert results[BetType.QUINELLA] is MarketResult.SAVED
    assert scraper.calls.count(BetType.QUINELLA) == 2
    rows = await repo.find_market_rows(BetType.QUINELLA, RACE_ID)
    assert [(r["horse1"], r["horse2"]) for r in rows] == [(2, 6), (2, 8)]


@pytest.mark.asyncio
async def test_browser_errors_force_reset_at_threshold(settings, repo, clock):
    pool = _pool(threshold_reached=True)
    scraper = ScriptedScraper({BetType.WIN_PLACE: [PlaywrightError("Target closed")]})

    await _collector(settings, repo, clock, scraper, pool=pool).run_pass(RACE_ID)

    pool.record_error.assert_called_once()
    pool.reset.assert_awaited_once()


@pytest.mark.asyncio
async def test_non_browser_errors_are_not_counted(settings, repo, clock):
    pool = _pool()
    scraper = ScriptedScraper({BetType.WIN_PLACE: [ValueError("bad html")]})

    await _collector(settings, repo, clock, scraper, pool=pool).run_pass(RACE_ID)

    pool.record_error.assert_not_called()
    pool.reset.assert_not_awaited()


@pytest.mark.asyncio
async def test_failed_probe_triggers_recovery(settings, repo, clock):
    settings.probe_before_collect = True
    health = _health(healthy=False)
    await repo.insert_race(make_race(RACE_ID))

    await _collector(settings, repo, clock, ScriptedScraper(), health=health).collect_odds(RACE_ID)

    health.recover_from_error.assert_awaited_once()


@pytest.mark.asyncio
async def test_concurrent_collections_are_bounded(settings, repo, clock):
    settings.max_concurrent_collections = 2

    class SlowScraper:
        active = 0
        peak = 0

        async def scrape_market(self, race_id, bet_type):
            SlowScraper.active += 1
            SlowScraper.peak = max(SlowScraper.peak, SlowScraper.active)
            await asyncio.sleep(0.001)
            SlowScraper.active -= 1
            return []

    race_ids = [RACE_ID + i for i in range(5)]
    for race_id in race_ids:
        await repo.insert_race(make_race(race_id))
    collector = _collector(settings, repo, clock, SlowScraper())

    outcomes = await asyncio.gather(*(collector.collect_odds(r) for r in race_ids))

    assert outcomes == [CollectionOutcome.COLLECTED] * 5
    assert SlowScraper.peak == 2
    assert collector.active == 0
