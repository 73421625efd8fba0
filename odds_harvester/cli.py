"""CLI commands for Odds Harvester (discover, collect, cleanup, etc.)."""

from __future__ import annotations

import argparse
import asyncio
import sys

from odds_harvester.browser.health import HealthMonitor
from odds_harvester.browser.pool import BrowserPool
from odds_harvester.clock import format_local, race_tz
from odds_harvester.collection.orchestrator import OddsCollector
from odds_harvester.config import Settings
from odds_harvester.db.migrations import init_db
from odds_harvester.db.repository import Repository
from odds_harvester.main import configure_logging
from odds_harvester.polling.race_jobs import CollectionScheduler
from odds_harvester.polling.scheduler import Harvester, create_scheduler
from odds_harvester.scraper.discovery import RaceDiscovery
from odds_harvester.scraper.market_scraper import MarketScraper


def _settings() -> Settings:
    settings = Settings()
    configure_logging(settings.log_level, race_tz(settings.race_timezone))
    return settings


def _harvester(settings: Settings, repo: Repository, pool: BrowserPool) -> Harvester:
    health = HealthMonitor(settings, pool)
    collector = OddsCollector(settings, repo, MarketScraper(settings, pool), pool, health)
    race_jobs = CollectionScheduler(settings, create_scheduler(settings), repo, collector, health)
    discovery = RaceDiscovery(settings, pool, repo)
    return Harvester(settings, repo, pool, health, discovery, race_jobs)


async def run_discover() -> None:
    settings = _settings()
    tz = race_tz(settings.race_timezone)

    db = await init_db(settings.db_path)
    pool = BrowserPool(settings)
    try:
        races = await RaceDiscovery(settings, pool, Repository(db)).get_today_grade_races()
        if not races:
            print("No upcoming grade races found.")
        for race in races:
            print(f"  {race.id}  {format_local(race.start_time, tz)}  {race.venue}  {race.name}")
    finally:
        await pool.close()
        await db.close()


async def run_status() -> None:
    settings = _settings()

    db = await init_db(settings.db_path)
    pool = BrowserPool(settings)
    try:
        print(await _harvester(settings, Repository(db), pool).generate_status_report())
    finally:
        await db.close()


async def run_collect(race_id: int) -> None:
    settings = _settings()

    db = await init_db(settings.db_path)
    repo = Repository(db)
    pool = BrowserPool(settings)
    try:
        await pool.start()
        health = HealthMonitor(settings, pool)
        collector = OddsCollector(settings, repo, MarketScraper(settings, pool), pool, health)
        outcome = await collector.collect_odds(race_id)
        print(f"Race {race_id}: {outcome.value}")
    finally:
        await pool.close()
        await db.close()


async def run_cleanup(days: int | None) -> None:
    settings = _settings()

    db = await init_db(settings.db_path)
    pool = BrowserPool(settings)
    try:
        deleted = await _harvester(settings, Repository(db), pool).cleanup_old_races(days)
        print(f"Deleted {deleted} race(s) and their odds.")
    finally:
        await db.close()


def cli() -> None:
    parser = argparse.ArgumentParser(prog="odds-harvester-tools", description="Odds Harvester CLI tools")
    sub = parser.add_subparsers(dest="command")

    sub.add_parser("discover", help="List today's and tomorrow's grade races")
    sub.add_parser("status", help="Print a status report")

    co = sub.add_parser("collect", help="Run one collection pass for a race")
    co.add_argument("race_id", type=int, help="12-digit race id, e.g. 202505020811")

    cl = sub.add_parser("cleanup", help="Delete old races and their odds")
    cl.add_argument("--days", type=int, default=None, help="Retention in days (default from settings)")

    args = parser.parse_args()

    if args.command == "discover":
        asyncio.run(run_discover())
    elif args.command == "status":
        asyncio.run(run_status())
    elif args.command == "collect":
        asyncio.run(run_collect(args.race_id))
    elif args.command == "cleanup":
        asyncio.run(run_cleanup(args.days))
    else:
        parser.print_help()
        sys.exit(1)


if __name__ == "__main__":
    cli()
