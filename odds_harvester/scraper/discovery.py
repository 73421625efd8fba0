"""Discovery of today's and tomorrow's graded races from the odds calendar."""

from __future__ import annotations

from datetime import datetime
from functools import partial
from typing import Callable

import structlog

from odds_harvester.browser.pool import BrowserPool
from odds_harvester.clock import format_local, local_to_utc, race_tz, utc_now
from odds_harvester.config import Settings
from odds_harvester.db.repository import Repository
from odds_harvester.db.retry import with_db_retry
from odds_harvester.errors import BrowserUnavailableError, UnknownVenueError
from odds_harvester.scraper.market_scraper import open_odds_calendar
from odds_harvester.scraper.parsers import (
    Meeting,
    RaceRow,
    parse_meetings,
    parse_race_rows,
    parse_start_time,
)
from odds_harvester.scraper.race_ids import build_race_id
from odds_harvester.scraper.schemas import RaceInfo, RaceStatus

log = structlog.get_logger()


class RaceDiscovery:
    def __init__(
        self,
        settings: Settings,
        pool: BrowserPool,
        repo: Repository,
        clock: Callable[[], datetime] = utc_now,
    ) -> None:
        self._settings = settings
        self._pool = pool
        self._repo = repo
        self._clock = clock
        self._tz = race_tz(settings.race_timezone)

    async def _db(self, operation):
        return await with_db_retry(
            operation,
            attempts=self._settings.max_retries,
            delay=self._settings.retry_delay_seconds,
        )

    async def get_today_grade_races(self) -> list[RaceInfo]:
        """Graded races for today and tomorrow that have not started yet.

        Races already shown as started are marked done instead of returned.
        """
        await self._pool.reset_if_due()
        if not self._pool.is_running:
            raise BrowserUnavailableError("browser initialization failed")

        today = self._clock().astimezone(self._tz).date()
        races: list[RaceInfo] = []

        async with self._pool.context() as context:
            page = await context.new_page()
            try:
                await open_odds_calendar(page, self._settings.base_url)
                meetings = parse_meetings(await page.content(), today)
                log.info("meetings_found", count=len(meetings), today=today.isoformat())

                for meeting in meetings:
                    try:
                        await open_odds_calendar(page, self._settings.keiba_url)
                        await page.get_by_role("link", name=meeting.label).click()
                        await page.wait_for_load_state("networkidle")
                        rows = parse_race_rows(await page.content())
                    except Exception:
                        log.exception("meeting_scrape_failed", meeting=meeting.label)
                        continue
                    races.extend(await self.build_race_infos(meeting, rows))
            finally:
                await page.close()

        log.info("grade_races_found", count=len(races), race_ids=[r.id for r in races])
        return races

    async def build_race_infos(self, meeting: Meeting, rows: list[RaceRow]) -> list[RaceInfo]:
        races: list[RaceInfo] = []
        for row in rows:
            if not row.is_grade:
                continue
            try:
                race_id = build_race_id(
                    meeting.race_date.year, meeting.venue, meeting.meeting, meeting.day,
                    row.race_number,
                )
            except UnknownVenueError:
                log.warning("unknown_venue", venue=meeting.venue, meeting=meeting.label)
                continue

            if row.post_time_passed:
                log.info("race_already_started", race_id=race_id, name=row.name)
                await self._db(partial(self._repo.update_race_status, race_id, RaceStatus.DONE))
                continue

            hm = parse_start_time(row.time_text)
            if hm is None:
                log.warning("start_time_unparsed", race_id=race_id, text=row.time_text)
                continue
            start_time = local_to_utc(meeting.race_date, hm[0], hm[1], self._tz)

            races.append(
                RaceInfo(
                    id=race_id,
                    name=row.name or f"{meeting.venue}{row.race_number}R",
                    venue=meeting.venue,
                    start_time=start_time,
                    is_grade=True,
                )
            )
            log.info(
                "race_found",
                race_id=race_id,
                name=row.name,
                start_local=format_local(start_time, self._tz),
            )
        return races

    async def register_race(self, race: RaceInfo) -> bool:
        """Insert the race as upcoming unless it is already known."""
        inserted = await self._db(partial(self._repo.insert_race, race))
        if inserted:
            log.info("race_registered", race_id=race.id, name=race.name)
        return inserted
