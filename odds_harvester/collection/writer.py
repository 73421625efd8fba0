"""Routes scraped quotes to the matching store update strategy."""

from __future__ import annotations

from functools import partial
from typing import Sequence

import structlog

from odds_harvester.config import Settings
from odds_harvester.db.repository import Repository
from odds_harvester.db.retry import with_db_retry
from odds_harvester.scraper.schemas import (
    BetType,
    CombinationQuote,
    HorseStatus,
    OddsQuote,
    WinPlaceQuote,
)

log = structlog.get_logger()


class OddsWriter:
    """Win odds are appended as history; everything else is upserted by key."""

    def __init__(self, settings: Settings, repo: Repository) -> None:
        self._settings = settings
        self._repo = repo

    async def _db(self, operation):
        return await with_db_retry(
            operation,
            attempts=self._settings.max_retries,
            delay=self._settings.retry_delay_seconds,
        )

    async def save(self, bet_type: BetType, race_id: int, quotes: Sequence[OddsQuote]) -> int:
        if BetType(bet_type) is BetType.WIN_PLACE:
            return await self.save_win_place(race_id, [q for q in quotes if isinstance(q, WinPlaceQuote)])
        combos = [q for q in quotes if isinstance(q, CombinationQuote)]
        return await self._db(partial(self._repo.upsert_market_rows, BetType(bet_type), combos))

    async def save_win_place(self, race_id: int, quotes: list[WinPlaceQuote]) -> int:
        if not quotes:
            return 0

        horse_ids: dict[int, int] = {}
        for quote in quotes:
            horse_ids[quote.horse_number] = await self._db(
                partial(self._reconcile_horse, race_id, quote)
            )

        captured_at = quotes[0].captured_at
        win_rows = [
            (horse_ids[q.horse_number], q.win_odds)
            for q in quotes
            if not q.scratched and q.win_odds is not None
        ]
        place_rows = [
            (horse_ids[q.horse_number], q.place_min, q.place_max)
            for q in quotes
            if not q.scratched and q.place_min is not None and q.place_max is not None
        ]
        await self._db(partial(self._repo.insert_win_odds, race_id, win_rows, captured_at))
        await self._db(partial(self._repo.upsert_place_odds, race_id, place_rows, captured_at))
        log.debug("win_place_saved", race_id=race_id, win=len(win_rows), place=len(place_rows))
        return len(win_rows)

    async def _reconcile_horse(self, race_id: int, quote: WinPlaceQuote) -> int:
        """Insert a newly seen horse; flip a known one to scratched when shown so."""
        existing = await self._repo.find_horse(quote.horse_name, race_id)
        if existing is None:
            status = HorseStatus.SCRATCHED if quote.scratched else HorseStatus.RUNNING
            return await self._repo.insert_horse(
                race_id, quote.horse_name, quote.frame, quote.horse_number, status
            )
        if quote.scratched and existing["status"] != HorseStatus.SCRATCHED.value:
            await self._repo.update_horse_status(existing["id"], HorseStatus.SCRATCHED)
            log.info("horse_scratched", race_id=race_id, horse=quote.horse_name)
        return existing["id"]
