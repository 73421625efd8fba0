"""Data access layer for the odds harvester."""

from __future__ import annotations

from datetime import datetime
from typing import Iterable, Sequence

import aiosqlite
import structlog

from odds_harvester.clock import to_iso, utc_now
from odds_harvester.db.models import (
    CHILD_TABLES,
    MARKET_TABLES,
    WIN_PLACE_BATCH_SIZE,
    MarketTable,
)
from odds_harvester.scraper.schemas import (
    BetType,
    CombinationQuote,
    HorseStatus,
    RaceInfo,
    RaceStatus,
)

log = structlog.get_logger()


def _chunks(rows: Sequence, size: int) -> Iterable[Sequence]:
    for i in range(0, len(rows), size):
        yield rows[i : i + size]


def _market_table(bet_type: BetType | str) -> MarketTable:
    key = BetType(bet_type).value
    try:
        return MARKET_TABLES[key]
    except KeyError:
        raise ValueError(f"not a combination market: {key}") from None


class Repository:
    def __init__(self, db: aiosqlite.Connection) -> None:
        self._db = db

    # ── Races ───────────────────────────────────────────────────────

    async def find_race_by_id(self, race_id: int) -> aiosqlite.Row | None:
        cursor = await self._db.execute("SELECT * FROM races WHERE id = ?", (race_id,))
        return await cursor.fetchone()

    async def find_races_by_status(self, status: RaceStatus) -> list[aiosqlite.Row]:
        sql = "SELECT * FROM races WHERE status = ? ORDER BY start_time ASC, id ASC"
        cursor = await self._db.execute(sql, (RaceStatus(status).value,))
        return list(await cursor.fetchall())

    async def find_races_started_before(self, cutoff: datetime) -> list[aiosqlite.Row]:
        sql = "SELECT * FROM races WHERE start_time < ? ORDER BY start_time ASC"
        cursor = await self._db.execute(sql, (to_iso(cutoff),))
        return list(await cursor.fetchall())

    async def insert_race(self, race: RaceInfo) -> bool:
        """Insert a race as upcoming. Returns False if it already existed."""
        sql = """
            INSERT OR IGNORE INTO races (id, name, venue, start_time, status, created_at)
            VALUES (?, ?, ?, ?, ?, ?)
        """
        cursor = await self._db.execute(
            sql,
            (
                race.id,
                race.name,
                race.venue,
                to_iso(race.start_time),
                RaceStatus.UPCOMING.value,
                to_iso(utc_now()),
            ),
        )
        await self._db.commit()
        return cursor.rowcount > 0

    async def update_race_status(self, race_id: int, status: RaceStatus) -> None:
        await self._db.execute(
            "UPDATE races SET status = ? WHERE id = ?", (RaceStatus(status).value, race_id)
        )
        await self._db.commit()
        log.debug("race_status_updated", race_id=race_id, status=RaceStatus(status).value)

    # ── Horses ──────────────────────────────────────────────────────

    async def find_horse(self, name: str, race_id: int) -> aiosqlite.Row | None:
        sql = "SELECT * FROM horses WHERE name = ? AND race_id = ?"
        cursor = await self._db.execute(sql, (name, race_id))
        return await cursor.fetchone()

    async def insert_horse(
        self, race_id: int, name: str, frame: int, number: int, status: HorseStatus
    ) -> int:
        sql = """
            INSERT INTO horses (name, race_id, frame, number, status, created_at)
            VALUES (?, ?, ?, ?, ?, ?)
        """
        cursor = await self._db.execute(
            sql, (name, race_id, frame, number, HorseStatus(status).value, to_iso(utc_now()))
        )
        await self._db.commit()
        return cursor.lastrowid  # type: ignore[return-value]

    async def update_horse_status(self, horse_id: int, status: HorseStatus) -> None:
        await self._db.execute(
            "UPDATE horses SET status = ? WHERE id = ?", (HorseStatus(status).value, horse_id)
        )
        await self._db.commit()

    # ── Win / place ─────────────────────────────────────────────────

    async def insert_win_odds(
        self, race_id: int, rows: list[tuple[int, float]], captured_at: datetime
    ) -> int:
        """Append (horse_id, odds) rows to the win odds history."""
        if not rows:
            return 0
        sql = """
            INSERT INTO tan_odds_history (horse_id, odds, timestamp, race_id)
            VALUES (?, ?, ?, ?)
        """
        ts = to_iso(captured_at)
        params = [(horse_id, odds, ts, race_id) for horse_id, odds in rows]
        for batch in _chunks(params, WIN_PLACE_BATCH_SIZE):
            await self._db.executemany(sql, batch)
        await self._db.commit()
        return len(params)

    async def upsert_place_odds(
        self, race_id: int, rows: list[tuple[int, float, float]], captured_at: datetime
    ) -> int:
        """Latest-wins (horse_id, min, max) place bands, one row per horse."""
        if not rows:
            return 0
        sql = """
            INSERT INTO fuku_odds (horse_id, odds_min, odds_max, timestamp, race_id)
            VALUES (?, ?, ?, ?, ?)
            ON CONFLICT(race_id, horse_id) DO UPDATE SET
                odds_min = excluded.odds_min,
                odds_max = excluded.odds_max,
                timestamp = excluded.timestamp
        """
        ts = to_iso(captured_at)
        params = [(horse_id, lo, hi, ts, race_id) for horse_id, lo, hi in rows]
        for batch in _chunks(params, WIN_PLACE_BATCH_SIZE):
            await self._db.executemany(sql, batch)
        await self._db.commit()
        return len(params)

    async def get_win_odds_history(self, horse_id: int) -> list[aiosqlite.Row]:
        sql = "SELECT * FROM tan_odds_history WHERE horse_id = ? ORDER BY timestamp ASC, id ASC"
        cursor = await self._db.execute(sql, (horse_id,))
        return list(await cursor.fetchall())

    async def get_place_odds(self, race_id: int) -> list[aiosqlite.Row]:
        cursor = await self._db.execute("SELECT * FROM fuku_odds WHERE race_id = ?", (race_id,))
        return list(await cursor.fetchall())

    # ── Combination markets ─────────────────────────────────────────

    async def find_market_rows(self, bet_type: BetType, race_id: int) -> list[aiosqlite.Row]:
        market = _market_table(bet_type)
        order = ", ".join(market.key_columns)
        sql = f"SELECT * FROM {market.table} WHERE race_id = ? ORDER BY {order}"
        cursor = await self._db.execute(sql, (race_id,))
        return list(await cursor.fetchall())

    async def upsert_market_rows(
        self, bet_type: BetType, quotes: list[CombinationQuote]
    ) -> int:
        """Write one live row per (race, combination key); later captures overwrite."""
        market = _market_table(bet_type)
        columns = (*market.key_columns, *market.value_columns, "timestamp", "race_id")
        placeholders = ", ".join("?" for _ in columns)
        conflict = ", ".join(("race_id", *market.key_columns))
        updates = ", ".join(f"{col} = excluded.{col}" for col in (*market.value_columns, "timestamp"))
        sql = f"""
            INSERT INTO {market.table} ({", ".join(columns)})
            VALUES ({placeholders})
            ON CONFLICT({conflict}) DO UPDATE SET {updates}
        """

        params = []
        for quote in quotes:
            if len(quote.participants) != len(market.key_columns):
                log.warning(
                    "market_row_skipped",
                    bet_type=BetType(bet_type).value,
                    participants=quote.participants,
                )
                continue
            if market.value_columns == ("odds",):
                values: tuple = (quote.odds,)
            else:
                values = (quote.odds_min, quote.odds_max)
            if any(v is None for v in values):
                continue
            params.append((*quote.key, *values, to_iso(quote.captured_at), quote.race_id))

        if not params:
            return 0
        for batch in _chunks(params, market.batch_size):
            await self._db.executemany(sql, batch)
        await self._db.commit()
        log.debug("market_rows_upserted", table=market.table, count=len(params))
        return len(params)

    # ── Cleanup ─────────────────────────────────────────────────────

    async def delete_races_and_children(self, race_ids: list[int]) -> int:
        """Delete races and every child row in a single transaction."""
        if not race_ids:
            return 0
        placeholders = ", ".join("?" for _ in race_ids)
        try:
            for table in CHILD_TABLES:
                await self._db.execute(
                    f"DELETE FROM {table} WHERE race_id IN ({placeholders})", race_ids
                )
            cursor = await self._db.execute(
                f"DELETE FROM races WHERE id IN ({placeholders})", race_ids
            )
            await self._db.commit()
        except Exception:
            await self._db.rollback()
            raise
        return cursor.rowcount
