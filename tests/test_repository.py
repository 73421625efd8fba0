"""Tests for the SQLite repository."""

from __future__ import annotations

from datetime import timedelta

import pytest

from odds_harvester.db.migrations import init_db
from odds_harvester.scraper.schemas import BetType, CombinationQuote, HorseStatus, RaceStatus
from tests.conftest import NOW, make_race

RACE_ID = 202505020411


def _combo(bet_type, participants, odds=None, odds_min=None, odds_max=None, ordered=False, at=NOW):
    return CombinationQuote(
        race_id=RACE_ID,
        bet_type=bet_type,
        participants=participants,
        captured_at=at,
        odds=odds,
        odds_min=odds_min,
        odds_max=odds_max,
        ordered=ordered,
    )


@pytest.mark.asyncio
async def test_insert_race_is_idempotent(repo):
    race = make_race(RACE_ID)
    assert await repo.insert_race(race) is True
    assert await repo.insert_race(race) is False

    row = await repo.find_race_by_id(RACE_ID)
    assert row["status"] == "upcoming"
    assert row["venue"] == "東京"


@pytest.mark.asyncio
async def test_find_races_by_status(repo):
    await repo.insert_race(make_race(202505020411, start_time=NOW + timedelta(hours=2)))
    await repo.insert_race(make_race(202505020410, start_time=NOW + timedelta(hours=1)))
    await repo.update_race_status(202505020411, RaceStatus.DONE)

    upcoming = await repo.find_races_by_status(RaceStatus.UPCOMING)
    assert [r["id"] for r in upcoming] == [202505020410]
    done = await repo.find_races_by_status(RaceStatus.DONE)
    assert [r["id"] for r in done] == [202505020411]


@pytest.mark.asyncio
async def test_unordered_pair_collapses_to_one_row(repo):
    """Both scrape orders of an unordered pair address the same row."""
    await repo.upsert_market_rows(BetType.QUINELLA, [_combo(BetType.QUINELLA, (7, 3), odds=12.5)])
    await repo.upsert_market_rows(
        BetType.QUINELLA,
        [_combo(BetType.QUINELLA, (3, 7), odds=11.0, at=NOW + timedelta(minutes=5))],
    )

    rows = await repo.find_market_rows(BetType.QUINELLA, RACE_ID)
    assert len(rows) == 1
    assert (rows[0]["horse1"], rows[0]["horse2"]) == (3, 7)
    assert rows[0]["odds"] == 11.0


@pytest.mark.asyncio
async def test_unordered_triple_collapses_to_one_row(repo):
    await repo.upsert_market_rows(BetType.TRIO, [_combo(BetType.TRIO, (9, 1, 4), odds=88.0)])
    await repo.upsert_market_rows(BetType.TRIO, [_combo(BetType.TRIO, (4, 9, 1), odds=80.1)])

    rows = await repo.find_market_rows(BetType.TRIO, RACE_ID)
    assert len(rows) == 1
    assert (rows[0]["horse1"], rows[0]["horse2"], rows[0]["horse3"]) == (1, 4, 9)


@pytest.mark.asyncio
async def test_ordered_pair_keeps_both_orders(repo):
    quotes = [
        _combo(BetType.EXACTA, (3, 7), odds=20.0, ordered=True),
        _combo(BetType.EXACTA, (7, 3), odds=25.0, ordered=True),
    ]
    await repo.upsert_market_rows(BetType.EXACTA, quotes)

    rows = await repo.find_market_rows(BetType.EXACTA, RACE_ID)
    assert [(r["horse1"], r["horse2"]) for r in rows] == [(3, 7), (7, 3)]


@pytest.mark.asyncio
async def test_band_market_upsert(repo):
    await repo.upsert_market_rows(
        BetType.QUINELLA_PLACE,
        [_combo(BetType.QUINELLA_PLACE, (2, 5), odds_min=3.1, odds_max=4.0)],
    )
    await repo.upsert_market_rows(
        BetType.QUINELLA_PLACE,
        [_combo(BetType.QUINELLA_PLACE, (5, 2), odds_min=2.8, odds_max=3.6)],
    )

    rows = await repo.find_market_rows(BetType.QUINELLA_PLACE, RACE_ID)
    assert len(rows) == 1
    assert (rows[0]["odds_min"], rows[0]["odds_max"]) == (2.8, 3.6)


@pytest.mark.asyncio
async def test_rows_with_wrong_arity_or_missing_odds_are_skipped(repo):
    written = await repo.upsert_market_rows(
        BetType.QUINELLA,
        [
            _combo(BetType.QUINELLA, (1, 2, 3), odds=5.0),
            _combo(BetType.QUINELLA, (1, 2), odds=None),
        ],
    )
    assert written == 0
    assert await repo.find_market_rows(BetType.QUINELLA, RACE_ID) == []


@pytest.mark.asyncio
async def test_win_history_appends_and_place_upserts(repo):
    horse_id = await repo.insert_horse(RACE_ID, "テストホース", 1, 1, HorseStatus.RUNNING)

    for i in range(3):
        at = NOW + timedelta(minutes=5 * i)
        await repo.insert_win_odds(RACE_ID, [(horse_id, 3.0 + i)], at)
        await repo.upsert_place_odds(RACE_ID, [(horse_id, 1.2, 1.5 + i)], at)

        history = await repo.get_win_odds_history(horse_id)
        assert len(history) == i + 1

    place = await repo.get_place_odds(RACE_ID)
    assert len(place) == 1
    assert place[0]["odds_max"] == 3.5


@pytest.mark.asyncio
async def test_horse_lookup_and_status(repo):
    horse_id = await repo.insert_horse(RACE_ID, "サンプル", 4, 7, HorseStatus.RUNNING)
    await repo.update_horse_status(horse_id, HorseStatus.SCRATCHED)

    row = await repo.find_horse("サンプル", RACE_ID)
    assert row["id"] == horse_id
    assert row["status"] == "scratched"
    assert await repo.find_horse("サンプル", RACE_ID + 1) is None


@pytest.mark.asyncio
async def test_delete_races_and_children(repo):
    old_id, kept_id = 202505010101, RACE_ID
    await repo.insert_race(make_race(old_id, start_time=NOW - timedelta(days=20)))
    await repo.insert_race(make_race(kept_id))
    for race_id in (old_id, kept_id):
        horse_id = await repo.insert_horse(race_id, "共通", 1, 1, HorseStatus.RUNNING)
        await repo.insert_win_odds(race_id, [(horse_id, 2.0)], NOW)
        await repo.upsert_place_odds(race_id, [(horse_id, 1.1, 1.3)], NOW)
        quote = _combo(BetType.TRIFECTA, (1, 2, 3), odds=100.0, ordered=True)
        quote.race_id = race_id
        await repo.upsert_market_rows(BetType.TRIFECTA, [quote])

    stale = await repo.find_races_started_before(NOW - timedelta(days=14))
    assert [r["id"] for r in stale] == [old_id]

    assert await repo.delete_races_and_children([old_id]) == 1

    assert await repo.find_race_by_id(old_id) is None
    assert await repo.find_horse("共通", old_id) is None
    assert await repo.get_place_odds(old_id) == []
    assert await repo.find_market_rows(BetType.TRIFECTA, old_id) == []

    assert await repo.find_race_by_id(kept_id) is not None
    assert len(await repo.get_place_odds(kept_id)) == 1
    assert len(await repo.find_market_rows(BetType.TRIFECTA, kept_id)) == 1


@pytest.mark.asyncio
async def test_init_db_creates_every_table(tmp_path):
    db = await init_db(str(tmp_path / "odds.db"))
    try:
        async with db.execute("SELECT name FROM sqlite_master WHERE type = 'table'") as cursor:
            tables = {row["name"] for row in await cursor.fetchall()}
        async with db.execute("PRAGMA journal_mode") as cursor:
            mode = (await cursor.fetchone())[0]
    finally:
        await db.close()

    assert {
        "races", "horses", "tan_odds_history", "fuku_odds", "wakuren_odds",
        "umaren_odds", "wide_odds", "umatan_odds", "fuku3_odds", "tan3_odds",
    } <= tables
    assert mode == "wal"
