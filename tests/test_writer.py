"""Tests for routing quotes to their tables."""

from __future__ import annotations

from datetime import timedelta

import pytest

from odds_harvester.collection.writer import OddsWriter
from odds_harvester.scraper.schemas import BetType, CombinationQuote, WinPlaceQuote
from tests.conftest import NOW

RACE_ID = 202505020411


def _horse(number, name, win=None, band=(None, None), scratched=False, at=NOW):
    return WinPlaceQuote(
        race_id=RACE_ID,
        horse_number=number,
        horse_name=name,
        frame=(number + 1) // 2,
        win_odds=win,
        place_min=band[0],
        place_max=band[1],
        captured_at=at,
        scratched=scratched,
    )


@pytest.mark.asyncio
async def test_win_place_creates_horses_and_appends_history(settings, repo):
    writer = OddsWriter(settings, repo)

    for i in range(2):
        at = NOW + timedelta(minutes=5 * i)
        await writer.save(
            BetType.WIN_PLACE,
            RACE_ID,
            [
                _horse(1, "アルファ", win=3.0 + i, band=(1.1, 1.4), at=at),
                _horse(2, "ブラボー", win=8.0, band=(2.0, 3.0), at=at),
            ],
        )

    alpha = await repo.find_horse("アルファ", RACE_ID)
    assert alpha["status"] == "running"
    assert [r["odds"] for r in await repo.get_win_odds_history(alpha["id"])] == [3.0, 4.0]
    assert len(await repo.get_place_odds(RACE_ID)) == 2


@pytest.mark.asyncio
async def test_scratched_horse_gets_status_but_no_odds(settings, repo):
    writer = OddsWriter(settings, repo)
    await writer.save(BetType.WIN_PLACE, RACE_ID, [_horse(3, "チャーリー", win=5.0, band=(1.5, 2.0))])

    await writer.save(BetType.WIN_PLACE, RACE_ID, [_horse(3, "チャーリー", scratched=True)])

    horse = await repo.find_horse("チャーリー", RACE_ID)
    assert horse["status"] == "scratched"
    assert len(await repo.get_win_odds_history(horse["id"])) == 1


@pytest.mark.asyncio
async def test_combination_quotes_are_upserted(settings, repo):
    writer = OddsWriter(settings, repo)
    quote = CombinationQuote(RACE_ID, BetType.BRACKET_QUINELLA, (5, 2), NOW, odds=7.7)

    assert await writer.save(BetType.BRACKET_QUINELLA, RACE_ID, [quote]) == 1
    assert await writer.save(BetType.BRACKET_QUINELLA, RACE_ID, [quote]) == 1

    rows = await repo.find_market_rows(BetType.BRACKET_QUINELLA, RACE_ID)
    assert [(r["frame1"], r["frame2"]) for r in rows] == [(2, 5)]
