"""Per-bet-type page configuration."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from typing import Callable, Sequence

from odds_harvester.scraper import parsers
from odds_harvester.scraper.schemas import BetType, OddsQuote

Parser = Callable[[str, int, datetime], Sequence[OddsQuote]]


@dataclass(frozen=True)
class MarketSpec:
    bet_type: BetType
    tab_name: str
    table_selector: str
    parser: Parser
    runners: int
    ordered: bool


MARKETS: dict[BetType, MarketSpec] = {
    BetType.WIN_PLACE: MarketSpec(
        BetType.WIN_PLACE, "単勝・複勝", "table.basic.narrow-xy.tanpuku",
        parsers.parse_win_place, 1, False,
    ),
    BetType.BRACKET_QUINELLA: MarketSpec(
        BetType.BRACKET_QUINELLA, "枠連", "table.basic.narrow-xy.waku",
        parsers.parse_bracket_quinella, 2, False,
    ),
    BetType.QUINELLA: MarketSpec(
        BetType.QUINELLA, "馬連", "table.basic.narrow-xy.umaren",
        parsers.parse_quinella, 2, False,
    ),
    BetType.QUINELLA_PLACE: MarketSpec(
        BetType.QUINELLA_PLACE, "ワイド", "table.basic.narrow-xy.wide",
        parsers.parse_quinella_place, 2, False,
    ),
    BetType.EXACTA: MarketSpec(
        BetType.EXACTA, "馬単", "table.basic.narrow-xy.umatan",
        parsers.parse_exacta, 2, True,
    ),
    BetType.TRIO: MarketSpec(
        BetType.TRIO, "3連複", "table.basic.narrow-xy.fuku3",
        parsers.parse_trio, 3, False,
    ),
    BetType.TRIFECTA: MarketSpec(
        BetType.TRIFECTA, "3連単", "table.basic.narrow-xy.tan3",
        parsers.parse_trifecta, 3, True,
    ),
}
