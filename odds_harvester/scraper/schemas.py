"""Domain types for races and scraped odds."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Mapping

from odds_harvester.clock import parse_utc


class RaceStatus(str, Enum):
    UPCOMING = "upcoming"
    DONE = "done"


class HorseStatus(str, Enum):
    RUNNING = "running"
    SCRATCHED = "scratched"


class BetType(str, Enum):
    WIN_PLACE = "tanpuku"
    BRACKET_QUINELLA = "wakuren"
    QUINELLA = "umaren"
    QUINELLA_PLACE = "wide"
    EXACTA = "umatan"
    TRIO = "fuku3"
    TRIFECTA = "tan3"


# Collection order within one pass.
BET_TYPES: tuple[BetType, ...] = tuple(BetType)


@dataclass(frozen=True)
class RaceInfo:
    """Scheduler input. ``is_grade`` is never persisted."""

    id: int
    name: str
    venue: str
    start_time: datetime  # UTC
    is_grade: bool

    @classmethod
    def from_row(cls, row: Mapping[str, Any], is_grade: bool = True) -> RaceInfo:
        return cls(
            id=row["id"],
            name=row["name"],
            venue=row["venue"],
            start_time=parse_utc(row["start_time"]),
            is_grade=is_grade,
        )


@dataclass
class WinPlaceQuote:
    race_id: int
    horse_number: int
    horse_name: str
    frame: int
    win_odds: float | None
    place_min: float | None
    place_max: float | None
    captured_at: datetime
    scratched: bool = False


@dataclass
class CombinationQuote:
    race_id: int
    bet_type: BetType
    participants: tuple[int, ...]
    captured_at: datetime
    odds: float | None = None
    odds_min: float | None = None
    odds_max: float | None = None
    ordered: bool = field(default=False)

    @property
    def key(self) -> tuple[int, ...]:
        """Participants as stored: unordered combinations are sorted."""
        if self.ordered:
            return self.participants
        return tuple(sorted(self.participants))


OddsQuote = WinPlaceQuote | CombinationQuote
