"""Deterministic race identifiers.

``YEAR ++ VENUE(2) ++ MEETING(2) ++ DAY(2) ++ RACE(2)`` read as an integer,
e.g. 2025 / 東京 / 2回 / 4日 / 11R → ``202505020411``.
"""

from __future__ import annotations

from dataclasses import dataclass

from odds_harvester.errors import UnknownVenueError

VENUE_CODES: dict[str, str] = {
    "札幌": "01",
    "函館": "02",
    "福島": "03",
    "新潟": "04",
    "東京": "05",
    "中山": "06",
    "中京": "07",
    "京都": "08",
    "阪神": "09",
    "小倉": "10",
}

VENUE_NAMES: dict[str, str] = {code: name for name, code in VENUE_CODES.items()}


@dataclass(frozen=True)
class RaceKey:
    year: int
    venue_code: str
    meeting: int
    day: int
    race_number: int

    @property
    def venue(self) -> str:
        try:
            return VENUE_NAMES[self.venue_code]
        except KeyError:
            raise UnknownVenueError(self.venue_code) from None

    @property
    def meeting_label(self) -> str:
        """Link text of the meeting on the odds page, e.g. ``2回東京4日``."""
        return f"{self.meeting}回{self.venue}{self.day}日"


def venue_code(venue: str) -> str:
    try:
        return VENUE_CODES[venue]
    except KeyError:
        raise UnknownVenueError(venue) from None


def build_race_id(year: int, venue: str, meeting: int, day: int, race_number: int) -> int:
    return int(f"{year:04d}{venue_code(venue)}{meeting:02d}{day:02d}{race_number:02d}")


def parse_race_id(race_id: int) -> RaceKey:
    text = f"{race_id:012d}"
    if len(text) != 12:
        raise ValueError(f"malformed race id: {race_id}")
    return RaceKey(
        year=int(text[0:4]),
        venue_code=text[4:6],
        meeting=int(text[6:8]),
        day=int(text[8:10]),
        race_number=int(text[10:12]),
    )
