"""Exception types shared across the harvester."""

from __future__ import annotations


class HarvesterError(Exception):
    """Base class for harvester failures."""


class BrowserUnavailableError(HarvesterError):
    """The browser could not be launched or is not running."""


class MarketUnavailableError(HarvesterError):
    """A market page timed out; the bet type is treated as not offered."""

    def __init__(self, race_id: int, bet_type: str) -> None:
        super().__init__(f"{bet_type} odds unavailable for race {race_id}")
        self.race_id = race_id
        self.bet_type = bet_type


class UnknownVenueError(HarvesterError):
    """A venue name or code with no known mapping."""
