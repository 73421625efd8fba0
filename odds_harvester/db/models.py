"""SQL schema definitions for the odds harvester."""

from __future__ import annotations

from dataclasses import dataclass

SCHEMA_SQL = """
CREATE TABLE IF NOT EXISTS races (
    id INTEGER PRIMARY KEY,
    name TEXT NOT NULL,
    venue TEXT NOT NULL,
    start_time TEXT NOT NULL,
    status TEXT NOT NULL,
    created_at TEXT NOT NULL
);

CREATE TABLE IF NOT EXISTS horses (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    name TEXT NOT NULL,
    race_id INTEGER NOT NULL,
    frame INTEGER NOT NULL,
    number INTEGER NOT NULL,
    status TEXT NOT NULL DEFAULT 'running',
    created_at TEXT NOT NULL,
    UNIQUE(race_id, name)
);

CREATE TABLE IF NOT EXISTS tan_odds_history (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    horse_id INTEGER NOT NULL,
    odds REAL NOT NULL,
    timestamp TEXT NOT NULL,
    race_id INTEGER NOT NULL
);

CREATE TABLE IF NOT EXISTS fuku_odds (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    horse_id INTEGER NOT NULL,
    odds_min REAL NOT NULL,
    odds_max REAL NOT NULL,
    timestamp TEXT NOT NULL,
    race_id INTEGER NOT NULL,
    UNIQUE(race_id, horse_id)
);

CREATE TABLE IF NOT EXISTS wakuren_odds (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    frame1 INTEGER NOT NULL,
    frame2 INTEGER NOT NULL,
    odds REAL NOT NULL,
    timestamp TEXT NOT NULL,
    race_id INTEGER NOT NULL,
    UNIQUE(race_id, frame1, frame2)
);

CREATE TABLE IF NOT EXISTS umaren_odds (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    horse1 INTEGER NOT NULL,
    horse2 INTEGER NOT NULL,
    odds REAL NOT NULL,
    timestamp TEXT NOT NULL,
    race_id INTEGER NOT NULL,
    UNIQUE(race_id, horse1, horse2)
);

CREATE TABLE IF NOT EXISTS wide_odds (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    horse1 INTEGER NOT NULL,
    horse2 INTEGER NOT NULL,
    odds_min REAL NOT NULL,
    odds_max REAL NOT NULL,
    timestamp TEXT NOT NULL,
    race_id INTEGER NOT NULL,
    UNIQUE(race_id, horse1, horse2)
);

CREATE TABLE IF NOT EXISTS umatan_odds (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    horse1 INTEGER NOT NULL,
    horse2 INTEGER NOT NULL,
    odds REAL NOT NULL,
    timestamp TEXT NOT NULL,
    race_id INTEGER NOT NULL,
    UNIQUE(race_id, horse1, horse2)
);

CREATE TABLE IF NOT EXISTS fuku3_odds (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    horse1 INTEGER NOT NULL,
    horse2 INTEGER NOT NULL,
    horse3 INTEGER NOT NULL,
    odds REAL NOT NULL,
    timestamp TEXT NOT NULL,
    race_id INTEGER NOT NULL,
    UNIQUE(race_id, horse1, horse2, horse3)
);

CREATE TABLE IF NOT EXISTS tan3_odds (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    horse1 INTEGER NOT NULL,
    horse2 INTEGER NOT NULL,
    horse3 INTEGER NOT NULL,
    odds REAL NOT NULL,
    timestamp TEXT NOT NULL,
    race_id INTEGER NOT NULL,
    UNIQUE(race_id, horse1, horse2, horse3)
);

CREATE INDEX IF NOT EXISTS idx_races_status ON races(status);
CREATE INDEX IF NOT EXISTS idx_races_start_time ON races(start_time);
CREATE INDEX IF NOT EXISTS idx_tan_history_horse ON tan_odds_history(horse_id);
CREATE INDEX IF NOT EXISTS idx_tan_history_race ON tan_odds_history(race_id, timestamp);
"""


@dataclass(frozen=True)
class MarketTable:
    table: str
    key_columns: tuple[str, ...]
    value_columns: tuple[str, ...]
    batch_size: int


# Combination markets, keyed by BetType value.
MARKET_TABLES: dict[str, MarketTable] = {
    "wakuren": MarketTable("wakuren_odds", ("frame1", "frame2"), ("odds",), 40),
    "umaren": MarketTable("umaren_odds", ("horse1", "horse2"), ("odds",), 200),
    "wide": MarketTable("wide_odds", ("horse1", "horse2"), ("odds_min", "odds_max"), 200),
    "umatan": MarketTable("umatan_odds", ("horse1", "horse2"), ("odds",), 400),
    "fuku3": MarketTable("fuku3_odds", ("horse1", "horse2", "horse3"), ("odds",), 1000),
    "tan3": MarketTable("tan3_odds", ("horse1", "horse2", "horse3"), ("odds",), 1000),
}

WIN_PLACE_BATCH_SIZE = 20

# Everything hanging off a race, deleted before the race row itself.
CHILD_TABLES: tuple[str, ...] = (
    "tan_odds_history",
    "fuku_odds",
    *(market.table for market in MARKET_TABLES.values()),
    "horses",
)
