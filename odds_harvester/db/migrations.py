"""Opening the odds database and creating its tables."""

from __future__ import annotations

import aiosqlite
import structlog

from odds_harvester.db.models import SCHEMA_SQL

log = structlog.get_logger()


async def init_db(db_path: str) -> aiosqlite.Connection:
    """Open the odds store and make sure every table exists.

    The schema holds races, their horses, win-odds history, the latest place
    band and one upsert table per combination bet type. WAL mode lets the
    status report read while a collection pass is writing.
    """
    db = await aiosqlite.connect(db_path)
    db.row_factory = aiosqlite.Row
    await db.execute("PRAGMA journal_mode=WAL")
    await db.executescript(SCHEMA_SQL)
    await db.commit()
    log.info("odds_database_ready", path=db_path)
    return db
