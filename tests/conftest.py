"""Shared test fixtures."""

from __future__ import annotations

import asyncio
from datetime import datetime, timedelta, timezone
from unittest.mock import AsyncMock, MagicMock

import pytest
import aiosqlite

from odds_harvester.config import Settings
from odds_harvester.db.models import SCHEMA_SQL
from odds_harvester.db.repository import Repository
from odds_harvester.scraper.schemas import RaceInfo

# Saturday 2025-05-03 06:00 UTC = 15:00 JST
NOW = datetime(2025, 5, 3, 6, 0, tzinfo=timezone.utc)


class FakeClock:
    """Settable clock passed wherever a component takes ``clock=``."""

    def __init__(self, now: datetime = NOW) -> None:
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> None:
        self.now += timedelta(**kwargs)


def make_race(
    race_id: int = 202505020411,
    start_time: datetime = NOW + timedelta(hours=1),
    is_grade: bool = True,
    name: str = "天皇賞(春)",
    venue: str = "東京",
) -> RaceInfo:
    return RaceInfo(id=race_id, name=name, venue=venue, start_time=start_time, is_grade=is_grade)


def fake_context() -> MagicMock:
    """Browser context whose pages load any URL."""
    page = MagicMock()
    page.goto = AsyncMock()
    page.wait_for_load_state = AsyncMock()
    context = MagicMock()
    context.new_page = AsyncMock(return_value=page)
    context.close = AsyncMock()
    return context


def fake_browser() -> MagicMock:
    browser = MagicMock()
    browser.new_context = AsyncMock(side_effect=lambda **_: fake_context())
    browser.close = AsyncMock()
    return browser


class FakeLauncher:
    """Stands in for the Chromium launcher and counts launches."""

    def __init__(self, delay: float = 0.0, fail: bool = False) -> None:
        self.delay = delay
        self.fail = fail
        self.browsers: list[MagicMock] = []

    @property
    def launches(self) -> int:
        return len(self.browsers)

    async def __call__(self) -> MagicMock:
        if self.fail:
            raise RuntimeError("chromium missing")
        browser = fake_browser()
        self.browsers.append(browser)
        await asyncio.sleep(self.delay)
        return browser


@pytest.fixture
def settings() -> Settings:
    return Settings(
        db_path=":memory:",
        retry_delay_seconds=0,
        context_wait_seconds=0,
        registration_pause_seconds=0,
        probe_before_collect=False,
    )


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
async def db():
    conn = await aiosqlite.connect(":memory:")
    conn.row_factory = aiosqlite.Row
    await conn.executescript(SCHEMA_SQL)
    await conn.commit()
    yield conn
    await conn.close()


@pytest.fixture
async def repo(db) -> Repository:
    return Repository(db)
