"""Tests for market page navigation."""

from __future__ import annotations

from contextlib import asynccontextmanager
from unittest.mock import AsyncMock, MagicMock

import pytest
from playwright.async_api import TimeoutError as PlaywrightTimeoutError

from odds_harvester.errors import MarketUnavailableError
from odds_harvester.scraper.market_scraper import MarketScraper
from odds_harvester.scraper.schemas import BetType

RACE_ID = 202505020411

QUINELLA_HTML = (
    '<table class="basic narrow-xy umaren"><caption>1</caption><tbody>'
    "<tr><th>2</th><td>6.1</td></tr></tbody></table>"
)


def _page(html: str = "", timeout: bool = False) -> MagicMock:
    page = MagicMock()
    page.url = "https://www.jra.go.jp/JRADB/accessO.html"
    for name in ("goto", "wait_for_load_state", "wait_for_timeout", "close"):
        setattr(page, name, AsyncMock())
    page.wait_for_selector = AsyncMock(
        side_effect=PlaywrightTimeoutError("Timeout 30000ms exceeded") if timeout else None
    )
    page.content = AsyncMock(return_value=html)
    locator = MagicMock()
    locator.click = AsyncMock()
    locator.filter = MagicMock(return_value=locator)
    page.get_by_role = MagicMock(return_value=locator)
    page.locator = MagicMock(return_value=locator)
    return page


def _pool(page: MagicMock) -> MagicMock:
    context = MagicMock()
    context.new_page = AsyncMock(return_value=page)
    pool = MagicMock()

    @asynccontextmanager
    async def ctx():
        yield context

    pool.context = ctx
    return pool


@pytest.mark.asyncio
async def test_scrape_market_navigates_and_parses(settings):
    page = _page(QUINELLA_HTML)

    quotes = await MarketScraper(settings, _pool(page)).scrape_market(RACE_ID, BetType.QUINELLA)

    assert [(q.participants, q.odds) for q in quotes] == [((1, 2), 6.1)]
    page.get_by_role.assert_any_call("link", name="2回東京4日")
    page.get_by_role.assert_any_call("link", name="馬連")
    page.locator.assert_called_with('img[alt="11レース"]')
    page.close.assert_awaited_once()


@pytest.mark.asyncio
async def test_wide_tab_is_found_by_onclick(settings):
    page = _page("")

    await MarketScraper(settings, _pool(page)).scrape_market(RACE_ID, BetType.QUINELLA_PLACE)

    page.locator.assert_any_call('a[onclick*="accessO.html"]')


@pytest.mark.asyncio
async def test_timeout_means_market_unavailable(settings):
    page = _page(timeout=True)

    with pytest.raises(MarketUnavailableError) as excinfo:
        await MarketScraper(settings, _pool(page)).scrape_market(RACE_ID, BetType.TRIFECTA)

    assert excinfo.value.bet_type == "tan3"
    page.close.assert_awaited_once()
