"""Playwright navigation to a race's odds page for one bet type."""

from __future__ import annotations

import structlog
from playwright.async_api import Page
from playwright.async_api import TimeoutError as PlaywrightTimeoutError

from odds_harvester.browser.pool import BrowserPool
from odds_harvester.clock import utc_now
from odds_harvester.config import Settings
from odds_harvester.errors import MarketUnavailableError
from odds_harvester.scraper.markets import MARKETS, MarketSpec
from odds_harvester.scraper.race_ids import parse_race_id
from odds_harvester.scraper.schemas import BetType, OddsQuote

log = structlog.get_logger()

ODDS_LINK = "オッズ"


async def open_odds_calendar(page: Page, url: str) -> None:
    """Land on the odds menu that lists this week's meetings."""
    await page.goto(url)
    await page.wait_for_load_state("networkidle")
    await page.get_by_role("link", name=ODDS_LINK, exact=True).click()
    await page.wait_for_load_state("networkidle")


class MarketScraper:
    def __init__(self, settings: Settings, pool: BrowserPool) -> None:
        self._settings = settings
        self._pool = pool

    async def scrape_market(self, race_id: int, bet_type: BetType) -> list[OddsQuote]:
        """Scrape and parse one market.

        Raises MarketUnavailableError when the page or table times out.
        """
        market = MARKETS[BetType(bet_type)]
        try:
            async with self._pool.context() as context:
                page = await context.new_page()
                try:
                    await self._open_race_page(page, race_id)
                    await self._open_tab(page, market)
                    await page.wait_for_selector(
                        market.table_selector, timeout=self._settings.page_timeout_ms
                    )
                    await page.wait_for_timeout(self._settings.table_settle_ms)
                    html = await page.content()
                    log.debug("market_page_loaded", url=page.url, length=len(html))
                finally:
                    await page.close()
        except PlaywrightTimeoutError as exc:
            raise MarketUnavailableError(race_id, market.bet_type.value) from exc

        quotes = list(market.parser(html, race_id, utc_now()))
        log.info("market_scraped", race_id=race_id, bet_type=market.bet_type.value, quotes=len(quotes))
        return quotes

    async def _open_race_page(self, page: Page, race_id: int) -> None:
        key = parse_race_id(race_id)
        await open_odds_calendar(page, self._settings.keiba_url)
        await page.get_by_role("link", name=key.meeting_label).click()
        await page.wait_for_load_state("networkidle")
        await page.locator(f'img[alt="{key.race_number}レース"]').click()
        await page.wait_for_load_state("networkidle")

    async def _open_tab(self, page: Page, market: MarketSpec) -> None:
        if market.bet_type is BetType.WIN_PLACE:
            return  # first tab, already showing
        if market.bet_type is BetType.QUINELLA_PLACE:
            await page.locator('a[onclick*="accessO.html"]').filter(has_text=market.tab_name).click()
        else:
            await page.get_by_role("link", name=market.tab_name).click()
        await page.wait_for_load_state("networkidle")
