"""Browser health probing and error recovery."""

from __future__ import annotations

import structlog

from odds_harvester.browser.pool import BrowserPool
from odds_harvester.config import Settings
from odds_harvester.errors import BrowserUnavailableError

log = structlog.get_logger()


class HealthMonitor:
    def __init__(self, settings: Settings, pool: BrowserPool) -> None:
        self._settings = settings
        self._pool = pool

    async def health_check(self) -> bool:
        """Probe the browser; a failed probe is answered with a reset.

        A missing browser is launched and reported healthy if that works. While
        a reset is running its outcome is the answer.
        """
        if self._pool.is_resetting:
            log.info("health_check_waiting_for_reset")
            if not await self._pool.reset():
                return False

        browser = self._pool.browser
        if browser is None:
            log.info("health_check_browser_missing")
            try:
                await self._pool.start()
            except BrowserUnavailableError:
                return False
            return True

        try:
            context = await browser.new_context(user_agent=self._settings.user_agent)
            try:
                page = await context.new_page()
                await page.goto(self._settings.probe_url, timeout=self._settings.page_timeout_ms)
                await page.wait_for_load_state("networkidle")
            finally:
                await context.close()
        except Exception:
            log.exception("health_check_failed")
            return await self._pool.reset()

        log.debug("health_check_ok")
        return True

    async def recover_from_error(self, operation: str) -> bool:
        """Reset the browser and verify it; both steps must succeed."""
        log.warning("recovery_start", operation=operation)
        try:
            if not await self._pool.reset():
                log.error("recovery_reset_failed", operation=operation)
                return False
            if not await self.health_check():
                log.error("recovery_health_check_failed", operation=operation)
                return False
        except Exception:
            log.exception("recovery_error", operation=operation)
            return False

        log.info("recovery_done", operation=operation)
        return True
