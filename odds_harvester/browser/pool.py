"""Bounded pool of browsing contexts over one shared Playwright browser."""

from __future__ import annotations

import asyncio
from contextlib import asynccontextmanager
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import AsyncIterator, Awaitable, Callable

import structlog
from playwright.async_api import Browser, BrowserContext, Playwright, async_playwright

from odds_harvester.clock import format_local, race_tz, utc_now
from odds_harvester.config import Settings
from odds_harvester.errors import BrowserUnavailableError

log = structlog.get_logger()

Launcher = Callable[[], Awaitable[Browser]]


@dataclass
class _PooledContext:
    context: BrowserContext
    in_use: bool
    last_used: datetime


class BrowserPool:
    """Hands out isolated contexts, recycles idle ones and resets the browser.

    ``reset()`` and ``start()`` are re-entrant: callers arriving while either
    is running await that same task, so only one browser is ever launched.
    """

    def __init__(
        self,
        settings: Settings,
        launcher: Launcher | None = None,
        clock: Callable[[], datetime] = utc_now,
    ) -> None:
        self._settings = settings
        self._launcher = launcher or self._launch_chromium
        self._clock = clock
        self._tz = race_tz(settings.race_timezone)
        self._playwright: Playwright | None = None
        self._browser: Browser | None = None
        self._pool: list[_PooledContext] = []
        self._lock = asyncio.Lock()
        self._reset_task: asyncio.Task[bool] | None = None
        self._start_task: asyncio.Task[None] | None = None
        self._last_reset: datetime | None = None
        self._error_count = 0

    # ── State ───────────────────────────────────────────────────────

    @property
    def browser(self) -> Browser | None:
        return self._browser

    @property
    def is_running(self) -> bool:
        return self._browser is not None

    @property
    def is_resetting(self) -> bool:
        return self._reset_task is not None and not self._reset_task.done()

    @property
    def last_reset(self) -> datetime | None:
        return self._last_reset

    @property
    def error_count(self) -> int:
        return self._error_count

    @property
    def size(self) -> int:
        return len(self._pool)

    @property
    def in_use(self) -> int:
        return sum(1 for item in self._pool if item.in_use)

    def uptime(self) -> timedelta | None:
        if self._browser is None or self._last_reset is None:
            return None
        return self._clock() - self._last_reset

    # ── Lifecycle ───────────────────────────────────────────────────

    async def _launch_chromium(self) -> Browser:
        if self._playwright is None:
            self._playwright = await async_playwright().start()
        return await self._playwright.chromium.launch(
            headless=self._settings.headless,
            executable_path=self._settings.chrome_bin or None,
            args=self._settings.browser_args,
        )

    async def start(self) -> None:
        """Launch the browser if it is not running yet.

        Concurrent callers share one launch. A reset in flight is waited out
        first.
        """
        if self.is_resetting:
            await asyncio.shield(self._reset_task)  # type: ignore[arg-type]
        if self._browser is not None:
            return
        if self._start_task is None or self._start_task.done():
            self._start_task = asyncio.create_task(self._do_start())
        await asyncio.shield(self._start_task)

    async def _do_start(self) -> None:
        try:
            self._browser = await self._launcher()
        except Exception as exc:
            log.exception("browser_launch_failed")
            raise BrowserUnavailableError("browser could not be launched") from exc
        self._pool = []
        self._error_count = 0
        self._last_reset = self._clock()
        log.info("browser_started", at=format_local(self._last_reset, self._tz))

    async def close(self) -> None:
        if self.is_resetting:
            await asyncio.shield(self._reset_task)  # type: ignore[arg-type]
        if self._start_task is not None and not self._start_task.done():
            await asyncio.wait([self._start_task])
        await self._teardown()
        if self._playwright is not None:
            try:
                await self._playwright.stop()
            except Exception:
                log.exception("playwright_stop_error")
            self._playwright = None
        log.info("browser_closed")

    async def _teardown(self) -> None:
        async with self._lock:
            pool, self._pool = self._pool, []
            browser, self._browser = self._browser, None

        for item in pool:
            try:
                await item.context.close()
            except Exception as exc:
                log.warning("context_close_error", error=repr(exc))
        if browser is not None:
            try:
                await browser.close()
            except Exception:
                log.exception("browser_close_error")

    # ── Contexts ────────────────────────────────────────────────────

    async def acquire_context(self) -> BrowserContext:
        """Reuse an idle context, open a new one below the cap, else wait."""
        while True:
            async with self._lock:
                if self._browser is None:
                    raise BrowserUnavailableError("browser is not running")
                now = self._clock()
                for item in self._pool:
                    if not item.in_use:
                        item.in_use = True
                        item.last_used = now
                        return item.context
                if len(self._pool) < self._settings.max_browser_contexts:
                    context = await self._browser.new_context(user_agent=self._settings.user_agent)
                    self._pool.append(_PooledContext(context, True, now))
                    log.debug("context_created", pool_size=len(self._pool))
                    return context

            log.info(
                "context_pool_full",
                pool_size=len(self._pool),
                wait_seconds=self._settings.context_wait_seconds,
            )
            await asyncio.sleep(self._settings.context_wait_seconds)

    def release_context(self, context: BrowserContext) -> None:
        for item in self._pool:
            if item.context is context:
                item.in_use = False
                item.last_used = self._clock()
                return

    async def discard_context(self, context: BrowserContext) -> None:
        """Drop a context that failed mid-use instead of recycling it."""
        async with self._lock:
            self._pool = [item for item in self._pool if item.context is not context]
        try:
            await context.close()
        except Exception as exc:
            log.warning("context_close_error", error=repr(exc))

    @asynccontextmanager
    async def context(self) -> AsyncIterator[BrowserContext]:
        ctx = await self.acquire_context()
        try:
            yield ctx
        except BaseException:
            await self.discard_context(ctx)
            raise
        else:
            self.release_context(ctx)

    async def sweep_idle(self) -> int:
        """Close contexts idle for longer than the configured timeout."""
        cutoff = self._clock() - timedelta(minutes=self._settings.context_idle_timeout_minutes)
        stale: list[_PooledContext] = []
        keep: list[_PooledContext] = []
        async with self._lock:
            for item in self._pool:
                (stale if not item.in_use and item.last_used < cutoff else keep).append(item)
            self._pool = keep

        for item in stale:
            try:
                await item.context.close()
            except Exception as exc:
                log.warning("context_close_error", error=repr(exc))
        if stale:
            log.info("idle_contexts_closed", count=len(stale), pool_size=len(self._pool))
        return len(stale)

    # ── Errors and resets ───────────────────────────────────────────

    def record_error(self, exc: BaseException) -> int:
        self._error_count += 1
        log.warning("browser_error_recorded", count=self._error_count, error=repr(exc))
        return self._error_count

    def error_threshold_reached(self) -> bool:
        return self._error_count >= self._settings.browser_error_threshold

    def reset_due(self) -> bool:
        if self.error_threshold_reached():
            return True
        uptime = self.uptime()
        interval = timedelta(hours=self._settings.browser_reset_interval_hours)
        return uptime is not None and uptime > interval

    async def reset_if_due(self) -> bool:
        """Start a missing browser, or reset one past its error/age limits."""
        if self._browser is None and not self.is_resetting:
            try:
                await self.start()
            except BrowserUnavailableError:
                return False
            return True
        if not self.reset_due():
            return False
        if self.error_threshold_reached():
            log.warning("browser_reset_forced", errors=self._error_count)
        else:
            log.info("browser_reset_scheduled", uptime=str(self.uptime()))
        return await self.reset()

    async def reset(self) -> bool:
        """Tear down the browser and every context, then relaunch."""
        if self._reset_task is not None and not self._reset_task.done():
            log.info("browser_reset_in_progress")
            return await asyncio.shield(self._reset_task)
        self._reset_task = asyncio.create_task(self._do_reset())
        return await asyncio.shield(self._reset_task)

    async def _do_reset(self) -> bool:
        log.info("browser_reset_start")
        if self._start_task is not None and not self._start_task.done():
            await asyncio.wait([self._start_task])
        await self._teardown()
        try:
            self._browser = await self._launcher()
        except Exception:
            log.exception("browser_reset_failed")
            self._browser = None
            return False
        self._last_reset = self._clock()
        self._error_count = 0
        log.info("browser_reset_done", at=format_local(self._last_reset, self._tz))
        return True
