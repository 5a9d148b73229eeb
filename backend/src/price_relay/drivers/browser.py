"""Chromium page driver backed by Playwright."""

from __future__ import annotations

import logging
from typing import Any

from ..errors import DriverUnavailable
from ..settings import DEFAULT_USER_AGENT

logger = logging.getLogger(__name__)

_LAUNCH_ARGS = [
    "--no-sandbox",
    "--disable-setuid-sandbox",
    "--disable-blink-features=AutomationControlled",
    "--disable-features=VizDisplayCompositor",
]
_VIEWPORT = {"width": 1920, "height": 1080}


class PlaywrightPageDriver:
    """One browser, one context, one page per opened address."""

    def __init__(
        self,
        *,
        headless: bool = True,
        user_agent: str = DEFAULT_USER_AGENT,
        load_timeout: float = 30.0,
        settle_delay: float = 5.0,
    ) -> None:
        self._headless = headless
        self._user_agent = user_agent
        self._load_timeout = load_timeout
        self._settle_delay = settle_delay
        self._playwright = None
        self._browser = None
        self._context = None

    @property
    def started(self) -> bool:
        return self._context is not None

    async def start(self) -> None:
        if self._context is not None:
            return
        from playwright.async_api import async_playwright

        logger.info("Launching Chromium (headless=%s)", self._headless)
        self._playwright = await async_playwright().start()
        try:
            self._browser = await self._playwright.chromium.launch(
                headless=self._headless, args=_LAUNCH_ARGS
            )
            self._context = await self._browser.new_context(
                user_agent=self._user_agent, viewport=_VIEWPORT
            )
        except Exception:
            await self.close()
            raise

    async def close(self) -> None:
        context, browser, playwright = self._context, self._browser, self._playwright
        self._context = self._browser = self._playwright = None
        for closer in (
            getattr(context, "close", None),
            getattr(browser, "close", None),
            getattr(playwright, "stop", None),
        ):
            if closer is None:
                continue
            try:
                await closer()
            except Exception:
                logger.exception("Failed to shut down browser resource")

    def _ensure_available(self) -> None:
        if self._context is None:
            raise DriverUnavailable("page driver is not started")
        if self._browser is not None and not self._browser.is_connected():
            raise DriverUnavailable("browser disconnected")

    async def open(self, address: str) -> Any:
        self._ensure_available()
        page = await self._context.new_page()
        try:
            await page.goto(
                address,
                wait_until="domcontentloaded",
                timeout=self._load_timeout * 1000,
            )
            if self._settle_delay > 0:
                await page.wait_for_timeout(self._settle_delay * 1000)
        except BaseException:
            await self._close_quietly(page)
            raise
        return page

    async def read_field(self, handle: Any, selector: str) -> str | None:
        self._ensure_available()
        element = await handle.query_selector(selector)
        if element is None:
            return None
        return await element.text_content()

    async def evaluate_script(self, handle: Any, probe: str) -> Any:
        self._ensure_available()
        return await handle.evaluate(probe)

    async def close_page(self, handle: Any) -> None:
        if handle.is_closed():
            return
        await handle.close()

    async def _close_quietly(self, page: Any) -> None:
        try:
            await page.close()
        except Exception:
            logger.debug("Ignoring error while closing a half-opened page", exc_info=True)
