"""Playwright-backed render collaborator.

The browser is a scoped resource: use `async with BrowserSession(...)` so it is
released on success, error and cancellation alike.
"""

from __future__ import annotations

import asyncio
import logging

from playwright.async_api import (
    Browser,
    BrowserContext,
    Error as PlaywrightError,
    Page,
    TimeoutError as PlaywrightTimeout,
    async_playwright,
)

from ..config import ProxySettings, config
from ..errors import RenderError
from .base import PageHandle, Renderer

logger = logging.getLogger(__name__)


LAUNCH_ARGS = [
    "--disable-blink-features=AutomationControlled",
    "--disable-features=IsolateOrigins,site-per-process",
    "--no-sandbox",
    "--disable-setuid-sandbox",
    "--disable-infobars",
    "--disable-dev-shm-usage",
    "--window-size=1920,1080",
]

LISBON_GEOLOCATION = {"latitude": 38.7223, "longitude": -9.1393}

# Hide the most common automation fingerprints before any page script runs
STEALTH_INIT_SCRIPT = """
Object.defineProperty(navigator, 'webdriver', { get: () => undefined });
Object.defineProperty(navigator, 'languages', { get: () => ['pt-PT', 'pt', 'en-US', 'en'] });
Object.defineProperty(navigator, 'plugins', { get: () => [1, 2, 3, 4, 5] });
window.chrome = window.chrome || { runtime: {} };
"""


class PlaywrightPage(PageHandle):
    """PageHandle over a Playwright page."""

    def __init__(self, page: Page):
        self._page = page

    @property
    def url(self) -> str:
        return self._page.url

    async def content(self) -> str:
        return await self._page.content()

    async def body_text(self) -> str:
        return await self._page.inner_text("body")

    async def has_element(self, selector: str) -> bool:
        return await self._page.locator(selector).count() > 0

    async def click_if_visible(self, selector: str, timeout_ms: int) -> bool:
        element = self._page.locator(selector).first
        try:
            await element.wait_for(state="visible", timeout=timeout_ms)
        except PlaywrightTimeout:
            return False
        box = await element.bounding_box()
        if box:
            # Approach the button like a person would before clicking
            await self._page.mouse.move(
                box["x"] + box["width"] / 2,
                box["y"] + box["height"] / 2,
                steps=12,
            )
        await element.click()
        return True

    async def scroll_by(self, pixels: int) -> None:
        await self._page.mouse.wheel(0, pixels)

    async def move_mouse(self, x: float, y: float, steps: int = 10) -> None:
        await self._page.mouse.move(x, y, steps=steps)

    async def wait(self, ms: float) -> None:
        await self._page.wait_for_timeout(ms)

    async def close(self) -> None:
        if not self._page.is_closed():
            await self._page.close()


class BrowserSession(Renderer):
    """Stealth Chromium session that renders idealista pages."""

    def __init__(
        self,
        headless: bool | None = None,
        slow_mo: int | None = None,
        proxy: ProxySettings | None = None,
    ):
        self.headless = config.headless if headless is None else headless
        self.slow_mo = config.slow_mo if slow_mo is None else slow_mo
        self.proxy = proxy
        self._playwright = None
        self._browser: Browser | None = None
        self._context: BrowserContext | None = None

        if proxy:
            logger.info(f"Using proxy: {proxy.server}")
        else:
            logger.warning("No proxy configured - DataDome may block datacenter IPs")

    async def setup(self) -> None:
        """Launch the browser and create a localized context."""
        logger.info("Initializing stealth browser...")
        self._playwright = await async_playwright().start()

        launch_options: dict = {
            "headless": self.headless,
            "slow_mo": self.slow_mo,
            "args": [*LAUNCH_ARGS, f"--lang={config.locale}"],
            "ignore_default_args": ["--enable-automation"],
        }
        if self.proxy:
            launch_options["proxy"] = self.proxy.model_dump(exclude_none=True)

        self._browser = await self._playwright.chromium.launch(**launch_options)
        self._context = await self._browser.new_context(
            viewport={"width": 1920, "height": 1080},
            locale=config.locale,
            timezone_id=config.timezone_id,
            geolocation=LISBON_GEOLOCATION,
            permissions=["geolocation"],
            extra_http_headers={
                "Accept-Language": "pt-PT,pt;q=0.9,en-US;q=0.8,en;q=0.7",
                "Accept": "text/html,application/xhtml+xml,application/xml;q=0.9,image/avif,image/webp,*/*;q=0.8",
            },
        )
        await self._context.add_init_script(STEALTH_INIT_SCRIPT)
        logger.info("Browser initialized")

    async def teardown(self) -> None:
        """Cleanup browser resources."""
        try:
            if self._context:
                await self._context.close()
            if self._browser:
                await self._browser.close()
        finally:
            if self._playwright:
                await self._playwright.stop()
            self._context = None
            self._browser = None
            self._playwright = None
            logger.info("Browser closed")

    @property
    def context(self) -> BrowserContext:
        """Get the browser context, raising if not initialized."""
        if self._context is None:
            raise RuntimeError("Browser not initialized. Call setup() first.")
        return self._context

    async def render(self, url: str, timeout_ms: int) -> PlaywrightPage:
        try:
            page = await self.context.new_page()
        except PlaywrightError as e:
            raise RenderError(f"Could not open a page for {url}: {e}") from e

        page.set_default_timeout(timeout_ms)
        try:
            await page.goto(url, wait_until="domcontentloaded", timeout=timeout_ms)
        except BaseException as e:
            # Cancellation included: the page must not outlive a failed render
            try:
                await asyncio.shield(page.close())
            except Exception as close_error:
                logger.debug(f"Error closing page {url}: {close_error}")
            if isinstance(e, PlaywrightTimeout):
                raise RenderError(f"Navigation timed out after {timeout_ms}ms: {url}") from e
            if isinstance(e, PlaywrightError):
                raise RenderError(f"Navigation failed for {url}: {e}") from e
            raise
        return PlaywrightPage(page)

    async def __aenter__(self):
        await self.setup()
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        await self.teardown()
