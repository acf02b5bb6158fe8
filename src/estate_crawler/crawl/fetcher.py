"""Fetch one search results page: render, settle, extract."""

from __future__ import annotations

import asyncio
import logging

from ..config import config
from ..errors import ExtractionFailure, FetchFailure, FetchFailureKind, RenderError
from ..models.record import CrawlJob, PageSnapshot, TransactionKind
from . import extractor
from .base import PageHandle, Renderer
from .evasion import ChallengeState, EvasionCoordinator

logger = logging.getLogger(__name__)

TRANSACTION_SLUGS = {
    TransactionKind.SALE: "comprar-casas",
    TransactionKind.RENT: "arrendar-casas",
}

# Headroom over the navigation timeout; the renderer's own timeout fires first
RENDER_GRACE_MS = 5_000

# Headroom on top of the navigation timeout for settling the page
SETTLE_GRACE_MS = 30_000


def build_search_url(job: CrawlJob, page_index: int, base_url: str | None = None) -> str:
    """Search URL for a job and page.

    URL pattern: {base}/{comprar|arrendar}-casas/{location}/[pagina-N.html]
    """
    base = (base_url or config.base_url).rstrip("/")
    type_slug = TRANSACTION_SLUGS[job.transaction_kind]
    location = job.location.strip().strip("/")
    page_slug = f"pagina-{page_index}.html" if page_index > 1 else ""
    return f"{base}/{type_slug}/{location}/{page_slug}"


class PageFetcher:
    """Composes rendering, evasion and extraction for a single page."""

    def __init__(
        self,
        renderer: Renderer,
        evasion: EvasionCoordinator | None = None,
        navigation_timeout_ms: int = 60_000,
        base_url: str | None = None,
    ):
        self.renderer = renderer
        self.evasion = evasion or EvasionCoordinator()
        self.navigation_timeout_ms = navigation_timeout_ms
        self.base_url = base_url

    async def fetch(self, job: CrawlJob, page_index: int) -> PageSnapshot | FetchFailure:
        """Fetch and parse one results page.

        Returns:
            PageSnapshot, or FetchFailure: BLOCKED when a challenge survives
            mitigation, TRANSIENT on render failure or timeout, NO_DATA when the
            page carries no usable embedded state.
        """
        url = build_search_url(job, page_index, self.base_url)
        logger.info(f"Fetching page {page_index}: {url}")

        try:
            page = await asyncio.wait_for(
                self.renderer.render(url, self.navigation_timeout_ms),
                timeout=(self.navigation_timeout_ms + RENDER_GRACE_MS) / 1000,
            )
        except asyncio.TimeoutError:
            logger.warning(f"Render did not finish within {self.navigation_timeout_ms + RENDER_GRACE_MS}ms: {url}")
            return FetchFailure(FetchFailureKind.TRANSIENT, url, "render timed out")
        except RenderError as e:
            logger.warning(f"Render failed: {e}")
            return FetchFailure(FetchFailureKind.TRANSIENT, url, str(e))

        try:
            return await self._settle_and_extract(page, url)
        finally:
            try:
                await page.close()
            except Exception as e:
                logger.debug(f"Error closing page {url}: {e}")

    async def _settle_and_extract(self, page: PageHandle, url: str) -> PageSnapshot | FetchFailure:
        try:
            state = await asyncio.wait_for(
                self.evasion.settle(page),
                timeout=(self.navigation_timeout_ms + SETTLE_GRACE_MS) / 1000,
            )
        except asyncio.TimeoutError:
            return FetchFailure(FetchFailureKind.TRANSIENT, url, "page settling timed out")

        if state is ChallengeState.CHALLENGE_UNRESOLVED:
            return FetchFailure(FetchFailureKind.BLOCKED, url, "challenge unresolved after mitigation")

        try:
            document = await page.content()
        except Exception as e:
            logger.warning(f"Could not read page content: {e}")
            return FetchFailure(FetchFailureKind.TRANSIENT, url, f"content unavailable: {e}")

        result = extractor.extract(document)
        if isinstance(result, ExtractionFailure):
            logger.warning(f"No embedded state on {url} ({result.kind.value}: {result.detail})")
            return FetchFailure(FetchFailureKind.NO_DATA, url, result.detail)

        logger.info(
            f"Page {result.current_page_index}/{result.total_pages}: "
            f"{len(result.items)} items ({result.total_count} total)"
        )
        return result
