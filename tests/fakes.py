"""In-memory collaborators for exercising the crawl pipeline without a browser."""

import asyncio
import json
import random
from collections.abc import Sequence
from datetime import datetime, UTC

from estate_crawler.crawl.base import PageHandle, RecordSink, Renderer
from estate_crawler.crawl.controller import CrawlController
from estate_crawler.crawl.evasion import EvasionCoordinator
from estate_crawler.crawl.fetcher import PageFetcher
from estate_crawler.crawl.pacing import PacingPolicy
from estate_crawler.errors import RenderError, SinkError
from estate_crawler.models.record import BlockPolicy, CanonicalRecord

FIXED_TIME = datetime(2026, 1, 15, 12, 0, tzinfo=UTC)

CAPTCHA_FRAME = "iframe[src*='captcha-delivery.com']"


def make_items(count: int, start: int = 0) -> list[dict]:
    """Minimal idealista items with distinct property codes."""
    return [
        {
            "propertyCode": str(30000000 + start + i),
            "price": 250000 + (start + i) * 1000,
            "propertyType": "flat",
            "operation": "sale",
            "municipality": "Lisboa",
            "province": "Lisboa",
            "size": 80,
            "rooms": 2,
            "bathrooms": 1,
        }
        for i in range(count)
    ]


def make_state(items: list[dict], current_page: int = 1, total_pages: int = 1, total: int | None = None) -> dict:
    return {
        "props": {
            "pageProps": {
                "searchData": {
                    "elementList": items,
                    "currentPage": current_page,
                    "totalPages": total_pages,
                    "total": len(items) if total is None else total,
                }
            }
        },
        "page": "/[...slug]",
        "buildId": "test-build",
    }


def make_document(items: list[dict], current_page: int = 1, total_pages: int = 1, total: int | None = None) -> str:
    """Results page HTML with an embedded __NEXT_DATA__ state."""
    state = json.dumps(make_state(items, current_page, total_pages, total))
    return (
        "<html><head><title>Casas</title></head><body>"
        '<div id="__next"><main>Listings</main></div>'
        f'<script id="__NEXT_DATA__" type="application/json">{state}</script>'
        "</body></html>"
    )


class FakePage(PageHandle):
    """Scriptable rendered page."""

    def __init__(
        self,
        document: str = "<html><body></body></html>",
        body: str = "",
        elements: Sequence[str] = (),
        consent: Sequence[str] = (),
        clears_after_mitigation: bool = False,
        url: str = "about:blank",
    ):
        self._url = url
        self.document = document
        self.body = body
        self.elements = set(elements)
        self.consent = set(consent)
        self.clears_after_mitigation = clears_after_mitigation
        self.clicked: list[str] = []
        self.scrolled: list[int] = []
        self.mouse_moves: list[tuple[float, float]] = []
        self.waits: list[float] = []
        self.closed = False

    @property
    def url(self) -> str:
        return self._url

    async def content(self) -> str:
        return self.document

    async def body_text(self) -> str:
        return self.body

    async def has_element(self, selector: str) -> bool:
        return selector in self.elements

    async def click_if_visible(self, selector: str, timeout_ms: int) -> bool:
        if selector in self.consent:
            self.clicked.append(selector)
            return True
        return False

    async def scroll_by(self, pixels: int) -> None:
        self.scrolled.append(pixels)

    async def move_mouse(self, x: float, y: float, steps: int = 10) -> None:
        self.mouse_moves.append((x, y))
        if self.clears_after_mitigation:
            self.elements.clear()
            self.body = ""

    async def wait(self, ms: float) -> None:
        self.waits.append(ms)

    async def close(self) -> None:
        self.closed = True


def challenge_page(clears_after_mitigation: bool = False) -> FakePage:
    return FakePage(elements=[CAPTCHA_FRAME], clears_after_mitigation=clears_after_mitigation)


class FakeRenderer(Renderer):
    """Serves scripted responses in order.

    A response is a document string, a FakePage, or an exception to raise.
    """

    def __init__(self, responses: Sequence):
        self.responses = list(responses)
        self.urls: list[str] = []
        self.pages: list[FakePage] = []

    async def render(self, url: str, timeout_ms: int) -> FakePage:
        self.urls.append(url)
        if not self.responses:
            raise RenderError(f"no scripted response for {url}")
        response = self.responses.pop(0)
        if isinstance(response, BaseException):
            raise response
        page = FakePage(document=response) if isinstance(response, str) else response
        page._url = url
        self.pages.append(page)
        return page


class RecordingSleeper:
    """Async sleeper that records requested delays instead of sleeping."""

    def __init__(self, on_sleep=None):
        self.delays: list[float] = []
        self.on_sleep = on_sleep

    async def __call__(self, seconds: float) -> None:
        self.delays.append(seconds)
        if self.on_sleep is not None:
            self.on_sleep()
            await asyncio.sleep(10)


class FakeSink(RecordSink):
    def __init__(self, fail: bool = False):
        self.fail = fail
        self.batches: list[list[CanonicalRecord]] = []

    def persist(self, records: Sequence[CanonicalRecord]) -> int:
        if self.fail:
            raise SinkError("disk full")
        self.batches.append(list(records))
        return len(records)


def build_controller(
    responses: Sequence,
    transient_retries: int = 0,
    block_policy: BlockPolicy = BlockPolicy.SKIP_LOCATION,
    sink: RecordSink | None = None,
    sleeper: RecordingSleeper | None = None,
) -> tuple[CrawlController, FakeRenderer, RecordingSleeper]:
    """Controller wired to fakes: no browser, no network, no elapsed time."""
    renderer = FakeRenderer(responses)
    sleeper = sleeper or RecordingSleeper()
    fetcher = PageFetcher(renderer, EvasionCoordinator(rng=random.Random(0)), navigation_timeout_ms=5_000)
    pacing = PacingPolicy(rng=random.Random(0), sleeper=sleeper)
    controller = CrawlController(
        fetcher,
        pacing=pacing,
        sink=sink,
        transient_retries=transient_retries,
        block_policy=block_policy,
        clock=lambda: FIXED_TIME,
    )
    return controller, renderer, sleeper
