"""Tests for single-page fetching."""

import asyncio
import random

from estate_crawler.crawl.evasion import EvasionCoordinator
from estate_crawler.crawl.fetcher import PageFetcher, build_search_url
from estate_crawler.errors import FetchFailure, FetchFailureKind, RenderError
from estate_crawler.models.record import CrawlJob, PageSnapshot, TransactionKind

from fakes import FakePage, FakeRenderer, challenge_page, make_document, make_items


def fetch(responses, job=None, page_index=1):
    renderer = FakeRenderer(responses)
    fetcher = PageFetcher(renderer, EvasionCoordinator(rng=random.Random(0)), navigation_timeout_ms=5_000)
    result = asyncio.run(fetcher.fetch(job or CrawlJob("lisboa"), page_index))
    return result, renderer


class TestBuildSearchUrl:
    """Tests for search URL construction."""

    def test_first_page_has_no_page_slug(self):
        assert build_search_url(CrawlJob("lisboa"), 1) == "https://www.idealista.pt/comprar-casas/lisboa/"

    def test_later_pages(self):
        url = build_search_url(CrawlJob("porto"), 3)
        assert url == "https://www.idealista.pt/comprar-casas/porto/pagina-3.html"

    def test_rent(self):
        job = CrawlJob("faro", TransactionKind.RENT)
        assert build_search_url(job, 1) == "https://www.idealista.pt/arrendar-casas/faro/"

    def test_location_path_and_custom_base(self):
        job = CrawlJob("/lisboa/alvalade/")
        url = build_search_url(job, 2, base_url="http://localhost:8000/")
        assert url == "http://localhost:8000/comprar-casas/lisboa/alvalade/pagina-2.html"


class TestFetch:
    """Tests for render, settle and extract composition."""

    def test_snapshot(self):
        result, renderer = fetch([make_document(make_items(4), current_page=1, total_pages=2, total=50)])

        assert isinstance(result, PageSnapshot)
        assert len(result.items) == 4
        assert result.total_count == 50
        assert renderer.urls == ["https://www.idealista.pt/comprar-casas/lisboa/"]

    def test_page_closed_after_success(self):
        _, renderer = fetch([make_document(make_items(1))])
        assert renderer.pages[0].closed

    def test_blocked_without_reading_content(self):
        page = challenge_page()
        page.document = make_document(make_items(2))
        result, _ = fetch([page])

        assert isinstance(result, FetchFailure)
        assert result.kind == FetchFailureKind.BLOCKED
        assert page.closed

    def test_challenge_cleared_continues(self):
        page = challenge_page(clears_after_mitigation=True)
        page.document = make_document(make_items(2))
        result, _ = fetch([page])

        assert isinstance(result, PageSnapshot)
        assert len(result.items) == 2

    def test_no_data(self):
        result, renderer = fetch(["<html><body>Nada</body></html>"])

        assert result.kind == FetchFailureKind.NO_DATA
        assert renderer.pages[0].closed

    def test_render_error_is_transient(self):
        result, _ = fetch([RenderError("net::ERR_CONNECTION_RESET")])

        assert result.kind == FetchFailureKind.TRANSIENT
        assert "ERR_CONNECTION_RESET" in result.detail
        assert result.url == "https://www.idealista.pt/comprar-casas/lisboa/"

    def test_content_error_is_transient(self):
        class BrokenPage(FakePage):
            async def content(self):
                raise RuntimeError("target closed")

        page = BrokenPage()
        result, _ = fetch([page])

        assert result.kind == FetchFailureKind.TRANSIENT
        assert page.closed

    def test_failure_str(self):
        failure = FetchFailure(FetchFailureKind.BLOCKED, "https://x", "captcha")
        assert str(failure) == "blocked at https://x: captcha"
