"""Crawl state machine.

Per location:

    INIT -> FETCHING_PAGE -> EVALUATING -> PACING -> FETCHING_PAGE ... -> DONE

Execution is strictly sequential. One page is fetched, evaluated and paced
before the next begins, and one location is drained before the next starts;
bursty access is what the portal's bot detection is tuned to catch.

Stop precedence when evaluating a page:
1. record limit reached   -> LIMIT_REACHED (records truncated to the limit)
2. page limit reached     -> PAGE_LIMIT_REACHED
3. no next page           -> NO_MORE_PAGES
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Callable, Sequence
from datetime import datetime, UTC
from enum import Enum

from ..config import MAX_TRANSIENT_RETRIES, CrawlSettings
from ..errors import ConfigurationError, CrawlError, FetchFailure, FetchFailureKind, SinkError
from ..models.record import (
    BlockPolicy,
    CrawlJob,
    CrawlOutcome,
    PageSnapshot,
    RunSummary,
    StopReason,
    TransactionKind,
)
from .base import RecordSink, Renderer
from .evasion import EvasionCoordinator
from .fetcher import PageFetcher
from .normalizer import normalize
from .pacing import PacingPolicy

logger = logging.getLogger(__name__)


class CrawlState(str, Enum):
    INIT = "init"
    FETCHING_PAGE = "fetching_page"
    EVALUATING = "evaluating"
    PACING = "pacing"
    DONE = "done"


class CrawlController:
    """Drives page-by-page and location-by-location crawling."""

    def __init__(
        self,
        fetcher: PageFetcher,
        pacing: PacingPolicy | None = None,
        sink: RecordSink | None = None,
        transient_retries: int = 0,
        block_policy: BlockPolicy = BlockPolicy.SKIP_LOCATION,
        clock: Callable[[], datetime] | None = None,
    ):
        if not 0 <= transient_retries <= MAX_TRANSIENT_RETRIES:
            raise ConfigurationError(
                f"transient_retries must be between 0 and {MAX_TRANSIENT_RETRIES}, got {transient_retries}"
            )
        self.fetcher = fetcher
        self.pacing = pacing or PacingPolicy()
        self.sink = sink
        self.transient_retries = transient_retries
        self.block_policy = block_policy
        self._clock = clock or (lambda: datetime.now(UTC))

    @classmethod
    def from_settings(
        cls,
        settings: CrawlSettings,
        renderer: Renderer,
        sink: RecordSink | None = None,
    ) -> "CrawlController":
        """Build a controller with fetcher and pacing configured from settings."""
        fetcher = PageFetcher(
            renderer,
            EvasionCoordinator(),
            navigation_timeout_ms=settings.navigation_timeout_ms,
        )
        pacing = PacingPolicy(
            min_page_delay_ms=settings.min_page_delay_ms,
            max_page_delay_ms=settings.max_page_delay_ms,
            location_delay_floor_ms=settings.location_delay_floor_ms,
            location_delay_jitter_ms=settings.location_delay_jitter_ms,
        )
        return cls(
            fetcher,
            pacing=pacing,
            sink=sink,
            transient_retries=settings.transient_retries,
            block_policy=settings.block_policy,
        )

    # -------------------------------------------------------------------------
    # Single Location
    # -------------------------------------------------------------------------

    async def run(self, job: CrawlJob, cancel_event: asyncio.Event | None = None) -> CrawlOutcome:
        """Crawl one location until a stop condition is met.

        Args:
            job: What to crawl and its limits.
            cancel_event: Optional signal that stops the crawl between pages,
                keeping the records collected so far.

        Returns:
            CrawlOutcome. Always returned, even when no records were collected.

        Raises:
            ConfigurationError: If the job bounds are invalid (before any fetch).
        """
        job.validate()

        outcome = CrawlOutcome(location=job.location)
        logger.info(
            f"Starting crawl for {job.location} ({job.transaction_kind.value}), "
            f"max pages: {job.page_limit}, limit: {job.record_limit or 'none'}"
        )

        try:
            outcome.stop_reason = await self._drive(job, outcome, cancel_event)
        except Exception as e:
            error = CrawlError.from_exception(job.location, e)
            logger.error(f"Crawl of {job.location} failed: {error}")
            logger.debug(error.traceback)
            outcome.errors.append(str(error))
            outcome.stop_reason = StopReason.FATAL_ERROR

        self._persist(outcome)
        logger.info(
            f"Crawl of {job.location} done: {outcome.record_count} records, "
            f"{outcome.pages_visited} pages ({outcome.stop_reason.value})"
        )
        return outcome

    async def _drive(
        self,
        job: CrawlJob,
        outcome: CrawlOutcome,
        cancel_event: asyncio.Event | None,
    ) -> StopReason:
        """Run the state machine; the accumulator is outcome.records."""
        state = CrawlState.INIT
        page_index = 1
        failed_attempts = 0
        known_total_pages: int | None = None
        snapshot: PageSnapshot | None = None

        while True:
            logger.debug(f"[{job.location}] state={state.value} page={page_index}")

            if state is CrawlState.INIT:
                state = CrawlState.FETCHING_PAGE

            elif state is CrawlState.FETCHING_PAGE:
                if cancel_event is not None and cancel_event.is_set():
                    return StopReason.CANCELLED

                result = await self._fetch(job, page_index, cancel_event)
                if result is None:
                    return StopReason.CANCELLED

                if isinstance(result, PageSnapshot):
                    outcome.pages_visited += 1
                    known_total_pages = result.total_pages
                    snapshot = result
                    state = CrawlState.EVALUATING

                elif result.kind is FetchFailureKind.BLOCKED:
                    # The blocking page counts as visited; a detected block is never retried
                    outcome.pages_visited += 1
                    outcome.errors.append(str(result))
                    logger.error(f"Blocked by anti-bot on page {page_index}, stopping {job.location}")
                    return StopReason.BLOCKED

                elif result.kind is FetchFailureKind.TRANSIENT:
                    failed_attempts += 1
                    outcome.errors.append(str(result))
                    if failed_attempts > self.transient_retries:
                        logger.error(
                            f"Aborting {job.location} after {failed_attempts} failed "
                            f"attempt(s) on page {page_index}"
                        )
                        return StopReason.FATAL_ERROR
                    logger.warning(
                        f"Transient failure on page {page_index} "
                        f"(retry {failed_attempts}/{self.transient_retries})"
                    )
                    if not await self.pacing.pause(self.pacing.page_delay(), cancel_event):
                        return StopReason.CANCELLED

                else:
                    # No embedded state: an empty page, not an error
                    outcome.pages_visited += 1
                    snapshot = PageSnapshot(
                        items=(),
                        current_page_index=page_index,
                        total_pages=max(known_total_pages or page_index, page_index),
                    )
                    state = CrawlState.EVALUATING

            elif state is CrawlState.EVALUATING:
                if snapshot is None:
                    raise RuntimeError(f"No page to evaluate for {job.location} page {page_index}")
                stop = self._evaluate(job, snapshot, page_index, outcome)
                if stop is not None:
                    return stop
                state = CrawlState.PACING

            elif state is CrawlState.PACING:
                delay = self.pacing.page_delay()
                logger.info(f"Waiting {delay:.1f}s before next page...")
                if not await self.pacing.pause(delay, cancel_event):
                    return StopReason.CANCELLED
                page_index += 1
                failed_attempts = 0
                snapshot = None
                state = CrawlState.FETCHING_PAGE

    def _evaluate(
        self,
        job: CrawlJob,
        snapshot: PageSnapshot,
        page_index: int,
        outcome: CrawlOutcome,
    ) -> StopReason | None:
        """Normalize a page into the accumulator and check stop conditions."""
        captured_at = self._clock()
        for item in snapshot.items:
            outcome.records.append(normalize(item, job.location, captured_at=captured_at))
        outcome.total_available = max(outcome.total_available, snapshot.total_count)
        logger.info(f"Total scraped for {job.location}: {outcome.record_count} records")

        if job.record_limit is not None and outcome.record_count >= job.record_limit:
            del outcome.records[job.record_limit:]
            logger.info(f"Reached limit of {job.record_limit} records")
            return StopReason.LIMIT_REACHED

        if page_index >= job.page_limit:
            logger.info(f"Reached page limit of {job.page_limit}")
            return StopReason.PAGE_LIMIT_REACHED

        if not snapshot.has_next_page:
            logger.info("No more pages available")
            return StopReason.NO_MORE_PAGES

        return None

    async def _fetch(
        self,
        job: CrawlJob,
        page_index: int,
        cancel_event: asyncio.Event | None,
    ) -> PageSnapshot | FetchFailure | None:
        """Fetch a page, racing it against the cancel event.

        Returns:
            The fetch result, or None if cancelled mid-fetch.
        """
        if cancel_event is None:
            return await self.fetcher.fetch(job, page_index)

        fetch_task = asyncio.ensure_future(self.fetcher.fetch(job, page_index))
        cancel_task = asyncio.ensure_future(cancel_event.wait())
        try:
            await asyncio.wait({fetch_task, cancel_task}, return_when=asyncio.FIRST_COMPLETED)
        finally:
            pending = [task for task in (fetch_task, cancel_task) if not task.done()]
            for task in pending:
                task.cancel()
            await asyncio.gather(*pending, return_exceptions=True)

        if fetch_task.cancelled():
            logger.info(f"Fetch of page {page_index} interrupted by cancellation")
            return None
        return fetch_task.result()

    def _persist(self, outcome: CrawlOutcome) -> None:
        """Hand the location's records to the sink, if one is configured."""
        if self.sink is None or not outcome.records:
            return
        try:
            outcome.persisted = self.sink.persist(outcome.records)
            logger.info(f"Persisted {outcome.persisted} records for {outcome.location}")
        except SinkError as e:
            logger.error(f"Failed to persist records for {outcome.location}: {e}")
            outcome.errors.append(f"SinkError: {e}")

    # -------------------------------------------------------------------------
    # Multiple Locations
    # -------------------------------------------------------------------------

    async def run_locations(
        self,
        locations: Sequence[str],
        transaction_kind: TransactionKind = TransactionKind.SALE,
        page_limit: int = 3,
        record_limit: int | None = None,
        cancel_event: asyncio.Event | None = None,
    ) -> RunSummary:
        """Crawl locations in order with a randomized gap between them.

        record_limit is global across locations. A blocked location ends only
        that location unless the block policy is ABORT_RUN.

        Raises:
            ConfigurationError: If the location list or any bound is invalid.
        """
        if not locations:
            raise ConfigurationError("at least one location is required")
        for location in locations:
            CrawlJob(location, transaction_kind, page_limit, record_limit).validate()

        summary = RunSummary()
        logger.info(f"Crawling {len(locations)} locations")

        for position, location in enumerate(locations):
            remaining = None if record_limit is None else record_limit - summary.record_count
            job = CrawlJob(location, transaction_kind, page_limit, remaining)
            outcome = await self.run(job, cancel_event)
            summary.outcomes.append(outcome)
            logger.info(f"Total from all locations: {summary.record_count}")

            if record_limit is not None and summary.record_count >= record_limit:
                logger.info(f"Reached overall limit of {record_limit} records")
                summary.stop_reason = StopReason.LIMIT_REACHED
                return summary

            if outcome.stop_reason is StopReason.CANCELLED:
                summary.stop_reason = StopReason.CANCELLED
                return summary

            if outcome.stop_reason is StopReason.BLOCKED and self.block_policy is BlockPolicy.ABORT_RUN:
                logger.error("Block policy is abort_run, skipping remaining locations")
                summary.stop_reason = StopReason.BLOCKED
                return summary

            if position < len(locations) - 1:
                gap = self.pacing.location_gap()
                logger.info(f"Waiting {gap:.1f}s before next location...")
                if not await self.pacing.pause(gap, cancel_event):
                    summary.stop_reason = StopReason.CANCELLED
                    return summary

        summary.stop_reason = StopReason.COMPLETED
        return summary
