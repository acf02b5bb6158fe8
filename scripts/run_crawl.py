"""Run an idealista.pt crawl and save results to the database."""

from __future__ import annotations

import argparse
import asyncio
import logging
import signal
from collections import Counter
from pathlib import Path

from dotenv import load_dotenv
from rich.console import Console
from rich.table import Table

from estate_crawler.config import PORTUGUESE_LOCATIONS, ProxySettings, config
from estate_crawler.crawl.browser import BrowserSession
from estate_crawler.crawl.controller import CrawlController
from estate_crawler.db.operations import (
    SqliteSink,
    close_db,
    count_records,
    get_all_records,
    load_record,
    log_crawl,
)
from estate_crawler.models.record import (
    BlockPolicy,
    CanonicalRecord,
    RunSummary,
    StopReason,
    TransactionKind,
)

load_dotenv(Path(__file__).parent.parent / ".env")

# Configure logging
logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
    handlers=[logging.StreamHandler()],
)
logger = logging.getLogger(__name__)

console = Console()


# =============================================================================
# Display Helpers
# =============================================================================

def display_record(record: CanonicalRecord) -> None:
    """Print one record in a compact block."""
    location = record.location
    details = record.details
    console.print("-" * 60)
    console.print(f"[bold]{record.title}[/bold] ({record.identifier})")
    console.print(f"  Price: {record.currency} {record.price:,.0f}")
    console.print(f"  Type: {record.property_kind.value} ({record.transaction_kind.value})")
    region = f", {location.region}" if location.region else ""
    console.print(f"  Location: {location.city}{region}")
    if location.address:
        console.print(f"  Address: {location.address}")
    console.print(
        f"  Details: {details.area_sqm or '?'} sqm | {details.rooms or '?'} rooms | "
        f"{details.bathrooms or '?'} bath"
    )
    if record.features:
        console.print(f"  Features: {', '.join(record.features[:5])}")
    console.print(f"  URL: {record.source_url}")


def display_outcomes(summary: RunSummary) -> None:
    """Table of per-location results."""
    table = Table(title="Crawl Outcomes")
    table.add_column("Location", style="cyan")
    table.add_column("Pages", justify="right")
    table.add_column("Records", justify="right")
    table.add_column("Available", justify="right")
    table.add_column("Stop reason")

    for outcome in summary.outcomes:
        reason = outcome.stop_reason.value
        if outcome.stop_reason in (StopReason.BLOCKED, StopReason.FATAL_ERROR):
            reason = f"[red]{reason}[/red]"
        table.add_row(
            outcome.location,
            str(outcome.pages_visited),
            str(outcome.record_count),
            str(outcome.total_available),
            reason,
        )
    console.print(table)

    for outcome in summary.outcomes:
        for error in outcome.errors:
            console.print(f"  [red]✗[/red] {outcome.location}: {error}")


# =============================================================================
# Main Crawl Function
# =============================================================================

async def run_crawl(
    locations: list[str],
    transaction_kind: TransactionKind,
    max_pages: int,
    limit: int | None,
    headless: bool | None = None,
    dry_run: bool = False,
    transient_retries: int | None = None,
    block_policy: BlockPolicy | None = None,
) -> RunSummary:
    """Crawl the given locations and persist the records unless dry_run."""
    settings = config.crawl.with_overrides(
        locations=locations,
        transaction_kind=transaction_kind,
        page_limit=max_pages,
        record_limit=limit,
        transient_retries=transient_retries,
        block_policy=block_policy,
    )

    console.print("\n[bold blue]Starting idealista.pt crawl[/bold blue]")
    console.print(f"  Locations: {', '.join(settings.locations)}")
    console.print(f"  Transaction: {settings.transaction_kind.value}")
    console.print(f"  Max pages per location: {settings.page_limit}")
    console.print(f"  Limit: {settings.record_limit or 'none'}")
    console.print(f"  Block policy: {settings.block_policy.value}")
    console.print(f"  Dry run: {dry_run}")
    console.print()

    cancel_event = asyncio.Event()
    loop = asyncio.get_running_loop()
    try:
        loop.add_signal_handler(signal.SIGINT, cancel_event.set)
        loop.add_signal_handler(signal.SIGTERM, cancel_event.set)
    except NotImplementedError:
        logger.debug("Signal handlers not supported on this platform")

    sink = None if dry_run else SqliteSink()

    async with BrowserSession(
        headless=headless,
        proxy=ProxySettings.from_env(),
    ) as session:
        controller = CrawlController.from_settings(settings, session, sink=sink)
        summary = await controller.run_locations(
            settings.locations,
            transaction_kind=settings.transaction_kind,
            page_limit=settings.page_limit,
            record_limit=settings.record_limit,
            cancel_event=cancel_event,
        )

    if sink is not None:
        for outcome in summary.outcomes:
            log_crawl(config.source_id, outcome)
        console.print(f"[green]Saved:[/green] {sink.new_count} new, {sink.updated_count} updated")

    return summary


# =============================================================================
# Database Summary
# =============================================================================

def show_summary() -> None:
    """Show a summary of what's currently in the database."""
    total = count_records(config.source_id)

    if not total:
        console.print("\n[dim]No records in database yet.[/dim]")
        return

    records = get_all_records(source=config.source_id)
    console.print(f"\n[bold]Database Summary: {total} records[/bold]")

    cities = Counter(record["city"] for record in records)
    table = Table(title="Records by City")
    table.add_column("City", style="cyan")
    table.add_column("Count", justify="right")
    for city, count in cities.most_common():
        table.add_row(city, str(count))
    console.print(table)

    prices = [record["price"] for record in records if record.get("price")]
    if prices:
        console.print(f"\nPrice range: €{min(prices):,.0f} - €{max(prices):,.0f}")

    console.print("\n[bold]Most recent records:[/bold]")
    for row in records[:3]:
        display_record(load_record(row))


# =============================================================================
# CLI Entry Point
# =============================================================================

def main() -> None:
    parser = argparse.ArgumentParser(
        description="Crawl property listings from idealista.pt",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog=f"""
Available locations:
  {', '.join(PORTUGUESE_LOCATIONS)}

Examples:
  %(prog)s --location lisboa --limit 5
  %(prog)s -l porto -t rent --max-pages 3
  %(prog)s --multiple --limit 50
  %(prog)s --location faro --dry-run --headed

Environment variables:
  PROXY_SERVER, PROXY_USERNAME, PROXY_PASSWORD
""",
    )
    parser.add_argument("--location", "-l", default="lisboa", help="Location to crawl (default: lisboa)")
    parser.add_argument(
        "--multiple",
        action="store_true",
        help="Crawl the configured list of popular locations",
    )
    parser.add_argument(
        "--transaction",
        "-t",
        choices=[kind.value for kind in TransactionKind],
        default=TransactionKind.SALE.value,
        help="Transaction type (default: sale)",
    )
    parser.add_argument("--max-pages", type=int, default=None, help="Maximum pages per location")
    parser.add_argument("--limit", type=int, default=None, help="Maximum records to collect")
    parser.add_argument("--headed", action="store_true", help="Show the browser window")
    parser.add_argument("--dry-run", action="store_true", help="Crawl but don't save to database")
    parser.add_argument(
        "--block-policy",
        choices=[policy.value for policy in BlockPolicy],
        default=None,
        help="Skip only the blocked location, or abort the whole run",
    )
    parser.add_argument(
        "--transient-retries",
        type=int,
        choices=range(0, 4),
        default=None,
        help="Retries for a failed page load before giving up on a location (0-3)",
    )
    parser.add_argument("--summary-only", action="store_true", help="Just show database summary")
    parser.add_argument("--debug", action="store_true", help="Enable debug logging")

    args = parser.parse_args()

    if args.debug:
        logging.getLogger().setLevel(logging.DEBUG)
        logging.getLogger("estate_crawler").setLevel(logging.DEBUG)

    locations = config.crawl.locations if args.multiple else [args.location]

    try:
        if args.summary_only:
            show_summary()
            return

        summary = asyncio.run(
            run_crawl(
                locations=locations,
                transaction_kind=TransactionKind(args.transaction),
                max_pages=args.max_pages or config.crawl.page_limit,
                limit=args.limit,
                headless=False if args.headed else None,
                dry_run=args.dry_run,
                transient_retries=args.transient_retries,
                block_policy=BlockPolicy(args.block_policy) if args.block_policy else None,
            )
        )

        display_outcomes(summary)

        console.print("\n" + "=" * 50)
        console.print("[bold]Final Statistics:[/bold]")
        console.print(f"  Records:       {summary.record_count}")
        console.print(f"  Pages visited: {summary.pages_visited}")
        console.print(f"  Stop reason:   {summary.stop_reason.value}")

        if summary.record_count == 0:
            console.print("\n[yellow]No records were collected. This might be due to:[/yellow]")
            console.print("  - DataDome bot protection blocking requests")
            console.print("  - Invalid location name")
            console.print("  - Network issues")
            console.print("  - No listings available for the search criteria")
            return

        console.print("\n[bold]Sample records:[/bold]")
        for record in summary.records[:3]:
            display_record(record)

        if not args.dry_run:
            show_summary()

    finally:
        close_db()


if __name__ == "__main__":
    main()
