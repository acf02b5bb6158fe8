"""Extract the embedded Next.js search state from a rendered results page.

Idealista serializes its search results into `<script id="__NEXT_DATA__">`:

    props.pageProps.searchData = {
        elementList: [...],   # listing items
        total: 1234,          # results across all pages
        totalPages: 42,
        currentPage: 1,       # older builds use actualPage
    }

A challenge page has no such script, so a missing state is an expected
outcome and is returned, never raised.
"""

from __future__ import annotations

import json
import logging
from typing import Any

from bs4 import BeautifulSoup

from ..errors import ExtractionFailure, ExtractionFailureKind
from ..models.record import PageSnapshot, RawItem

logger = logging.getLogger(__name__)

STATE_SCRIPT_ID = "__NEXT_DATA__"


def _missing(detail: str) -> ExtractionFailure:
    return ExtractionFailure(ExtractionFailureKind.MISSING_STATE, detail)


def _malformed(detail: str) -> ExtractionFailure:
    return ExtractionFailure(ExtractionFailureKind.MALFORMED_STATE, detail)


def _positive_int(value: Any, default: int, minimum: int) -> int:
    """Coerce a pagination field, falling back to default and clamping to minimum."""
    if isinstance(value, bool):
        return default
    try:
        number = int(value)
    except (TypeError, ValueError):
        return default
    return max(number, minimum)


def find_state_json(document: str) -> str | None:
    """Return the raw text of the embedded state script, or None if absent."""
    soup = BeautifulSoup(document, "html.parser")
    script = soup.find("script", id=STATE_SCRIPT_ID)
    if script is None:
        return None
    return script.string or script.get_text()


def parse_search_state(state: Any) -> PageSnapshot | ExtractionFailure:
    """Build a snapshot from the decoded state object."""
    if not isinstance(state, dict):
        return _malformed("state is not a JSON object")

    props = state.get("props")
    page_props = props.get("pageProps") if isinstance(props, dict) else None
    if not isinstance(page_props, dict):
        return _malformed("props.pageProps missing")

    search_data = page_props.get("searchData")
    if not isinstance(search_data, dict):
        return _malformed("props.pageProps.searchData missing")

    elements = search_data.get("elementList") or []
    if not isinstance(elements, list):
        return _malformed("searchData.elementList is not a list")

    items = []
    for position, element in enumerate(elements):
        if not isinstance(element, dict):
            logger.debug(f"Skipping non-object item at position {position}")
            continue
        items.append(RawItem.parse_lenient(element))

    current_page = search_data.get("currentPage") or search_data.get("actualPage")
    return PageSnapshot(
        items=tuple(items),
        current_page_index=_positive_int(current_page, default=1, minimum=1),
        total_pages=_positive_int(search_data.get("totalPages"), default=1, minimum=1),
        total_count=_positive_int(search_data.get("total"), default=0, minimum=0),
    )


def extract(document: str) -> PageSnapshot | ExtractionFailure:
    """Locate and parse the embedded search state.

    Args:
        document: Rendered page HTML.

    Returns:
        PageSnapshot on success, or ExtractionFailure (MISSING_STATE when the
        state script is absent or empty, MALFORMED_STATE when it does not
        parse into the expected schema). Never raises.
    """
    if not isinstance(document, str) or not document:
        return _missing("empty document")

    try:
        raw_state = find_state_json(document)
    except Exception as e:
        # bs4 is lenient, but treat any parser fault as unusable markup
        logger.warning(f"Could not parse document markup: {e}")
        return _malformed(f"unparseable markup: {e}")

    if raw_state is None:
        return _missing(f"{STATE_SCRIPT_ID} script tag not found")
    if not raw_state.strip():
        return _missing(f"{STATE_SCRIPT_ID} script tag is empty")

    try:
        state = json.loads(raw_state)
    except (ValueError, RecursionError) as e:
        return _malformed(f"invalid JSON: {e}")

    try:
        return parse_search_state(state)
    except Exception as e:
        logger.warning(f"Unexpected embedded state shape: {e}")
        return _malformed(f"unexpected state shape: {e}")
