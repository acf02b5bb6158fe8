"""Failure taxonomy shared across the crawl pipeline.

Expected failures (missing embedded state, a blocked page, a transport hiccup)
are returned as values so the controller can always finish a run. Exceptions
are reserved for invalid configuration and for faults raised by the external
collaborators, which are converted to values at the component boundary.
"""

import traceback
from dataclasses import dataclass, field
from datetime import datetime, UTC
from enum import Enum


class ConfigurationError(ValueError):
    """Invalid job bounds or settings. Raised before any page is fetched."""


class RenderError(Exception):
    """The render collaborator could not produce a document (transport or timeout)."""


class SinkError(Exception):
    """The sink collaborator failed to persist a batch of records."""


class ExtractionFailureKind(str, Enum):
    MISSING_STATE = "missing_state"
    MALFORMED_STATE = "malformed_state"


@dataclass(frozen=True)
class ExtractionFailure:
    """The document carried no usable embedded state."""

    kind: ExtractionFailureKind
    detail: str = ""


class FetchFailureKind(str, Enum):
    BLOCKED = "blocked"
    TRANSIENT = "transient"
    NO_DATA = "no_data"


@dataclass(frozen=True)
class FetchFailure:
    """A page fetch that did not produce a snapshot."""

    kind: FetchFailureKind
    url: str
    detail: str = ""

    def __str__(self) -> str:
        suffix = f": {self.detail}" if self.detail else ""
        return f"{self.kind.value} at {self.url}{suffix}"


@dataclass
class CrawlError:
    """Record of an unexpected error inside a location crawl."""

    location: str
    error_type: str
    error_message: str
    traceback: str
    timestamp: datetime = field(default_factory=lambda: datetime.now(UTC))

    @classmethod
    def from_exception(cls, location: str, exc: Exception) -> "CrawlError":
        """Create a CrawlError from an exception."""
        return cls(
            location=location,
            error_type=type(exc).__name__,
            error_message=str(exc),
            traceback=traceback.format_exc(),
        )

    def __str__(self) -> str:
        return f"{self.error_type}: {self.error_message}"
