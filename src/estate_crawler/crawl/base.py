"""Contracts for the collaborators the crawl pipeline depends on.

The pipeline never talks to Playwright or SQLite directly: it renders through a
Renderer, interacts through a PageHandle and persists through a RecordSink.
"""

from abc import ABC, abstractmethod
from collections.abc import Sequence

from ..models.record import CanonicalRecord


class PageHandle(ABC):
    """A rendered page that can be inspected and interacted with."""

    @property
    @abstractmethod
    def url(self) -> str:
        raise NotImplementedError

    @abstractmethod
    async def content(self) -> str:
        """Return the current document HTML."""
        raise NotImplementedError

    @abstractmethod
    async def body_text(self) -> str:
        """Return the visible text of the page body."""
        raise NotImplementedError

    @abstractmethod
    async def has_element(self, selector: str) -> bool:
        """Check whether any element matches the selector."""
        raise NotImplementedError

    @abstractmethod
    async def click_if_visible(self, selector: str, timeout_ms: int) -> bool:
        """Click the first element matching the selector if it becomes visible.

        Returns:
            True if an element was clicked.
        """
        raise NotImplementedError

    @abstractmethod
    async def scroll_by(self, pixels: int) -> None:
        raise NotImplementedError

    @abstractmethod
    async def move_mouse(self, x: float, y: float, steps: int = 10) -> None:
        raise NotImplementedError

    @abstractmethod
    async def wait(self, ms: float) -> None:
        raise NotImplementedError

    @abstractmethod
    async def close(self) -> None:
        raise NotImplementedError


class Renderer(ABC):
    """Produces rendered pages for URLs."""

    @abstractmethod
    async def render(self, url: str, timeout_ms: int) -> PageHandle:
        """Navigate to a URL and return the rendered page.

        Raises:
            RenderError: On transport failure or navigation timeout.
        """
        raise NotImplementedError


class RecordSink(ABC):
    """Persists canonical records, idempotently keyed by (source, identifier)."""

    @abstractmethod
    def persist(self, records: Sequence[CanonicalRecord]) -> int:
        """Persist a batch of records.

        Returns:
            Number of records written (new or updated).

        Raises:
            SinkError: If the batch could not be persisted.
        """
        raise NotImplementedError
