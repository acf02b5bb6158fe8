"""Crawl pipeline module."""

from .base import PageHandle, RecordSink, Renderer
from .controller import CrawlController, CrawlState
from .evasion import ChallengeState, EvasionCoordinator
from .extractor import extract
from .fetcher import PageFetcher, build_search_url
from .normalizer import normalize
from .pacing import PacingPolicy

__all__ = [
    "PageHandle",
    "RecordSink",
    "Renderer",
    "CrawlController",
    "CrawlState",
    "ChallengeState",
    "EvasionCoordinator",
    "extract",
    "PageFetcher",
    "build_search_url",
    "normalize",
    "PacingPolicy",
]
