"""Configuration management."""

import os
from pathlib import Path

from pydantic import BaseModel, Field

from .models.record import BlockPolicy, TransactionKind


# Popular Portuguese locations for property searches
PORTUGUESE_LOCATIONS = [
    "lisboa",
    "porto",
    "faro",
    "braga",
    "coimbra",
    "funchal",
    "setubal",
    "aveiro",
    "evora",
    "leiria",
    "cascais",
    "sintra",
    "matosinhos",
    "almada",
    "portimao",
]

# Retrying a transient failure more than this is never allowed
MAX_TRANSIENT_RETRIES = 3


class CrawlSettings(BaseModel):
    """Crawl policy: what to fetch, how fast, and when to stop."""

    locations: list[str] = Field(
        default_factory=lambda: PORTUGUESE_LOCATIONS[:5],
        description="Locations crawled by a multi-location run, in order",
    )
    transaction_kind: TransactionKind = Field(default=TransactionKind.SALE)

    page_limit: int = Field(default=5, ge=1, description="Per-location page cap")
    record_limit: int | None = Field(
        default=None, ge=1, description="Optional cap on records (global in multi-location runs)"
    )

    # Pacing, in milliseconds
    min_page_delay_ms: int = Field(default=2_000, ge=0)
    max_page_delay_ms: int = Field(default=4_000, ge=0)
    location_delay_floor_ms: int = Field(default=3_000, ge=0)
    location_delay_jitter_ms: int = Field(default=2_000, ge=0)

    navigation_timeout_ms: int = Field(default=60_000, ge=1)

    # Failure policy
    transient_retries: int = Field(
        default=0,
        ge=0,
        le=MAX_TRANSIENT_RETRIES,
        description="Retries for a transient fetch failure before the location is aborted",
    )
    block_policy: BlockPolicy = Field(
        default=BlockPolicy.SKIP_LOCATION,
        description="Whether a block ends only the current location or the whole run",
    )

    def with_overrides(
        self,
        locations: list[str] | None = None,
        transaction_kind: TransactionKind | None = None,
        page_limit: int | None = None,
        record_limit: int | None = None,
        transient_retries: int | None = None,
        block_policy: BlockPolicy | None = None,
    ) -> "CrawlSettings":
        """Create a new CrawlSettings with optional overrides.

        Only non-None values override the current values.
        """
        updates = {
            "locations": locations,
            "transaction_kind": transaction_kind,
            "page_limit": page_limit,
            "record_limit": record_limit,
            "transient_retries": transient_retries,
            "block_policy": block_policy,
        }
        data = self.model_dump()
        data.update({key: value for key, value in updates.items() if value is not None})
        return CrawlSettings(**data)


class ProxySettings(BaseModel):
    """Upstream proxy for the browser. Residential proxies fare best against DataDome."""

    server: str
    username: str | None = None
    password: str | None = None

    @classmethod
    def from_env(cls) -> "ProxySettings | None":
        """Read PROXY_SERVER / PROXY_USERNAME / PROXY_PASSWORD, if set."""
        server = os.environ.get("PROXY_SERVER")
        if not server:
            return None
        return cls(
            server=server,
            username=os.environ.get("PROXY_USERNAME"),
            password=os.environ.get("PROXY_PASSWORD"),
        )


class Config(BaseModel):
    """Application configuration."""

    # Project paths - config.py is at src/estate_crawler/config.py, so 3 parents up
    project_root: Path = Path(__file__).parent.parent.parent
    data_dir: Path = project_root / "data"
    db_path: Path = data_dir / "estate_crawler.db"

    # Source portal
    source_id: str = "idealista_portugal"
    base_url: str = "https://www.idealista.pt"

    # Browser settings
    headless: bool = True
    slow_mo: int = 0  # milliseconds between actions
    locale: str = "pt-PT"
    timezone_id: str = "Europe/Lisbon"

    crawl: CrawlSettings = Field(default_factory=CrawlSettings)

    def ensure_dirs(self) -> None:
        """Ensure required directories exist."""
        self.data_dir.mkdir(parents=True, exist_ok=True)


# Global config instance
config = Config()
