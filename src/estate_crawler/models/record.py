"""Crawl and listing data models."""

from dataclasses import dataclass, field
from datetime import datetime, UTC
from enum import Enum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator

from ..errors import ConfigurationError


def _utc_now() -> datetime:
    """Return current UTC time as timezone-aware datetime."""
    return datetime.now(UTC)


class TransactionKind(str, Enum):
    SALE = "sale"
    RENT = "rent"


class PropertyKind(str, Enum):
    APARTMENT = "apartment"
    VILLA = "villa"
    HOUSE = "house"
    PENTHOUSE = "penthouse"
    DUPLEX = "duplex"
    STUDIO = "studio"
    LOFT = "loft"
    OFFICE = "office"
    COMMERCIAL = "commercial"
    GARAGE = "garage"
    PARKING = "parking"
    BUILDING = "building"
    LAND = "land"
    OTHER = "other"


class StopReason(str, Enum):
    """Why a crawl reached its terminal state."""

    COMPLETED = "completed"
    LIMIT_REACHED = "limit_reached"  # record cap
    PAGE_LIMIT_REACHED = "page_limit_reached"
    NO_MORE_PAGES = "no_more_pages"
    BLOCKED = "blocked"
    FATAL_ERROR = "fatal_error"
    CANCELLED = "cancelled"


class BlockPolicy(str, Enum):
    """What a blocked location means for the rest of a multi-location run."""

    SKIP_LOCATION = "skip_location"
    ABORT_RUN = "abort_run"


# =============================================================================
# Crawl Input
# =============================================================================

@dataclass(frozen=True)
class CrawlJob:
    """Immutable input to one location crawl."""

    location: str
    transaction_kind: TransactionKind = TransactionKind.SALE
    page_limit: int = 5
    record_limit: int | None = None

    def validate(self) -> None:
        """Check job bounds.

        Raises:
            ConfigurationError: If any bound is out of range.
        """
        if not self.location or not self.location.strip():
            raise ConfigurationError("location must be a non-empty string")
        if isinstance(self.page_limit, bool) or not isinstance(self.page_limit, int) or self.page_limit < 1:
            raise ConfigurationError(f"page_limit must be an integer >= 1, got {self.page_limit!r}")
        if self.record_limit is not None and (
            isinstance(self.record_limit, bool)
            or not isinstance(self.record_limit, int)
            or self.record_limit < 1
        ):
            raise ConfigurationError(f"record_limit must be an integer >= 1, got {self.record_limit!r}")
        if not isinstance(self.transaction_kind, TransactionKind):
            raise ConfigurationError(f"unknown transaction kind {self.transaction_kind!r}")


# =============================================================================
# Embedded State (untrusted input: every field optional)
# =============================================================================

class _Lenient(BaseModel):
    # Infinity and NaN parse from JSON but are never meaningful here
    model_config = ConfigDict(extra="allow", populate_by_name=True, allow_inf_nan=False)


class RawPrice(_Lenient):
    amount: float | None = None
    currency_suffix: str | None = Field(None, alias="currencySuffix")


class RawPriceInfo(_Lenient):
    price: RawPrice | None = None


class RawDetailedType(_Lenient):
    typology: str | None = None
    sub_typology: str | None = Field(None, alias="subTypology")


class RawSuggestedTexts(_Lenient):
    title: str | None = None
    subtitle: str | None = None


class RawLabel(_Lenient):
    type: str | None = None
    text: str | None = None


class RawItem(_Lenient):
    """One listing as emitted by the portal's embedded search state."""

    property_code: str | None = Field(None, alias="propertyCode")
    external_reference: str | None = Field(None, alias="externalReference")
    price: float | None = None
    price_info: RawPriceInfo | None = Field(None, alias="priceInfo")
    property_type: str | None = Field(None, alias="propertyType")
    detailed_type: RawDetailedType | None = Field(None, alias="detailedType")
    operation: str | None = None
    size: float | None = None
    rooms: int | None = None
    bathrooms: int | None = None
    floor: str | None = None

    # Location fragments
    address: str | None = None
    neighborhood: str | None = None
    district: str | None = None
    municipality: str | None = None
    province: str | None = None
    country: str | None = None
    latitude: float | None = None
    longitude: float | None = None

    description: str | None = None
    suggested_texts: RawSuggestedTexts | None = Field(None, alias="suggestedTexts")
    thumbnail: str | None = None
    url: str | None = None

    # Amenity flags
    exterior: bool | None = None
    has_lift: bool | None = Field(None, alias="hasLift")
    has_parking_space: bool | None = Field(None, alias="hasParkingSpace")
    has_swimming_pool: bool | None = Field(None, alias="hasSwimmingPool")
    has_terrace: bool | None = Field(None, alias="hasTerrace")
    has_garden: bool | None = Field(None, alias="hasGarden")
    has_video: bool | None = Field(None, alias="hasVideo")
    has_3d_tour: bool | None = Field(None, alias="has3DTour")
    has_plan: bool | None = Field(None, alias="hasPlan")
    new_development: bool | None = Field(None, alias="newDevelopment")

    labels: list[RawLabel] | None = None

    @field_validator("property_code", "external_reference", "floor", mode="before")
    @classmethod
    def _numbers_as_text(cls, value: Any) -> Any:
        # The portal emits some codes and floors as bare numbers
        if isinstance(value, (int, float)) and not isinstance(value, bool):
            return str(value)
        return value

    @classmethod
    def parse_lenient(cls, payload: dict[str, Any]) -> "RawItem":
        """Validate a payload, dropping individual fields that fail validation.

        A malformed field never rejects the whole item.
        """
        data = dict(payload)
        while True:
            try:
                return cls.model_validate(data)
            except ValidationError as exc:
                bad_keys = {err["loc"][0] for err in exc.errors() if err["loc"]}
                bad_keys &= set(data)
                if not bad_keys:
                    return cls()
                for key in bad_keys:
                    del data[key]


@dataclass(frozen=True)
class PageSnapshot:
    """Parsed search state of one results page."""

    items: tuple[RawItem, ...]
    current_page_index: int = 1
    total_pages: int = 1
    total_count: int = 0

    @property
    def has_next_page(self) -> bool:
        return self.current_page_index < self.total_pages


# =============================================================================
# Canonical Record (wire contract toward the sink)
# =============================================================================

class Coordinates(BaseModel):
    lat: float
    lon: float


class RecordLocation(BaseModel):
    address: str | None = Field(None, description="Street address, neighborhood, district, municipality")
    city: str = Field(..., description="Municipality, or the requested location")
    region: str | None = Field(None, description="Province")
    country: str = Field(..., description="Country name")
    coordinates: Coordinates | None = None


class RecordDetails(BaseModel):
    bedrooms: int | None = None
    bathrooms: int | None = None
    area_sqm: float | None = Field(None, description="Living area in square metres")
    floor: int | None = Field(None, description="0 = ground, -1 = basement, 99 = top floor")
    rooms: int | None = None


class Amenities(BaseModel):
    has_parking: bool = False
    has_garden: bool = False
    has_balcony: bool = False
    has_terrace: bool = False
    has_pool: bool = False
    has_elevator: bool = False
    has_garage: bool = False
    has_basement: bool = False
    has_fireplace: bool = False
    is_furnished: bool = False
    is_new_construction: bool = False
    is_luxury: bool = False


class CanonicalRecord(BaseModel):
    """Portal-independent listing produced by the normalizer.

    Field names are a stable contract: add fields, never rename or remove them.
    """

    identifier: str = Field(..., min_length=1, description="Listing ID on the source portal")
    source: str = Field(..., description="Source identifier (e.g., 'idealista_portugal')")
    title: str
    price: float = Field(0, ge=0, description="Price in major currency units, 0 when unknown")
    currency: str = "EUR"
    property_kind: PropertyKind = PropertyKind.OTHER
    transaction_kind: TransactionKind = TransactionKind.SALE
    location: RecordLocation
    details: RecordDetails = Field(default_factory=RecordDetails)
    amenities: Amenities = Field(default_factory=Amenities)
    features: list[str] = Field(default_factory=list)
    images: list[str] = Field(default_factory=list)
    description: str | None = None
    price_per_sqm: int | None = None
    source_url: str
    captured_at: datetime = Field(default_factory=_utc_now)
    raw_data: dict[str, Any] | None = Field(None, description="Raw item as emitted by the portal")


# =============================================================================
# Crawl Output
# =============================================================================

@dataclass
class CrawlOutcome:
    """Result of crawling one location."""

    location: str
    records: list[CanonicalRecord] = field(default_factory=list)
    pages_visited: int = 0
    stop_reason: StopReason = StopReason.COMPLETED
    total_available: int = 0
    errors: list[str] = field(default_factory=list)
    persisted: int = 0

    @property
    def record_count(self) -> int:
        return len(self.records)

    def __repr__(self) -> str:
        return (
            f"CrawlOutcome({self.location!r}: {self.record_count} records, "
            f"{self.pages_visited} pages, {self.stop_reason.value})"
        )


@dataclass
class RunSummary:
    """Result of a multi-location run."""

    outcomes: list[CrawlOutcome] = field(default_factory=list)
    stop_reason: StopReason = StopReason.COMPLETED

    @property
    def records(self) -> list[CanonicalRecord]:
        return [record for outcome in self.outcomes for record in outcome.records]

    @property
    def record_count(self) -> int:
        return sum(outcome.record_count for outcome in self.outcomes)

    @property
    def pages_visited(self) -> int:
        return sum(outcome.pages_visited for outcome in self.outcomes)

    def __repr__(self) -> str:
        return (
            f"RunSummary({len(self.outcomes)} locations, {self.record_count} records, "
            f"{self.stop_reason.value})"
        )
