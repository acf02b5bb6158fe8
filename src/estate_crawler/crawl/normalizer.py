"""Map raw idealista items to canonical records.

Every textual classification is an ordered rule table so each rule can be
tested and extended on its own. `normalize` is total: any field missing from
the item resolves to an explicit default here, and nowhere else.
"""

from __future__ import annotations

import hashlib
import json
import math
import re
from datetime import datetime, UTC
from urllib.parse import urljoin

from ..config import config
from ..models.record import (
    Amenities,
    CanonicalRecord,
    Coordinates,
    PropertyKind,
    RawItem,
    RecordDetails,
    RecordLocation,
    TransactionKind,
)

COUNTRY = "Portugal"
CURRENCY = "EUR"
DEFAULT_TITLE = "Property in Portugal"
ADDRESS_SEPARATOR = ", "

GROUND_FLOOR = 0
BASEMENT_FLOOR = -1
TOP_FLOOR = 99


# =============================================================================
# Rule Tables
# =============================================================================

# First matching kind wins, so order matters ("t0" is checked after "duplex")
PROPERTY_KIND_RULES: tuple[tuple[PropertyKind, tuple[str, ...]], ...] = (
    (PropertyKind.APARTMENT, ("flat", "apartamento", "apartment")),
    (PropertyKind.VILLA, ("moradia", "villa", "chalet")),
    (PropertyKind.HOUSE, ("house", "casa")),
    (PropertyKind.PENTHOUSE, ("penthouse", "cobertura")),
    (PropertyKind.DUPLEX, ("duplex",)),
    (PropertyKind.STUDIO, ("studio", "t0")),
    (PropertyKind.LOFT, ("loft",)),
    (PropertyKind.OFFICE, ("office", "escritório")),
    (PropertyKind.COMMERCIAL, ("premises", "loja")),
    (PropertyKind.GARAGE, ("garage", "garagem")),
    (PropertyKind.PARKING, ("parking", "estacionamento")),
    (PropertyKind.BUILDING, ("building", "prédio")),
    (PropertyKind.LAND, ("land", "terreno")),
)

TRANSACTION_KIND_RULES: tuple[tuple[TransactionKind, tuple[str, ...]], ...] = (
    (TransactionKind.SALE, ("sale", "comprar", "venda")),
    (TransactionKind.RENT, ("rent", "arrendar", "alugar")),
)

FLOOR_TERM_RULES: tuple[tuple[int, tuple[str, ...]], ...] = (
    (GROUND_FLOOR, ("r/c", "rés", "térr")),
    (BASEMENT_FLOOR, ("cave", "subsolo")),
    (TOP_FLOOR, ("sótão", "ático")),
)

# Boolean item flags and the feature label each one contributes
FLAG_FEATURES: tuple[tuple[str, str], ...] = (
    ("exterior", "exterior"),
    ("has_lift", "elevator"),
    ("has_parking_space", "parking"),
    ("has_swimming_pool", "swimming pool"),
    ("has_terrace", "terrace"),
    ("has_garden", "garden"),
    ("has_video", "video available"),
    ("has_3d_tour", "3D tour"),
    ("has_plan", "floor plan"),
    ("new_development", "new development"),
)

# Each amenity is true when any lower-cased feature contains any of its terms.
# A parking space is only inferred from parking words, not from "garagem".
AMENITY_TERMS: dict[str, tuple[str, ...]] = {
    "has_parking": ("parking", "estacionamento", "lugar de garagem"),
    "has_garden": ("garden", "jardim"),
    "has_balcony": ("balcony", "balcão", "varanda"),
    "has_terrace": ("terrace", "terraço"),
    "has_pool": ("pool", "piscina", "swimming"),
    "has_elevator": ("elevator", "elevador", "lift", "ascensor"),
    "has_garage": ("garage", "garagem"),
    "has_basement": ("basement", "cave", "subsolo"),
    "has_fireplace": ("fireplace", "lareira", "chimenea"),
    "is_furnished": ("furnished", "mobilado", "amueblado"),
    "is_new_construction": ("new development", "nova construção", "obra nova"),
    "is_luxury": ("luxury", "luxo", "premium"),
}


# =============================================================================
# Field Helpers
# =============================================================================

def clean_text(text: str | None) -> str | None:
    """Collapse whitespace; empty text becomes None."""
    if not text:
        return None
    cleaned = re.sub(r"\s+", " ", text).strip()
    return cleaned or None


def infer_property_kind(*texts: str | None) -> PropertyKind:
    """Classify a property type; the first non-empty text is used."""
    source = next((text for text in texts if text), "").lower()
    for kind, synonyms in PROPERTY_KIND_RULES:
        if any(term in source for term in synonyms):
            return kind
    return PropertyKind.OTHER


def infer_transaction_kind(operation: str | None) -> TransactionKind:
    """Classify an operation, falling back to sale when unknown."""
    source = (operation or "").lower()
    for kind, synonyms in TRANSACTION_KIND_RULES:
        if any(term in source for term in synonyms):
            return kind
    return TransactionKind.SALE


def parse_floor(floor: str | None) -> int | None:
    """Parse a Portuguese floor descriptor like 'R/C', 'Cave' or '3º andar'."""
    if not floor:
        return None
    cleaned = floor.lower().strip()

    for value, terms in FLOOR_TERM_RULES:
        if any(term in cleaned for term in terms):
            return value

    match = re.search(r"(\d+)", cleaned)
    return int(match.group(1)) if match else None


def extract_features(item: RawItem) -> list[str]:
    """Feature labels from the item's boolean flags, then its label texts."""
    features = [label for attr, label in FLAG_FEATURES if getattr(item, attr)]
    for label in item.labels or []:
        if label.text:
            features.append(label.text.lower())
    return features


def infer_amenities(features: list[str]) -> Amenities:
    """Compute every amenity flag independently from the feature labels."""
    features_lower = [feature.lower() for feature in features]
    return Amenities(**{
        amenity: any(term in feature for feature in features_lower for term in terms)
        for amenity, terms in AMENITY_TERMS.items()
    })


def compose_address(*fragments: str | None) -> str | None:
    """Join non-empty address fragments in priority order."""
    parts = [fragment.strip() for fragment in fragments if fragment and fragment.strip()]
    return ADDRESS_SEPARATOR.join(parts) if parts else None


def synthesize_identifier(item: RawItem) -> str:
    """Stable identifier for items without a property code or reference."""
    payload = json.dumps(item.model_dump(mode="json", by_alias=True), sort_keys=True, default=str)
    digest = hashlib.sha1(payload.encode("utf-8")).hexdigest()[:16]
    return f"idealista-{digest}"


def resolve_price(item: RawItem) -> float:
    """Item price, then the nested price info amount, then 0. Never negative."""
    price = item.price
    if price is None and item.price_info and item.price_info.price:
        price = item.price_info.price.amount
    if price is None or not math.isfinite(price) or price < 0:
        return 0
    return price


def build_listing_url(property_code: str | None, url: str | None, base_url: str | None = None) -> str:
    """Absolute listing URL from the item URL or property code."""
    base = base_url or config.base_url
    if url:
        if url.startswith("http"):
            return url
        if url.startswith("/"):
            return urljoin(base, url)
    if property_code:
        return f"{base}/imovel/{property_code}/"
    return base


# =============================================================================
# Normalizer
# =============================================================================

def normalize(
    item: RawItem,
    context_location: str,
    captured_at: datetime | None = None,
) -> CanonicalRecord:
    """Map one raw item to a canonical record.

    Args:
        item: Raw listing from the embedded search state.
        context_location: Location the page was requested for; used as the
            city when the item carries no municipality.
        captured_at: Capture timestamp. Defaults to now; pass a fixed value
            for reproducible output.

    Returns:
        The canonical record. Never raises for a RawItem.
    """
    price = resolve_price(item)
    identifier = clean_text(item.property_code) or clean_text(item.external_reference) or synthesize_identifier(item)

    typology = item.detailed_type.typology if item.detailed_type else None
    if typology is None:
        typology = (item.model_extra or {}).get("detailedType_typology")

    suggested = item.suggested_texts
    title = clean_text(suggested.title if suggested else None) or clean_text(item.address) or DEFAULT_TITLE
    description = clean_text(item.description) or clean_text(suggested.subtitle if suggested else None)

    coordinates = None
    if item.latitude is not None and item.longitude is not None:
        coordinates = Coordinates(lat=item.latitude, lon=item.longitude)

    features = extract_features(item)

    price_per_sqm = None
    if item.size and item.size > 0 and price > 0:
        ratio = price / item.size
        if math.isfinite(ratio):
            price_per_sqm = round(ratio)

    return CanonicalRecord(
        identifier=identifier,
        source=config.source_id,
        title=title,
        price=price,
        currency=CURRENCY,
        property_kind=infer_property_kind(item.property_type, typology if isinstance(typology, str) else None),
        transaction_kind=infer_transaction_kind(item.operation),
        location=RecordLocation(
            address=compose_address(item.address, item.neighborhood, item.district, item.municipality),
            city=clean_text(item.municipality) or context_location,
            region=clean_text(item.province),
            country=COUNTRY,
            coordinates=coordinates,
        ),
        details=RecordDetails(
            bedrooms=item.rooms,
            bathrooms=item.bathrooms,
            area_sqm=item.size,
            floor=parse_floor(item.floor),
            rooms=item.rooms,
        ),
        amenities=infer_amenities(features),
        features=features,
        images=[item.thumbnail] if item.thumbnail else [],
        description=description,
        price_per_sqm=price_per_sqm,
        source_url=build_listing_url(item.property_code, item.url),
        captured_at=captured_at or datetime.now(UTC),
        raw_data=item.model_dump(mode="json", by_alias=True, exclude_none=True),
    )
