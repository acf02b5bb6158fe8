"""Database operations."""

import json
import sqlite3
import uuid
from collections.abc import Sequence
from pathlib import Path
from typing import Any

from ..crawl.base import RecordSink
from ..errors import SinkError
from ..models.record import CanonicalRecord, CrawlOutcome
from .schema import init_db


_connection: sqlite3.Connection | None = None


def get_db(db_path: Path | None = None) -> sqlite3.Connection:
    """Get database connection, initializing if needed.

    Args:
        db_path: Optional path to database. Uses config default if not provided.

    Returns:
        Database connection.
    """
    global _connection
    if _connection is None:
        _connection = init_db(db_path)
    return _connection


def close_db() -> None:
    """Close the database connection."""
    global _connection
    if _connection is not None:
        _connection.close()
        _connection = None


def _upsert_record(conn: sqlite3.Connection, record: CanonicalRecord) -> None:
    coordinates = record.location.coordinates
    conn.execute(
        """
        INSERT INTO records (
            id, source, identifier, title, price, currency,
            property_kind, transaction_kind, city, region, country, address,
            latitude, longitude, bedrooms, bathrooms, area_sqm, floor,
            source_url, captured_at, record, last_seen_at
        )
        VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, CURRENT_TIMESTAMP)
        ON CONFLICT(source, identifier) DO UPDATE SET
            title = excluded.title,
            price = excluded.price,
            currency = excluded.currency,
            property_kind = excluded.property_kind,
            transaction_kind = excluded.transaction_kind,
            city = excluded.city,
            region = excluded.region,
            country = excluded.country,
            address = excluded.address,
            latitude = excluded.latitude,
            longitude = excluded.longitude,
            bedrooms = excluded.bedrooms,
            bathrooms = excluded.bathrooms,
            area_sqm = excluded.area_sqm,
            floor = excluded.floor,
            source_url = excluded.source_url,
            captured_at = excluded.captured_at,
            record = excluded.record,
            updated_at = CURRENT_TIMESTAMP,
            last_seen_at = CURRENT_TIMESTAMP
        """,
        (
            str(uuid.uuid4()),
            record.source,
            record.identifier,
            record.title,
            record.price,
            record.currency,
            record.property_kind.value,
            record.transaction_kind.value,
            record.location.city,
            record.location.region,
            record.location.country,
            record.location.address,
            coordinates.lat if coordinates else None,
            coordinates.lon if coordinates else None,
            record.details.bedrooms,
            record.details.bathrooms,
            record.details.area_sqm,
            record.details.floor,
            record.source_url,
            record.captured_at.isoformat(),
            record.model_dump_json(),
        ),
    )


def persist_records(records: Sequence[CanonicalRecord]) -> tuple[int, int]:
    """Upsert a batch of records in one transaction.

    Re-persisting the same (source, identifier) updates the row in place.

    Returns:
        Tuple of (new_count, updated_count).
    """
    conn = get_db()
    new_count = 0
    updated_count = 0
    try:
        for record in records:
            exists = conn.execute(
                "SELECT 1 FROM records WHERE source = ? AND identifier = ?",
                (record.source, record.identifier),
            ).fetchone()
            _upsert_record(conn, record)
            if exists:
                updated_count += 1
            else:
                new_count += 1
        conn.commit()
    except Exception:
        conn.rollback()
        raise
    return new_count, updated_count


def get_record(source: str, identifier: str) -> dict[str, Any] | None:
    """Get a record by source and identifier.

    Returns:
        Record row as dict, or None if not found.
    """
    conn = get_db()
    row = conn.execute(
        "SELECT * FROM records WHERE source = ? AND identifier = ?",
        (source, identifier),
    ).fetchone()
    if row is None:
        return None
    return dict(row)


def get_all_records(source: str | None = None, city: str | None = None) -> list[dict[str, Any]]:
    """Get all records, optionally filtered by source and city."""
    conn = get_db()
    query = "SELECT * FROM records"
    clauses = []
    params: list[str] = []
    if source:
        clauses.append("source = ?")
        params.append(source)
    if city:
        clauses.append("city = ?")
        params.append(city)
    if clauses:
        query += " WHERE " + " AND ".join(clauses)
    query += " ORDER BY first_seen_at DESC"
    return [dict(row) for row in conn.execute(query, params).fetchall()]


def count_records(source: str | None = None) -> int:
    """Count stored records, optionally for one source."""
    conn = get_db()
    if source:
        row = conn.execute("SELECT COUNT(*) FROM records WHERE source = ?", (source,)).fetchone()
    else:
        row = conn.execute("SELECT COUNT(*) FROM records").fetchone()
    return row[0]


def load_record(row: dict[str, Any]) -> CanonicalRecord:
    """Rebuild a CanonicalRecord from a stored row."""
    return CanonicalRecord.model_validate_json(row["record"])


def log_crawl(source: str, outcome: CrawlOutcome) -> int:
    """Log the outcome of one location crawl.

    Returns:
        The log entry ID.
    """
    conn = get_db()
    cursor = conn.execute(
        """
        INSERT INTO crawl_logs (source, location, stop_reason, pages_visited, record_count, total_available, errors)
        VALUES (?, ?, ?, ?, ?, ?, ?)
        """,
        (
            source,
            outcome.location,
            outcome.stop_reason.value,
            outcome.pages_visited,
            outcome.record_count,
            outcome.total_available,
            json.dumps(outcome.errors) if outcome.errors else None,
        ),
    )
    conn.commit()
    return cursor.lastrowid or 0


def get_crawl_logs(location: str | None = None) -> list[dict[str, Any]]:
    """Get crawl logs, optionally filtered by location."""
    conn = get_db()
    if location:
        rows = conn.execute(
            "SELECT * FROM crawl_logs WHERE location = ? ORDER BY id DESC",
            (location,),
        ).fetchall()
    else:
        rows = conn.execute("SELECT * FROM crawl_logs ORDER BY id DESC").fetchall()
    return [dict(row) for row in rows]


class SqliteSink(RecordSink):
    """RecordSink over the module-level SQLite connection."""

    def __init__(self) -> None:
        self.new_count = 0
        self.updated_count = 0

    def persist(self, records: Sequence[CanonicalRecord]) -> int:
        try:
            new_count, updated_count = persist_records(records)
        except sqlite3.Error as e:
            raise SinkError(f"SQLite persist failed: {e}") from e
        self.new_count += new_count
        self.updated_count += updated_count
        return new_count + updated_count
