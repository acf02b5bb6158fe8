"""Database schema definitions."""

import sqlite3
from pathlib import Path

from ..config import config


SCHEMA = """
-- canonical records, one row per (source, identifier)
CREATE TABLE IF NOT EXISTS records (
    id TEXT PRIMARY KEY,
    source TEXT NOT NULL,
    identifier TEXT NOT NULL,
    title TEXT NOT NULL,
    price REAL NOT NULL DEFAULT 0,
    currency TEXT NOT NULL,
    property_kind TEXT NOT NULL,
    transaction_kind TEXT NOT NULL,
    city TEXT NOT NULL,
    region TEXT,
    country TEXT NOT NULL,
    address TEXT,
    latitude REAL,
    longitude REAL,
    bedrooms INTEGER,
    bathrooms INTEGER,
    area_sqm REAL,
    floor INTEGER,
    source_url TEXT NOT NULL,
    captured_at TIMESTAMP NOT NULL,
    record JSON NOT NULL,
    first_seen_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP,
    updated_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP,
    last_seen_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP,
    UNIQUE(source, identifier)
);

-- crawl_logs table (one row per location crawl)
CREATE TABLE IF NOT EXISTS crawl_logs (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    source TEXT NOT NULL,
    location TEXT NOT NULL,
    created_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP,
    stop_reason TEXT NOT NULL,
    pages_visited INTEGER NOT NULL,
    record_count INTEGER NOT NULL,
    total_available INTEGER,
    errors JSON
);

-- Create indexes for common queries
CREATE INDEX IF NOT EXISTS idx_records_source ON records(source);
CREATE INDEX IF NOT EXISTS idx_records_city ON records(city);
CREATE INDEX IF NOT EXISTS idx_records_first_seen ON records(first_seen_at);
CREATE INDEX IF NOT EXISTS idx_crawl_logs_location ON crawl_logs(location);
"""


def init_db(db_path: Path | None = None) -> sqlite3.Connection:
    """Initialize the database with schema.

    Args:
        db_path: Optional path to database. Uses config default if not provided.

    Returns:
        Connection to the initialized database.
    """
    if db_path is None:
        db_path = config.db_path
        config.ensure_dirs()

    conn = sqlite3.connect(db_path)
    conn.row_factory = sqlite3.Row
    conn.executescript(SCHEMA)
    conn.commit()
    return conn
