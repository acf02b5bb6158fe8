"""Database module."""

from .schema import init_db
from .operations import (
    SqliteSink,
    close_db,
    count_records,
    get_all_records,
    get_crawl_logs,
    get_db,
    get_record,
    load_record,
    log_crawl,
    persist_records,
)

__all__ = [
    "init_db",
    "SqliteSink",
    "close_db",
    "count_records",
    "get_all_records",
    "get_crawl_logs",
    "get_db",
    "get_record",
    "load_record",
    "log_crawl",
    "persist_records",
]
