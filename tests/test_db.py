"""Tests for database operations."""

import json

import pytest

from estate_crawler.crawl.normalizer import normalize
from estate_crawler.db.schema import init_db
from estate_crawler.db.operations import (
    SqliteSink,
    close_db,
    count_records,
    get_all_records,
    get_crawl_logs,
    get_record,
    load_record,
    log_crawl,
    persist_records,
)
from estate_crawler.errors import SinkError
from estate_crawler.models.record import CrawlOutcome, RawItem, StopReason
import estate_crawler.db.operations as db_ops

from fakes import FIXED_TIME, make_items


@pytest.fixture
def test_db(tmp_path):
    """Create a temporary test database."""
    db_path = tmp_path / "test.db"
    # Reset module-level connection
    db_ops._connection = None
    conn = init_db(db_path)
    db_ops._connection = conn
    yield conn
    close_db()


def make_records(count: int, start: int = 0, **overrides):
    records = []
    for payload in make_items(count, start):
        payload.update(overrides)
        records.append(normalize(RawItem.parse_lenient(payload), "lisboa", captured_at=FIXED_TIME))
    return records


class TestRecordOperations:
    """Tests for record upserts and reads."""

    def test_persist_and_get_record(self, test_db):
        record = make_records(1)[0]

        assert persist_records([record]) == (1, 0)

        row = get_record("idealista_portugal", record.identifier)
        assert row is not None
        assert row["title"] == record.title
        assert row["price"] == record.price
        assert row["city"] == "Lisboa"
        assert row["property_kind"] == "apartment"

    def test_persist_existing_record_updates(self, test_db):
        original = make_records(1)[0]
        persist_records([original])
        first_id = get_record("idealista_portugal", original.identifier)["id"]

        assert persist_records(make_records(1, price=199000)) == (0, 1)

        row = get_record("idealista_portugal", original.identifier)
        assert row["id"] == first_id
        assert row["price"] == 199000

    def test_persist_is_idempotent(self, test_db):
        records = make_records(3)

        assert persist_records(records) == (3, 0)
        assert persist_records(records) == (0, 3)
        assert count_records() == 3

    def test_load_record_roundtrip(self, test_db):
        record = make_records(1)[0]
        persist_records([record])

        loaded = load_record(get_record(record.source, record.identifier))

        assert loaded == record

    def test_get_all_records_filters(self, test_db):
        persist_records(make_records(2))
        persist_records(make_records(1, start=10, municipality="Porto"))

        assert len(get_all_records()) == 3
        assert len(get_all_records(city="Porto")) == 1
        assert len(get_all_records(source="other_portal")) == 0
        assert count_records("idealista_portugal") == 3

    def test_get_missing_record(self, test_db):
        assert get_record("idealista_portugal", "nope") is None


class TestCrawlLogs:
    """Tests for crawl logging."""

    def test_log_crawl(self, test_db):
        outcome = CrawlOutcome(
            "lisboa",
            records=make_records(2),
            pages_visited=3,
            stop_reason=StopReason.BLOCKED,
            total_available=120,
            errors=["blocked at https://www.idealista.pt/comprar-casas/lisboa/pagina-3.html"],
        )

        log_id = log_crawl("idealista_portugal", outcome)

        assert log_id > 0
        logs = get_crawl_logs()
        assert len(logs) == 1
        assert logs[0]["stop_reason"] == "blocked"
        assert logs[0]["record_count"] == 2
        assert logs[0]["pages_visited"] == 3
        assert json.loads(logs[0]["errors"]) == outcome.errors

    def test_filter_by_location(self, test_db):
        log_crawl("idealista_portugal", CrawlOutcome("lisboa"))
        log_crawl("idealista_portugal", CrawlOutcome("porto"))

        logs = get_crawl_logs(location="porto")

        assert len(logs) == 1
        assert logs[0]["errors"] is None


class TestSqliteSink:
    """Tests for the SQLite record sink."""

    def test_counts_new_and_updated(self, test_db):
        sink = SqliteSink()

        assert sink.persist(make_records(2)) == 2
        assert sink.persist(make_records(3)) == 3

        assert sink.new_count == 3
        assert sink.updated_count == 2

    def test_sqlite_errors_become_sink_errors(self, test_db):
        test_db.execute("DROP TABLE records")

        with pytest.raises(SinkError):
            SqliteSink().persist(make_records(1))
