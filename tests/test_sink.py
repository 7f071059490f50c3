"""Tests for the Supabase sink with a stubbed client."""
import asyncio
from datetime import datetime
from types import SimpleNamespace

import pytest

from salesmail.errors import ConfigurationError, SinkUnavailable, SinkWriteError
from salesmail.parse.models import PaymentKind, SaleRecord
from salesmail.store.sink import SupabaseSalesSink


class StubQuery:
    def __init__(self, table: "StubTable"):
        self.table = table
        self.row = None
        self.start, self.end = 0, None

    def select(self, *args, **kwargs):
        return self

    def order(self, *args, **kwargs):
        return self

    def limit(self, n):
        self.start, self.end = 0, n - 1
        return self

    def range(self, start, end):
        self.start, self.end = start, end
        return self

    def insert(self, row):
        self.row = row
        return self

    def execute(self):
        if self.table.fail:
            raise RuntimeError("connection reset")
        if self.row is not None:
            self.table.rows.append(self.row)
            return SimpleNamespace(data=[self.row])
        self.table.page_requests.append((self.start, self.end))
        rows = self.table.rows[self.start : self.end + 1]
        return SimpleNamespace(data=[{"order_id": row["order_id"]} for row in rows])


class StubTable:
    def __init__(self, rows=None, fail=False):
        self.rows = list(rows or [])
        self.fail = fail
        self.page_requests = []


class StubClient:
    def __init__(self, table: StubTable):
        self._table = table

    def table(self, name):
        return StubQuery(self._table)


def _sink(table: StubTable) -> SupabaseSalesSink:
    sink = SupabaseSalesSink(url="https://example.supabase.co", key="service-key", table="sales")
    sink._client = StubClient(table)
    return sink


def _record(order_id: int = 20250001) -> SaleRecord:
    return SaleRecord(
        order_id=order_id,
        order_timestamp=datetime(2025, 1, 15, 14, 30),
        product_name="サンプル画集",
        amount=1200,
        payment_kind=PaymentKind.INSTANT,
    )


def test_is_configured_rejects_placeholders():
    """Unset and template values are not a configured sink."""
    assert SupabaseSalesSink(url="https://x.supabase.co", key="key").is_configured()
    assert not SupabaseSalesSink(url="", key="key").is_configured()
    assert not SupabaseSalesSink(url="your-project-url", key="key").is_configured()
    assert not SupabaseSalesSink(url="https://x.supabase.co", key="<service-role>").is_configured()


def test_unconfigured_client_raises():
    """Opening an unconfigured sink is a configuration error."""
    sink = SupabaseSalesSink(url="", key="")
    with pytest.raises(ConfigurationError):
        sink.client


def test_append_writes_row():
    """A record becomes one inserted row."""
    table = StubTable()
    asyncio.run(_sink(table).append(_record()))
    assert table.rows == [_record().to_row()]


def test_append_failure_raises_write_error():
    """Insert failures surface as SinkWriteError."""
    sink = _sink(StubTable(fail=True))
    with pytest.raises(SinkWriteError) as exc_info:
        asyncio.run(sink.append(_record()))
    assert exc_info.value.details["order_id"] == 20250001


def test_read_order_ids_pages(monkeypatch):
    """Order ids are read page by page until a short page."""
    monkeypatch.setattr(SupabaseSalesSink, "PAGE_SIZE", 2)
    table = StubTable(rows=[{"order_id": i} for i in range(5)])
    values = asyncio.run(_sink(table).read_order_ids())
    assert values == [0, 1, 2, 3, 4]
    assert table.page_requests == [(0, 1), (2, 3), (4, 5)]


def test_read_failure_raises_unavailable():
    """Read failures surface as SinkUnavailable."""
    with pytest.raises(SinkUnavailable):
        asyncio.run(_sink(StubTable(fail=True)).read_order_ids())


def test_connection_check():
    """The connection check reports reachability without raising."""
    assert asyncio.run(_sink(StubTable()).test_connection()) is True
    assert asyncio.run(_sink(StubTable(fail=True)).test_connection()) is False
