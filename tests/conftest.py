"""Shared fixtures: sample notification bodies and in-memory source/sink."""
from typing import Iterable, Optional, Sequence

import pytest

from salesmail.errors import SinkUnavailable, SinkWriteError, SourceUnavailable
from salesmail.parse.models import Candidate, SaleRecord
from salesmail.parse.normalize import escape_text
from salesmail.source.base import MessageSource
from salesmail.store.sink import SalesSink


def build_instant_body(
    order_id: int = 20250001,
    item: str = "【イラスト】サンプル画集",
    amount: str = "¥1,200",
) -> str:
    return (
        "BOOTHをご利用いただきありがとうございます。\n"
        "あなたのショップの商品が購入されました。\n"
        f"注文番号：{order_id}\n"
        "注文日時：2025年01月15日 14時30分\n"
        "\n"
        f"{item}\n"
        f"{amount}\n"
        "\n"
        "お支払い方法：クレジットカード\n"
    )


def build_deferred_body(
    order_id: int = 20250002,
    item: str = "【音楽】サウンドトラック",
    amount: str = "¥2,500",
) -> str:
    return (
        "あなたのショップの商品が注文されました。\n"
        "現在お支払い待ちです。お支払いが確認されるまで発送しないでください。\n"
        f"注文番号：{order_id}\n"
        "注文日時：2025年02月03日 09時05分\n"
        f"{item}\n"
        f"お支払い金額：{amount}\n"
    )


def qp_encode(text: str) -> str:
    """Quoted-printable style: non-ASCII characters escaped, ASCII kept literal."""
    return "".join(ch if ch.isascii() else escape_text(ch) for ch in text)


@pytest.fixture
def instant_body():
    return build_instant_body


@pytest.fixture
def deferred_body():
    return build_deferred_body


@pytest.fixture
def encode_qp():
    return qp_encode


class FakeClock:
    """Monotonic clock moved by hand."""

    def __init__(self, start: float = 1000.0):
        self.value = start

    def __call__(self) -> float:
        return self.value

    def advance(self, seconds: float) -> None:
        self.value += seconds


class FakeSource(MessageSource):
    """Candidates live in a list; markers are mutated in place like real labels."""

    def __init__(self, candidates: Iterable[Candidate] = (), fail_probe: bool = False, fail_fetch: bool = False):
        self.candidates = list(candidates)
        self.fail_probe = fail_probe
        self.fail_fetch = fail_fetch
        self.marker_calls: list[tuple[str, list[str], str]] = []
        self.fetch_calls: list[dict] = []

    async def probe(self) -> None:
        if self.fail_probe:
            raise SourceUnavailable("search failed")

    async def fetch(self, limit: int, exclude_markers: Iterable[str] = (), require_marker: Optional[str] = None):
        exclude = set(exclude_markers)
        self.fetch_calls.append({"limit": limit, "exclude": exclude, "require": require_marker})
        if self.fail_fetch:
            raise SourceUnavailable("search failed")
        matching = [
            c for c in self.candidates
            if not (exclude & c.markers) and (require_marker is None or require_marker in c.markers)
        ]
        return matching[:limit]

    async def add_marker(self, candidates: Sequence[Candidate], marker: str) -> None:
        self.marker_calls.append(("add", [c.id for c in candidates], marker))
        for candidate in candidates:
            candidate.markers.add(marker)

    async def remove_marker(self, candidates: Sequence[Candidate], marker: str) -> None:
        self.marker_calls.append(("remove", [c.id for c in candidates], marker))
        for candidate in candidates:
            candidate.markers.discard(marker)

    def with_marker(self, marker: str) -> list[str]:
        return [c.id for c in self.candidates if marker in c.markers]


class FakeSink(SalesSink):
    def __init__(
        self,
        rows: Optional[list[dict]] = None,
        configured: bool = True,
        reachable: bool = True,
        fail_read: bool = False,
        fail_writes: int = 0,
        clock: Optional[FakeClock] = None,
        seconds_per_write: float = 0.0,
    ):
        self.rows = list(rows or [])
        self.configured = configured
        self.reachable = reachable
        self.fail_read = fail_read
        self.fail_writes = fail_writes
        self.clock = clock
        self.seconds_per_write = seconds_per_write
        self.reopens = 0
        self.append_attempts = 0

    def is_configured(self) -> bool:
        return self.configured

    async def test_connection(self) -> bool:
        return self.reachable

    async def read_order_ids(self):
        if self.fail_read:
            raise SinkUnavailable("cannot open sheet")
        return [row["order_id"] for row in self.rows]

    async def append(self, record: SaleRecord) -> None:
        self.append_attempts += 1
        if self.clock is not None:
            self.clock.advance(self.seconds_per_write)
        if self.fail_writes > 0:
            self.fail_writes -= 1
            raise SinkWriteError("row store was modified concurrently")
        self.rows.append(record.to_row())

    async def reopen(self) -> None:
        self.reopens += 1

    def order_ids(self) -> list[int]:
        return [row["order_id"] for row in self.rows]


def make_candidate(candidate_id: str, *bodies: str, markers: Iterable[str] = ()) -> Candidate:
    return Candidate(
        id=candidate_id,
        bodies=list(bodies),
        markers=set(markers),
        message_ids=[f"{candidate_id}-m{i}" for i in range(max(len(bodies), 1))],
    )


@pytest.fixture
def clock():
    return FakeClock()
