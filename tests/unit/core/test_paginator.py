"""Tests for the paginated fetcher: caching, navigation and invalidation."""

from __future__ import annotations

import asyncio

import pytest

from core.config import AppSettings
from core.domain.models import (
    ConnectionConfig,
    ErrorKind,
    Fail,
    Ok,
    PageCursor,
    PagePosition,
    PaymentDirection,
    PaymentStatus,
)
from core.paginator import PaginatedFetcher, payments_fetcher
from core.session import SessionManager

_NODE = {"node_id": "02" + "cd" * 32}


class ListLoader:
    """Sirve `items` en trozos de `chunk`; el cursor es el offset como token."""

    def __init__(self, items: list[int], chunk: int = 2):
        self.items = items
        self.chunk = chunk
        self.calls: list[PageCursor | None] = []
        self.fail_next: Fail | None = None

    async def __call__(self, cursor: PageCursor | None, page_size: int):
        self.calls.append(cursor)
        if self.fail_next is not None:
            failure, self.fail_next = self.fail_next, None
            return failure
        start = int(cursor.token) if cursor else 0
        end = start + self.chunk
        nxt = PageCursor(token=str(end), index=end) if end < len(self.items) else None
        return Ok((self.items[start:end], nxt))


class RecordingTransport:
    def __init__(self, responses: dict[str | None, dict]):
        self.responses = responses
        self.bodies: list[dict] = []

    async def call(self, operation, body=None):
        if operation.name == "get_node_info":
            return Ok(_NODE)
        self.bodies.append(body)
        token = (body or {}).get("page_token")
        return Ok(self.responses[token["token"] if token else None])

    async def aclose(self) -> None:
        pass


def _settings(**overrides) -> AppSettings:
    return AppSettings(_env_file=None, **overrides)


def _session(transport=None) -> SessionManager:
    return SessionManager(_settings(), transport_factory=lambda config: transport or RecordingTransport({}))


def _fetcher(loader: ListLoader, session: SessionManager | None = None) -> PaginatedFetcher[int]:
    return PaginatedFetcher(session or _session(), loader, page_size=2)


# ─── fetch_page ─────────────────────────────────────────────────────


class TestFetchPage:
    @pytest.mark.asyncio
    async def test_same_cursor_is_idempotent(self):
        loader = ListLoader([1, 2, 3])
        fetcher = _fetcher(loader)

        first = await fetcher.fetch_page(None, 2)
        second = await fetcher.fetch_page(None, 2)

        assert isinstance(first, Ok) and isinstance(second, Ok)
        assert first.value == second.value
        assert first.value.items == [1, 2]
        assert len(loader.calls) == 1

    @pytest.mark.asyncio
    async def test_different_page_size_reslices_server_page(self):
        loader = ListLoader([1, 2, 3], chunk=5)
        fetcher = _fetcher(loader)

        small = await fetcher.fetch_page(None, 2)
        large = await fetcher.fetch_page(None, 3)

        assert isinstance(small, Ok) and isinstance(large, Ok)
        assert small.value.items == [1, 2]
        assert large.value.items == [1, 2, 3]
        assert large.value.page_size == 3
        assert loader.calls == [None]

    @pytest.mark.asyncio
    async def test_failure_is_not_cached(self):
        loader = ListLoader([1, 2, 3])
        loader.fail_next = Fail.of(ErrorKind.NETWORK, "down")
        fetcher = _fetcher(loader)

        failed = await fetcher.fetch_page(None, 2)
        recovered = await fetcher.fetch_page(None, 2)

        assert isinstance(failed, Fail)
        assert isinstance(recovered, Ok)
        assert len(loader.calls) == 2

    @pytest.mark.asyncio
    async def test_invalid_page_size(self):
        outcome = await _fetcher(ListLoader([])).fetch_page(None, 0)
        assert isinstance(outcome, Fail)
        assert outcome.kind is ErrorKind.VALIDATION

    @pytest.mark.asyncio
    async def test_page_finishing_after_disconnect_is_not_cached(self):
        gate = asyncio.Event()
        session = _session()
        loader = ListLoader([1, 2, 3])

        async def slow(cursor, page_size):
            await gate.wait()
            return await loader(cursor, page_size)

        fetcher = PaginatedFetcher(session, slow, page_size=2)
        pending = asyncio.create_task(fetcher.fetch_page(None, 2))
        await asyncio.sleep(0)
        await session.disconnect()
        gate.set()
        outcome = await pending

        assert isinstance(outcome, Fail)
        assert outcome.kind is ErrorKind.STALE
        assert fetcher.cached(None) is None


# ─── Server pages larger than page_size ─────────────────────────────


class TestOversizedServerPages:
    @pytest.mark.asyncio
    async def test_page_never_exceeds_page_size(self):
        loader = ListLoader(list(range(50)), chunk=50)
        fetcher = PaginatedFetcher(_session(), loader, page_size=20)

        outcome = await fetcher.fetch_page(None, 20)

        assert isinstance(outcome, Ok)
        assert outcome.value.items == list(range(20))
        assert outcome.value.has_more is True
        assert outcome.value.cursor_out == PagePosition(server=None, offset=20)

    @pytest.mark.asyncio
    async def test_walk_slices_one_server_page(self):
        loader = ListLoader(list(range(50)), chunk=50)
        fetcher = PaginatedFetcher(_session(), loader, page_size=20)

        outcome = await fetcher.walk(10)

        assert isinstance(outcome, Ok)
        assert [len(page.items) for page in outcome.value] == [20, 20, 10]
        assert [item for page in outcome.value for item in page.items] == list(range(50))
        assert loader.calls == [None]

    @pytest.mark.asyncio
    async def test_slices_cross_server_page_boundaries(self):
        loader = ListLoader(list(range(25)), chunk=10)
        fetcher = PaginatedFetcher(_session(), loader, page_size=4)

        outcome = await fetcher.walk(20)

        assert isinstance(outcome, Ok)
        assert all(len(page.items) <= 4 for page in outcome.value)
        assert [item for page in outcome.value for item in page.items] == list(range(25))
        assert [c.token if c else None for c in loader.calls] == [None, "10", "20"]

    @pytest.mark.asyncio
    async def test_backward_navigation_inside_server_page_uses_cache(self):
        loader = ListLoader(list(range(50)), chunk=50)
        fetcher = PaginatedFetcher(_session(), loader, page_size=20)

        await fetcher.first()
        await fetcher.next()
        await fetcher.next()
        back = await fetcher.previous()

        assert isinstance(back, Ok)
        assert back.value.items == list(range(20, 40))
        assert back.value.cursor_in == PagePosition(offset=20)
        assert fetcher.current_index == 1
        assert loader.calls == [None]

    @pytest.mark.asyncio
    async def test_cursor_past_server_page_end(self):
        loader = ListLoader([1, 2, 3], chunk=5)
        fetcher = _fetcher(loader)

        outcome = await fetcher.fetch_page(PagePosition(offset=7), 2)

        assert isinstance(outcome, Fail)
        assert outcome.kind is ErrorKind.VALIDATION


# ─── Navigation ─────────────────────────────────────────────────────


class TestNavigation:
    @pytest.mark.asyncio
    async def test_walk_preserves_server_order(self):
        fetcher = _fetcher(ListLoader([5, 4, 3, 2, 1]))
        outcome = await fetcher.walk(10)
        assert isinstance(outcome, Ok)
        assert [item for page in outcome.value for item in page.items] == [5, 4, 3, 2, 1]
        assert outcome.value[-1].has_more is False

    @pytest.mark.asyncio
    async def test_walk_stops_at_max_pages(self):
        fetcher = _fetcher(ListLoader(list(range(10))))
        outcome = await fetcher.walk(2)
        assert isinstance(outcome, Ok)
        assert len(outcome.value) == 2
        assert outcome.value[-1].has_more is True

    @pytest.mark.asyncio
    async def test_previous_replays_cache(self):
        loader = ListLoader([1, 2, 3, 4, 5])
        fetcher = _fetcher(loader)

        await fetcher.first()
        await fetcher.next()
        back = await fetcher.previous()

        assert isinstance(back, Ok)
        assert back.value.items == [1, 2]
        assert fetcher.current_index == 0
        assert len(loader.calls) == 2

    @pytest.mark.asyncio
    async def test_previous_at_first_page(self):
        fetcher = _fetcher(ListLoader([1]))
        await fetcher.first()
        outcome = await fetcher.previous()
        assert isinstance(outcome, Fail)
        assert outcome.kind is ErrorKind.VALIDATION

    @pytest.mark.asyncio
    async def test_page_at_walks_forward_from_first(self):
        loader = ListLoader([1, 2, 3, 4, 5])
        fetcher = _fetcher(loader)

        outcome = await fetcher.page_at(2)

        assert isinstance(outcome, Ok)
        assert outcome.value.items == [5]
        assert [c.token if c else None for c in loader.calls] == [None, "2", "4"]

    @pytest.mark.asyncio
    async def test_page_past_end(self):
        fetcher = _fetcher(ListLoader([1, 2]))
        outcome = await fetcher.page_at(3)
        assert isinstance(outcome, Fail)
        assert outcome.kind is ErrorKind.VALIDATION

    @pytest.mark.asyncio
    async def test_clear_forgets_pages_and_position(self):
        loader = ListLoader([1, 2, 3])
        fetcher = _fetcher(loader)
        await fetcher.first()
        await fetcher.next()

        fetcher.clear()

        assert fetcher.current_index == -1
        assert fetcher.cached(None) is None
        await fetcher.first()
        assert len(loader.calls) == 3


# ─── Payments ───────────────────────────────────────────────────────


class TestPaymentsFetcher:
    @pytest.mark.asyncio
    async def test_list_payments_round_trip(self):
        responses = {
            None: {
                "payments": [
                    {"id": "aa", "amount_msat": 1000, "direction": 0, "status": 1, "kind": {"bolt11": {}}},
                ],
                "next_page_token": {"token": "t1", "index": 1},
            },
            "t1": {
                "payments": [{"id": "bb", "direction": "OUTBOUND", "status": "FAILED"}],
            },
        }
        transport = RecordingTransport(responses)
        session = _session(transport)
        await session.connect(ConnectionConfig(host="a:1", api_key=b"\x01"))
        fetcher = payments_fetcher(session, _settings(default_page_size=1))

        outcome = await fetcher.walk(5)

        assert isinstance(outcome, Ok)
        records = [rec for page in outcome.value for rec in page.items]
        assert [r.id for r in records] == ["aa", "bb"]
        assert records[0].direction is PaymentDirection.INBOUND
        assert records[0].status is PaymentStatus.SUCCEEDED
        assert records[0].kind_label == "BOLT11"
        assert records[1].direction is PaymentDirection.OUTBOUND
        assert records[1].status is PaymentStatus.FAILED
        assert transport.bodies == [{"page_token": None}, {"page_token": {"token": "t1", "index": 1}}]

    @pytest.mark.asyncio
    async def test_disconnect_clears_payments_cache(self):
        transport = RecordingTransport({None: {"payments": [{"id": "aa"}]}})
        session = _session(transport)
        await session.connect(ConnectionConfig(host="a:1", api_key=b"\x01"))
        fetcher = payments_fetcher(session, _settings())
        await fetcher.first()
        assert fetcher.cached(None) is not None

        await session.disconnect()

        assert fetcher.cached(None) is None
        outcome = await fetcher.first()
        assert isinstance(outcome, Fail)
        assert outcome.message == "not connected"
