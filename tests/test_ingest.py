"""Tests for the ingestion orchestrator."""

import asyncio
import json
import threading
from datetime import datetime, timezone

import httpx
import pytest

from conftest import FakeTable
from homematch_ingest.connectors.base import ListingSource, SearchQuery
from homematch_ingest.exceptions import ConfigError
from homematch_ingest.ingest import ingest_locations
from homematch_ingest.models import SearchPage
from homematch_ingest.storage import Storage

FIXED_NOW = datetime(2026, 10, 18, 12, 0, tzinfo=timezone.utc)


def _item(zpid: str, city: str = "Oakland", **extra) -> dict:
    item = {
        "zpid": zpid,
        "address": f"{zpid} Main St, {city}, CA 94612",
        "price": 650000,
        "bedrooms": 3,
        "bathrooms": 2,
        "homeType": "CONDO",
        "statusType": "ForSale",
    }
    item.update(extra)
    return item


@pytest.mark.asyncio
async def test_end_to_end_single_item(make_client, fake_table, sleep_recorder, oakland_item) -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(200, json={"props": [oakland_item], "hasNextPage": False})

    async with make_client(handler) as http:
        summary = await ingest_locations(
            ["Oakland, CA"],
            "test-key",
            fake_table,
            http_client=http,
            sleep=sleep_recorder,
            clock=lambda: FIXED_NOW,
        )

    totals = summary.totals
    assert (totals.attempted, totals.transformed, totals.inserted_or_updated, totals.skipped) == (1, 1, 1, 0)
    stored = fake_table.rows["Z1"]
    assert stored["property_type"] == "single_family"
    assert stored["listing_status"] == "active"
    assert stored["zip_code"] == "94612"
    assert stored["updated_at"] == FIXED_NOW
    assert summary.property_type_counts == {"single_family": 1}
    assert summary.per_location[0].status == "done"
    assert not summary.has_errors


@pytest.mark.asyncio
async def test_rate_limit_retries_same_page(make_client, fake_table, sleep_recorder) -> None:
    pages_requested: list[str] = []

    def handler(request: httpx.Request) -> httpx.Response:
        pages_requested.append(request.url.params["page"])
        if len(pages_requested) == 1:
            return httpx.Response(429)
        return httpx.Response(200, json={"props": [_item("A1")], "hasNextPage": False})

    async with make_client(handler) as http:
        summary = await ingest_locations(
            ["Oakland, CA"],
            "test-key",
            fake_table,
            delay_seconds=1.0,
            http_client=http,
            sleep=sleep_recorder,
        )

    assert pages_requested == ["1", "1"]
    assert summary.totals.attempted == 1
    assert summary.totals.inserted_or_updated == 1
    assert summary.per_location[0].errors == []
    # client pre-request delay, 2x backoff, client pre-request delay, post-page delay
    assert sleep_recorder.delays == [1.0, 2.0, 1.0, 1.0]


@pytest.mark.asyncio
async def test_rate_limit_retries_exhausted(make_client, fake_table, sleep_recorder) -> None:
    async with make_client(lambda request: httpx.Response(429)) as http:
        summary = await ingest_locations(
            ["Oakland, CA"],
            "test-key",
            fake_table,
            delay_seconds=0,
            max_rate_limit_retries=2,
            http_client=http,
            sleep=sleep_recorder,
        )

    loc = summary.per_location[0]
    assert loc.status == "aborted"
    assert "Rate limit retries exhausted" in loc.errors[0]
    assert loc.attempted == 0


@pytest.mark.asyncio
async def test_failure_isolated_to_one_location(make_client, fake_table, sleep_recorder) -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        location = request.url.params["location"]
        if location == "Berkeley, CA":
            return httpx.Response(503, text="upstream unavailable")
        city = location.split(",")[0]
        return httpx.Response(200, json={"results": [_item(f"{city}-1", city=city)], "hasNextPage": False})

    async with make_client(handler) as http:
        summary = await ingest_locations(
            ["Oakland, CA", "Berkeley, CA", "Alameda, CA"],
            "test-key",
            fake_table,
            http_client=http,
            sleep=sleep_recorder,
        )

    oakland, berkeley, alameda = summary.per_location
    assert oakland.inserted_or_updated == 1 and not oakland.errors
    assert alameda.inserted_or_updated == 1 and not alameda.errors
    assert berkeley.status == "aborted"
    assert "HTTP 503" in berkeley.errors[0]
    assert summary.totals.inserted_or_updated == 2
    assert set(fake_table.rows) == {"Oakland-1", "Alameda-1"}


@pytest.mark.asyncio
async def test_extreme_numbers_do_not_stop_the_run(make_client, fake_table, sleep_recorder) -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        city = request.url.params["location"].split(",")[0]
        item = _item(f"{city}-1", city=city)
        if city == "Berkeley":
            item.update(bathrooms=1e308, price=10**400)
        return httpx.Response(200, content=json.dumps({"props": [item], "hasNextPage": False}))

    async with make_client(handler) as http:
        summary = await ingest_locations(
            ["Oakland, CA", "Berkeley, CA", "Alameda, CA"],
            "test-key",
            fake_table,
            http_client=http,
            sleep=sleep_recorder,
        )

    assert [loc.status for loc in summary.per_location] == ["done", "done", "done"]
    assert summary.totals.inserted_or_updated == 3
    berkeley = fake_table.rows["Berkeley-1"]
    assert berkeley["bathrooms"] == 9.9
    assert berkeley["price"] == 2147483647


class ExplodingSource(ListingSource):
    """Returns one listing per location, except it raises for `bad_location`."""

    def __init__(self, bad_location: str, items: list | None = None) -> None:
        self.bad_location = bad_location
        self.items = items

    @property
    def source_name(self) -> str:
        return "exploding"

    async def fetch_page(self, query: SearchQuery, delay_seconds: float = 0.0) -> SearchPage:
        if query.location == self.bad_location:
            raise RuntimeError("connection reset")
        city = query.location.split(",")[0]
        items = self.items if self.items is not None else [_item(f"{city}-1", city=city)]
        return SearchPage(items=items, has_next_page=False)


@pytest.mark.asyncio
async def test_unexpected_source_error_isolated(fake_table, sleep_recorder) -> None:
    summary = await ingest_locations(
        ["Oakland, CA", "Berkeley, CA", "Alameda, CA"],
        "test-key",
        fake_table,
        source=ExplodingSource("Berkeley, CA"),
        sleep=sleep_recorder,
    )

    oakland, berkeley, alameda = summary.per_location
    assert berkeley.status == "aborted"
    assert berkeley.errors == ["Unexpected fetch error: connection reset"]
    assert oakland.inserted_or_updated == 1
    assert alameda.inserted_or_updated == 1
    assert set(fake_table.rows) == {"Oakland-1", "Alameda-1"}


@pytest.mark.asyncio
async def test_non_dict_items_counted_as_unmapped(fake_table, sleep_recorder) -> None:
    source = ExplodingSource("nowhere", items=["junk", 42, None, _item("OK1")])
    summary = await ingest_locations(
        ["Oakland, CA"], "test-key", fake_table, source=source, sleep=sleep_recorder
    )

    loc = summary.per_location[0]
    assert loc.attempted == 4
    assert loc.unmapped == 3
    assert loc.inserted_or_updated == 1


@pytest.mark.asyncio
async def test_async_table_awaited(sleep_recorder) -> None:
    class AsyncTable:
        def __init__(self) -> None:
            self.rows: dict = {}

        async def upsert(self, records, on_conflict="zpid"):
            for r in records:
                self.rows[r[on_conflict]] = r
            return len(records)

    table = AsyncTable()
    summary = await ingest_locations(
        ["Oakland, CA"], "test-key", table, source=ExplodingSource("nowhere"), sleep=sleep_recorder
    )

    assert summary.totals.inserted_or_updated == 1
    assert set(table.rows) == {"Oakland-1"}


@pytest.mark.asyncio
async def test_sync_table_runs_off_event_loop(sleep_recorder) -> None:
    class ThreadRecordingTable(FakeTable):
        def upsert(self, records, on_conflict="zpid"):
            self.thread_id = threading.get_ident()
            return super().upsert(records, on_conflict)

    table = ThreadRecordingTable()
    await ingest_locations(
        ["Oakland, CA"], "test-key", table, source=ExplodingSource("nowhere"), sleep=sleep_recorder
    )

    assert set(table.rows) == {"Oakland-1"}
    assert table.thread_id != threading.get_ident()


@pytest.mark.asyncio
async def test_unmapped_and_invalid_items_counted(make_client, fake_table, sleep_recorder) -> None:
    items = [
        _item("GOOD"),
        {"address": "no id"},
        {"zpid": "NOWHERE", "address": "5 Elm St"},
        _item("NEG", price=-10),
    ]

    async with make_client(lambda r: httpx.Response(200, json={"props": items, "hasNextPage": False})) as http:
        summary = await ingest_locations(
            ["Somewhere"],
            "test-key",
            fake_table,
            http_client=http,
            sleep=sleep_recorder,
        )

    loc = summary.per_location[0]
    assert loc.attempted == 4
    assert loc.unmapped == 2
    assert loc.transformed == 1
    assert loc.skipped == 1
    assert loc.inserted_or_updated == 1
    assert any("zpid=NEG" in e and "price" in e for e in loc.errors)
    assert summary.totals.unmapped == 2


@pytest.mark.asyncio
async def test_page_with_nothing_mappable_skips_upsert(make_client, fake_table, sleep_recorder) -> None:
    async with make_client(lambda r: httpx.Response(200, json={"props": [{"foo": 1}], "hasNextPage": False})) as http:
        summary = await ingest_locations(
            ["Oakland, CA"], "test-key", fake_table, http_client=http, sleep=sleep_recorder
        )

    assert fake_table.calls == []
    assert summary.totals.attempted == 1
    assert summary.totals.unmapped == 1


@pytest.mark.asyncio
async def test_upsert_failure_recorded_and_next_page_attempted(make_client, sleep_recorder) -> None:
    table = FakeTable(fail_times=1)

    def handler(request: httpx.Request) -> httpx.Response:
        page = int(request.url.params["page"])
        return httpx.Response(200, json={"props": [_item(f"P{page}")], "totalPages": 2})

    async with make_client(handler) as http:
        summary = await ingest_locations(
            ["Oakland, CA"], "test-key", table, http_client=http, sleep=sleep_recorder
        )

    loc = summary.per_location[0]
    assert len(table.calls) == 2
    assert loc.inserted_or_updated == 1
    assert loc.transformed == 2
    assert loc.status == "done"
    assert loc.errors[0].startswith("upsert failed: value too long")
    assert "(types: condo=1)" in loc.errors[0]
    assert set(table.rows) == {"P2"}


@pytest.mark.asyncio
async def test_stops_at_max_pages(make_client, fake_table, sleep_recorder) -> None:
    requested: list[int] = []

    def handler(request: httpx.Request) -> httpx.Response:
        page = int(request.url.params["page"])
        requested.append(page)
        return httpx.Response(200, json={"props": [_item(f"M{page}")], "hasNextPage": True})

    async with make_client(handler) as http:
        summary = await ingest_locations(
            ["Oakland, CA"], "test-key", fake_table, max_pages=3, http_client=http, sleep=sleep_recorder
        )

    assert requested == [1, 2, 3]
    assert summary.per_location[0].pages_fetched == 3
    assert summary.totals.inserted_or_updated == 3


@pytest.mark.asyncio
async def test_duplicate_ids_in_page_collapsed(make_client, fake_table, sleep_recorder) -> None:
    items = [_item("DUP", price=100), _item("DUP", price=200)]

    async with make_client(lambda r: httpx.Response(200, json={"props": items, "hasNextPage": False})) as http:
        summary = await ingest_locations(
            ["Oakland, CA"], "test-key", fake_table, http_client=http, sleep=sleep_recorder
        )

    assert len(fake_table.calls[0]) == 1
    assert fake_table.rows["DUP"]["price"] == 200
    assert summary.totals.transformed == 2
    assert summary.totals.inserted_or_updated == 1


@pytest.mark.asyncio
async def test_cancel_before_start(make_client, fake_table, sleep_recorder) -> None:
    cancel = asyncio.Event()
    cancel.set()
    requests: list[httpx.Request] = []

    def handler(request: httpx.Request) -> httpx.Response:
        requests.append(request)
        return httpx.Response(200, json={"props": []})

    async with make_client(handler) as http:
        summary = await ingest_locations(
            ["Oakland, CA", "Berkeley, CA"],
            "test-key",
            fake_table,
            http_client=http,
            sleep=sleep_recorder,
            cancel_event=cancel,
        )

    assert summary.cancelled is True
    assert summary.per_location == []
    assert requests == []


@pytest.mark.asyncio
async def test_cancel_between_pages(make_client, fake_table, sleep_recorder) -> None:
    cancel = asyncio.Event()

    def handler(request: httpx.Request) -> httpx.Response:
        cancel.set()
        return httpx.Response(200, json={"props": [_item("C1")], "hasNextPage": True})

    async with make_client(handler) as http:
        summary = await ingest_locations(
            ["Oakland, CA", "Berkeley, CA"],
            "test-key",
            fake_table,
            http_client=http,
            sleep=sleep_recorder,
            cancel_event=cancel,
        )

    assert summary.cancelled is True
    assert len(summary.per_location) == 1
    assert summary.per_location[0].status == "cancelled"
    assert summary.per_location[0].inserted_or_updated == 1


@pytest.mark.asyncio
async def test_config_errors_raised_before_run(fake_table) -> None:
    with pytest.raises(ConfigError):
        await ingest_locations(["Oakland, CA"], "", fake_table)
    with pytest.raises(ConfigError):
        await ingest_locations([], "test-key", fake_table)
    with pytest.raises(ConfigError):
        await ingest_locations(["Oakland, CA"], "test-key", fake_table, sort="Cheapest")


@pytest.mark.asyncio
async def test_rerun_is_idempotent(tmp_path, make_client, sleep_recorder) -> None:
    items = [_item("R1"), _item("R2", homeType="TOWNHOUSE")]

    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(200, json={"props": items, "hasNextPage": False})

    storage = Storage(tmp_path / "ingest.duckdb")
    snapshots = []
    try:
        for _ in range(2):
            async with make_client(handler) as http:
                summary = await ingest_locations(
                    ["Oakland, CA"],
                    "test-key",
                    storage.table("properties"),
                    http_client=http,
                    sleep=sleep_recorder,
                    clock=lambda: FIXED_NOW,
                )
            assert summary.totals.inserted_or_updated == 2
            snapshots.append(storage.load_properties())
    finally:
        storage.close()

    assert len(snapshots[1]) == 2
    assert snapshots[0] == snapshots[1]
