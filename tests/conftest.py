"""Pytest fixtures."""

from __future__ import annotations

from typing import Any, Callable

import httpx
import pytest


class FakeTable:
    """In-memory properties table with upsert-by-zpid semantics."""

    def __init__(self, fail_times: int = 0) -> None:
        self.rows: dict[str, dict[str, Any]] = {}
        self.calls: list[list[dict[str, Any]]] = []
        self.fail_times = fail_times

    def upsert(self, records: list[dict[str, Any]], on_conflict: str = "zpid") -> int:
        self.calls.append(records)
        if self.fail_times > 0:
            self.fail_times -= 1
            raise RuntimeError("value too long for type character varying(10)")
        for r in records:
            self.rows[r[on_conflict]] = dict(r)
        return len(records)


class SleepRecorder:
    """Stands in for asyncio.sleep; records requested delays."""

    def __init__(self) -> None:
        self.delays: list[float] = []

    async def __call__(self, seconds: float) -> None:
        self.delays.append(seconds)


@pytest.fixture
def oakland_item() -> dict[str, Any]:
    """Search item with a combined address string."""
    return {
        "zpid": "Z1",
        "address": "1 Main St, Oakland, CA 94612",
        "price": 500000,
        "bedrooms": 2,
        "bathrooms": 1.5,
        "homeType": "SINGLE_FAMILY",
        "statusType": "ForSale",
    }


@pytest.fixture
def fake_table() -> FakeTable:
    return FakeTable()


@pytest.fixture
def sleep_recorder() -> SleepRecorder:
    return SleepRecorder()


@pytest.fixture
def make_client() -> Callable[[Callable[[httpx.Request], httpx.Response]], httpx.AsyncClient]:
    """Build an AsyncClient whose requests are answered by `handler`."""

    def _make(handler: Callable[[httpx.Request], httpx.Response]) -> httpx.AsyncClient:
        return httpx.AsyncClient(transport=httpx.MockTransport(handler))

    return _make
