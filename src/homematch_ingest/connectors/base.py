"""Base source interface and response helpers shared by listing sources."""

from __future__ import annotations

import math
from abc import ABC, abstractmethod
from dataclasses import dataclass
from enum import Enum
from typing import Any

from ..models import SearchPage

SORT_OPTIONS = (
    "Newest",
    "Price_High_Low",
    "Price_Low_High",
    "Beds",
    "Baths",
    "Square_Feet",
)


@dataclass(frozen=True)
class SearchQuery:
    """Parameters for one page of one location search."""

    location: str
    page: int = 1
    page_size: int = 20
    sort: str | None = None
    min_price: int | None = None
    max_price: int | None = None


class ResultEnvelope(Enum):
    """Known top-level shapes of a search response."""

    PROPS = "props"
    RESULTS = "results"
    DATA_RESULTS = "data.results"
    NONE = "none"


def probe_envelope(data: Any) -> tuple[ResultEnvelope, list[dict[str, Any]]]:
    """
    Find the listing array in a search response.
    Shapes are tried in priority order: props, results, data.results.
    """
    if not isinstance(data, dict):
        return ResultEnvelope.NONE, []

    candidates: list[tuple[ResultEnvelope, Any]] = [
        (ResultEnvelope.PROPS, data.get("props")),
        (ResultEnvelope.RESULTS, data.get("results")),
    ]
    nested = data.get("data")
    if isinstance(nested, dict):
        candidates.append((ResultEnvelope.DATA_RESULTS, nested.get("results")))

    for envelope, value in candidates:
        if isinstance(value, list):
            return envelope, [item for item in value if isinstance(item, dict)]
    return ResultEnvelope.NONE, []


def _positive_number(value: Any) -> float | None:
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        return None
    if math.isnan(value) or value <= 0:
        return None
    return float(value)


def has_another_page(data: Any, page: int, page_size: int, returned_count: int) -> bool:
    """
    Decide whether to request the next page.
    - explicit hasNextPage wins
    - else totalPages / pagination.totalPages / ceil(totalCount / pageSize)
    - else a full page is taken as a sign of more data
    """
    if isinstance(data, dict):
        flag = data.get("hasNextPage")
        if isinstance(flag, bool):
            return flag

        pagination = data.get("pagination")
        total_pages = _positive_number(data.get("totalPages"))
        if total_pages is None and isinstance(pagination, dict):
            total_pages = _positive_number(pagination.get("totalPages"))
        if total_pages is None and page_size > 0:
            total_count = _positive_number(data.get("totalCount"))
            if total_count is not None:
                total_pages = float(math.ceil(total_count / page_size))
        if total_pages:
            return page < total_pages

    return returned_count >= page_size


class ListingSource(ABC):
    """
    Abstract interface for paginated listing sources.
    Implementations: Zillow via RapidAPI.
    """

    @abstractmethod
    async def fetch_page(self, query: SearchQuery, delay_seconds: float = 0.0) -> SearchPage:
        """
        Fetch one page of listings for a location.
        Waits `delay_seconds` before issuing the request.
        Raises RateLimitedError on 429 and SourceError on other failures.
        """
        ...

    @property
    @abstractmethod
    def source_name(self) -> str:
        """Identifier for this data source."""
        ...
