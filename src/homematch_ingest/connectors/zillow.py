"""Zillow listing search via RapidAPI.

Uses zillow-com1.p.rapidapi.com.
Endpoint: /propertyExtendedSearch (paginated, one location per query)
"""

from __future__ import annotations

import asyncio
from typing import Any, Awaitable, Callable

import httpx

from ..exceptions import RateLimitedError, SourceError, SourceHTTPError
from ..logging_config import get_logger
from ..models import SearchPage
from .base import ListingSource, SearchQuery, has_another_page, probe_envelope

logger = get_logger(__name__)

DEFAULT_HOST = "zillow-com1.p.rapidapi.com"
SEARCH_PATH = "/propertyExtendedSearch"
ERROR_BODY_LIMIT = 200

Sleep = Callable[[float], Awaitable[Any]]


def build_search_params(query: SearchQuery) -> dict[str, str]:
    """Query string for /propertyExtendedSearch. Optional filters only when set."""
    params = {
        "location": query.location,
        "status_type": "ForSale",
        "page": str(query.page),
        "pageSize": str(query.page_size),
    }
    if query.sort:
        params["sort"] = query.sort
    if query.min_price is not None:
        params["minPrice"] = str(int(query.min_price))
    if query.max_price is not None:
        params["maxPrice"] = str(int(query.max_price))
    return params


class ZillowSearchClient(ListingSource):
    """
    Client for the RapidAPI Zillow search endpoint.
    https://rapidapi.com/apimaker/api/zillow-com1

    Holds only immutable connection settings; the delay before each request
    is supplied per call so one instance can be shared between callers.
    """

    def __init__(
        self,
        api_key: str,
        host: str = DEFAULT_HOST,
        timeout: float = 30.0,
        http_client: httpx.AsyncClient | None = None,
        sleep: Sleep = asyncio.sleep,
    ) -> None:
        self.api_key = api_key
        self.host = host
        self.base_url = f"https://{host}"
        self.timeout = timeout
        self._sleep = sleep
        self._client = http_client
        self._owns_client = http_client is None

    @property
    def source_name(self) -> str:
        return "zillow_rapidapi"

    async def __aenter__(self) -> ZillowSearchClient:
        return self

    async def __aexit__(self, *exc_info: Any) -> None:
        await self.aclose()

    async def aclose(self) -> None:
        if self._client is not None and self._owns_client:
            await self._client.aclose()
            self._client = None

    def _get_client(self) -> httpx.AsyncClient:
        if self._client is None:
            self._client = httpx.AsyncClient(timeout=self.timeout)
        return self._client

    def _headers(self) -> dict[str, str]:
        return {
            "X-RapidAPI-Key": self.api_key,
            "X-RapidAPI-Host": self.host,
            "Accept": "application/json",
        }

    async def fetch_page(self, query: SearchQuery, delay_seconds: float = 0.0) -> SearchPage:
        """Fetch one page of for-sale listings for `query.location`."""
        if delay_seconds > 0:
            await self._sleep(delay_seconds)

        params = build_search_params(query)
        client = self._get_client()
        try:
            resp = await client.get(
                f"{self.base_url}{SEARCH_PATH}",
                params=params,
                headers=self._headers(),
            )
        except httpx.HTTPError as e:
            raise SourceError(
                f"Request failed for {query.location} page {query.page}: {e!s}"
            ) from e

        if resp.status_code == 429:
            raise RateLimitedError(query.location, query.page)

        if not resp.is_success:
            body = resp.text[:ERROR_BODY_LIMIT]
            raise SourceHTTPError(
                f"HTTP {resp.status_code} {resp.reason_phrase} for {query.location} "
                f"page {query.page}: {body}",
                status_code=resp.status_code,
                body=body,
            )

        try:
            data = resp.json()
        except ValueError as e:
            raise SourceError(
                f"Invalid JSON for {query.location} page {query.page}",
                status_code=resp.status_code,
                body=resp.text[:ERROR_BODY_LIMIT],
            ) from e

        envelope, items = probe_envelope(data)
        has_next = has_another_page(data, query.page, query.page_size, len(items))
        logger.debug(
            "%s page %d: %d items via %s envelope (next=%s)",
            query.location,
            query.page,
            len(items),
            envelope.value,
            has_next,
        )
        return SearchPage(items=items, has_next_page=has_next)
