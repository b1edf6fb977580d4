"""Ingestion orchestrator: locations -> pages -> map -> validate -> upsert."""

from __future__ import annotations

import asyncio
import inspect
from collections import Counter
from datetime import datetime, timezone
from typing import Any, Awaitable, Callable, Protocol

import httpx

from .connectors.base import SORT_OPTIONS, ListingSource, SearchQuery
from .connectors.zillow import DEFAULT_HOST, ZillowSearchClient
from .exceptions import ConfigError, RateLimitedError, SourceError
from .logging_config import get_logger
from .mapper import map_search_item
from .models import IngestSummary, LocationSummary, NormalizedProperty
from .transform import PropertyTransformer

logger = get_logger(__name__)

DEFAULT_PAGE_SIZE = 20
DEFAULT_MAX_PAGES = 5
DEFAULT_DELAY_SECONDS = 1.25
DEFAULT_MAX_RATE_LIMIT_RETRIES = 5
# Pre-insert ceiling for bedrooms/bathrooms, applied on top of the mapper clamp
HARD_ROOM_CEILING = 20
CONFLICT_KEY = "zpid"

Sleep = Callable[[float], Awaitable[Any]]


class PropertyTable(Protocol):
    """Datastore handle. `upsert` may be sync or async and raises on failure."""

    def upsert(self, records: list[dict[str, Any]], on_conflict: str = CONFLICT_KEY) -> Any:
        ...


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _format_type_counts(rows: list[dict[str, Any]]) -> str:
    counts = Counter(str(r.get("property_type")) for r in rows)
    return ", ".join(f"{ptype}={n}" for ptype, n in sorted(counts.items()))


class _LocationRun:
    """Drives the page loop for one location and fills its LocationSummary."""

    def __init__(
        self,
        location: str,
        source: ListingSource,
        table: PropertyTable,
        transformer: PropertyTransformer,
        *,
        page_size: int,
        max_pages: int,
        delay_seconds: float,
        sort: str | None,
        min_price: int | None,
        max_price: int | None,
        max_rate_limit_retries: int,
        sleep: Sleep,
        clock: Callable[[], datetime],
        cancel_event: asyncio.Event | None,
    ) -> None:
        self.location = location
        self.source = source
        self.table = table
        self.transformer = transformer
        self.page_size = page_size
        self.max_pages = max_pages
        self.delay_seconds = delay_seconds
        self.sort = sort
        self.min_price = min_price
        self.max_price = max_price
        self.max_rate_limit_retries = max_rate_limit_retries
        self.sleep = sleep
        self.clock = clock
        self.cancel_event = cancel_event
        self.summary = LocationSummary(location=location)

    def _cancelled(self) -> bool:
        return self.cancel_event is not None and self.cancel_event.is_set()

    async def run(self) -> LocationSummary:
        loc = self.summary
        page = 1
        has_more = True
        rate_limit_hits = 0

        while has_more and page <= self.max_pages:
            if self._cancelled():
                loc.status = "cancelled"
                break

            query = SearchQuery(
                location=self.location,
                page=page,
                page_size=self.page_size,
                sort=self.sort,
                min_price=self.min_price,
                max_price=self.max_price,
            )
            try:
                result = await self.source.fetch_page(query, delay_seconds=self.delay_seconds)
            except RateLimitedError:
                rate_limit_hits += 1
                if rate_limit_hits > self.max_rate_limit_retries:
                    loc.errors.append(
                        f"Rate limit retries exhausted for {self.location} page {page}"
                    )
                    loc.status = "aborted"
                    break
                backoff = self.delay_seconds * (2 ** rate_limit_hits)
                logger.warning(
                    "Rate limited on %s page %d; retrying in %.2fs", self.location, page, backoff
                )
                await self.sleep(backoff)
                continue
            except SourceError as e:
                logger.warning("Fetch failed for %s page %d: %s", self.location, page, e)
                loc.errors.append(str(e))
                loc.status = "aborted"
                break
            except Exception as e:
                logger.exception("Unexpected fetch error for %s page %d", self.location, page)
                loc.errors.append(f"Unexpected fetch error: {e!s}")
                loc.status = "aborted"
                break

            rate_limit_hits = 0
            loc.pages_fetched += 1
            loc.attempted += len(result.items)

            mapped: list[NormalizedProperty] = []
            for item in result.items:
                record = map_search_item(item, self.location)
                if record is None:
                    loc.unmapped += 1
                    logger.debug(
                        "Unmapped item on %s page %d: zpid=%s",
                        self.location,
                        page,
                        item.get("zpid") if isinstance(item, dict) else item,
                    )
                else:
                    mapped.append(record)

            if mapped:
                rows = self._build_batch(mapped)
                if rows:
                    await self._upsert(rows)

            has_more = result.has_next_page
            page += 1
            await self.sleep(self.delay_seconds)

        return loc

    def _build_batch(self, records: list[NormalizedProperty]) -> list[dict[str, Any]]:
        """Validate records; returns insert rows deduplicated by external id (last wins)."""
        loc = self.summary
        batch: dict[str, dict[str, Any]] = {}
        for index, record in enumerate(records):
            result = self.transformer.transform(record, index)
            if not result.success or result.data is None:
                loc.skipped += 1
                if result.errors:
                    loc.errors.append("; ".join(result.errors))
                continue

            loc.transformed += 1
            row = dict(result.data)
            ptype = row.get("property_type") or "other"
            loc.property_type_counts[ptype] = loc.property_type_counts.get(ptype, 0) + 1
            row["bedrooms"] = max(0, min(int(row.get("bedrooms") or 0), HARD_ROOM_CEILING))
            row["bathrooms"] = max(0.0, min(float(row.get("bathrooms") or 0), float(HARD_ROOM_CEILING)))
            row["updated_at"] = self.clock()
            batch[row[CONFLICT_KEY]] = row
        return list(batch.values())

    async def _upsert(self, rows: list[dict[str, Any]]) -> None:
        loc = self.summary
        try:
            if inspect.iscoroutinefunction(self.table.upsert):
                await self.table.upsert(rows, on_conflict=CONFLICT_KEY)
            else:
                # sync datastores run off the event loop
                outcome = await asyncio.to_thread(self.table.upsert, rows, on_conflict=CONFLICT_KEY)
                if inspect.isawaitable(outcome):
                    await outcome
        except Exception as e:
            message = f"upsert failed: {e!s} (types: {_format_type_counts(rows)})"
            logger.error("%s: %s", self.location, message)
            loc.errors.append(message)
            return
        loc.inserted_or_updated += len(rows)


def _merge(summary: IngestSummary, loc: LocationSummary) -> None:
    totals = summary.totals
    totals.attempted += loc.attempted
    totals.unmapped += loc.unmapped
    totals.transformed += loc.transformed
    totals.inserted_or_updated += loc.inserted_or_updated
    totals.skipped += loc.skipped
    for ptype, n in loc.property_type_counts.items():
        summary.property_type_counts[ptype] = summary.property_type_counts.get(ptype, 0) + n
    summary.per_location.append(loc)


async def ingest_locations(
    locations: list[str],
    api_key: str,
    table: PropertyTable,
    *,
    host: str = DEFAULT_HOST,
    page_size: int = DEFAULT_PAGE_SIZE,
    max_pages: int = DEFAULT_MAX_PAGES,
    delay_seconds: float = DEFAULT_DELAY_SECONDS,
    sort: str | None = None,
    min_price: int | None = None,
    max_price: int | None = None,
    max_rate_limit_retries: int = DEFAULT_MAX_RATE_LIMIT_RETRIES,
    source: ListingSource | None = None,
    http_client: httpx.AsyncClient | None = None,
    sleep: Sleep = asyncio.sleep,
    clock: Callable[[], datetime] = _utcnow,
    cancel_event: asyncio.Event | None = None,
) -> IngestSummary:
    """
    Ingest for-sale listings for each location into `table`.

    Locations are processed sequentially. A failing location is recorded in
    its summary entry and never stops the others. Only configuration
    problems raise (ConfigError), before any request is made.
    """
    if not api_key:
        raise ConfigError("RAPIDAPI_KEY not set. Set env var or pass api_key.")
    if not locations:
        raise ConfigError("No locations to ingest.")
    if page_size < 1 or max_pages < 1:
        raise ConfigError("page_size and max_pages must be positive.")
    if sort is not None and sort not in SORT_OPTIONS:
        raise ConfigError(f"Unknown sort {sort!r}; expected one of {', '.join(SORT_OPTIONS)}")

    owned_source: ZillowSearchClient | None = None
    if source is None:
        owned_source = ZillowSearchClient(api_key, host=host, http_client=http_client, sleep=sleep)
        source = owned_source

    transformer = PropertyTransformer()
    summary = IngestSummary()
    logger.info(
        "Starting ingestion for %d locations (page_size=%d, max_pages=%d, sort=%s)",
        len(locations),
        page_size,
        max_pages,
        sort or "default",
    )

    try:
        for location in locations:
            if cancel_event is not None and cancel_event.is_set():
                summary.cancelled = True
                logger.info("Ingestion cancelled before %s", location)
                break

            run = _LocationRun(
                location,
                source,
                table,
                transformer,
                page_size=page_size,
                max_pages=max_pages,
                delay_seconds=delay_seconds,
                sort=sort,
                min_price=min_price,
                max_price=max_price,
                max_rate_limit_retries=max_rate_limit_retries,
                sleep=sleep,
                clock=clock,
                cancel_event=cancel_event,
            )
            loc = await run.run()
            _merge(summary, loc)
            if loc.status == "cancelled":
                summary.cancelled = True
            logger.info(
                "%s: attempted=%d unmapped=%d transformed=%d upserted=%d skipped=%d errors=%d",
                location,
                loc.attempted,
                loc.unmapped,
                loc.transformed,
                loc.inserted_or_updated,
                loc.skipped,
                len(loc.errors),
            )
            if summary.cancelled:
                break
    finally:
        if owned_source is not None:
            await owned_source.aclose()

    t = summary.totals
    logger.info(
        "Ingestion finished: attempted=%d unmapped=%d transformed=%d upserted=%d skipped=%d",
        t.attempted,
        t.unmapped,
        t.transformed,
        t.inserted_or_updated,
        t.skipped,
    )
    return summary
