"""Data models for property ingestion."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any


@dataclass
class NormalizedProperty:
    """Canonical pre-validation shape of one source listing."""

    zpid: str
    address: str
    city: str
    state: str
    zip_code: str
    price: int = 0
    bedrooms: int = 0
    bathrooms: float = 0.0
    square_feet: int | None = None
    lot_size: int | None = None
    year_built: int | None = None
    property_type: str = "other"
    listing_status: str = "active"
    images: list[str] = field(default_factory=list)
    latitude: float | None = None
    longitude: float | None = None


@dataclass
class SearchPage:
    """One page of search results for one location."""

    items: list[dict[str, Any]]
    has_next_page: bool


@dataclass
class TransformResult:
    """Outcome of validating one normalized property."""

    success: bool
    data: dict[str, Any] | None = None
    errors: list[str] = field(default_factory=list)
    warnings: list[str] = field(default_factory=list)


@dataclass
class IngestTotals:
    attempted: int = 0
    unmapped: int = 0
    transformed: int = 0
    inserted_or_updated: int = 0
    skipped: int = 0

    def to_dict(self) -> dict[str, int]:
        return {
            "attempted": self.attempted,
            "unmapped": self.unmapped,
            "transformed": self.transformed,
            "inserted_or_updated": self.inserted_or_updated,
            "skipped": self.skipped,
        }


@dataclass
class LocationSummary:
    """Counters and errors for one location of an ingestion run."""

    location: str
    attempted: int = 0
    unmapped: int = 0
    transformed: int = 0
    inserted_or_updated: int = 0
    skipped: int = 0
    pages_fetched: int = 0
    status: str = "done"
    errors: list[str] = field(default_factory=list)
    property_type_counts: dict[str, int] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        return {
            "location": self.location,
            "attempted": self.attempted,
            "unmapped": self.unmapped,
            "transformed": self.transformed,
            "inserted_or_updated": self.inserted_or_updated,
            "skipped": self.skipped,
            "pages_fetched": self.pages_fetched,
            "status": self.status,
            "errors": list(self.errors),
            "property_type_counts": dict(self.property_type_counts),
        }


@dataclass
class IngestSummary:
    """Aggregate result of one ingestion run (never persisted)."""

    totals: IngestTotals = field(default_factory=IngestTotals)
    per_location: list[LocationSummary] = field(default_factory=list)
    property_type_counts: dict[str, int] = field(default_factory=dict)
    cancelled: bool = False

    @property
    def has_errors(self) -> bool:
        return any(loc.errors for loc in self.per_location)

    def to_dict(self) -> dict[str, Any]:
        return {
            "totals": self.totals.to_dict(),
            "per_location": [loc.to_dict() for loc in self.per_location],
            "property_type_counts": dict(self.property_type_counts),
            "cancelled": self.cancelled,
        }
