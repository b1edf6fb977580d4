"""Source connectors for listing data."""

from .base import (
    SORT_OPTIONS,
    ListingSource,
    ResultEnvelope,
    SearchQuery,
    has_another_page,
    probe_envelope,
)
from .zillow import ZillowSearchClient, build_search_params

__all__ = [
    "SORT_OPTIONS",
    "ListingSource",
    "ResultEnvelope",
    "SearchQuery",
    "ZillowSearchClient",
    "build_search_params",
    "has_another_page",
    "probe_envelope",
]
