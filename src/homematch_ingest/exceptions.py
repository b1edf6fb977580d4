"""Exception classes for the ingestion pipeline."""

from __future__ import annotations


class IngestError(Exception):
    """Base exception for the ingestion pipeline."""


class ConfigError(IngestError):
    """Invalid or missing configuration, detected before a run starts."""


class SourceError(IngestError):
    """Listing source request failed (network error or unusable response)."""

    def __init__(self, message: str, status_code: int | None = None, body: str = "") -> None:
        self.status_code = status_code
        self.body = body
        super().__init__(message)


class SourceHTTPError(SourceError):
    """Non-2xx response other than 429."""


class RateLimitedError(SourceError):
    """HTTP 429 from the source. The caller backs off and retries the same page."""

    def __init__(self, location: str, page: int) -> None:
        self.location = location
        self.page = page
        super().__init__(f"Rate limited for {location} page {page}", status_code=429)
