"""Configuration loader."""

from __future__ import annotations

import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Mapping

import yaml

from .connectors.base import SORT_OPTIONS
from .connectors.zillow import DEFAULT_HOST
from .ingest import DEFAULT_DELAY_SECONDS, DEFAULT_MAX_PAGES, DEFAULT_PAGE_SIZE
from .logging_config import get_logger

logger = get_logger(__name__)

DEFAULT_SORT = "Newest"


@dataclass
class IngestSettings:
    """Resolved ingestion settings (config file + environment)."""

    api_key: str
    host: str = DEFAULT_HOST
    locations: list[str] = field(default_factory=list)
    page_size: int = DEFAULT_PAGE_SIZE
    max_pages: int = DEFAULT_MAX_PAGES
    delay_seconds: float = DEFAULT_DELAY_SECONDS
    sort: str = DEFAULT_SORT
    min_price: int | None = None
    max_price: int | None = None
    db_path: str = "output/homematch.duckdb"


def load_config(config_path: Path | str | None = None) -> dict[str, Any]:
    """Load config from YAML file."""
    path = Path(config_path) if config_path else Path(__file__).parent.parent.parent / "config.yaml"
    if not path.exists():
        raise FileNotFoundError(f"Config not found: {path}")
    with open(path) as f:
        return yaml.safe_load(f) or {}


def split_locations(raw: str) -> list[str]:
    """Split on semicolons only; commas belong to "City, ST"."""
    return [s.strip() for s in raw.split(";") if s.strip()]


def resolve_sort(value: str | None) -> str:
    if not value:
        return DEFAULT_SORT
    if value not in SORT_OPTIONS:
        logger.warning("Unknown sort %r. Falling back to %r.", value, DEFAULT_SORT)
        return DEFAULT_SORT
    return value


def _positive_int(value: Any, default: int) -> int:
    try:
        n = int(value)
    except (TypeError, ValueError):
        return default
    return n if n > 0 else default


def _optional_int(value: Any) -> int | None:
    if value is None or value == "":
        return None
    try:
        return int(value)
    except (TypeError, ValueError):
        return None


def get_ingest_settings(
    config: dict[str, Any],
    env: Mapping[str, str] | None = None,
) -> IngestSettings:
    """Extract ingestion settings; RAPIDAPI_KEY, RAPIDAPI_HOST and ZILLOW_LOCATIONS override the file."""
    env = os.environ if env is None else env
    ing = config.get("ingestion", {}) or {}

    env_locations = env.get("ZILLOW_LOCATIONS", "")
    if env_locations.strip():
        locations = split_locations(env_locations)
    else:
        locations = [str(c).strip() for c in ing.get("locations", []) or [] if str(c).strip()]

    try:
        delay = float(ing.get("delay_seconds", DEFAULT_DELAY_SECONDS))
    except (TypeError, ValueError):
        delay = DEFAULT_DELAY_SECONDS

    return IngestSettings(
        api_key=env.get("RAPIDAPI_KEY", ""),
        host=env.get("RAPIDAPI_HOST") or ing.get("rapidapi_host") or DEFAULT_HOST,
        locations=locations,
        page_size=_positive_int(ing.get("page_size"), DEFAULT_PAGE_SIZE),
        max_pages=_positive_int(ing.get("max_pages"), DEFAULT_MAX_PAGES),
        delay_seconds=max(0.0, delay),
        sort=resolve_sort(env.get("ZILLOW_SORT") or ing.get("sort")),
        min_price=_optional_int(ing.get("min_price")),
        max_price=_optional_int(ing.get("max_price")),
        db_path=str(config.get("storage", {}).get("db_path", "output/homematch.duckdb")),
    )
