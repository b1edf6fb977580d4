"""Export ingestion summaries and stored properties to JSON and CSV."""

from __future__ import annotations

import csv
import json
from datetime import datetime, timezone
from pathlib import Path
from typing import Any

from ..models import IngestSummary


def _serialize(obj: Any) -> Any:
    """JSON serializer for datetime objects."""
    if isinstance(obj, datetime):
        return obj.isoformat()
    raise TypeError(f"Object of type {type(obj)} is not JSON serializable")


def export_summary_json(summary: IngestSummary, path: Path | str, run_id: str = "") -> None:
    """Write one run's IngestSummary to JSON."""
    path = Path(path)
    path.parent.mkdir(parents=True, exist_ok=True)

    data = {
        "run_id": run_id,
        "finished_at": datetime.now(timezone.utc).isoformat(),
        "summary": summary.to_dict(),
    }

    with open(path, "w", encoding="utf-8") as f:
        json.dump(data, f, indent=2, default=_serialize)


def export_properties_csv(properties: list[dict[str, Any]], path: Path | str) -> None:
    """Export stored properties to CSV (image count and first image only)."""
    path = Path(path)
    path.parent.mkdir(parents=True, exist_ok=True)

    fieldnames = [
        "zpid",
        "address",
        "city",
        "state",
        "zip_code",
        "price",
        "bedrooms",
        "bathrooms",
        "square_feet",
        "property_type",
        "listing_status",
        "image_count",
        "first_image",
        "updated_at",
    ]

    with open(path, "w", newline="", encoding="utf-8") as f:
        writer = csv.DictWriter(f, fieldnames=fieldnames, extrasaction="ignore")
        writer.writeheader()
        for p in properties:
            images = p.get("images") or []
            row = dict(p)
            row["image_count"] = len(images)
            row["first_image"] = images[0] if images else ""
            writer.writerow(row)
