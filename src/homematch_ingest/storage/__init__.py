"""Storage layer for ingested properties."""

from .db import PropertiesTable, Storage
from .export import export_properties_csv, export_summary_json

__all__ = [
    "PropertiesTable",
    "Storage",
    "export_properties_csv",
    "export_summary_json",
]
