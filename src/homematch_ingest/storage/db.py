"""DuckDB storage for ingested properties."""

from __future__ import annotations

import json
from datetime import datetime, timezone
from pathlib import Path
from typing import Any

import duckdb

PROPERTY_COLUMNS = [
    "zpid",
    "address",
    "city",
    "state",
    "zip_code",
    "price",
    "bedrooms",
    "bathrooms",
    "square_feet",
    "lot_size_sqft",
    "year_built",
    "property_type",
    "listing_status",
    "images",
    "latitude",
    "longitude",
    "property_hash",
    "is_active",
    "updated_at",
]


def _naive_utc(value: Any) -> datetime | None:
    """TIMESTAMP columns hold naive UTC."""
    if value is None:
        return None
    if isinstance(value, str):
        value = datetime.fromisoformat(value.replace("Z", "+00:00"))
    if value.tzinfo is not None:
        value = value.astimezone(timezone.utc).replace(tzinfo=None)
    return value


class PropertiesTable:
    """
    Upsert-only handle on the properties table.
    Conflicts on the external id overwrite every other column (last write wins).
    """

    conflict_key = "zpid"

    def __init__(self, storage: Storage) -> None:
        self._storage = storage

    def upsert(self, records: list[dict[str, Any]], on_conflict: str = "zpid") -> int:
        """Insert or overwrite `records` in one transaction. Returns the row count."""
        if on_conflict != self.conflict_key:
            raise ValueError(f"properties table only supports on_conflict={self.conflict_key!r}")
        if not records:
            return 0

        updates = ", ".join(
            f"{col} = EXCLUDED.{col}" for col in PROPERTY_COLUMNS if col != self.conflict_key
        )
        sql = f"""
            INSERT INTO properties ({", ".join(PROPERTY_COLUMNS)})
            VALUES ({", ".join("?" for _ in PROPERTY_COLUMNS)})
            ON CONFLICT ({self.conflict_key}) DO UPDATE SET {updates}
        """
        rows = [self._row(r) for r in records]

        conn = self._storage._connect()
        conn.execute("BEGIN TRANSACTION")
        try:
            for row in rows:
                conn.execute(sql, row)
        except duckdb.Error:
            conn.execute("ROLLBACK")
            raise
        conn.execute("COMMIT")
        return len(rows)

    @staticmethod
    def _row(record: dict[str, Any]) -> list[Any]:
        row = []
        for col in PROPERTY_COLUMNS:
            value = record.get(col)
            if col == "images":
                value = json.dumps(value or [])
            elif col == "updated_at":
                value = _naive_utc(value)
            elif col == "is_active":
                value = True if value is None else bool(value)
            row.append(value)
        return row


class Storage:
    """
    DuckDB storage for the properties table.
    """

    def __init__(self, db_path: Path | str = "homematch.duckdb") -> None:
        self.db_path = Path(db_path)
        self._conn: duckdb.DuckDBPyConnection | None = None

    def _connect(self) -> duckdb.DuckDBPyConnection:
        if self._conn is None:
            self.db_path.parent.mkdir(parents=True, exist_ok=True)
            self._conn = duckdb.connect(str(self.db_path))
            self._init_schema()
        return self._conn

    def _init_schema(self) -> None:
        conn = self._conn
        conn.execute("""
            CREATE TABLE IF NOT EXISTS properties (
                zpid TEXT PRIMARY KEY,
                address TEXT NOT NULL,
                city TEXT NOT NULL,
                state TEXT NOT NULL,
                zip_code TEXT NOT NULL,
                price BIGINT NOT NULL,
                bedrooms INTEGER NOT NULL,
                bathrooms DOUBLE NOT NULL,
                square_feet BIGINT,
                lot_size_sqft BIGINT,
                year_built INTEGER,
                property_type TEXT,
                listing_status TEXT,
                images TEXT,
                latitude DOUBLE,
                longitude DOUBLE,
                property_hash TEXT,
                is_active BOOLEAN,
                updated_at TIMESTAMP
            )
        """)

    def table(self, name: str = "properties") -> PropertiesTable:
        if name != "properties":
            raise ValueError(f"Unknown table: {name}")
        self._connect()
        return PropertiesTable(self)

    def load_properties(self, limit: int | None = None) -> list[dict[str, Any]]:
        """Load stored properties, most recently updated first."""
        conn = self._connect()
        sql = f"SELECT {', '.join(PROPERTY_COLUMNS)} FROM properties ORDER BY updated_at DESC, zpid"
        params: list[Any] = []
        if limit is not None:
            sql += " LIMIT ?"
            params.append(int(limit))
        rows = conn.execute(sql, params).fetchall()
        properties = []
        for row in rows:
            d = dict(zip(PROPERTY_COLUMNS, row))
            raw_images = d.get("images")
            d["images"] = json.loads(raw_images) if isinstance(raw_images, str) else []
            if isinstance(d.get("updated_at"), datetime):
                d["updated_at"] = d["updated_at"].isoformat()
            properties.append(d)
        return properties

    def count_by_property_type(self) -> dict[str, int]:
        conn = self._connect()
        rows = conn.execute(
            "SELECT property_type, COUNT(*) FROM properties GROUP BY property_type ORDER BY 2 DESC"
        ).fetchall()
        return {str(ptype): int(n) for ptype, n in rows}

    def close(self) -> None:
        """Close the database connection."""
        if self._conn:
            self._conn.close()
            self._conn = None
