"""Insert schema for the properties table.

Mirrors the datastore column constraints so that a record passing
validation here can always be written.
"""

from __future__ import annotations

from datetime import date
from typing import List, Literal, Optional

from pydantic import BaseModel, Field, field_validator

PropertyTypeLiteral = Literal[
    "single_family",
    "condo",
    "townhome",
    "multi_family",
    "manufactured",
    "land",
    "other",
]
ListingStatusLiteral = Literal["active", "sold", "pending"]

MIN_YEAR_BUILT = 1800
ROOM_CEILING = 20


class PropertyInsert(BaseModel):
    """One row of the properties table, keyed by zpid."""

    zpid: str = Field(min_length=1)
    address: str = Field(min_length=1, max_length=255)
    city: str = Field(min_length=1, max_length=100)
    state: str = Field(pattern=r"^[A-Z]{2}$")
    zip_code: str = Field(min_length=5, max_length=10)
    price: int = Field(ge=0)
    bedrooms: int = Field(ge=0, le=ROOM_CEILING)
    bathrooms: float = Field(ge=0, le=ROOM_CEILING)
    square_feet: Optional[int] = Field(default=None, ge=0)
    lot_size_sqft: Optional[int] = Field(default=None, ge=0)
    year_built: Optional[int] = None
    property_type: PropertyTypeLiteral = "single_family"
    listing_status: ListingStatusLiteral = "active"
    images: List[str] = []
    latitude: Optional[float] = Field(default=None, ge=-90, le=90)
    longitude: Optional[float] = Field(default=None, ge=-180, le=180)
    property_hash: Optional[str] = None
    is_active: bool = True

    @field_validator("year_built")
    @classmethod
    def _year_in_range(cls, v: Optional[int]) -> Optional[int]:
        if v is None:
            return v
        latest = date.today().year + 5
        if not MIN_YEAR_BUILT <= v <= latest:
            raise ValueError(f"must be between {MIN_YEAR_BUILT} and {latest}")
        return v

    @field_validator("images")
    @classmethod
    def _image_paths(cls, v: List[str]) -> List[str]:
        for url in v:
            if not (url.startswith(("http://", "https://")) or url.startswith("/")):
                raise ValueError(f"invalid image url: {url[:80]}")
        return v
