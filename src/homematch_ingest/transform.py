"""Business-rule validation of normalized properties before insert."""

from __future__ import annotations

import hashlib

from pydantic import ValidationError

from .models import NormalizedProperty, TransformResult
from .schemas import ROOM_CEILING, PropertyInsert

# Accepted spellings -> canonical property_type
PROPERTY_TYPE_SYNONYMS = {
    "single_family": "single_family",
    "house": "single_family",
    "condo": "condo",
    "condominium": "condo",
    "townhome": "townhome",
    "townhouse": "townhome",
    "multi_family": "multi_family",
    "multifamily": "multi_family",
    "apartment": "multi_family",
    "multifamily_dwelling": "multi_family",
    "manufactured": "manufactured",
    "mobile": "manufactured",
    "land": "land",
    "lot": "land",
    "other": "other",
}


def normalize_property_type(raw_type: str | None) -> tuple[str, str | None]:
    """Return (canonical type, warning). Absent -> single_family, unknown -> other."""
    key = (raw_type or "").strip().lower()
    if not key:
        return "single_family", None
    canonical = PROPERTY_TYPE_SYNONYMS.get(key)
    if canonical is None:
        return "other", f"Unknown property type: {raw_type}, defaulting to other"
    return canonical, None


def property_hash(record: NormalizedProperty) -> str:
    """md5 over address/city/state/zip/price, used to spot relisted duplicates."""
    key = f"{record.address}_{record.city}_{record.state}_{record.zip_code}_{record.price}"
    return hashlib.md5(key.lower().encode("utf-8")).hexdigest()


def _format_validation_error(exc: ValidationError) -> list[str]:
    messages = []
    for err in exc.errors():
        loc = ".".join(str(p) for p in err.get("loc", ()))
        messages.append(f"{loc}: {err.get('msg', 'invalid value')}")
    return messages


class PropertyTransformer:
    """
    Validates NormalizedProperty records and shapes them into insert rows.
    Never raises for bad records; problems come back as error strings.
    """

    def transform(self, record: NormalizedProperty, index: int = 0) -> TransformResult:
        errors: list[str] = []
        warnings: list[str] = []

        if not record.address.strip():
            errors.append("Missing address")
        if not record.city.strip():
            errors.append("Missing city")
        if not record.state.strip():
            errors.append("Missing state")
        if not record.zip_code.strip():
            errors.append("Missing zip code")
        if errors:
            return TransformResult(success=False, errors=self._tag(errors, record, index))

        property_type, type_warning = normalize_property_type(record.property_type)
        if type_warning:
            warnings.append(type_warning)

        bedrooms = record.bedrooms
        if bedrooms > ROOM_CEILING:
            warnings.append(f"Bedrooms capped at {ROOM_CEILING} from {bedrooms}")
            bedrooms = ROOM_CEILING
        bathrooms = record.bathrooms
        if bathrooms > ROOM_CEILING:
            warnings.append(f"Bathrooms capped at {ROOM_CEILING} from {bathrooms}")
            bathrooms = float(ROOM_CEILING)

        try:
            row = PropertyInsert(
                zpid=record.zpid,
                address=record.address.strip(),
                city=record.city.strip(),
                state=record.state.strip().upper(),
                zip_code=record.zip_code.strip(),
                price=record.price,
                bedrooms=bedrooms,
                bathrooms=bathrooms,
                square_feet=record.square_feet,
                lot_size_sqft=record.lot_size,
                year_built=record.year_built,
                property_type=property_type,
                listing_status=record.listing_status,
                images=list(record.images),
                latitude=record.latitude,
                longitude=record.longitude,
                property_hash=property_hash(record),
                is_active=True,
            )
        except ValidationError as e:
            return TransformResult(
                success=False,
                errors=self._tag(_format_validation_error(e), record, index),
                warnings=warnings,
            )

        return TransformResult(success=True, data=row.model_dump(), warnings=warnings)

    @staticmethod
    def _tag(errors: list[str], record: NormalizedProperty, index: int) -> list[str]:
        return [f"[{index}] zpid={record.zpid}: {e}" for e in errors]
