"""Map raw Zillow search items to NormalizedProperty.

Every function here is pure and total: unusable input yields None (or an
empty value), never an exception.
"""

from __future__ import annotations

import math
import re
import sys
from typing import Any

from .models import NormalizedProperty

SAFE_INT_MAX = 2_147_483_647
MAX_BATHROOMS = 9.9
MAX_BEDROOMS = 20

_STATE_RE = re.compile(r"^([A-Za-z]{2})\b")
_ZIP_RE = re.compile(r"\b(\d{5})(?:-\d{4})?\b")
_ZIP_ONLY_RE = re.compile(r"^\d{5}(?:-\d{4})?$")

# Zillow homeType / propertyType -> canonical property_type
PROPERTY_TYPE_MAP = {
    "SINGLE_FAMILY": "single_family",
    "CONDO": "condo",
    "TOWNHOUSE": "townhome",
    "TOWNHOME": "townhome",
    "APARTMENT": "multi_family",
    "MULTI_FAMILY": "multi_family",
    "MANUFACTURED": "manufactured",
    "MOBILE": "manufactured",
    "LOT": "land",
    "LAND": "land",
}

# Default zip per (city, state) for listings that arrive without one
DEFAULT_ZIP_CODES = {
    ("san francisco", "CA"): "94103",
    ("alameda", "CA"): "94501",
    ("albany", "CA"): "94706",
    ("american canyon", "CA"): "94503",
    ("belmont", "CA"): "94002",
    ("benicia", "CA"): "94510",
    ("berkeley", "CA"): "94704",
    ("burlingame", "CA"): "94010",
    ("campbell", "CA"): "95008",
    ("concord", "CA"): "94520",
    ("cotati", "CA"): "94931",
    ("cupertino", "CA"): "95014",
    ("daly city", "CA"): "94014",
    ("danville", "CA"): "94526",
    ("dublin", "CA"): "94568",
    ("el cerrito", "CA"): "94530",
    ("emeryville", "CA"): "94608",
    ("fairfield", "CA"): "94533",
    ("foster city", "CA"): "94404",
    ("fremont", "CA"): "94536",
    ("gilroy", "CA"): "95020",
    ("half moon bay", "CA"): "94019",
    ("hayward", "CA"): "94541",
    ("healdsburg", "CA"): "95448",
    ("hercules", "CA"): "94547",
    ("lafayette", "CA"): "94549",
    ("livermore", "CA"): "94550",
    ("los altos", "CA"): "94022",
    ("los altos hills", "CA"): "94022",
    ("los gatos", "CA"): "95030",
    ("martinez", "CA"): "94553",
    ("menlo park", "CA"): "94025",
    ("mill valley", "CA"): "94941",
    ("millbrae", "CA"): "94030",
    ("milpitas", "CA"): "95035",
    ("morgan hill", "CA"): "95037",
    ("mountain view", "CA"): "94040",
    ("napa", "CA"): "94558",
    ("newark", "CA"): "94560",
    ("novato", "CA"): "94945",
    ("oakland", "CA"): "94612",
    ("orinda", "CA"): "94563",
    ("pacifica", "CA"): "94044",
    ("palo alto", "CA"): "94301",
    ("petaluma", "CA"): "94952",
    ("piedmont", "CA"): "94611",
    ("pinole", "CA"): "94564",
    ("pleasant hill", "CA"): "94523",
    ("pleasanton", "CA"): "94566",
    ("redwood city", "CA"): "94061",
    ("richmond", "CA"): "94801",
    ("rohnert park", "CA"): "94928",
    ("san bruno", "CA"): "94066",
    ("san carlos", "CA"): "94070",
    ("san jose", "CA"): "95112",
    ("san leandro", "CA"): "94577",
    ("san mateo", "CA"): "94401",
    ("san pablo", "CA"): "94806",
    ("san rafael", "CA"): "94901",
    ("san ramon", "CA"): "94583",
    ("saratoga", "CA"): "95070",
    ("santa clara", "CA"): "95050",
    ("santa rosa", "CA"): "95404",
    ("sausalito", "CA"): "94965",
    ("sebastopol", "CA"): "95472",
    ("sonoma", "CA"): "95476",
    ("south san francisco", "CA"): "94080",
    ("sunnyvale", "CA"): "94086",
    ("suisun city", "CA"): "94585",
    ("tiburon", "CA"): "94920",
    ("union city", "CA"): "94587",
    ("vacaville", "CA"): "95687",
    ("vallejo", "CA"): "94590",
    ("walnut creek", "CA"): "94596",
}


def _text(value: Any) -> str:
    if value is None or isinstance(value, (bool, dict, list)):
        return ""
    try:
        return str(value).strip()
    except ValueError:
        # int beyond the interpreter's digit limit
        return ""


def _cap_overflow(num: float) -> float:
    return math.copysign(sys.float_info.max, num) if math.isinf(num) else num


def parse_number(value: Any) -> float | None:
    """
    Parse 550000, 1.5, '$1,200,000'. Anything else is None.
    Integers and digit strings beyond float range are capped at the largest float.
    """
    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, int):
        try:
            num = float(value)
        except OverflowError:
            num = sys.float_info.max if value > 0 else -sys.float_info.max
    elif isinstance(value, float):
        num = value
    elif isinstance(value, str):
        cleaned = re.sub(r"[^\d.\-]", "", value)
        try:
            num = _cap_overflow(float(cleaned)) if cleaned else math.nan
        except ValueError:
            return None
    else:
        return None
    if math.isnan(num) or math.isinf(num):
        return None
    return num


def _round_half_up(value: float, digits: int = 0) -> float:
    factor = 10 ** digits
    return math.floor(value * factor + 0.5) / factor


def clamp_int(value: Any, maximum: int = SAFE_INT_MAX) -> int | None:
    """Round to an integer within [-SAFE_INT_MAX - 1, maximum]; None when unparseable."""
    num = parse_number(value)
    if num is None:
        return None
    bounded = max(float(-SAFE_INT_MAX - 1), min(num, float(maximum)))
    return int(min(_round_half_up(bounded), maximum))


def clamp_bathrooms(value: Any) -> float:
    """Round to one decimal and keep within [0, MAX_BATHROOMS]."""
    num = parse_number(value)
    if num is None:
        return 0.0
    bounded = max(0.0, min(num, MAX_BATHROOMS))
    return min(_round_half_up(bounded, 1), MAX_BATHROOMS)


def clamp_bedrooms(value: Any) -> int:
    num = clamp_int(value, MAX_BEDROOMS)
    return max(0, num) if num is not None else 0


def split_combined_address(address: str) -> tuple[str, str, str, str]:
    """
    Split "1 Main St, Oakland, CA 94612" into (street, city, state, zip).
    The last two comma segments are taken as city and "state[,] zip".
    Unresolved parts come back empty.
    """
    parts = [p.strip() for p in address.split(",") if p.strip()]
    if len(parts) >= 2 and _ZIP_ONLY_RE.match(parts[-1]) and not _ZIP_RE.search(parts[-2]):
        parts = parts[:-2] + [f"{parts[-2]} {parts[-1]}"]

    street = city = tail = ""
    if len(parts) >= 3:
        street = ", ".join(parts[:-2])
        city, tail = parts[-2], parts[-1]
    elif len(parts) == 2:
        city, tail = parts
    elif parts:
        street = parts[0]

    state_match = _STATE_RE.match(tail)
    zip_match = _ZIP_RE.search(tail)
    zip_code = zip_match.group(1) if zip_match else ""
    if not state_match:
        return "", "", "", zip_code
    return street, city, state_match.group(1).upper(), zip_code


def parse_location_hint(location: str) -> tuple[str, str]:
    """'Oakland, CA' -> ('Oakland', 'CA'). The last segment holds the state."""
    parts = [p.strip() for p in (location or "").split(",") if p.strip()]
    if not parts:
        return "", ""
    state_match = _STATE_RE.match(parts[-1])
    if not state_match:
        return "", ""
    city = parts[-2] if len(parts) >= 2 else ""
    return city, state_match.group(1).upper()


def default_zip_for(city: str, state: str) -> str:
    return DEFAULT_ZIP_CODES.get((city.strip().lower(), state.strip().upper()), "")


def map_property_type(raw_type: Any) -> str:
    """Map a Zillow home type to the canonical enum; unknown -> other."""
    return PROPERTY_TYPE_MAP.get(_text(raw_type).upper(), "other")


def normalize_status(status: Any) -> str:
    s = _text(status).lower()
    if "sale" in s:
        return "active"
    if "sold" in s:
        return "sold"
    if "pending" in s or "contingent" in s:
        return "pending"
    return "active"


def resolve_images(item: dict[str, Any]) -> list[str]:
    images = item.get("images")
    if isinstance(images, list):
        urls = [u.strip() for u in images if isinstance(u, str) and u.strip()]
        if urls:
            return urls
    primary = item.get("imgSrc")
    if isinstance(primary, str) and primary.strip():
        return [primary.strip()]
    return []


def _coordinate(value: Any, limit: float) -> float | None:
    num = parse_number(value)
    if num is None or abs(num) > limit:
        return None
    return num


def map_search_item(item: Any, location_hint: str = "") -> NormalizedProperty | None:
    """
    Convert one Zillow search item to NormalizedProperty.
    Returns None when the item has no zpid or no resolvable city + state.
    """
    if not isinstance(item, dict):
        return None
    zpid = _text(item.get("zpid") or item.get("id"))
    if not zpid:
        return None

    combined = _text(item.get("address"))
    street, addr_city, addr_state, addr_zip = split_combined_address(combined)
    hint_city, hint_state = parse_location_hint(location_hint)

    city = _text(item.get("city")) or addr_city or hint_city
    state = (_text(item.get("state")) or addr_state or hint_state).upper()
    if not city or not state:
        return None

    zip_code = _text(item.get("zipcode") or item.get("zipCode")) or addr_zip
    if not zip_code:
        zip_code = default_zip_for(city, state)

    address = _text(item.get("streetAddress")) or street or combined

    year_built = clamp_int(item.get("yearBuilt"))
    return NormalizedProperty(
        zpid=zpid,
        address=address,
        city=city,
        state=state,
        zip_code=zip_code,
        price=clamp_int(item.get("price")) or 0,
        bedrooms=clamp_bedrooms(item.get("bedrooms")),
        bathrooms=clamp_bathrooms(item.get("bathrooms")),
        square_feet=clamp_int(item.get("livingArea")),
        lot_size=clamp_int(item.get("lotAreaValue")),
        year_built=year_built or None,
        property_type=map_property_type(item.get("propertyType") or item.get("homeType")),
        listing_status=normalize_status(item.get("statusType") or item.get("brokerStatus")),
        images=resolve_images(item),
        latitude=_coordinate(item.get("latitude"), 90),
        longitude=_coordinate(item.get("longitude"), 180),
    )
