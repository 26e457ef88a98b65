# backend/listings/parsing.py
"""
Pure value normalizers shared by every extraction strategy.
Nothing in here knows about HTTP or document structure: the inputs are raw
values pulled out of JSON blobs or markup, the outputs are the typed fields
of a PropertyRecord.
"""
import math
import re
from datetime import datetime, timezone
from typing import Any, Iterable, Mapping, Optional

from backend.py_models.property import (
    UNKNOWN_ADDRESS,
    ListingSource,
    PartialProperty,
    PropertyRecord,
    PropertyType,
)

__all__ = [
    "parse_price",
    "extract_number",
    "positive_int",
    "normalize_property_type",
    "assemble_address",
    "infer_price_reduced",
    "infer_original_price",
    "is_unknown_address",
    "has_required_data",
    "complete_record",
    "degraded_record",
]

ADDRESS_SEPARATOR = ", "

# --- number helpers ---------------------------------------------------------
_num_any = re.compile(r"\d+(?:\.\d+)?")
_thousands = re.compile(r"(?<=\d),(?=\d{3}\b)")
_leading_int = re.compile(r"\d+")
# longer digit runs are markup noise, not prices
_MAX_DIGITS = 15

# Checked in this order; first hit wins. "house" must not fire on town/row houses.
_TYPE_KEYWORDS = (
    (PropertyType.SINGLE_FAMILY, re.compile(r"single|detached|(?<!town)(?<!town )(?<!row)(?<!row )house")),
    (PropertyType.CONDO, re.compile(r"condo|apartment")),
    (PropertyType.TOWNHOUSE, re.compile(r"town|\brow")),
    (PropertyType.MULTI_FAMILY, re.compile(r"multi|duplex|triplex")),
)

_REDUCTION_PHRASES = re.compile(
    r"\bprice\s*(?:cut|drop(?:ped)?|reduc(?:ed|tion))\b|\breduced\s+by\b", re.I
)

_STREET_KEYS = ("streetAddress", "street", "line1", "addressLine1", "address1")
_LOCALITY_KEYS = ("addressLocality", "city", "locality")
_REGION_KEYS = ("addressRegion", "state", "stateCode", "region")
_POSTAL_KEYS = ("postalCode", "zipcode", "zip", "zipCode")
_FULL_KEYS = ("fullAddress", "formattedAddress", "assembledAddress", "full_address")


def _qv_value(x):
    """Unwrap a QuantitativeValue-ish dict ({"value": ...} / {"amount": ...})."""
    if isinstance(x, Mapping):
        for k in ("value", "amount", "price"):
            if x.get(k) is not None:
                return x.get(k)
        return None
    return x


def parse_price(value: Any) -> int:
    """
    '$1,250,000' → 1250000. Everything but digits and the decimal point is
    stripped and the leading integer part kept; missing or junk input → 0.
    """
    value = _qv_value(value)
    if value is None or isinstance(value, bool):
        return 0
    if isinstance(value, float) and not math.isfinite(value):
        return 0
    if isinstance(value, (int, float)):
        return int(value) if value > 0 else 0
    cleaned = re.sub(r"[^0-9.]", "", str(value))
    m = _leading_int.match(cleaned)
    if not m or len(m.group(0)) > _MAX_DIGITS:
        return 0
    return int(m.group(0))


def _finite(x: float) -> float:
    return x if math.isfinite(x) and x > 0 else 0.0


def extract_number(value: Any) -> float:
    """First decimal-number-shaped substring of value, or 0. Non-finite → 0."""
    value = _qv_value(value)
    if value is None or isinstance(value, bool):
        return 0.0
    if isinstance(value, int):
        # ints past float range overflow float()
        return _finite(float(value)) if 0 < value.bit_length() <= 1023 else 0.0
    if isinstance(value, float):
        return _finite(value)
    m = _num_any.search(_thousands.sub("", str(value)))
    return _finite(float(m.group(0))) if m else 0.0


def positive_int(value: Any) -> Optional[int]:
    """extract_number for optional integer fields: 0 becomes None."""
    n = int(extract_number(value))
    return n if n > 0 else None


def normalize_property_type(raw: Any) -> PropertyType:
    if not raw:
        return PropertyType.OTHER
    if isinstance(raw, (list, tuple)):
        raw = " ".join(str(r) for r in raw)
    lower = str(raw).lower()
    for ptype, pattern in _TYPE_KEYWORDS:
        if pattern.search(lower):
            return ptype
    return PropertyType.OTHER


def _first_text(obj: Mapping, keys: Iterable[str]) -> Optional[str]:
    for k in keys:
        v = obj.get(k)
        if isinstance(v, Mapping):
            v = v.get("value") or v.get("assembledAddress") or v.get("name")
        if v is None or isinstance(v, (Mapping, list, bool)):
            continue
        s = str(v).strip()
        if s:
            return s
    return None


def assemble_address(obj: Any, default: Optional[str] = UNKNOWN_ADDRESS) -> Optional[str]:
    """
    Join street, locality, region and postal code with ', ', skipping the
    absent ones. Falls back to a flat full-address field, then to `default`.
    A plain string is taken as-is.
    """
    if isinstance(obj, str):
        return obj.strip() or default
    if not isinstance(obj, Mapping):
        return default
    parts = [
        _first_text(obj, keys)
        for keys in (_STREET_KEYS, _LOCALITY_KEYS, _REGION_KEYS, _POSTAL_KEYS)
    ]
    joined = ADDRESS_SEPARATOR.join(p for p in parts if p)
    if joined:
        return joined
    return _first_text(obj, _FULL_KEYS) or default


def infer_price_reduced(history: Any = None, flag: Any = None, text: Optional[str] = None) -> bool:
    """
    A listing counts as reduced when its price history has more than one
    entry, when the site sets its own price-drop flag/object, or (markup
    fallback only) when the page text mentions a price cut.
    """
    if isinstance(history, list) and len(history) > 1:
        return True
    if flag:
        return True
    if text and _REDUCTION_PHRASES.search(text):
        return True
    return False


def infer_original_price(history: Any, current_price: int = 0) -> Optional[int]:
    """
    Oldest 'listed' event in a price history. Only reported when it is
    above the current price.
    """
    if not isinstance(history, list):
        return None
    listed = []
    for entry in history:
        if not isinstance(entry, Mapping):
            continue
        event = str(entry.get("event") or entry.get("eventDescription") or "").lower()
        if "list" not in event:
            continue
        price = parse_price(entry.get("price"))
        if price:
            listed.append((str(entry.get("date") or entry.get("time") or ""), price))
    if not listed:
        return None
    if all(d for d, _ in listed):
        listed.sort(key=lambda e: e[0])
        original = listed[0][1]
    else:
        # histories without dates are newest-first
        original = listed[-1][1]
    return original if original > current_price else None


def is_unknown_address(address: Optional[str]) -> bool:
    if not address or not address.strip():
        return True
    return address.strip().lower() in {UNKNOWN_ADDRESS.lower(), "unknown address"}


def has_required_data(partial: Optional[PartialProperty]) -> bool:
    """Minimum-viable-data gate: a usable address or a positive price."""
    if partial is None:
        return False
    return (not is_unknown_address(partial.address)) or bool(partial.list_price)


def complete_record(
    partial: PartialProperty,
    source: ListingSource,
    url: str,
    scraped_at: Optional[datetime] = None,
) -> PropertyRecord:
    """Apply defaults to every missing field and stamp provenance."""
    return PropertyRecord(
        address=partial.address if not is_unknown_address(partial.address) else UNKNOWN_ADDRESS,
        list_price=partial.list_price or 0,
        days_on_market=partial.days_on_market or 0,
        bedrooms=partial.bedrooms or 0,
        bathrooms=partial.bathrooms or 0,
        property_type=partial.property_type or PropertyType.OTHER,
        square_feet=partial.square_feet or None,
        year_built=partial.year_built or None,
        price_reduced=bool(partial.price_reduced),
        original_price=partial.original_price or None,
        estimated_value=partial.estimated_value or None,
        source=source,
        source_url=url,
        scraped_at=scraped_at or datetime.now(timezone.utc),
    )


def degraded_record(address: str, source: ListingSource, url: str) -> PropertyRecord:
    """Address-only record; every numeric field stays at its zero default."""
    return complete_record(PartialProperty(address=address), source, url)
