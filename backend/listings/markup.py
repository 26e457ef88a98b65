# backend/listings/markup.py
"""
Last-resort extraction: regexes over the rendered page.

Each field has its own ordered list of (pattern, where) alternatives, where
"text" is the visible page text and "html" is the raw markup. The first
alternative whose value passes the field's plausibility check wins; a field
with no plausible hit keeps its default instead of failing the record.
"""
import re
from typing import Callable, Optional, Sequence, Tuple

from backend.listings.locators import Found, ListingDocument, LocatorResult, NotFound
from backend.listings.parsing import (
    extract_number,
    infer_price_reduced,
    normalize_property_type,
    parse_price,
)
from backend.py_models.property import ListingSource, PartialProperty

MIN_PRICE = 10_000
MAX_PRICE = 1_000_000_000
MAX_ROOMS = 20
MAX_DAYS_ON_MARKET = 3650
SQFT_RANGE = (100, 100_000)

FieldPatterns = Sequence[Tuple["re.Pattern[str]", str]]

PRICE_PATTERNS: FieldPatterns = (
    (re.compile(r'property="product:price:amount"\s+content="([\d,.]+)"', re.I), "html"),
    (re.compile(r"\$\s?(\d{1,3}(?:,\d{3})+|\d{5,})(?:\.\d{2})?"), "text"),
    (re.compile(r'"(?:price|listPrice)"\s*:\s*"?\$?([\d,]+)', re.I), "html"),
    (re.compile(r"\$[\d,]+(?:\.\d{2})?"), "html"),
)
BED_PATTERNS: FieldPatterns = (
    (re.compile(r"(\d+(?:\.\d+)?)\s*(?:bd|beds?|bedrooms?|br)\b", re.I), "text"),
    (re.compile(r"(\d+)\s*(?:bed|br|bedroom)", re.I), "html"),
)
BATH_PATTERNS: FieldPatterns = (
    (re.compile(r"(\d+(?:\.\d+)?)\s*(?:ba|baths?|bathrooms?)\b", re.I), "text"),
    (re.compile(r"(\d+(?:\.\d+)?)\s*(?:bath|ba|bathroom)", re.I), "html"),
)
SQFT_PATTERNS: FieldPatterns = (
    (re.compile(r"(\d{1,3}(?:,\d{3})+|\d+)\s*(?:sq\.?\s*ft|sqft|square\s*feet)", re.I), "text"),
    (re.compile(r"([\d,]+)\s*(?:sq\.?\s*ft|sqft|square\s*feet)", re.I), "html"),
)
TYPE_PATTERNS: FieldPatterns = (
    (re.compile(r"\b(single[- ]family|condo(?:minium)?|town\s?(?:house|home)|multi[- ]family)\b", re.I), "text"),
)
DAYS_PATTERNS = {
    ListingSource.ZILLOW: (
        (re.compile(r"(\d+)\s*days?\s*on\s*zillow", re.I), "text"),
        (re.compile(r"(\d+)\s*days?\s*(?:on\s*)?(?:zillow|market)", re.I), "html"),
    ),
    ListingSource.REDFIN: (
        (re.compile(r"(\d+)\s*days?\s*on\s*redfin", re.I), "text"),
        (re.compile(r"(\d+)\s*days?\s*(?:on\s*)?(?:redfin|market)", re.I), "html"),
    ),
}

# Redfin titles read "1 Elm St, Boston, MA 02108 - 3 beds/2 baths | Redfin"
TITLE_SEPARATORS = {
    ListingSource.ZILLOW: ("|",),
    ListingSource.REDFIN: ("|", " - "),
}


def _first_plausible(doc: ListingDocument, patterns: FieldPatterns, convert: Callable, check: Callable):
    for pattern, where in patterns:
        haystack = doc.text if where == "text" else doc.html
        for m in pattern.finditer(haystack):
            raw = m.group(1) if m.groups() else m.group(0)
            value = convert(raw)
            if value and check(value):
                return value
    return None


def _looks_like_address(s: str) -> bool:
    return bool(s) and len(s) <= 200 and bool(re.search(r"\d", s)) and bool(re.search(r"[A-Za-z]{2,}", s))


def _address_candidates(doc: ListingDocument):
    soup = doc.soup
    for attrs in ({"property": "og:title"}, {"name": "twitter:title"}):
        meta = soup.find("meta", attrs=attrs)
        if meta and meta.get("content"):
            yield meta["content"]
    if doc.title:
        yield doc.title
    h1 = soup.find("h1")
    if h1:
        yield h1.get_text(" ", strip=True)


def extract_address(doc: ListingDocument, source: ListingSource) -> Optional[str]:
    seps = TITLE_SEPARATORS.get(source, ("|",))
    for raw in _address_candidates(doc):
        cand = raw
        for sep in seps:
            cand = cand.split(sep)[0]
        cand = re.sub(r"\s+", " ", cand).strip(" ,")
        if _looks_like_address(cand):
            return cand
    return None


def locate_markup(doc: ListingDocument, source: ListingSource) -> LocatorResult:
    price = _first_plausible(doc, PRICE_PATTERNS, parse_price, lambda p: MIN_PRICE <= p < MAX_PRICE)
    beds = _first_plausible(doc, BED_PATTERNS, extract_number, lambda n: n < MAX_ROOMS)
    baths = _first_plausible(doc, BATH_PATTERNS, extract_number, lambda n: n < MAX_ROOMS)
    days = _first_plausible(
        doc,
        DAYS_PATTERNS.get(source, DAYS_PATTERNS[ListingSource.ZILLOW]),
        lambda s: int(extract_number(s)),
        lambda n: 0 <= n <= MAX_DAYS_ON_MARKET,
    )
    sqft = _first_plausible(
        doc, SQFT_PATTERNS, lambda s: int(extract_number(s)),
        lambda n: SQFT_RANGE[0] <= n <= SQFT_RANGE[1],
    )
    ptype = _first_plausible(doc, TYPE_PATTERNS, normalize_property_type, lambda t: True)
    address = extract_address(doc, source)

    if not any((price, beds, baths, days, sqft, address)):
        return NotFound("markup", "no plausible values in markup")

    return Found(
        PartialProperty(
            address=address,
            list_price=price,
            days_on_market=days,
            bedrooms=beds,
            bathrooms=baths,
            property_type=ptype,
            square_feet=sqft,
            price_reduced=infer_price_reduced(text=doc.text),
        ),
        "markup",
    )
