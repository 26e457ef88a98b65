# backend/listings/locators.py
"""
One locator per known data-embedding format.

Every locator takes a ListingDocument (the fetched page, parsed once) and
returns either Found(partial) or NotFound(reason). Locators never raise:
malformed JSON, missing keys and odd types all resolve to NotFound so the
cascade can move on. Whatever shape a format has, the property-like node it
digs out goes through map_property_node, so field names live in one place.
"""
import json
import re
from dataclasses import dataclass
from functools import cached_property
from typing import Any, Callable, Iterable, Iterator, Mapping, Optional, Sequence, Union
from urllib.parse import unquote

from bs4 import BeautifulSoup

from backend.listings.parsing import (
    assemble_address,
    extract_number,
    infer_original_price,
    infer_price_reduced,
    normalize_property_type,
    parse_price,
    positive_int,
)
from backend.py_models.property import PartialProperty

__all__ = [
    "Found",
    "NotFound",
    "LocatorResult",
    "ListingDocument",
    "balanced_json",
    "loads_permissive",
    "find_property_node",
    "looks_like_property",
    "map_property_node",
    "locate_json_ld",
    "locate_next_data",
    "locate_apollo_state",
    "locate_preloaded_state",
    "locate_shared_data",
    "locate_client_cache",
    "locate_react_server_state",
    "locate_inline_assignment",
    "locate_zpid_comment",
]

MAX_WALK_DEPTH = 12
MAX_WALK_NODES = 20_000


@dataclass(frozen=True)
class Found:
    partial: PartialProperty
    strategy: str


@dataclass(frozen=True)
class NotFound:
    strategy: str
    reason: str = "no match"


LocatorResult = Union[Found, NotFound]


class ListingDocument:
    """A fetched listing page: raw markup plus a soup built once and shared."""

    def __init__(self, html: str):
        self.html = html or ""

    @cached_property
    def soup(self) -> BeautifulSoup:
        return BeautifulSoup(self.html, "lxml")

    @cached_property
    def text(self) -> str:
        """Body text without scripts, styles or the title; whitespace collapsed."""
        soup = BeautifulSoup(self.html, "lxml")
        for node in soup(["script", "style", "noscript", "template", "title"]):
            node.decompose()
        return re.sub(r"\s+", " ", soup.get_text(" ", strip=True))

    @cached_property
    def title(self) -> str:
        el = self.soup.find("title")
        return el.get_text(" ", strip=True) if el else ""

    def script_texts(self, **attrs) -> list[str]:
        out = []
        for s in self.soup.find_all("script", attrs=attrs):
            txt = s.string or s.get_text() or ""
            if txt.strip():
                out.append(txt)
        return out

    def script_by_id(self, script_id: str) -> Optional[str]:
        s = self.soup.find("script", id=script_id)
        if s is None:
            return None
        return s.string or s.get_text() or None


# --- JSON helpers -------------------------------------------------------------

_ANTI_JSON_PREFIXES = ("{}&&", "for(;;);", ")]}'", "while(1);")
_TRAILING_COMMA = re.compile(r",\s*([}\]])")
_JS_UNDEFINED = re.compile(r"(?<=[:\[,])\s*undefined\s*(?=[,}\]])")


def _loads(text: Any) -> Any:
    if not isinstance(text, str):
        return None
    t = text.strip()
    for prefix in _ANTI_JSON_PREFIXES:
        if t.startswith(prefix):
            t = t[len(prefix):].lstrip()
    if t.startswith("<!--") and t.endswith("-->"):
        t = t[4:-3].strip()
    try:
        return json.loads(t)
    except (ValueError, RecursionError):
        return None


def loads_permissive(text: str) -> Any:
    """json.loads that tolerates trailing commas and bare `undefined`."""
    data = _loads(text)
    if data is not None:
        return data
    if not isinstance(text, str):
        return None
    fixed = _JS_UNDEFINED.sub(" null", text)
    fixed = _TRAILING_COMMA.sub(r"\1", fixed)
    return _loads(fixed)


def balanced_json(text: str, start: int) -> Optional[str]:
    """
    Return the {...} / [...] literal beginning at text[start], matching
    brackets while skipping over quoted strings. None if it never closes.
    """
    if start < 0 or start >= len(text) or text[start] not in "{[":
        return None
    depth = 0
    quote = None
    escaped = False
    for i in range(start, len(text)):
        ch = text[i]
        if quote:
            if escaped:
                escaped = False
            elif ch == "\\":
                escaped = True
            elif ch == quote:
                quote = None
            continue
        if ch in "\"'":
            quote = ch
        elif ch in "{[":
            depth += 1
        elif ch in "}]":
            depth -= 1
            if depth == 0:
                return text[start:i + 1]
    return None


def _assigned_json(html: str, pattern: "re.Pattern[str]") -> Iterator[Any]:
    """Decode the literal following each match of an assignment pattern."""
    for m in pattern.finditer(html):
        pos = m.end()
        while pos < len(html) and html[pos].isspace():
            pos += 1
        literal = balanced_json(html, pos)
        if literal is None:
            continue
        data = loads_permissive(literal)
        if data is not None:
            yield data


def _dig(data: Any, path: Sequence[str]) -> Any:
    cur = data
    for key in path:
        if not isinstance(cur, Mapping):
            return None
        cur = cur.get(key)
    return cur


# --- property-node recognition and mapping -----------------------------------

_ID_KEYS = ("zpid", "propertyId", "listingId")
_DATA_KEYS = (
    "price", "listPrice", "priceInfo", "bedrooms", "beds", "numBeds",
    "bathrooms", "baths", "livingArea", "sqFt", "streetAddress", "address", "homeType",
)


def looks_like_property(node: Any) -> bool:
    if not isinstance(node, Mapping):
        return False
    anchored = "streetAddress" in node or any(k in node for k in _ID_KEYS)
    return anchored and any(node.get(k) not in (None, "", {}, []) for k in _DATA_KEYS)


def _json_string(value: Any) -> bool:
    if not isinstance(value, str) or len(value) < 2:
        return False
    t = value.lstrip()
    return t.startswith(("{", "[", "{}&&"))


def find_property_node(
    tree: Any,
    predicate: Callable[[Any], bool] = looks_like_property,
    max_depth: int = MAX_WALK_DEPTH,
    max_nodes: int = MAX_WALK_NODES,
    decode_strings: bool = False,
) -> Optional[Mapping]:
    """
    Depth-first search for the first node satisfying predicate.

    Bounded by depth and by total nodes visited; containers already seen are
    skipped, so self-referencing payloads terminate. With decode_strings,
    string values that hold JSON are decoded and searched too.
    """
    stack = [(tree, 0)]
    seen = set()
    visited = 0
    while stack:
        node, depth = stack.pop()
        if decode_strings and _json_string(node):
            node = _loads(node)
        if not isinstance(node, (Mapping, list)):
            continue
        if id(node) in seen:
            continue
        seen.add(id(node))
        visited += 1
        if visited > max_nodes:
            return None
        if predicate(node):
            return node
        if depth >= max_depth:
            continue
        children = node.values() if isinstance(node, Mapping) else node
        # reversed so the walk visits children in document order
        for child in reversed(list(children)):
            if isinstance(child, (Mapping, list)) or (decode_strings and _json_string(child)):
                stack.append((child, depth + 1))
    return None


_PRICE_KEYS = ("price", "listPrice", "unformattedPrice", "priceInfo", "listingPrice")
_DOM_KEYS = ("daysOnZillow", "timeOnZillow", "daysOnMarket", "dom", "timeOnRedfin", "cumulativeDaysOnMarket")
_BED_KEYS = ("bedrooms", "beds", "numBeds", "numberOfBedrooms", "numberOfRooms")
_BATH_KEYS = ("bathrooms", "baths", "numBaths", "bathroomsFloat", "numberOfBathroomsTotal", "numberOfFullBathrooms")
_TYPE_KEYS = ("homeType", "propertyType", "propertyTypeName", "@type")
_SQFT_KEYS = ("livingArea", "livingAreaValue", "sqFt", "sqft", "finishedSqFt", "floorSize")
_ESTIMATE_KEYS = ("zestimate", "avm", "redfinEstimate", "predictedValue")
_DROP_KEYS = ("priceDropInfo", "isPriceDrop", "priceReduction")


def _first_of(node: Mapping, keys: Iterable[str]) -> Any:
    for k in keys:
        v = node.get(k)
        if v not in (None, "", 0, False, {}, []):
            return v
    return None


def _offer_price(node: Mapping) -> int:
    offers = node.get("offers")
    if isinstance(offers, list):
        offers = next((o for o in offers if isinstance(o, Mapping)), None)
    if isinstance(offers, Mapping):
        return parse_price(offers.get("price") or offers.get("priceSpecification"))
    return 0


def _address_of(node: Mapping) -> Optional[str]:
    addr = node.get("address")
    if isinstance(addr, Mapping):
        joined = assemble_address(addr, default=None)
        if joined:
            return joined
    elif isinstance(addr, str) and addr.strip():
        return addr.strip()
    return assemble_address(node, default=None)


def map_property_node(node: Mapping) -> PartialProperty:
    """
    The one field mapping shared by every structured locator: listing JSON
    (Zillow, Redfin) and schema.org linked data use different key names for
    the same facts, and all of them are listed here in preference order.
    """
    price = parse_price(_first_of(node, _PRICE_KEYS)) or _offer_price(node)
    history = node.get("priceHistory")
    drop = _first_of(node, _DROP_KEYS)

    original = infer_original_price(history, price)
    if original is None and isinstance(drop, Mapping):
        original = parse_price(drop.get("originalPrice") or drop.get("previousPrice")) or None
        if original is not None and original <= price:
            original = None

    return PartialProperty(
        address=_address_of(node),
        list_price=price or None,
        days_on_market=int(extract_number(_first_of(node, _DOM_KEYS))) or None,
        bedrooms=extract_number(_first_of(node, _BED_KEYS)) or None,
        bathrooms=extract_number(_first_of(node, _BATH_KEYS)) or None,
        property_type=normalize_property_type(_first_of(node, _TYPE_KEYS)),
        square_feet=positive_int(_first_of(node, _SQFT_KEYS)),
        year_built=positive_int(node.get("yearBuilt")),
        price_reduced=infer_price_reduced(history, drop),
        original_price=original,
        estimated_value=parse_price(_first_of(node, _ESTIMATE_KEYS)) or None,
    )


# --- strategy 1: schema.org linked data ---------------------------------------

_LD_RESIDENCE_TYPES = {"singlefamilyresidence", "house", "apartment", "residence", "accommodation"}
_LD_LISTING_TYPES = {"product", "realestatelisting", "offer"}
_LD_NESTED = ("mainEntity", "itemOffered", "about")


def _ld_types(item: Mapping) -> list[str]:
    t = item.get("@type")
    if isinstance(t, list):
        return [str(x).lower() for x in t]
    return [str(t).lower()] if t else []


def _ld_kind(item: Mapping) -> Optional[str]:
    types = _ld_types(item)
    if any(t in _LD_RESIDENCE_TYPES or "residence" in t for t in types):
        return "residence"
    if any(t in _LD_LISTING_TYPES for t in types):
        return "listing"
    return None


def _ld_nodes(data: Any, depth: int = 0) -> Iterator[Mapping]:
    if depth > 4:
        return
    if isinstance(data, list):
        for item in data:
            yield from _ld_nodes(item, depth + 1)
    elif isinstance(data, Mapping):
        yield data
        graph = data.get("@graph")
        if isinstance(graph, list):
            yield from _ld_nodes(graph, depth + 1)
        for key in _LD_NESTED:
            nested = data.get(key)
            if isinstance(nested, (Mapping, list)):
                yield from _ld_nodes(nested, depth + 1)


def locate_json_ld(doc: ListingDocument) -> LocatorResult:
    nodes = []
    for raw in doc.script_texts(type="application/ld+json"):
        nodes.extend(_ld_nodes(_loads(raw)))
    if not nodes:
        return NotFound("json_ld", "no linked-data blocks")
    residences = [n for n in nodes if _ld_kind(n) == "residence"]
    listings = [n for n in nodes if _ld_kind(n) == "listing"]
    candidates = residences or listings
    if not candidates:
        return NotFound("json_ld", "no residential linked-data node")

    partial = map_property_node(candidates[0])
    if not partial.list_price:
        # the offer often hangs off a sibling Product / RealEstateListing
        for n in listings + residences:
            price = _offer_price(n) or parse_price(n.get("price"))
            if price:
                partial = partial.model_copy(update={"list_price": price})
                break
    return Found(partial, "json_ld")


# --- strategy 2: framework server-rendered payload ----------------------------

NEXT_DATA_PATHS = (
    ("props", "pageProps", "property"),
    ("props", "pageProps", "initialData", "property"),
    ("props", "pageProps", "componentProps", "property"),
    ("props", "pageProps", "initialProps", "property"),
    ("props", "pageProps", "listing"),
    ("props", "pageProps", "initialData", "listing"),
)


def _next_data(doc: ListingDocument) -> Any:
    return _loads(doc.script_by_id("__NEXT_DATA__"))


def locate_next_data(doc: ListingDocument) -> LocatorResult:
    data = _next_data(doc)
    if not isinstance(data, Mapping):
        return NotFound("next_data", "no __NEXT_DATA__ payload")
    for path in NEXT_DATA_PATHS:
        node = _dig(data, path)
        if isinstance(node, Mapping) and node:
            return Found(map_property_node(node), "next_data")
    return NotFound("next_data", "no property under pageProps")


# --- strategy 3: client hydration state blobs ---------------------------------

_APOLLO_ASSIGN = re.compile(r"__APOLLO_STATE__\s*=\s*")
_PRELOADED_ENCODED = re.compile(
    r"__PRELOADED_STATE__\s*=\s*(?:JSON\.parse\(\s*)?(?:decodeURIComponent\(\s*)?([\"'])(.*?)\1",
    re.S,
)
_PRELOADED_ASSIGN = re.compile(r"__PRELOADED_STATE__\s*=\s*(?=[{\[])")
_COMMENT_JSON = re.compile(r"<!--\s*(\{.*?\})\s*-->", re.S)
_REACT_SERVER_STATE = re.compile(r"__reactServerState(?:\.\w+)*\s*=\s*")


def locate_apollo_state(doc: ListingDocument) -> LocatorResult:
    """Client cache keyed by entity type names ("ForSaleProperty:123", ...)."""
    for data in _assigned_json(doc.html, _APOLLO_ASSIGN):
        if not isinstance(data, Mapping):
            continue
        for key, value in data.items():
            if "Property" not in str(key) or not isinstance(value, Mapping):
                continue
            if value.get("streetAddress") or value.get("price"):
                return Found(map_property_node(value), "apollo_state")
    return NotFound("apollo_state", "no Property entity in client cache")


def locate_preloaded_state(doc: ListingDocument) -> LocatorResult:
    """Percent-encoded (or plain) preloaded state string."""
    blobs = []
    for m in _PRELOADED_ENCODED.finditer(doc.html):
        blobs.append(_loads(unquote(m.group(2))))
    blobs.extend(_assigned_json(doc.html, _PRELOADED_ASSIGN))
    for data in blobs:
        node = find_property_node(data, decode_strings=True)
        if node is not None:
            return Found(map_property_node(node), "preloaded_state")
    return NotFound("preloaded_state", "no preloaded state")


def _comment_blobs(doc: ListingDocument) -> Iterator[Any]:
    for m in _COMMENT_JSON.finditer(doc.html):
        data = _loads(m.group(1))
        if data is not None:
            yield data


def locate_shared_data(doc: ListingDocument) -> LocatorResult:
    """JSON parked inside an HTML comment (the shared-data block)."""
    for data in _comment_blobs(doc):
        prop = data.get("property") if isinstance(data, Mapping) else None
        node = prop if isinstance(prop, Mapping) and prop else find_property_node(data)
        if node is not None:
            return Found(map_property_node(node), "shared_data")
    return NotFound("shared_data", "no comment-delimited property block")


def _client_caches(doc: ListingDocument) -> Iterator[Any]:
    next_data = _next_data(doc)
    yield _dig(next_data, ("props", "pageProps", "componentProps", "gdpClientCache"))
    yield _dig(next_data, ("props", "pageProps", "gdpClientCache"))
    preloaded = _loads(doc.script_by_id("hdpApolloPreloadedData"))
    yield _dig(preloaded, ("apiCache",))
    for data in _comment_blobs(doc):
        yield _dig(data, ("apiCache",))


def locate_client_cache(doc: ListingDocument) -> LocatorResult:
    """
    Cache keyed by opaque query hashes. The cache itself and each of its
    values may be JSON strings that need a second decode pass.
    """
    for cache in _client_caches(doc):
        if isinstance(cache, str):
            cache = _loads(cache)
        if not isinstance(cache, Mapping):
            continue
        for entry in cache.values():
            if isinstance(entry, str):
                entry = _loads(entry)
            if not isinstance(entry, Mapping):
                continue
            prop = entry.get("property")
            node = prop if isinstance(prop, Mapping) and prop else find_property_node(entry)
            if node is not None:
                return Found(map_property_node(node), "client_cache")
    return NotFound("client_cache", "no property in hashed client cache")


def locate_react_server_state(doc: ListingDocument) -> LocatorResult:
    for data in _assigned_json(doc.html, _REACT_SERVER_STATE):
        node = find_property_node(data, decode_strings=True)
        if node is not None:
            return Found(map_property_node(node), "react_server_state")
    return NotFound("react_server_state", "no property in server state")


# --- strategy 4: loosely keyed inline assignment ------------------------------


def _inline_pattern(names: Sequence[str]) -> "re.Pattern[str]":
    alt = "|".join(re.escape(n) for n in names)
    return re.compile(rf"(?<![\w$])[\"']?(?:{alt})[\"']?\s*[=:]\s*(?=\{{)", re.I)


def locate_inline_assignment(doc: ListingDocument, names: Sequence[str]) -> LocatorResult:
    """`listingData = {...}` / `"propertyData": {...}` style objects."""
    for data in _assigned_json(doc.html, _inline_pattern(names)):
        if not isinstance(data, Mapping):
            continue
        node = data if any(k in data for k in _DATA_KEYS) else find_property_node(data)
        if node is not None:
            return Found(map_property_node(node), "inline_assignment")
    return NotFound("inline_assignment", "no inline listing object")


# --- listing-page comment block keyed by zpid ----------------------------------


def _has_zpid(node: Any) -> bool:
    return isinstance(node, Mapping) and "zpid" in node and looks_like_property(node)


def locate_zpid_comment(doc: ListingDocument) -> LocatorResult:
    """Comment-delimited JSON on the canonical listing page, keyed by zpid."""
    for m in _COMMENT_JSON.finditer(doc.html):
        if "zpid" not in m.group(1):
            continue
        node = find_property_node(_loads(m.group(1)), predicate=_has_zpid, decode_strings=True)
        if node is not None:
            return Found(map_property_node(node), "zpid_comment")
    return NotFound("zpid_comment", "no zpid-keyed comment block")
