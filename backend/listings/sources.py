import re
from typing import Optional
from urllib.parse import parse_qs, unquote, urlparse

from backend.listings.errors import InvalidUrl, UnsupportedSite
from backend.py_models.property import ListingSource

SOURCE_DOMAINS = (
    (ListingSource.ZILLOW, "zillow.com"),
    (ListingSource.REDFIN, "redfin.com"),
)

# Tried in order; the first one that matches wins.
ZPID_PATTERNS = (
    re.compile(r"/(\d+)_zpid", re.I),                      # /homedetails/1-Elm-St/12345_zpid/
    re.compile(r"[?&]zpid=(\d+)", re.I),                  # ?zpid=12345
    re.compile(r"/(?:homedetails|homes)/(\d+)(?:/|$)", re.I),  # /homedetails/12345/
)

_ID_SUFFIX = re.compile(r"(?:[-_]?\d+)?_(?:zpid|rb)$", re.I)
_ID_SEGMENT = re.compile(r"^\d+(?:_(?:zpid|rb))?$", re.I)


def detect_source(url: str) -> Optional[ListingSource]:
    """
    Map a URL to a known listing site by case-insensitive domain match.
    Anything else (including non-strings) classifies as None.
    """
    if not isinstance(url, str):
        return None
    lower = url.lower()
    for source, domain in SOURCE_DOMAINS:
        if domain in lower:
            return source
    return None


def validate_listing_url(url) -> ListingSource:
    """
    Fail fast on input that should never reach the network.
    Site classification comes before the format check so that
    `zillow.com/foo` is reported as malformed while `example.com` is unsupported.
    """
    if not isinstance(url, str) or not url.strip():
        raise InvalidUrl("empty or non-string url")
    source = detect_source(url)
    if source is None:
        raise UnsupportedSite(url)
    try:
        parsed = urlparse(url.strip())
    except ValueError as e:
        # e.g. an unbalanced "[" in the host
        raise InvalidUrl(f"malformed url: {url!r}") from e
    if parsed.scheme not in ("http", "https") or not parsed.netloc:
        raise InvalidUrl(f"malformed url: {url!r}")
    return source


def extract_zpid(url: str) -> Optional[str]:
    """Return the numeric Zillow listing id embedded in the URL, if any."""
    if not url:
        return None
    for pattern in ZPID_PATTERNS:
        m = pattern.search(url)
        if m:
            return m.group(1)
    # zpid can also arrive percent-encoded inside a redirect parameter
    for values in parse_qs(urlparse(url).query).values():
        for v in values:
            m = ZPID_PATTERNS[0].search(unquote(v))
            if m:
                return m.group(1)
    return None


def _address_slug(path: str) -> Optional[str]:
    segments = [s for s in path.split("/") if s]
    for idx, seg in enumerate(segments):
        if seg.lower() in ("homedetails", "homes") and idx + 1 < len(segments):
            cand = segments[idx + 1]
            if not _ID_SEGMENT.match(cand):
                return cand
    # no marker segment: take the first hyphenated, letter-bearing segment
    for seg in segments:
        if "-" in seg and re.search(r"[A-Za-z]", seg) and not _ID_SEGMENT.match(seg):
            return seg
    return None


def address_from_url(url: str) -> Optional[str]:
    """
    Derive a readable address from a listing URL's path, e.g.
    '/homedetails/123-Main-St-Cambridge-MA/12345_zpid/' → '123 Main St Cambridge Ma'.
    """
    if not url:
        return None
    slug = _address_slug(urlparse(url).path)
    if not slug:
        return None
    slug = _ID_SUFFIX.sub("", unquote(slug))
    words = [w for w in re.split(r"[-_+\s]+", slug) if w]
    if not words:
        return None
    return " ".join(w.capitalize() for w in words)
