import asyncio
import json
import logging
import os
import random
from contextlib import asynccontextmanager
from typing import List, Optional, Sequence, Tuple, Union

from backend.listings.cascade import parse_listing_html, record_from_partial
from backend.listings.client import Fetcher
from backend.listings.errors import Blocked, FetchFailed, ParseFailed, ScrapeError
from backend.listings.locators import Found, ListingDocument, locate_zpid_comment, map_property_node
from backend.listings.parsing import complete_record, degraded_record
from backend.listings.sources import address_from_url, extract_zpid, validate_listing_url
from backend.py_models.property import ListingSource, PropertyRecord

log = logging.getLogger("listings")

ZILLOW_API_URL = os.getenv(
    "ZILLOW_API_URL",
    "https://www.zillow.com/graphql/?zpid={zpid}&operationName=ForSaleFullRenderQuery",
)
ZILLOW_LISTING_URL = os.getenv(
    "ZILLOW_LISTING_URL", "https://www.zillow.com/homedetails/{zpid}_zpid/"
)
# the shortcuts are optional, so a throttled one is not retried
SHORTCUT_ATTEMPTS = 1

ScrapeOutcome = Union[PropertyRecord, ScrapeError]


def _log_success(record: PropertyRecord, strategy: str) -> None:
    log.info(
        "SCRAPE ✔ %s | $%s | beds=%s baths=%s sqft=%s | %s | %s",
        record.address,
        f"{record.list_price:,}",
        record.bedrooms,
        record.bathrooms,
        record.square_feet,
        strategy,
        record.source_url,
    )


@asynccontextmanager
async def _fetcher_scope(fetcher: Optional[Fetcher]):
    # a caller-supplied fetcher outlives this call; our own one does not
    if fetcher is not None:
        yield fetcher
        return
    async with Fetcher() as own:
        yield own


async def _zillow_api_record(zpid: str, url: str, fetcher: Fetcher) -> Optional[PropertyRecord]:
    body = await fetcher.fetch_text(
        ZILLOW_API_URL.format(zpid=zpid), accept="application/json", attempts=SHORTCUT_ATTEMPTS
    )
    payload = json.loads(body)
    data = payload.get("data") if isinstance(payload, dict) else None
    node = data.get("property") if isinstance(data, dict) else None
    if not isinstance(node, dict):
        log.debug("zillow api: no data.property for zpid %s", zpid)
        return None
    return record_from_partial(map_property_node(node), ListingSource.ZILLOW, url)


async def _zillow_page_record(zpid: str, url: str, fetcher: Fetcher) -> Optional[PropertyRecord]:
    html = await fetcher.fetch_text(ZILLOW_LISTING_URL.format(zpid=zpid), attempts=SHORTCUT_ATTEMPTS)
    result = locate_zpid_comment(ListingDocument(html))
    if not isinstance(result, Found):
        log.debug("zillow listing page: %s", result.reason)
        return None
    return record_from_partial(result.partial, ListingSource.ZILLOW, url)


async def try_zillow_api(zpid: str, url: str, fetcher: Fetcher) -> Optional[Tuple[PropertyRecord, str]]:
    """
    Identifier-keyed shortcuts: the data API first, then the canonical
    listing page's embedded block. Never raises; None means fall through
    to the regular fetch and cascade.
    """
    for strategy, attempt in (("zillow_api", _zillow_api_record), ("zillow_listing_page", _zillow_page_record)):
        try:
            record = await attempt(zpid, url, fetcher)
        except (ScrapeError, ValueError, ArithmeticError, RecursionError) as e:
            log.debug("%s failed for zpid %s: %s", strategy, zpid, e)
            continue
        if record is not None:
            return record, strategy
    return None


def _degrade_or_raise(target: str, source_url: str, source: ListingSource, err: ScrapeError) -> PropertyRecord:
    if source is ListingSource.ZILLOW:
        address = address_from_url(target)
        if address:
            log.warning("all strategies failed for %s (%s); using URL-derived address %r", target, err.code, address)
            return degraded_record(address, source, source_url)
    raise err


async def scrape_property(url: str, fetcher: Optional[Fetcher] = None) -> PropertyRecord:
    """
    Extract one listing. Raises InvalidUrl / UnsupportedSite before any
    network access, FetchFailed / Blocked when the page cannot be retrieved
    and ParseFailed when no strategy recovers data. Zillow URLs degrade to an
    address-only record instead of the last two when the URL carries a slug.
    The record's source_url is `url` exactly as given.
    """
    source = validate_listing_url(url)
    target = url.strip()

    async with _fetcher_scope(fetcher) as f:
        if source is ListingSource.ZILLOW:
            zpid = extract_zpid(target)
            if zpid:
                shortcut = await try_zillow_api(zpid, url, f)
                if shortcut is not None:
                    record, strategy = shortcut
                    _log_success(record, strategy)
                    return record

        try:
            html = await f.fetch_html(target)
        except (FetchFailed, Blocked) as e:
            return _degrade_or_raise(target, url, source, e)

        found = parse_listing_html(source, html)
        if found is None:
            return _degrade_or_raise(target, url, source, ParseFailed(f"no strategy matched {target}"))

        record = complete_record(found.partial, source, url)
        _log_success(record, found.strategy)
        return record


async def scrape_many(
    urls: Sequence[str],
    concurrency: int = 3,
    fetcher: Optional[Fetcher] = None,
    stagger: Tuple[float, float] = (0.3, 1.3),
) -> List[Tuple[str, ScrapeOutcome]]:
    """
    Scrape several listings with bounded concurrency over one shared client.
    Per-URL failures are returned in place of the record, in input order.
    """
    sem = asyncio.Semaphore(max(1, concurrency))

    async with _fetcher_scope(fetcher) as f:

        async def scrape_one(u: str) -> Tuple[str, ScrapeOutcome]:
            async with sem:
                # random stagger to avoid bursty traffic
                if stagger[1] > 0:
                    await asyncio.sleep(random.uniform(*stagger))
                try:
                    return u, await scrape_property(u, fetcher=f)
                except ScrapeError as e:
                    log.error("❌ %s: %s (%s)", u, e.code, e)
                    return u, e

        return list(await asyncio.gather(*(scrape_one(u) for u in urls)))
