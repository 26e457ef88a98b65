# backend/listings/cascade.py
import logging
from functools import partial
from typing import Callable, Optional, Sequence, Tuple

from backend.listings import locators as loc
from backend.listings.markup import locate_markup
from backend.listings.parsing import complete_record, has_required_data
from backend.py_models.property import ListingSource, PartialProperty, PropertyRecord

log = logging.getLogger("listings.cascade")

Locator = Callable[[loc.ListingDocument], loc.LocatorResult]

ZILLOW_INLINE_NAMES = ("zpid", "propertyData", "listingData")
REDFIN_INLINE_NAMES = ("initialData", "propertyData", "listingData")

# Most structured and stable first, page regexes last.
ZILLOW_LOCATORS: Tuple[Tuple[str, Locator], ...] = (
    ("json_ld", loc.locate_json_ld),
    ("next_data", loc.locate_next_data),
    ("apollo_state", loc.locate_apollo_state),
    ("preloaded_state", loc.locate_preloaded_state),
    ("shared_data", loc.locate_shared_data),
    ("client_cache", loc.locate_client_cache),
    ("inline_assignment", partial(loc.locate_inline_assignment, names=ZILLOW_INLINE_NAMES)),
    ("markup", partial(locate_markup, source=ListingSource.ZILLOW)),
)

REDFIN_LOCATORS: Tuple[Tuple[str, Locator], ...] = (
    ("json_ld", loc.locate_json_ld),
    ("next_data", loc.locate_next_data),
    ("react_server_state", loc.locate_react_server_state),
    ("preloaded_state", loc.locate_preloaded_state),
    ("inline_assignment", partial(loc.locate_inline_assignment, names=REDFIN_INLINE_NAMES)),
    ("markup", partial(locate_markup, source=ListingSource.REDFIN)),
)

STRATEGIES = {
    ListingSource.ZILLOW: ZILLOW_LOCATORS,
    ListingSource.REDFIN: REDFIN_LOCATORS,
}


def first_viable(
    doc: loc.ListingDocument, locators: Sequence[Tuple[str, Locator]]
) -> Optional[loc.Found]:
    """
    Run locators left to right and return the first Found that passes the
    minimum-viable-data gate. A Found that fails the gate is discarded, not
    merged with later results.
    """
    for name, locate in locators:
        try:
            result = locate(doc)
        except (
            ValueError, TypeError, KeyError, AttributeError, ArithmeticError, RecursionError
        ) as e:
            # locators are meant to be total; an escape here is a locator bug
            log.debug("locator %s raised %s: %s", name, type(e).__name__, e)
            continue
        if isinstance(result, loc.NotFound):
            log.debug("locator %s: %s", name, result.reason)
            continue
        if not has_required_data(result.partial):
            log.debug("locator %s: found a node without address or price", name)
            continue
        log.debug("locator %s matched", name)
        return result
    return None


def parse_listing_html(source: ListingSource, html: str) -> Optional[loc.Found]:
    doc = loc.ListingDocument(html)
    return first_viable(doc, STRATEGIES[source])


def run_cascade(source: ListingSource, html: str, url: str) -> Optional[PropertyRecord]:
    """Full record from a fetched page, or None if every strategy came up empty."""
    found = parse_listing_html(source, html)
    if found is None:
        return None
    return complete_record(found.partial, source, url)


def record_from_partial(partial: Optional[PartialProperty], source: ListingSource, url: str) -> Optional[PropertyRecord]:
    if not has_required_data(partial):
        return None
    return complete_record(partial, source, url)
