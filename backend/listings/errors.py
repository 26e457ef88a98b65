from typing import Optional


class ScrapeError(Exception):
    """Base failure for a single listing extraction."""

    code = "SCRAPE_ERROR"
    message = "An unexpected error occurred. Please try again."

    def __init__(self, detail: Optional[str] = None):
        super().__init__(detail or self.message)
        self.detail = detail

    def to_dict(self) -> dict:
        return {"success": False, "error": self.message, "errorCode": self.code}


class InvalidUrl(ScrapeError):
    code = "INVALID_URL"
    message = "Please provide a valid listing URL."


class UnsupportedSite(ScrapeError):
    code = "UNSUPPORTED_SITE"
    message = "Only Zillow and Redfin URLs are supported."


class FetchFailed(ScrapeError):
    code = "FETCH_FAILED"
    message = "Could not fetch the listing page. The URL may be invalid or the site may be unreachable."

    def __init__(self, detail: Optional[str] = None, status: Optional[int] = None):
        super().__init__(detail)
        self.status = status


class Blocked(ScrapeError):
    code = "BLOCKED"
    message = "The listing site rejected every request attempt. Try again later."

    def __init__(self, detail: Optional[str] = None, attempts: int = 0):
        super().__init__(detail)
        self.attempts = attempts


class ParseFailed(ScrapeError):
    code = "PARSE_FAILED"
    message = "Could not extract property data from this listing. The page format may have changed."
