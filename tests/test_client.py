import random

import httpx
import pytest

from backend.listings.client import (
    BROWSER_IDENTITIES,
    MAX_ATTEMPTS,
    cycle_identities,
    looks_blocked,
    random_identities,
)
from backend.listings.errors import Blocked, FetchFailed

URL = "https://www.redfin.com/MA/Boston/1-Elm-St-02108/home/12345"
CLEAN = "<html><body><h1>1 Elm St</h1><p>$500,000</p></body></html>"


def _sequence(*responses):
    """Handler replaying (status, body) pairs, one per request."""
    queue = list(responses)

    def handler(request):
        status, body = queue.pop(0)
        return httpx.Response(status, text=body)

    return handler


@pytest.mark.asyncio
async def test_three_403s_raise_blocked(make_fetcher, fake_sleep):
    fetcher = make_fetcher(_sequence((403, ""), (403, ""), (403, "")))
    with pytest.raises(Blocked) as exc:
        await fetcher.fetch_html(URL)
    assert exc.value.attempts == MAX_ATTEMPTS
    assert exc.value.code == "BLOCKED"
    assert len(fetcher.requests) == 3
    # linear backoff between attempts, none after the last
    assert fake_sleep.calls == [1.0, 2.0]


@pytest.mark.asyncio
async def test_per_call_attempt_budget(make_fetcher, fake_sleep):
    fetcher = make_fetcher(_sequence((403, ""), (200, CLEAN)))
    with pytest.raises(Blocked) as exc:
        await fetcher.fetch_text(URL, attempts=1)
    assert exc.value.attempts == 1
    assert len(fetcher.requests) == 1
    assert fake_sleep.calls == []
    # the override does not stick
    assert await fetcher.fetch_text(URL) == CLEAN

@pytest.mark.asyncio
async def test_403_then_200_succeeds(make_fetcher, fake_sleep):
    fetcher = make_fetcher(_sequence((403, ""), (200, CLEAN)))
    assert await fetcher.fetch_html(URL) == CLEAN
    assert len(fetcher.requests) == 2
    assert fake_sleep.calls == [1.0]


@pytest.mark.asyncio
async def test_429_is_throttling_too(make_fetcher, fake_sleep):
    fetcher = make_fetcher(_sequence((429, ""), (429, ""), (200, CLEAN)), backoff=0.5)
    assert await fetcher.fetch_html(URL) == CLEAN
    assert fake_sleep.calls == [0.5, 1.0]


@pytest.mark.asyncio
async def test_block_page_is_retried(make_fetcher, fake_sleep):
    interstitial = "<html><body>Press & Hold to confirm you are a human.</body></html>"
    fetcher = make_fetcher(
        _sequence((200, "<p>Please complete the CAPTCHA</p>"), (200, interstitial), (200, CLEAN))
    )
    assert await fetcher.fetch_html(URL) == CLEAN
    assert len(fetcher.requests) == 3


@pytest.mark.asyncio
async def test_block_pages_exhaust_to_blocked(make_fetcher):
    body = "<html><title>Access Denied</title></html>"
    fetcher = make_fetcher(_sequence((200, body), (200, body), (200, body)))
    with pytest.raises(Blocked):
        await fetcher.fetch_html(URL)


@pytest.mark.asyncio
async def test_other_status_fails_fast(make_fetcher, fake_sleep):
    fetcher = make_fetcher(_sequence((404, "gone")))
    with pytest.raises(FetchFailed) as exc:
        await fetcher.fetch_html(URL)
    assert exc.value.status == 404
    assert len(fetcher.requests) == 1
    assert fake_sleep.calls == []


@pytest.mark.asyncio
async def test_transport_error_is_fetch_failed(make_fetcher):
    def handler(request):
        raise httpx.ConnectError("name resolution failed", request=request)

    fetcher = make_fetcher(handler)
    with pytest.raises(FetchFailed) as exc:
        await fetcher.fetch_html(URL)
    assert isinstance(exc.value.__cause__, httpx.ConnectError)
    assert exc.value.status is None


@pytest.mark.asyncio
async def test_identity_rotates_between_attempts(make_fetcher):
    fetcher = make_fetcher(_sequence((403, ""), (403, ""), (200, CLEAN)))
    await fetcher.fetch_html(URL)
    agents = [r.headers["user-agent"] for r in fetcher.requests]
    assert agents == [i["User-Agent"] for i in BROWSER_IDENTITIES[:3]]
    assert len(set(agents)) == 3
    assert all(r.headers.get("accept-language") for r in fetcher.requests)


@pytest.mark.asyncio
async def test_accept_override(make_fetcher):
    fetcher = make_fetcher(_sequence((200, "{}")))
    await fetcher.fetch_text(URL, accept="application/json")
    assert fetcher.requests[0].headers["accept"] == "application/json"


def test_random_identities_never_repeat():
    it = random_identities(rng=random.Random(7))
    picks = [next(it)["User-Agent"] for _ in range(50)]
    assert all(a != b for a, b in zip(picks, picks[1:]))
    assert set(picks) <= {i["User-Agent"] for i in BROWSER_IDENTITIES}


def test_cycle_identities_returns_copies():
    it = cycle_identities()
    first = next(it)
    first["User-Agent"] = "changed"
    assert BROWSER_IDENTITIES[0]["User-Agent"] != "changed"


def test_looks_blocked():
    assert looks_blocked("<h1>Pardon Our Interruption</h1><div>captcha</div>")
    assert looks_blocked("We detected unusual traffic from your network")
    assert not looks_blocked(CLEAN)
    assert not looks_blocked("")
