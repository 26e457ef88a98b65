import os
import socket
from pathlib import Path

import httpx
import pytest

from backend.listings.client import Fetcher, cycle_identities

FIXTURES = Path(__file__).resolve().parent / "fixtures"


@pytest.fixture(autouse=True)
def block_network(monkeypatch):
    if os.getenv("LIVE") == "1":
        return

    real_connect = socket.socket.connect

    def guarded_connect(sock, address):
        host = address[0] if isinstance(address, tuple) else address
        if host not in ("127.0.0.1", "localhost"):
            raise RuntimeError("Network access blocked in tests")
        return real_connect(sock, address)

    monkeypatch.setattr(socket.socket, "connect", guarded_connect)


def _read_fixture(name: str) -> str:
    return (FIXTURES / name).read_text(encoding="utf-8")


@pytest.fixture
def read_fixture():
    return _read_fixture


class RecordingSleep:
    """Stands in for asyncio.sleep; remembers every delay instead of waiting."""

    def __init__(self):
        self.calls = []

    async def __call__(self, delay):
        self.calls.append(delay)


@pytest.fixture
def fake_sleep():
    return RecordingSleep()


@pytest.fixture
def make_fetcher(fake_sleep):
    """
    Build a Fetcher over httpx.MockTransport. The handler gets each
    httpx.Request; every request is also appended to fetcher.requests.
    """

    def _make(handler, backoff=1.0):
        requests = []

        def recording(request):
            requests.append(request)
            return handler(request)

        client = httpx.AsyncClient(transport=httpx.MockTransport(recording))
        fetcher = Fetcher(
            client=client,
            identities=cycle_identities(),
            backoff=backoff,
            sleep=fake_sleep,
        )
        fetcher.requests = requests
        return fetcher

    return _make
