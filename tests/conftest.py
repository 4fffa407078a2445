"""Shared test fixtures for the Quran proxy."""

from __future__ import annotations

import pytest
from fastapi.testclient import TestClient

from cache_store import CacheStore
from fetcher import UpstreamFetcher, UpstreamResponse, UpstreamUnreachable, compute_etag
from proxy import ProxySettings, QuranProxy

TTL_MS = 60_000
BASE_URL = "https://api.quran.com/api/v4"


class FakeClock:
    """Manually advanced millisecond clock."""

    def __init__(self, now: float = 1_000_000.0):
        self.now = now

    def __call__(self) -> float:
        return self.now

    def advance(self, ms: float) -> None:
        self.now += ms


class FakeFetcher:
    """Stands in for UpstreamFetcher; replies with a queued body or raises."""

    def __init__(self, ttl_ms: int = TTL_MS):
        self.helper = UpstreamFetcher(ttl_ms=ttl_ms)
        self.urls: list[str] = []
        self.body = '{"chapters": []}'
        self.status = 200
        self.etag: str | None = None
        self.fail = False

    def fetch(self, url: str) -> UpstreamResponse:
        self.urls.append(url)
        if self.fail:
            raise UpstreamUnreachable("connection refused")
        etag = self.etag or compute_etag(self.body)
        headers = {
            "Content-Type": "application/json; charset=utf-8",
            "ETag": etag,
            "Cache-Control": self.helper.cache_control(),
        }
        return UpstreamResponse(body=self.body, status=self.status, etag=etag, headers=headers)

    @property
    def calls(self) -> int:
        return len(self.urls)


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def fake_fetcher():
    return FakeFetcher()


@pytest.fixture
def settings():
    return ProxySettings(base_url=BASE_URL, ttl_ms=TTL_MS, max_entries=3)


@pytest.fixture
def proxy(settings, fake_fetcher, clock):
    store = CacheStore(max_entries=settings.max_entries)
    return QuranProxy(settings=settings, store=store, fetcher=fake_fetcher, clock=clock)


@pytest.fixture
def client(proxy):
    from main import app, get_proxy

    app.dependency_overrides[get_proxy] = lambda: proxy
    yield TestClient(app)
    app.dependency_overrides.clear()
