# proxy.py
import os
import re
import logging
from dataclasses import dataclass
from threading import Lock
from time import time
from typing import Callable, Optional
from urllib.parse import parse_qsl, urlsplit

from dotenv import load_dotenv
from fastapi.responses import Response

from app_types import CacheStatus
from cache_key import build_cache_key
from cache_store import CacheEntry, CacheStore
from fetcher import UpstreamFetcher, UpstreamUnreachable, build_upstream_url
from composer import bypass_error, compose, without_body

# -----------------------------------------------------------
# Environment & logging
# -----------------------------------------------------------
load_dotenv()
logger = logging.getLogger("uvicorn.error")

DEFAULT_BASE_URL = "https://api.quran.com/api/v4"
DEFAULT_TTL_MS = 60_000
DEFAULT_MAX_ENTRIES = 200
DEFAULT_TIMEOUT_SECONDS = 20

PID = os.getpid()

_LEADING_INT = re.compile(r"\s*[+-]?\d+")

_COUNTER_FOR = {
    CacheStatus.HIT: "hits",
    CacheStatus.MISS: "misses",
    CacheStatus.STALE: "stale",
    CacheStatus.BYPASS: "bypass",
}


def _positive_int_env(name: str, default: int) -> int:
    raw = os.getenv(name)
    if not raw:
        return default
    # Leading integer, so "5000ms" reads as 5000.
    match = _LEADING_INT.match(raw)
    value = int(match.group(0)) if match else 0
    if value <= 0:
        logger.warning("Ignoring %s=%r (not a positive integer), using %s", name, raw, default)
        return default
    return value


def _now_ms() -> float:
    return time() * 1000


@dataclass(frozen=True)
class ProxySettings:
    base_url: str = DEFAULT_BASE_URL
    ttl_ms: int = DEFAULT_TTL_MS
    max_entries: int = DEFAULT_MAX_ENTRIES
    timeout_seconds: int = DEFAULT_TIMEOUT_SECONDS

    @classmethod
    def from_env(cls) -> "ProxySettings":
        return cls(
            base_url=os.getenv("QURAN_API_BASE_URL") or DEFAULT_BASE_URL,
            ttl_ms=_positive_int_env("QURAN_PROXY_TTL_MS", DEFAULT_TTL_MS),
            max_entries=_positive_int_env("QURAN_PROXY_CACHE_SIZE", DEFAULT_MAX_ENTRIES),
            timeout_seconds=_positive_int_env("QURAN_PROXY_TIMEOUT_SECONDS", DEFAULT_TIMEOUT_SECONDS),
        )


class QuranProxy:
    """
    Read-only caching proxy in front of the Quran API.

    GET flow: fresh cache entry → HIT without touching the upstream; otherwise
    fetch, store 2xx responses and answer MISS (or STALE when an expired entry
    was replaced). If the upstream cannot be reached, any entry we still hold
    is replayed as STALE; with nothing cached the client gets a 502 BYPASS.
    """

    def __init__(
        self,
        settings: ProxySettings,
        store: CacheStore,
        fetcher: UpstreamFetcher,
        clock: Optional[Callable[[], float]] = None,
    ) -> None:
        self.settings = settings
        self.store = store
        self.fetcher = fetcher
        self._clock = clock or _now_ms
        self._counter_lock = Lock()
        self._counters = {}
        self.reset_counters()

    def _count(self, name: str) -> None:
        with self._counter_lock:
            self._counters[name] += 1

    def reset_counters(self) -> None:
        with self._counter_lock:
            self._counters = {"hits": 0, "misses": 0, "stale": 0, "bypass": 0, "upstream_calls": 0}

    def _respond(self, body, status_code, headers, cache_status: CacheStatus) -> Response:
        self._count(_COUNTER_FOR[cache_status])
        return compose(body, status_code, headers, cache_status)

    def _replay(self, entry: CacheEntry, cache_status: CacheStatus) -> Response:
        return self._respond(entry.body, entry.status, entry.headers, cache_status)

    def handle_get(self, path: str, query_string: str = "", if_none_match: Optional[str] = None) -> Response:
        upstream_url = build_upstream_url(self.settings.base_url, path, query_string)
        parsed = urlsplit(upstream_url)
        key = build_cache_key(parsed.path, parse_qsl(parsed.query, keep_blank_values=True))
        now = self._clock()

        # 1) Fresh entry: answer from cache, no upstream call.
        entry = self.store.get(key)
        if entry is not None and entry.is_fresh(now):
            logger.info("CACHE HIT → key=%s", key)
            if if_none_match and if_none_match == entry.etag:
                return self._respond(None, 304, {"ETag": entry.etag}, CacheStatus.HIT)
            return self._replay(entry, CacheStatus.HIT)

        # 2) Expired: drop it, but keep the reference for stale-on-error.
        if entry is not None:
            logger.info("CACHE STALE → key=%s", key)
            self.store.delete_if(key, entry)
        else:
            logger.info("CACHE MISS → key=%s", key)

        # 3) Upstream call
        self._count("upstream_calls")
        try:
            upstream = self.fetcher.fetch(upstream_url)
        except UpstreamUnreachable as e:
            logger.error("Failed to proxy Quran API request for %s: %s", key, str(e))
            if entry is not None:
                return self._replay(entry, CacheStatus.STALE)
            self._count("bypass")
            return bypass_error()

        if if_none_match and if_none_match == upstream.etag:
            return self._respond(None, 304, upstream.headers, CacheStatus.MISS)

        if upstream.ok:
            evicted = self.store.prune(self.settings.max_entries, now)
            if evicted:
                logger.info("CACHE PRUNE → evicted=%s size=%s", evicted, self.store.size())
            self.store.set(key, CacheEntry(
                body=upstream.body,
                etag=upstream.etag,
                status=upstream.status,
                headers=upstream.headers,
                expires_at=now + self.settings.ttl_ms,
            ))
        else:
            logger.warning("Failed upstream response for %s: HTTP %s", key, upstream.status)

        cache_status = CacheStatus.STALE if entry is not None else CacheStatus.MISS
        return self._respond(upstream.body, upstream.status, upstream.headers, cache_status)

    def handle_head(self, path: str, query_string: str = "", if_none_match: Optional[str] = None) -> Response:
        return without_body(self.handle_get(path, query_string, if_none_match))

    def stats(self) -> dict:
        """Store metrics plus per-outcome counters."""
        stats = self.store.stats()
        with self._counter_lock:
            stats.update(self._counters)
        stats["ttl_ms"] = self.settings.ttl_ms
        stats["pid"] = PID
        stats["cache_id"] = id(self.store)
        return stats

    def clear(self) -> None:
        """Drop every cached entry and reset the counters."""
        self.store.clear()
        self.reset_counters()
        logger.info("Cache cleared")


def build_proxy(settings: Optional[ProxySettings] = None) -> QuranProxy:
    settings = settings or ProxySettings.from_env()
    store = CacheStore(max_entries=settings.max_entries)
    fetcher = UpstreamFetcher(ttl_ms=settings.ttl_ms, timeout_seconds=settings.timeout_seconds)

    logger.info(
        "QURAN PROXY INIT → base=%s ttl=%sms max=%s timeout=%ss pid=%s cache_id=%s",
        settings.base_url,
        settings.ttl_ms,
        settings.max_entries,
        settings.timeout_seconds,
        PID,
        id(store),
    )
    return QuranProxy(settings=settings, store=store, fetcher=fetcher)
