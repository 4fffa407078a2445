# fetcher.py
import hashlib
import logging
from dataclasses import dataclass
from typing import Dict
from urllib.parse import quote, urljoin

import requests

logger = logging.getLogger("uvicorn.error")

DEFAULT_CONTENT_TYPE = "application/json; charset=utf-8"


class UpstreamUnreachable(Exception):
    """The upstream API could not be reached (network error, timeout, bad response)."""


@dataclass
class UpstreamResponse:
    body: str
    status: int
    etag: str
    headers: Dict[str, str]

    @property
    def ok(self) -> bool:
        return 200 <= self.status < 300


# -----------------------------------------------------------
# Helpers
# -----------------------------------------------------------
def compute_etag(body: str) -> str:
    return hashlib.sha1(body.encode("utf-8")).hexdigest()


def build_upstream_url(base_url: str, path: str, query_string: str = "") -> str:
    """
    Resolve a downstream path against the upstream base URL.

    Empty path segments are dropped; the query string is forwarded as-is.
    """
    # Segments arrive decoded; re-quote so "#" or "?" cannot swallow the query.
    trimmed = "/".join(quote(segment, safe=":@") for segment in path.split("/") if segment)
    base = base_url if base_url.endswith("/") else f"{base_url}/"
    url = urljoin(base, trimmed)
    if query_string:
        url = f"{url}?{query_string}"
    return url


# -----------------------------------------------------------
# Public API
# -----------------------------------------------------------
class UpstreamFetcher:
    """
    Performs the real call to the upstream API.

    Never consults or fills the cache; callers own that policy. Every response,
    success or not, comes back with a resolved ETag and the headers the proxy
    replays to clients.
    """

    def __init__(self, ttl_ms: int, timeout_seconds: float = 20) -> None:
        self.ttl_ms = ttl_ms
        self.timeout_seconds = timeout_seconds

    def cache_control(self) -> str:
        seconds = self.ttl_ms // 1000
        return f"public, max-age={seconds}, stale-while-revalidate={seconds}"

    def fetch(self, url: str) -> UpstreamResponse:
        """
        GET ``url`` and read the whole body as UTF-8 text.

        Raises:
            UpstreamUnreachable: on connection errors, timeouts or any other
            failure raised by ``requests``.
        """
        logger.info("UPSTREAM CALL → url=%s", url)
        try:
            resp = requests.get(
                url,
                headers={"Accept": "application/json"},
                timeout=self.timeout_seconds,
            )
            # Always UTF-8, whatever charset requests would guess from Content-Type.
            body = resp.content.decode("utf-8", errors="replace")
        except requests.RequestException as e:
            raise UpstreamUnreachable(f"Upstream request failed: {e}") from e

        upstream_etag = resp.headers.get("ETag")
        etag = upstream_etag or compute_etag(body)

        logger.info(
            "UPSTREAM CALLED → url=%s status=%s bytes≈%s etag=%s",
            url, resp.status_code, len(body), "upstream" if upstream_etag else "computed",
        )
        logger.debug("resp.headers = %s", dict(resp.headers))

        headers = {
            "Content-Type": resp.headers.get("Content-Type") or DEFAULT_CONTENT_TYPE,
            "ETag": etag,
            "Cache-Control": self.cache_control(),
        }
        return UpstreamResponse(body=body, status=resp.status_code, etag=etag, headers=headers)
