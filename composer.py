from typing import Mapping, Optional

from fastapi import status
from fastapi.responses import JSONResponse, Response

from app_types import CacheStatus

CACHE_HEADER = "X-Cache"
DEFAULT_CACHE_CONTROL = "public, max-age=60, stale-while-revalidate=60"
ALLOWED_METHODS = "GET, HEAD"


def compose(
    body: Optional[str],
    status_code: int,
    headers: Optional[Mapping[str, str]],
    cache_status: CacheStatus,
) -> Response:
    """Build the outgoing response, stamping X-Cache and a Cache-Control fallback."""
    out = dict(headers or {})
    out[CACHE_HEADER] = cache_status.value
    if not any(name.lower() == "cache-control" for name in out):
        out["Cache-Control"] = DEFAULT_CACHE_CONTROL
    return Response(content=body, status_code=status_code, headers=out)


def bypass_error() -> JSONResponse:
    return JSONResponse(
        content={"error": "Failed to reach Quran service"},
        status_code=status.HTTP_502_BAD_GATEWAY,
        headers={"Cache-Control": "no-store", CACHE_HEADER: CacheStatus.BYPASS.value},
    )


def method_not_allowed() -> JSONResponse:
    return JSONResponse(
        content={"error": "Method not allowed"},
        status_code=status.HTTP_405_METHOD_NOT_ALLOWED,
        headers={"Allow": ALLOWED_METHODS},
    )


def without_body(response: Response) -> Response:
    # HEAD: same status and headers, nothing on the wire.
    return Response(content=None, status_code=response.status_code, headers=dict(response.headers))
