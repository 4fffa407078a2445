import os
from dotenv import load_dotenv
from fastapi import Depends, FastAPI, Header, HTTPException, Request, status
from fastapi.responses import JSONResponse
from proxy import QuranProxy, build_proxy
from composer import method_not_allowed

load_dotenv()  # ensure .env is loaded here too

ADMIN_TOKEN = os.getenv("ADMIN_TOKEN")

app = FastAPI()

# One proxy (and cache) per process, owned by the app.
_proxy = build_proxy()


def get_proxy() -> QuranProxy:
    return _proxy


def _auth(x_admin_token: str | None):
    if not ADMIN_TOKEN:
        raise HTTPException(status_code=500, detail="ADMIN_TOKEN not configured")
    if x_admin_token != ADMIN_TOKEN:
        raise HTTPException(status_code=401, detail="Unauthorized")

@app.get("/")
def read_root():
    return JSONResponse(
        content={"status": "ok", "message": "Server is healthy"},
        status_code=status.HTTP_200_OK
    )

@app.api_route("/api/quran", methods=["GET", "HEAD"])
@app.api_route("/api/quran/{path:path}", methods=["GET", "HEAD"])
def proxy_quran(
    request: Request,
    if_none_match: str | None = Header(default=None),
    proxy: QuranProxy = Depends(get_proxy),
):
    # The bare /api/quran route has no path param; read it off the request.
    path = request.path_params.get("path", "")
    query = request.url.query
    if request.method == "HEAD":
        return proxy.handle_head(path, query, if_none_match)
    return proxy.handle_get(path, query, if_none_match)

@app.api_route("/api/quran", methods=["POST", "PUT", "DELETE"])
@app.api_route("/api/quran/{path:path}", methods=["POST", "PUT", "DELETE"])
def reject_write():
    return method_not_allowed()

@app.post("/admin/cache/clear")
def admin_cache_clear(
    x_admin_token: str | None = Header(default=None),
    proxy: QuranProxy = Depends(get_proxy),
):
    _auth(x_admin_token)
    proxy.clear()
    return {"ok": True}

@app.get("/admin/cache/stats")
def admin_cache_stats(
    x_admin_token: str | None = Header(default=None),
    proxy: QuranProxy = Depends(get_proxy),
):
    _auth(x_admin_token)
    return proxy.stats()

@app.get("/health")
def health():
    """Lightweight liveness check."""
    return {
        "status": "ok",
        "service": "quran-proxy",
    }
