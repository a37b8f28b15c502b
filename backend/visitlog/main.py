"""
main.py – FastAPI entry point
=============================

Routes
------
* ``POST /api/analytics/log-ip``  – anonymous visit beacon. **Always 204**,
  whatever the body, whatever fails downstream; probing clients learn nothing.
* ``GET  /api/analytics/ip-logs`` – newest 100 visit records behind
  ``Authorization: Bearer $ADMIN_SECRET``. Every refusal (bad token, no
  secret configured, storage error, too many attempts, wrong HTTP method)
  looks exactly like an unknown route: ``404 {"detail": "Not Found"}``.
* ``GET /`` and ``GET /healthz`` – liveness.
"""

from __future__ import annotations

# ─── Std-lib / third-party ────────────────────────────────────────────
import asyncio
import contextlib
import json
import os
import secrets
from contextlib import asynccontextmanager
from typing import Any

from dotenv import load_dotenv
from fastapi import FastAPI, HTTPException, Request, Response
from fastapi.encoders import jsonable_encoder
from fastapi.exception_handlers import http_exception_handler
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse, PlainTextResponse
from slowapi import Limiter
from slowapi.errors import RateLimitExceeded
from slowapi.util import get_remote_address
from starlette.exceptions import HTTPException as StarletteHTTPException

# Service modules read their settings at import time.
load_dotenv()

# ─── Project modules ──────────────────────────────────────────────────
from .background import drain, fire_and_forget  # noqa: E402
from .notify_service import announce_startup  # noqa: E402
from .visit_log_service import query_recent  # noqa: E402
from .visit_service import ingest  # noqa: E402

# ─── Logging ──────────────────────────────────────────────────────────
import logging  # noqa: E402
import sys  # noqa: E402

LOG = logging.getLogger("analytics")

_SERVICE_LOGGERS = (
    "analytics",
    "visit_service",
    "dedup_gate",
    "cooldown_cache",
    "location_service",
    "geoip_service",
    "notify_service",
    "visit_log_service",
    "background",
    "extapi",
)

# Configure custom loggers to output to stdout
_handler = logging.StreamHandler(sys.stdout)
_handler.setFormatter(logging.Formatter("%(levelname)s:     %(name)s - %(message)s"))
for _name in _SERVICE_LOGGERS:
    _logger = logging.getLogger(_name)
    _logger.addHandler(_handler)
    _logger.setLevel(os.getenv("LOG_LEVEL", "INFO").upper())

# ---------------------------------------------------------------------
# Environment
# ---------------------------------------------------------------------
ADMIN_SECRET = os.getenv("ADMIN_SECRET", "")

RECENT_LIMIT = 100
MAX_BODY_BYTES = 32 * 1024

# Brute-force guard for the admin token
limiter = Limiter(key_func=get_remote_address)

DEFAULT_ORIGINS = [
    "http://localhost:8000",
    "http://127.0.0.1:8000",
]
ALLOWED_ORIGINS = [
    o.strip() for o in os.getenv("ALLOWED_ORIGINS", "").split(",") if o.strip()
] or DEFAULT_ORIGINS


# ---------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------
def _not_found() -> HTTPException:
    """Same status and body FastAPI uses for routes that do not exist."""
    return HTTPException(status_code=404, detail="Not Found")


def _authorized(header: str | None) -> bool:
    """Constant-time check of ``Authorization: Bearer <ADMIN_SECRET>``."""
    secret = ADMIN_SECRET.strip()
    if not secret or not header:
        return False
    return secrets.compare_digest(header.strip().encode(), f"Bearer {secret}".encode())


async def _read_payload(request: Request) -> dict[str, Any]:
    """
    Body as a dict; anything oversized, unparsable or not a JSON object
    becomes ``{}`` (the visit is still logged from its headers).
    """
    body = await request.body()
    if not body or len(body) > MAX_BODY_BYTES:
        return {}
    try:
        data = json.loads(body)
    except (ValueError, RecursionError):
        return {}
    return data if isinstance(data, dict) else {}


# ---------------------------------------------------------------------
# Lifespan – startup announcement, background task shutdown
# ---------------------------------------------------------------------
@asynccontextmanager
async def lifespan(app: FastAPI):  # noqa: N802 – FastAPI naming style
    """Announce startup on Telegram; cancel in-flight background work on exit."""
    fire_and_forget(announce_startup(), name="announce_startup")

    yield  # ⇢ application runs here

    # Shutdown: pending lookups / alerts are best-effort anyway
    with contextlib.suppress(asyncio.CancelledError):
        await drain(cancel=True)


# ---------------------------------------------------------------------
# FastAPI instance & middleware
# ---------------------------------------------------------------------
app = FastAPI(title="visitlog", lifespan=lifespan, docs_url=None, redoc_url=None, openapi_url=None)

# Rate limiter state
app.state.limiter = limiter


@app.exception_handler(RateLimitExceeded)
async def rate_limit_handler(request: Request, exc: RateLimitExceeded):
    """Throttled admin attempts get the plain not-found answer, not 429."""
    return JSONResponse(status_code=404, content={"detail": "Not Found"})


@app.exception_handler(StarletteHTTPException)
async def not_found_for_wrong_method(request: Request, exc: StarletteHTTPException):
    """A wrong verb on a real route answers like a route that does not exist."""
    if exc.status_code == 405:
        return JSONResponse(status_code=404, content={"detail": "Not Found"})
    return await http_exception_handler(request, exc)


app.add_middleware(
    CORSMiddleware,
    allow_origins=ALLOWED_ORIGINS,
    allow_credentials=True,
    allow_methods=["GET", "POST", "OPTIONS"],
    allow_headers=["Content-Type", "Authorization"],
)


# Health probe --------------------------------------------------------
@app.get("/", response_class=PlainTextResponse)
async def root() -> PlainTextResponse:
    return PlainTextResponse("API is running", status_code=200)


@app.get("/healthz", response_class=PlainTextResponse)
async def healthz() -> PlainTextResponse:
    """Return HTTP 200 with body “ok” if the app is up."""
    return PlainTextResponse("ok", status_code=200)


# ---------------------------------------------------------------------
# Routes
# ---------------------------------------------------------------------
@app.post("/api/analytics/log-ip", status_code=204)
async def log_ip(request: Request) -> Response:
    """
    Record one visit. Returns 204 before any lookup, write or alert runs.
    """
    try:
        payload = await _read_payload(request)
        client_host = request.client.host if request.client else None
        ingest(payload, request.headers, client_host)
    except Exception as exc:  # noqa: BLE001 – never leak failures to the caller
        LOG.warning("[log-ip] swallowed %s: %s", type(exc).__name__, exc)
    return Response(status_code=204)


@app.get("/api/analytics/ip-logs")
@limiter.limit("30/minute")
async def ip_logs(request: Request) -> JSONResponse:
    """Newest visit records, newest first (bearer-token protected)."""
    if not _authorized(request.headers.get("authorization")):
        raise _not_found()

    try:
        records = await asyncio.to_thread(query_recent, RECENT_LIMIT)
    except Exception as exc:  # noqa: BLE001
        LOG.warning("[ip-logs] store unavailable: %s", exc)
        raise _not_found() from exc

    return JSONResponse(jsonable_encoder(records))
