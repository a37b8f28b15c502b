"""geoip_service.py
~~~~~~~~~~~~~~~~~~~
IP → place lookups used by the location cascade.

* **Offline** – MaxMind GeoLite2/GeoIP2 *City* database read with
  :mod:`geoip2` (path in ``GEOIP_DB_PATH``). Missing database ⇒ every lookup
  misses; nothing is downloaded at runtime.
* **Network** – ``https://ipapi.co/<ip>/json/`` through httpx with a hard
  3-second budget. Any error, timeout or non-200 answer is "no result".

Both lookups expect an address already normalised by :func:`clean_address`.
"""

from __future__ import annotations

import asyncio
import ipaddress
import logging
import os
from pathlib import Path
from typing import Any, Final, TypedDict

import geoip2.database
import geoip2.errors
import httpx

from .api_logging import logged_request_async
from .constants import USER_AGENT

LOG = logging.getLogger("geoip_service")

# ── Configuration ─────────────────────────────────────────────────────────
GEOIP_DB_PATH = os.getenv("GEOIP_DB_PATH", "")
IPAPI_URL: Final = "https://ipapi.co/{address}/json/"
NETWORK_TIMEOUT_S: Final = 3.0

_reader: Any = None
_reader_unavailable = False


class OfflineHit(TypedDict):
    city: str | None
    country: str | None
    region: str | None
    lat: float | None
    lng: float | None


class NetworkHit(TypedDict):
    city: str | None
    country: str | None
    org: str | None
    lat: float | None
    lng: float | None


# ── Address helpers ───────────────────────────────────────────────────────


def clean_address(raw: str | None) -> str | None:
    """
    Reduce a header/peer value to a bare IP literal.

    Handles ``"a, b"`` proxy chains (first hop wins), ``1.2.3.4:5678``,
    ``[2001:db8::1]:443`` and IPv4-mapped IPv6. Returns *None* when the
    remainder is not an IP address.
    """
    if not raw:
        return None
    token = raw.split(",")[0].strip()
    if token.startswith("[") and "]" in token:
        token = token[1 : token.index("]")]
    elif token.count(":") == 1:
        token = token.split(":")[0]
    try:
        ip = ipaddress.ip_address(token)
    except ValueError:
        return None
    if isinstance(ip, ipaddress.IPv6Address) and ip.ipv4_mapped is not None:
        ip = ip.ipv4_mapped
    return str(ip)


def is_routable(address: str) -> bool:
    """True for globally routable addresses (lookups for LAN/loopback are pointless)."""
    try:
        return ipaddress.ip_address(address).is_global
    except ValueError:
        return False


# ── Offline database ──────────────────────────────────────────────────────


def _get_reader() -> Any:
    """Open the MaxMind database once; remember a failure for the process lifetime."""
    global _reader, _reader_unavailable

    if _reader is not None or _reader_unavailable:
        return _reader

    path = GEOIP_DB_PATH.strip()
    if not path or not Path(path).expanduser().is_file():
        LOG.info("[geoip] offline database not configured (GEOIP_DB_PATH=%r)", path)
        _reader_unavailable = True
        return None

    try:
        _reader = geoip2.database.Reader(str(Path(path).expanduser()))
        LOG.info("[geoip] offline database loaded from %s", path)
    except Exception as exc:  # noqa: BLE001 – corrupt / wrong file
        LOG.warning("[geoip] cannot open %s: %s", path, exc)
        _reader_unavailable = True
    return _reader


def offline_lookup(address: str) -> OfflineHit | None:
    """
    Look *address* up in the local City database.

    Returns:
        ``{city, country, region, lat, lng}`` or *None* when the address is
        unknown or the database is unavailable.
    """
    reader = _get_reader()
    if reader is None:
        return None

    try:
        resp = reader.city(address)
    except geoip2.errors.AddressNotFoundError:
        return None
    except (geoip2.errors.GeoIP2Error, ValueError, TypeError) as exc:
        LOG.warning("[geoip] offline lookup failed for %s: %s", address, exc)
        return None

    return {
        "city": resp.city.name,
        "country": resp.country.iso_code or resp.country.name,
        "region": resp.subdivisions.most_specific.name,
        "lat": resp.location.latitude,
        "lng": resp.location.longitude,
    }


# ── Network lookup ────────────────────────────────────────────────────────


async def _fetch(address: str, timeout: float) -> httpx.Response:
    url = IPAPI_URL.format(address=address)
    async with httpx.AsyncClient(
        timeout=timeout, headers={"User-Agent": USER_AGENT}
    ) as client:
        return await logged_request_async(client, "get", url, raise_for_status=False)


async def network_lookup(
    address: str, timeout: float = NETWORK_TIMEOUT_S
) -> NetworkHit | None:
    """
    One ipapi.co request, abandoned after *timeout* seconds.

    Never retries. Every failure mode (timeout, transport error, non-200,
    ``{"error": true}``, unparsable JSON) returns *None*.
    """
    try:
        resp = await asyncio.wait_for(_fetch(address, timeout), timeout)
    except asyncio.TimeoutError:
        LOG.info("[ipapi] %s timed out after %.1fs", address, timeout)
        return None
    except httpx.HTTPError as exc:
        LOG.info("[ipapi] %s failed: %s", address, type(exc).__name__)
        return None

    if resp.status_code != 200:
        return None

    try:
        data = resp.json()
    except ValueError:
        LOG.info("[ipapi] %s returned non-JSON body", address)
        return None

    if not isinstance(data, dict) or data.get("error") or not data.get("country_name"):
        return None

    return {
        "city": data.get("city"),
        "country": data.get("country_name"),
        "org": data.get("org"),
        "lat": data.get("latitude"),
        "lng": data.get("longitude"),
    }
