"""location_service.py
~~~~~~~~~~~~~~~~~~~~~~
Best-effort visitor location from a strict, short-circuiting cascade.

Priority (first source that yields data wins, fields are never merged):

1. ``client-gps``          – device coordinates sent by the page   → *high*
2. ``client-ip-estimate``  – IP geolocation done by the page itself → *medium-high*
3. ``offline-geoip``       – local MaxMind City database            → *low*
4. ``network-geoip``       – one ipapi.co call, 3 s budget          → *medium*

Steps 1–2 are pure and run on the request path (see
:func:`client_candidates`); steps 3–4 only run from the background task in
:mod:`visit_service`. Finding nothing is a normal outcome, not an error.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Any, Final, Iterable, Mapping

from . import geoip_service
from .coordinates import GPS_PRECISION, IP_PRECISION, validate_coords
from .models import AccuracyTier, LocationSource, ResolvedLocation

LOG = logging.getLogger("location_service")

SOURCE_PRIORITY: Final[tuple[LocationSource, ...]] = (
    "client-gps",
    "client-ip-estimate",
    "offline-geoip",
    "network-geoip",
)

ACCURACY_TIER: Final[dict[LocationSource, AccuracyTier]] = {
    "client-gps": "high",
    "client-ip-estimate": "medium-high",
    "offline-geoip": "low",
    "network-geoip": "medium",
}


def _text(value: Any) -> str | None:
    if value is None:
        return None
    text = str(value).strip()
    return text or None


def _candidate(
    source: LocationSource,
    coords: tuple[float, float] | None,
    **place: Any,
) -> ResolvedLocation:
    """Build a ResolvedLocation with its tier; coords already validated."""
    cand: ResolvedLocation = {
        "source": source,
        "accuracy": ACCURACY_TIER[source],
        "lat": coords[0] if coords else None,
        "lng": coords[1] if coords else None,
    }
    for key, value in place.items():
        text = _text(value)
        if text is not None:
            cand[key] = text  # type: ignore[literal-required]
    return cand


def client_candidates(payload: Mapping[str, Any]) -> list[ResolvedLocation]:
    """
    Extract the client-supplied location candidates from a raw body.

    Invalid or missing coordinate pairs are skipped silently.

    Returns:
        Zero, one or two candidates, in priority order.
    """
    found: list[ResolvedLocation] = []

    gps = validate_coords(payload.get("latitude"), payload.get("longitude"), GPS_PRECISION)
    if gps is not None:
        found.append(_candidate("client-gps", gps, label=payload.get("locationSource")))

    estimate = validate_coords(
        payload.get("ipBasedLatitude"), payload.get("ipBasedLongitude"), IP_PRECISION
    )
    if estimate is not None:
        found.append(
            _candidate(
                "client-ip-estimate",
                estimate,
                city=payload.get("ipBasedCity"),
                country=payload.get("ipBasedCountry"),
                org=payload.get("ipBasedOrg"),
                label=payload.get("ipBasedSource"),
            )
        )

    return found


def select_candidate(candidates: Iterable[ResolvedLocation]) -> ResolvedLocation | None:
    """
    Pick the candidate whose source ranks highest in ``SOURCE_PRIORITY``.

    Order of arrival is irrelevant; on an exact tie the first one wins.
    """
    best: ResolvedLocation | None = None
    best_rank = len(SOURCE_PRIORITY)
    for cand in candidates:
        rank = SOURCE_PRIORITY.index(cand["source"])
        if rank < best_rank:
            best, best_rank = cand, rank
    return best


async def resolve(
    address: str,
    candidates: Iterable[ResolvedLocation] = (),
) -> ResolvedLocation | None:
    """
    Run the cascade for one visit.

    Args:
        address:     Source address as received (may carry a port or a
                     proxy chain).
        candidates:  Output of :func:`client_candidates`.

    Returns:
        The winning candidate, or *None* when no source has data.
    """
    chosen = select_candidate(candidates)
    if chosen is not None:
        return chosen

    cleaned = geoip_service.clean_address(address)
    if cleaned is None or not geoip_service.is_routable(cleaned):
        LOG.debug("[resolve] %r is not a routable address, skipping lookups", address)
        return None

    offline = await asyncio.to_thread(geoip_service.offline_lookup, cleaned)
    if offline is not None:
        coords = validate_coords(offline["lat"], offline["lng"], IP_PRECISION)
        return _candidate(
            "offline-geoip",
            coords,
            city=offline["city"],
            country=offline["country"],
            region=offline["region"],
        )

    network = await geoip_service.network_lookup(cleaned)
    if network is not None:
        coords = validate_coords(network["lat"], network["lng"], IP_PRECISION)
        return _candidate(
            "network-geoip",
            coords,
            city=network["city"],
            country=network["country"],
            org=network["org"],
        )

    LOG.info("[resolve] no location for %s", cleaned)
    return None
