"""
enrichment.py
~~~~~~~~~~~~~
Turn one raw ``/log-ip`` submission into a :class:`~.models.VisitEvent`
and, once the location is known, into the record that gets stored.

Everything here is synchronous and in-memory. Malformed fields are dropped
one by one; a bad field never rejects the submission.
"""

from __future__ import annotations

import datetime as dt
import secrets
import uuid
from typing import Any, Final, Mapping

from dateutil import parser as date_parser

from .constants import UNKNOWN_ADDRESS
from .coordinates import parse_number
from .location_service import client_candidates, select_candidate
from .models import Location, ResolvedLocation, VisitEvent
from .user_agent import classify

UTC: Final = dt.timezone.utc

# Proxy / CDN headers, most trusted first; the socket peer comes last.
ADDRESS_HEADERS: Final = (
    "x-forwarded-for",
    "x-real-ip",
    "cf-connecting-ip",
    "true-client-ip",
)

MAX_REQUEST_ID_LEN: Final = 200
MAX_TEXT_LEN: Final = 2048

# Body keys that map onto the fixed schema; everything else is client_info.
# Client coordinates are only kept after validation (location, candidates).
CORE_FIELDS: Final = frozenset(
    {
        "requestId",
        "path",
        "referrer",
        "language",
        "timeZone",
        "screenWidth",
        "screenHeight",
        "latitude",
        "longitude",
        "ipBasedLatitude",
        "ipBasedLongitude",
        "accuracy",
        "altitude",
        "altitudeAccuracy",
        "heading",
        "speed",
        "address",
        "addressDetails",
    }
)

_BASE36 = "0123456789abcdefghijklmnopqrstuvwxyz"


def extract_source_address(headers: Mapping[str, str], client_host: str | None) -> str:
    """
    First usable address from the proxy headers, then the socket peer.

    For comma-separated chains the first hop is taken. Falls back to
    ``"unknown"`` so the result is never empty.
    """
    for name in ADDRESS_HEADERS:
        value = headers.get(name)
        if value:
            first = value.split(",")[0].strip()
            if first:
                return first
    if client_host and client_host.strip():
        return client_host.strip()
    return UNKNOWN_ADDRESS


def request_id_for(payload: Mapping[str, Any], address: str) -> str:
    """Client ``requestId`` if usable, else ``"{address}-{epoch_ms}-{random}"``."""
    raw = payload.get("requestId")
    if isinstance(raw, (str, int)) and not isinstance(raw, bool):
        text = str(raw).strip()
        if text:
            return text[:MAX_REQUEST_ID_LEN]
    ms = int(dt.datetime.now(UTC).timestamp() * 1000)
    suffix = "".join(secrets.choice(_BASE36) for _ in range(8))
    return f"{address}-{ms}-{suffix}"


def parse_occurred_at(value: Any, received_at: dt.datetime) -> dt.datetime:
    """
    Client ``timestamp`` as an aware UTC datetime, else *received_at*.

    Accepts epoch milliseconds (number or digit string) and ISO-8601 / RFC
    date strings. Naive strings are read as UTC.
    """
    if value is None or isinstance(value, bool):
        return received_at
    try:
        if isinstance(value, (int, float)) or (
            isinstance(value, str) and value.strip().isdigit()
        ):
            return dt.datetime.fromtimestamp(float(value) / 1000.0, tz=UTC)
        if isinstance(value, str) and value.strip():
            parsed = date_parser.parse(value.strip())
            if parsed.tzinfo is None:
                parsed = parsed.replace(tzinfo=UTC)
            return parsed.astimezone(UTC)
    except (ValueError, OverflowError, OSError):
        pass
    return received_at


def _text(value: Any) -> str:
    if value is None or isinstance(value, (dict, list)):
        return ""
    return str(value)[:MAX_TEXT_LEN]


def _dimension(value: Any) -> int:
    number = parse_number(value)
    if number is None or number < 0:
        return 0
    return int(number)


def _location(payload: Mapping[str, Any], chosen: ResolvedLocation | None) -> Location:
    address = payload.get("address")
    details = payload.get("addressDetails")
    return {
        "latitude": chosen["lat"] if chosen else None,
        "longitude": chosen["lng"] if chosen else None,
        "accuracy": parse_number(payload.get("accuracy")),
        "altitude": parse_number(payload.get("altitude")),
        "altitude_accuracy": parse_number(payload.get("altitudeAccuracy")),
        "heading": parse_number(payload.get("heading")),
        "speed": parse_number(payload.get("speed")),
        "address": _text(address) or None,
        "address_details": details if isinstance(details, (dict, str)) else None,
        "source": chosen["source"] if chosen else None,
    }


def build_event(
    payload: Mapping[str, Any],
    headers: Mapping[str, str],
    source_address: str,
    request_id: str,
    received_at: dt.datetime | None = None,
) -> VisitEvent:
    """
    Assemble the immutable event for one accepted submission.

    Client coordinates (GPS first, then the page's own IP estimate) are
    validated here; server-side lookups happen later in the background.
    """
    received_at = received_at or dt.datetime.now(UTC)
    candidates = client_candidates(payload)
    family, browser = classify(headers.get("user-agent", ""))

    client_info = {k: v for k, v in payload.items() if k not in CORE_FIELDS}
    client_info["request_info"] = {
        "request_id": request_id,
        "processed_at": received_at.isoformat(),
    }

    return {
        "source_address": source_address,
        "request_id": request_id,
        "occurred_at": parse_occurred_at(payload.get("timestamp"), received_at),
        "received_at": received_at,
        "path": _text(payload.get("path")),
        "user_agent": _text(headers.get("user-agent", "")),
        "referrer": _text(payload.get("referrer")) or _text(headers.get("referer", "")),
        "language": _text(payload.get("language")),
        "time_zone": _text(payload.get("timeZone")),
        "screen_size": {
            "width": _dimension(payload.get("screenWidth")),
            "height": _dimension(payload.get("screenHeight")),
        },
        "location": _location(payload, select_candidate(candidates)),
        "device": {"family": family, "browser": browser},
        "candidates": candidates,
        "client_info": client_info,
    }


def to_record(event: VisitEvent, resolved: ResolvedLocation | None) -> dict[str, Any]:
    """
    Storage shape for *event*.

    Client-supplied coordinates already in ``location`` are kept; otherwise
    the resolver's coordinates fill them in.
    """
    location = dict(event["location"])
    if resolved is not None and location.get("latitude") is None:
        location["latitude"] = resolved.get("lat")
        location["longitude"] = resolved.get("lng")
        location["source"] = resolved["source"]

    record: dict[str, Any] = {
        "id": uuid.uuid4().hex,
        "source_address": event["source_address"],
        "occurred_at": event["occurred_at"].isoformat(),
        "received_at": event["received_at"].isoformat(),
        "path": event["path"],
        "user_agent": event["user_agent"],
        "referrer": event["referrer"],
        "language": event["language"],
        "time_zone": event["time_zone"],
        "screen_size": dict(event["screen_size"]),
        "location": location,
        "device": dict(event["device"]),
        "client_info": event["client_info"],
        "candidates": [dict(c) for c in event["candidates"]],
    }
    if resolved is not None:
        record["resolved_location"] = {
            k: v for k, v in resolved.items() if k not in ("lat", "lng")
        }
    return record
