"""
models.py
~~~~~~~~~
Typed shapes shared by the ingestion pipeline.

Plain ``TypedDict`` payloads, like the rest of the backend: events are
built once by :mod:`enrichment` and only read afterwards.
"""

from __future__ import annotations

import datetime as dt
from typing import Any, Literal, TypedDict

LocationSource = Literal[
    "client-gps", "client-ip-estimate", "offline-geoip", "network-geoip"
]
AccuracyTier = Literal["high", "medium-high", "medium", "low"]


class ScreenSize(TypedDict):
    width: int
    height: int


class Location(TypedDict, total=False):
    latitude: float | None
    longitude: float | None
    accuracy: float | None  # metres, as reported by the device
    altitude: float | None
    altitude_accuracy: float | None
    heading: float | None
    speed: float | None
    address: str | None
    address_details: Any
    source: LocationSource | None


class ResolvedLocation(TypedDict, total=False):
    source: LocationSource
    accuracy: AccuracyTier
    lat: float | None
    lng: float | None
    city: str | None
    region: str | None
    country: str | None
    org: str | None
    label: str | None  # client-reported provider name, if any


class Device(TypedDict):
    family: str
    browser: str


class VisitEvent(TypedDict):
    source_address: str
    request_id: str
    occurred_at: dt.datetime
    received_at: dt.datetime
    path: str
    user_agent: str
    referrer: str
    language: str
    time_zone: str
    screen_size: ScreenSize
    location: Location
    device: Device
    candidates: list[ResolvedLocation]
    client_info: dict[str, Any]
