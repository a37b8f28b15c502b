"""
tests/test_enrichment.py
~~~~~~~~~~~~~~~~~~~~~~~~
Source address / request id extraction, event assembly and the storage
record shape.
"""

from __future__ import annotations

import datetime as dt
import re

import pytest

from visitlog.enrichment import (
    build_event,
    extract_source_address,
    parse_occurred_at,
    request_id_for,
    to_record,
)

UTC = dt.timezone.utc
RECEIVED = dt.datetime(2024, 5, 1, 12, 0, 0, tzinfo=UTC)
UA = "Mozilla/5.0 (Linux; Android 13) Chrome/115"


# ──────────────────────────── source address ───────────────────────────────
def test_forwarded_for_first_hop():
    headers = {"x-forwarded-for": "203.0.113.5, 10.0.0.1", "x-real-ip": "198.51.100.2"}
    assert extract_source_address(headers, "127.0.0.1") == "203.0.113.5"


@pytest.mark.parametrize("header", ["x-real-ip", "cf-connecting-ip", "true-client-ip"])
def test_other_proxy_headers(header):
    assert extract_source_address({header: "198.51.100.7"}, "127.0.0.1") == "198.51.100.7"


def test_header_order():
    headers = {"true-client-ip": "4.4.4.4", "cf-connecting-ip": "3.3.3.3"}
    assert extract_source_address(headers, None) == "3.3.3.3"


def test_peer_address_fallback():
    assert extract_source_address({}, "192.0.2.10") == "192.0.2.10"


def test_unknown_when_nothing_available():
    assert extract_source_address({"x-forwarded-for": " , "}, None) == "unknown"


# ──────────────────────────────── request id ───────────────────────────────
def test_client_request_id_is_used():
    assert request_id_for({"requestId": "abc-123"}, "1.2.3.4") == "abc-123"


def test_numeric_request_id():
    assert request_id_for({"requestId": 42}, "1.2.3.4") == "42"


def test_long_request_id_is_capped():
    assert len(request_id_for({"requestId": "x" * 500}, "1.2.3.4")) == 200


@pytest.mark.parametrize("raw", [None, "", "   ", True, {"a": 1}, ["x"]])
def test_generated_request_id(raw):
    rid = request_id_for({"requestId": raw}, "1.2.3.4")
    assert re.fullmatch(r"1\.2\.3\.4-\d{13}-[0-9a-z]{8}", rid)


def test_generated_ids_are_unique():
    assert request_id_for({}, "a") != request_id_for({}, "a")


# ─────────────────────────────── timestamps ────────────────────────────────
def test_epoch_milliseconds():
    assert parse_occurred_at(1714564800000, RECEIVED) == dt.datetime(2024, 5, 1, 12, 0, tzinfo=UTC)
    assert parse_occurred_at("1714564800000", RECEIVED) == dt.datetime(
        2024, 5, 1, 12, 0, tzinfo=UTC
    )


def test_iso_string_with_offset():
    parsed = parse_occurred_at("2024-05-01T19:00:00+07:00", RECEIVED)
    assert parsed == dt.datetime(2024, 5, 1, 12, 0, tzinfo=UTC)


def test_naive_string_is_utc():
    assert parse_occurred_at("2024-05-01 08:30:00", RECEIVED) == dt.datetime(
        2024, 5, 1, 8, 30, tzinfo=UTC
    )


@pytest.mark.parametrize("value", [None, "", "yesterday-ish", True, {"t": 1}])
def test_bad_timestamp_falls_back(value):
    assert parse_occurred_at(value, RECEIVED) == RECEIVED


# ─────────────────────────────── build_event ───────────────────────────────
def _event(payload, headers=None, address="203.0.113.5"):
    headers = {"user-agent": UA, **(headers or {})}
    return build_event(payload, headers, address, "rid-1", received_at=RECEIVED)


def test_minimal_event():
    event = _event({})

    assert event["source_address"] == "203.0.113.5"
    assert event["request_id"] == "rid-1"
    assert event["occurred_at"] == RECEIVED
    assert event["path"] == ""
    assert event["screen_size"] == {"width": 0, "height": 0}
    assert event["device"] == {"family": "Android", "browser": "Android 13 Chrome 115"}
    assert event["location"]["latitude"] is None
    assert event["candidates"] == []
    assert event["client_info"] == {
        "request_info": {"request_id": "rid-1", "processed_at": RECEIVED.isoformat()}
    }


def test_gps_coordinates_land_in_location():
    event = _event(
        {"latitude": 45.123456789, "longitude": -73.0, "accuracy": "12.5", "altitudeAccuracy": 3}
    )
    loc = event["location"]

    assert (loc["latitude"], loc["longitude"]) == (45.123457, -73.0)
    assert loc["source"] == "client-gps"
    assert loc["accuracy"] == 12.5
    assert loc["altitude_accuracy"] == 3.0


def test_ip_estimate_used_when_no_gps():
    event = _event({"ipBasedLatitude": 10.762622, "ipBasedLongitude": 106.660172})
    loc = event["location"]
    assert (loc["latitude"], loc["longitude"]) == (10.7626, 106.6602)
    assert loc["source"] == "client-ip-estimate"


def test_invalid_gps_dropped_but_visit_kept():
    event = _event({"latitude": 123, "longitude": 0, "path": "/about"})
    assert event["location"]["latitude"] is None
    assert event["path"] == "/about"


def test_unknown_keys_preserved_in_client_info():
    event = _event({"path": "/", "userName": "Linh", "theme": {"dark": True}})
    info = event["client_info"]
    assert info["userName"] == "Linh"
    assert info["theme"] == {"dark": True}
    assert "path" not in info


def test_referrer_header_fallback():
    event = _event({}, headers={"referer": "https://example.org/"})
    assert event["referrer"] == "https://example.org/"
    assert _event({"referrer": "https://a.test/"}, headers={"referer": "x"})["referrer"] == (
        "https://a.test/"
    )


def test_screen_size_coercion():
    event = _event({"screenWidth": "1920", "screenHeight": -5})
    assert event["screen_size"] == {"width": 1920, "height": 0}


# ─────────────────────────────── to_record ─────────────────────────────────
def test_record_from_client_gps_ignores_resolver_coords():
    event = _event({"latitude": 1.5, "longitude": 2.5})
    resolved = {"source": "client-gps", "accuracy": "high", "lat": 9.0, "lng": 9.0}

    record = to_record(event, resolved)

    assert record["location"]["latitude"] == 1.5
    assert record["resolved_location"] == {"source": "client-gps", "accuracy": "high"}
    assert record["occurred_at"] == RECEIVED.isoformat()
    assert len(record["id"]) == 32


def test_record_filled_from_server_lookup():
    event = _event({})
    resolved = {
        "source": "network-geoip",
        "accuracy": "medium",
        "lat": 37.423,
        "lng": -122.0834,
        "city": "Mountain View",
    }

    record = to_record(event, resolved)

    assert record["location"]["latitude"] == 37.423
    assert record["location"]["source"] == "network-geoip"
    assert record["resolved_location"]["city"] == "Mountain View"
    # the event itself is not touched
    assert event["location"]["latitude"] is None


def test_record_without_location():
    record = to_record(_event({}), None)
    assert "resolved_location" not in record
    assert record["location"]["latitude"] is None


def test_record_keeps_no_raw_client_coordinates():
    event = _event({"ipBasedLatitude": "45.123456789", "ipBasedLongitude": "-73.0", "ipBasedCity": "X"})

    record = to_record(event, None)

    assert "ipBasedLatitude" not in record["client_info"]
    assert "ipBasedLongitude" not in record["client_info"]
    assert record["client_info"]["ipBasedCity"] == "X"
    assert record["location"]["latitude"] == 45.1235
    (cand,) = record["candidates"]
    assert (cand["lat"], cand["lng"]) == (45.1235, -73.0)


def test_record_drops_out_of_range_client_coordinates():
    event = _event({"ipBasedLatitude": 999, "ipBasedLongitude": 999, "latitude": 95, "longitude": 0})

    record = to_record(event, None)

    assert 999 not in record["client_info"].values()
    assert "latitude" not in record["client_info"]
    assert record["candidates"] == []
    assert record["location"]["latitude"] is None
