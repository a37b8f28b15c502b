"""notify_service.py
~~~~~~~~~~~~~~~~~~
Telegram alerts for accepted visits.

Renders one HTML message per visit and posts it with the Bot API
``sendMessage`` call. Delivery is best-effort: every failure is logged here
and reported as ``False``, nothing is raised to the pipeline.

Configuration:
    TELEGRAM_BOT_TOKEN: Bot token (optional - alerts skipped if not set)
    TELEGRAM_CHAT_ID:   Target chat/channel id (optional - alerts skipped if not set)
    NOTIFY_TIMEZONE:    IANA zone used for the time line (default: Asia/Ho_Chi_Minh)

Message layout:
    header → address → time → path → device → location block (only when a
    location was resolved) → extra-info lines → one map link.

The map link is picked by scanning the extra-info text with
``MAP_LINK_PATTERNS`` (exact coordinates > IP-estimated coordinates >
city/region > address > address detail > estimated region).
"""

from __future__ import annotations

import datetime as dt
import html
import logging
import os
import re
from typing import Any, Callable, Final
from urllib.parse import quote

import httpx
from dateutil import tz

from .api_logging import logged_request_async
from .coordinates import GPS_PRECISION, validate_coords
from .models import ResolvedLocation, VisitEvent

# ── Configuration ─────────────────────────────────────────────────────────
TELEGRAM_BOT_TOKEN = os.getenv("TELEGRAM_BOT_TOKEN", "")
TELEGRAM_CHAT_ID = os.getenv("TELEGRAM_CHAT_ID", "")
NOTIFY_TIMEZONE = os.getenv("NOTIFY_TIMEZONE", "Asia/Ho_Chi_Minh")
TELEGRAM_API_URL: Final = "https://api.telegram.org/bot{token}/sendMessage"
SEND_TIMEOUT_S: Final = 10.0

MAX_FIELD_CHARS: Final = 200
UTC = tz.UTC
LOG = logging.getLogger("notify_service")

# ── Extra-info line prefixes ──────────────────────────────────────────────
LABELS: Final[dict[str, str]] = {
    "referrer": "📤 Referrer",
    "language": "🌐 Language",
    "time_zone": "🕒 Time zone",
    "estimated_region": "🌎 Estimated region",
    "estimated_country": "🏁 Estimated country",
    "local_time": "⏱️ Local time",
    "ip_coords": "📌 IP location",
    "ip_place": "🏙️ IP place",
    "ip_org": "🏢 Organisation",
    "coords": "📍 Coordinates",
    "accuracy": "🎯 Accuracy",
    "address": "🏡 Address",
    "detail": "📝 Detail",
    "geo_error": "⚠️ Geolocation error",
    "user_name": "👤 Name",
    "user_question": "❓ Question",
}

_NUM = r"(-?\d+(?:\.\d+)?)"


def _coords_url(m: re.Match[str]) -> str | None:
    coords = validate_coords(m.group(1), m.group(2))
    if coords is None:
        return None
    return f"https://www.google.com/maps?q={m.group(1)},{m.group(2)}"


def _search_url(m: re.Match[str]) -> str | None:
    query = m.group(1).strip()
    if not query:
        return None
    return f"https://www.google.com/maps/search/?api=1&query={quote(query)}"


def _line_re(label: str, tail: str) -> re.Pattern[str]:
    return re.compile(rf"^{re.escape(LABELS[label])}{tail}$", re.M)


MAP_LINK_PATTERNS: Final[tuple[tuple[re.Pattern[str], Callable[[re.Match[str]], str | None]], ...]] = (
    (_line_re("coords", rf" \(.*\): {_NUM}, {_NUM}"), _coords_url),
    (_line_re("ip_coords", rf" \(.*\): {_NUM}, {_NUM}"), _coords_url),
    (_line_re("ip_place", r": (.+)"), _search_url),
    (_line_re("address", r": (.+)"), _search_url),
    (_line_re("detail", r": (.+)"), _search_url),
    (_line_re("estimated_region", r": (.+)"), _search_url),
)


# ── Helpers ───────────────────────────────────────────────────────────────


def _is_configured() -> bool:
    """Check if both bot token and chat id are set."""
    return bool(TELEGRAM_BOT_TOKEN.strip() and TELEGRAM_CHAT_ID.strip())


def _one_line(value: Any) -> str:
    """Client text squashed to one trimmed line, so it cannot fake other lines."""
    if value is None:
        return ""
    text = " ".join(str(value).split())
    if len(text) > MAX_FIELD_CHARS:
        text = text[: MAX_FIELD_CHARS - 1] + "…"
    return text


def format_coord(value: float) -> str:
    """Fixed-point text for an already rounded coordinate (no ``1e-05``)."""
    text = f"{value:.6f}".rstrip("0")
    return text + "0" if text.endswith(".") else text


def format_time(moment: dt.datetime) -> str:
    """Render *moment* in ``NOTIFY_TIMEZONE`` (UTC when the zone is unknown)."""
    zone = tz.gettz(NOTIFY_TIMEZONE) or UTC
    try:
        local = moment.astimezone(zone)
    except (OverflowError, ValueError):
        # client timestamps near datetime.min/max cannot be shifted
        local = moment.astimezone(UTC)
    return local.strftime("%Y-%m-%d %H:%M:%S %Z").strip()


def _details_text(details: Any) -> str:
    if isinstance(details, dict):
        return ", ".join(_one_line(v) for v in details.values() if _one_line(v))
    return _one_line(details)


# ── Formatting ────────────────────────────────────────────────────────────


def build_extra_lines(event: VisitEvent) -> list[str]:
    """
    Optional facts about the visit, one labelled line each (raw text,
    escaped later by :func:`format_visit_message`).
    """
    info = event["client_info"]
    location = event["location"]
    lines: list[str] = []

    def add(label: str, value: Any) -> None:
        text = _one_line(value)
        if text:
            lines.append(f"{LABELS[label]}: {text}")

    add("referrer", event["referrer"])
    add("language", event["language"])
    add("time_zone", event["time_zone"])

    continent = _one_line(info.get("estimatedContinent"))
    est_city = _one_line(info.get("estimatedCity"))
    if continent and est_city:
        add("estimated_region", f"{continent}, {est_city}")
    add("estimated_country", info.get("estimatedCountry"))
    add("local_time", info.get("localTime"))

    # IP-estimate lines come before the device fix
    for cand in sorted(event["candidates"], key=lambda c: c["source"] != "client-ip-estimate"):
        if cand["source"] == "client-ip-estimate":
            label = _one_line(cand.get("label")) or "unknown source"
            lines.append(
                f"{LABELS['ip_coords']} ({label}): "
                f"{format_coord(cand['lat'])}, {format_coord(cand['lng'])}"
            )
            if cand.get("city") and cand.get("country"):
                add("ip_place", f"{cand['city']}, {cand['country']}")
            add("ip_org", cand.get("org"))
        elif cand["source"] == "client-gps":
            label = _one_line(cand.get("label")) or "unknown"
            lines.append(
                f"{LABELS['coords']} ({label}): "
                f"{format_coord(cand['lat'])}, {format_coord(cand['lng'])}"
            )
            if location.get("accuracy") is not None:
                add("accuracy", f"{location['accuracy']:.0f} m")

    add("address", location.get("address"))
    add("detail", _details_text(location.get("address_details")))

    error = _one_line(info.get("geolocationError"))
    if error:
        message = _one_line(info.get("geolocationErrorMessage"))
        add("geo_error", f"{error} - {message}" if message else error)

    add("user_name", info.get("userName"))
    add("user_question", info.get("userQuestion"))
    return lines


def find_map_link(extra_text: str) -> str | None:
    """First map URL produced by ``MAP_LINK_PATTERNS`` for *extra_text*."""
    if not extra_text:
        return None
    for pattern, build in MAP_LINK_PATTERNS:
        m = pattern.search(extra_text)
        if m:
            url = build(m)
            if url:
                return url
    return None


def _location_block(resolved: ResolvedLocation | None) -> list[str]:
    if not resolved:
        return []

    esc = html.escape
    lines: list[str] = []
    place = ", ".join(p for p in (resolved.get("city"), resolved.get("country")) if p)
    if place:
        lines.append(f"📍 <b>Location:</b> {esc(_one_line(place))}")
    if resolved.get("region"):
        lines.append(f"🌍 <b>Region:</b> {esc(_one_line(resolved['region']))}")
    if resolved.get("org"):
        lines.append(f"🌐 <b>ISP:</b> {esc(_one_line(resolved['org']))}")

    coords = validate_coords(resolved.get("lat"), resolved.get("lng"), GPS_PRECISION)
    if coords is not None:
        lat, lng = (format_coord(c) for c in coords)
        url = f"https://www.google.com/maps/search/?api=1&query={lat},{lng}"
        lines.append(f'🧭 <b>Coordinates:</b> {lat}, {lng} <a href="{esc(url)}">Open map</a>')

    lines.append(f"🛰️ <b>Source:</b> {resolved['source']} ({resolved['accuracy']} accuracy)")
    return lines


def format_visit_message(event: VisitEvent, resolved: ResolvedLocation | None) -> str:
    """Full HTML alert text for one visit."""
    esc = html.escape
    device = event["device"]
    parts = [
        "🚨 <b>New visitor on the site!</b>",
        "",
        f"📱 <b>IP:</b> {esc(_one_line(event['source_address']))}",
        f"⏰ <b>Time:</b> {esc(format_time(event['occurred_at']))}",
        f"🌐 <b>Path:</b> {esc(_one_line(event['path']) or '/')}",
        f"🖥️ <b>Device:</b> {esc(device['family'])} {esc(device['browser'])}".rstrip(),
    ]
    parts.extend(_location_block(resolved))

    extra = build_extra_lines(event)
    if extra:
        parts += ["", "<b>Extra info:</b>", *(esc(line) for line in extra)]

    link = find_map_link("\n".join(extra))
    if link:
        parts += ["", f'<a href="{esc(link)}">🗺️ Open in Google Maps</a>']

    return "\n".join(parts)


# ── Delivery ──────────────────────────────────────────────────────────────


async def send_message(
    text: str,
    chat_id: str | None = None,
    parse_mode: str = "HTML",
) -> bool:
    """
    Post *text* to Telegram.

    Returns:
        True on HTTP 200, False when unconfigured or on any failure.
    """
    if not _is_configured():
        return False

    url = TELEGRAM_API_URL.format(token=TELEGRAM_BOT_TOKEN.strip())
    payload = {
        "chat_id": chat_id or TELEGRAM_CHAT_ID.strip(),
        "text": text,
        "parse_mode": parse_mode,
        "disable_web_page_preview": True,
    }

    try:
        async with httpx.AsyncClient(timeout=SEND_TIMEOUT_S) as client:
            resp = await logged_request_async(
                client, "post", url, json=payload, raise_for_status=False
            )
    except Exception as exc:  # noqa: BLE001
        LOG.warning("[telegram] sendMessage failed: %s", type(exc).__name__)
        return False

    if resp.status_code != 200:
        LOG.warning("[telegram] sendMessage returned %d", resp.status_code)
        return False
    return True


async def notify_visit(event: VisitEvent, resolved: ResolvedLocation | None) -> bool:
    """Format and send the visit alert; never raises."""
    try:
        text = format_visit_message(event, resolved)
        sent = await send_message(text)
    except Exception as exc:  # noqa: BLE001
        LOG.warning("[notify] visit alert dropped: %s", exc)
        return False
    if sent:
        LOG.info("[notify] alert sent for %s", event["source_address"])
    return sent


async def announce_startup() -> bool:
    """Tell the channel the server is up (also proves the bot works)."""
    if not _is_configured():
        LOG.info("[telegram] bot not configured, visit alerts disabled")
        return False

    now = format_time(dt.datetime.now(UTC))
    ok = await send_message(f"✅ Server started\n🕒 Time: {html.escape(now)}")
    if ok:
        LOG.info("[telegram] connected")
    return ok
