"""visit_service.py
~~~~~~~~~~~~~~~~~~~
The ``/log-ip`` pipeline.

Request path (in-memory only, no awaits)::

    address → request id → dedup gate → ingestion cooldown (60 s)
            → build event → notification cooldown (30 s) → sweeps
            → schedule complete_visit()

Background (``complete_visit``)::

    location cascade → store record     (fire-and-forget)
                     → Telegram alert   (fire-and-forget, if allowed)

The caller always answers 204; nothing here reports back to it.
"""

from __future__ import annotations

import asyncio
import logging
import time
from typing import Any, Final, Mapping

from . import notify_service, visit_log_service
from .background import fire_and_forget
from .cooldown_cache import CooldownCache
from .dedup_gate import MAX_IDS, DedupGate
from .enrichment import build_event, extract_source_address, request_id_for, to_record
from .location_service import resolve
from .models import ResolvedLocation, VisitEvent

LOG = logging.getLogger("visit_service")

INGEST_WINDOW_S: Final = 60
INGEST_HORIZON_S: Final = 6 * 3600
NOTIFY_WINDOW_S: Final = 30
NOTIFY_HORIZON_S: Final = 3600

# ── Process-wide gates ────────────────────────────────────────────────────
dedup_gate = DedupGate(MAX_IDS)
ingest_limiter = CooldownCache(INGEST_WINDOW_S, INGEST_HORIZON_S, name="ingest")
notify_limiter = CooldownCache(NOTIFY_WINDOW_S, NOTIFY_HORIZON_S, name="notify")


def _clock() -> float:
    """Seconds on a monotonic clock (cooldowns must not follow wall-clock jumps)."""
    return time.monotonic()


def ingest(
    payload: Mapping[str, Any],
    headers: Mapping[str, str],
    client_host: str | None,
) -> VisitEvent | None:
    """
    Gate and enrich one submission, then hand the slow part to the loop.

    Args:
        payload:      Parsed JSON body (already coerced to a dict).
        headers:      Request headers (case-insensitive mapping).
        client_host:  Socket peer address, if known.

    Returns:
        The accepted event, or *None* when it was a duplicate or rate-limited.
    """
    address = extract_source_address(headers, client_host)
    request_id = request_id_for(payload, address)

    if not dedup_gate.admit(request_id):
        LOG.info("[dedup] already processed %s", request_id)
        return None

    now = _clock()
    if not ingest_limiter.allow(address, now):
        LOG.info("[ingest] skipping %s (logged recently)", address)
        return None

    event = build_event(payload, headers, address, request_id)
    notify = notify_limiter.allow(address, now)

    ingest_limiter.sweep(now)
    notify_limiter.sweep(now)

    fire_and_forget(complete_visit(event, notify=notify), name=f"visit:{request_id}")
    return event


async def complete_visit(event: VisitEvent, notify: bool) -> ResolvedLocation | None:
    """
    Resolve the location, then store and (optionally) alert in parallel.

    Returns the resolved location so tests can inspect the cascade outcome.
    """
    try:
        resolved = await resolve(event["source_address"], event["candidates"])
    except Exception as exc:  # noqa: BLE001
        LOG.warning("[resolve] failed for %s: %s", event["source_address"], exc)
        resolved = None

    fire_and_forget(_persist(to_record(event, resolved)), name="visit:persist")
    if notify:
        fire_and_forget(notify_service.notify_visit(event, resolved), name="visit:notify")
    else:
        LOG.info("[notify] skipping alert for %s (alerted recently)", event["source_address"])
    return resolved


async def _persist(record: dict[str, Any]) -> None:
    try:
        await asyncio.to_thread(visit_log_service.insert, record)
    except Exception as exc:  # noqa: BLE001
        LOG.warning("[persist] dropped record %s: %s", record.get("id"), exc)
