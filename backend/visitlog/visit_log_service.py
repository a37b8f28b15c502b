"""visit_log_service.py
~~~~~~~~~~~~~~~~~~~~~~~
Rolling JSON store for visit records.

Keeps the newest ``VISIT_LOG_MAX_RECORDS`` records in one JSON file. Writes
are read-modify-write under a process lock; callers on the event loop go
through ``asyncio.to_thread``.

Configuration:
    VISIT_DATA_DIR:         Storage directory (default: /data, falls back to
                            backend/local_data when not writable)
    VISIT_LOG_MAX_RECORDS:  Records kept on disk (default: 5000)

Storage:
    - Production: /data/visit_log.json (mounted volume)
    - Development: local_data/visit_log.json
"""

from __future__ import annotations

import datetime as dt
import json
import logging
import os
import threading
import uuid
from pathlib import Path
from typing import Any, Final

UTC: Final = dt.timezone.utc
LOG = logging.getLogger("visit_log_service")

# ── Configuration ─────────────────────────────────────────────────────────
VISIT_LOG_MAX_RECORDS = int(os.getenv("VISIT_LOG_MAX_RECORDS", "5000"))


# ── Persistence Directory ─────────────────────────────────────────────────
def _determine_persist_dir() -> Path:
    base = Path(os.getenv("VISIT_DATA_DIR", "/data")).expanduser()
    if not base.is_absolute():
        base = (Path(__file__).resolve().parent.parent / base).resolve()
    try:
        base.mkdir(parents=True, exist_ok=True)
        return base
    except (PermissionError, OSError):
        fallback = (Path(__file__).resolve().parent.parent / "local_data").resolve()
        fallback.mkdir(parents=True, exist_ok=True)
        logging.warning("Using %s instead of %s", fallback, base)
        return fallback


DIR = _determine_persist_dir()
FILE = DIR / "visit_log.json"

_lock = threading.Lock()


# ── Record Storage ────────────────────────────────────────────────────────


def _quarantine(reason: object) -> None:
    """Move an unreadable FILE aside so the next save cannot overwrite it."""
    stamp = dt.datetime.now(UTC).strftime("%Y%m%dT%H%M%S%f")
    target = FILE.with_name(f"{FILE.name}.corrupt-{stamp}")
    FILE.replace(target)  # OSError propagates: never write over a file we could not move
    LOG.warning("[visit_log] Unreadable store (%s), moved to %s", reason, target.name)


def _load_records() -> list[dict[str, Any]]:
    """Load stored records; an unreadable file is set aside and counts as empty."""
    if not FILE.exists():
        return []

    try:
        data = json.loads(FILE.read_text())
        records = data["records"]
        if not isinstance(records, list):
            raise TypeError(f"records is {type(records).__name__}")
        return records
    except Exception as exc:  # noqa: BLE001 – corrupted file?
        _quarantine(exc)
        return []


def _save_records(records: list[dict[str, Any]]) -> None:
    """Replace FILE with *records* via a temp file (errors propagate to the caller)."""
    data = {
        "records": records,
        "max_records": VISIT_LOG_MAX_RECORDS,
        "updated_at": dt.datetime.now(UTC).isoformat(),
    }
    tmp = FILE.with_name(FILE.name + ".tmp")
    tmp.write_text(json.dumps(data, default=str))
    tmp.replace(FILE)


def _sort_key(record: dict[str, Any]) -> dt.datetime:
    try:
        ts = dt.datetime.fromisoformat(record.get("occurred_at", ""))
    except (TypeError, ValueError):
        return dt.datetime.min.replace(tzinfo=UTC)
    return ts if ts.tzinfo else ts.replace(tzinfo=UTC)


def insert(record: dict[str, Any]) -> str:
    """
    Append *record* and trim the file to the newest records.

    Args:
        record: Output of :func:`enrichment.to_record`. An ``id`` is assigned
                when missing.

    Returns:
        The record id.
    """
    record_id = record.setdefault("id", uuid.uuid4().hex)
    with _lock:
        records = _load_records()
        records.append(record)
        if len(records) > VISIT_LOG_MAX_RECORDS:
            records.sort(key=_sort_key)
            dropped = len(records) - VISIT_LOG_MAX_RECORDS
            records = records[dropped:]
            LOG.info("[visit_log] Trimmed %d old records", dropped)
        _save_records(records)

    LOG.debug("[visit_log] Stored %s (total: %d)", record_id, len(records))
    return record_id


def query_recent(limit: int = 100) -> list[dict[str, Any]]:
    """
    Return up to *limit* records, newest ``occurred_at`` first.
    """
    with _lock:
        records = _load_records()
    records.sort(key=_sort_key, reverse=True)
    return records[:limit]


def count() -> int:
    with _lock:
        return len(_load_records())
