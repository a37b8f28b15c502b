"""
tests/conftest.py
~~~~~~~~~~~~~~~~~
Global pytest fixtures.

`isolate_visit_state` gives every test a clean slate:

* ``visit_log_service`` writes its JSON file into a per-test temporary
  directory, so nothing is left behind under ``backend/local_data/``;
* the dedup gate and both cooldown caches are fresh instances;
* Telegram is unconfigured and the offline GeoIP database is absent unless
  a test opts in;
* the background-task registry is emptied (each test gets its own loop).
"""

from __future__ import annotations

from pathlib import Path

import pytest


@pytest.fixture(autouse=True)
def isolate_visit_state(tmp_path: Path, monkeypatch: pytest.MonkeyPatch):
    """
    Redirect storage to *tmp_path* and reset all process-wide state.

    ``visit_log_service`` computes ``DIR``/``FILE`` at *import time*, so we
    patch the module attributes after import and before each test runs.
    """
    from visitlog import background, geoip_service, notify_service
    from visitlog import visit_log_service as vls
    from visitlog import visit_service as vs
    from visitlog.cooldown_cache import CooldownCache
    from visitlog.dedup_gate import DedupGate

    store_dir = tmp_path / "visit_data"
    store_dir.mkdir(parents=True, exist_ok=True)
    monkeypatch.setenv("VISIT_DATA_DIR", str(store_dir))
    monkeypatch.setattr(vls, "DIR", store_dir)
    monkeypatch.setattr(vls, "FILE", store_dir / "visit_log.json")

    monkeypatch.setattr(vs, "dedup_gate", DedupGate())
    monkeypatch.setattr(
        vs, "ingest_limiter", CooldownCache(vs.INGEST_WINDOW_S, vs.INGEST_HORIZON_S, "ingest")
    )
    monkeypatch.setattr(
        vs, "notify_limiter", CooldownCache(vs.NOTIFY_WINDOW_S, vs.NOTIFY_HORIZON_S, "notify")
    )

    monkeypatch.setattr(notify_service, "TELEGRAM_BOT_TOKEN", "")
    monkeypatch.setattr(notify_service, "TELEGRAM_CHAT_ID", "")

    monkeypatch.setattr(geoip_service, "_reader", None)
    monkeypatch.setattr(geoip_service, "_reader_unavailable", True)

    background.reset()
    yield
    background.reset()
