"""
api_logging.py
~~~~~~~~~~~~~~
Tiny wrapper that prints **one concise log line** per outbound HTTP request
(geolocation lookups, Telegram calls) and optionally raises on 5xx.

Bot tokens embedded in Telegram URLs are masked before they reach the log.

Usage example
-------------
>>> from .api_logging import logged_request_async
>>> async with httpx.AsyncClient() as cli:
...     resp = await logged_request_async(cli, "get", "https://ipapi.co/8.8.8.8/json/",
...                                       raise_for_status=False)
"""

from __future__ import annotations

import logging
import re
import time
from typing import Any

LOG = logging.getLogger("extapi")

_BOT_TOKEN_RE = re.compile(r"/bot[^/]+/")


def redact(url: str) -> str:
    """Mask the ``/bot<token>/`` path segment of Telegram API URLs."""
    return _BOT_TOKEN_RE.sub("/bot***/", url)


async def logged_request_async(
    client: Any,
    method: str,
    url: str,
    *args: Any,
    raise_for_status: bool = True,
    **kwargs: Any,
):
    """
    Issue one HTTP request on an ``httpx.AsyncClient`` **and** log it.

    Parameters
    ----------
    client:
        ``httpx.AsyncClient`` instance.
    method:
        HTTP verb – e.g. ``"get"``, ``"post"`` – lower-case.
    url:
        Absolute URL.
    raise_for_status:
        *True* ⇒ propagate 5xx via :pymeth:`httpx.Response.raise_for_status`.
        *False* ⇒ never raise; the caller decides.

    Returns
    -------
    httpx.Response
        Raw response so the caller can inspect status / JSON / headers.

    Notes
    -----
    * **404** responses are logged at *INFO*; ipapi answers 404 for
      reserved ranges.
    * **≥500** responses are logged at *WARNING*.
    """
    verb = method.upper()
    shown = redact(url)
    t0 = time.perf_counter()
    try:
        response = await getattr(client, method)(url, *args, **kwargs)
    except Exception as exc:  # network error before we get a response
        latency_ms = (time.perf_counter() - t0) * 1000.0
        LOG.warning("FAIL %s %s %.0f ms %s", verb, shown, latency_ms, type(exc).__name__)
        raise

    latency_ms = (time.perf_counter() - t0) * 1000.0
    code = response.status_code

    if code >= 500:
        LOG.warning("%s %s → %s (%.0f ms)", verb, shown, code, latency_ms)
    else:
        LOG.info("%s %s → %s (%.0f ms)", verb, shown, code, latency_ms)

    if raise_for_status and code >= 500:
        response.raise_for_status()

    return response


__all__ = ["logged_request_async", "redact"]
