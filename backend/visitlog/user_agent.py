"""
user_agent.py
~~~~~~~~~~~~~
Map a raw ``User-Agent`` header to a device family and a browser label.

Both lookups are ordered tables and the first hit wins. The browser order
(Chrome, Firefox, Safari, Edge, Opera) is fixed: Chromium based Edge and
Opera report as Chrome.
"""

from __future__ import annotations

import re
from typing import Final

UNKNOWN_DEVICE: Final = "unknown"

# (substring, family, OS-version pattern or None)
DEVICE_TABLE: Final[tuple[tuple[str, str, re.Pattern[str] | None], ...]] = (
    ("Android", "Android", re.compile(r"Android [0-9.]+")),
    ("iPhone", "iPhone", re.compile(r"iPhone OS [0-9_]+")),
    ("iPad", "iPad", re.compile(r"iPad.*OS [0-9_]+")),
    ("Windows", "Windows", re.compile(r"Windows NT [0-9.]+")),
    ("Mac", "Mac", re.compile(r"Mac OS X [0-9_]+")),
    ("Linux", "Linux", None),
)

BROWSER_TABLE: Final[tuple[tuple[str, re.Pattern[str]], ...]] = (
    ("Chrome", re.compile(r"Chrome/([0-9.]+)")),
    ("Firefox", re.compile(r"Firefox/([0-9.]+)")),
    ("Safari", re.compile(r"Safari/([0-9.]+)")),
    ("Edge", re.compile(r"Edg(?:e)?/([0-9.]+)")),
    ("Opera", re.compile(r"OPR/([0-9.]+)")),
)


def _device(user_agent: str) -> tuple[str, str]:
    for needle, family, version_re in DEVICE_TABLE:
        if needle in user_agent:
            if version_re is None:
                return family, ""
            m = version_re.search(user_agent)
            return family, m.group(0).replace("_", ".") if m else ""
    return UNKNOWN_DEVICE, ""


def _browser(user_agent: str) -> str:
    for name, pattern in BROWSER_TABLE:
        m = pattern.search(user_agent)
        if m:
            return f"{name} {m.group(1)}"
    return ""


def classify(user_agent: str | None) -> tuple[str, str]:
    """
    Return ``(device_family, browser_label)`` for *user_agent*.

    ``browser_label`` joins the OS version (when found) and the browser with
    its version, e.g. ``"Android 13 Chrome 115.0"``. Either part may be
    missing; an empty header yields ``("unknown", "")``.
    """
    if not user_agent:
        return UNKNOWN_DEVICE, ""
    family, os_version = _device(user_agent)
    browser = _browser(user_agent)
    label = " ".join(part for part in (os_version, browser) if part)
    return family, label
