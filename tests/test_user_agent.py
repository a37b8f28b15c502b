"""
tests/test_user_agent.py
~~~~~~~~~~~~~~~~~~~~~~~~
Device family + browser label extraction, including the fixed table order.
"""

from __future__ import annotations

import pytest

from visitlog.user_agent import BROWSER_TABLE, DEVICE_TABLE, classify

ANDROID_CHROME = (
    "Mozilla/5.0 (Linux; Android 13; Pixel 7) AppleWebKit/537.36 "
    "(KHTML, like Gecko) Chrome/115.0.5790.166 Mobile Safari/537.36"
)
IPHONE_SAFARI = (
    "Mozilla/5.0 (iPhone; CPU iPhone OS 16_5 like Mac OS X) AppleWebKit/605.1.15 "
    "(KHTML, like Gecko) Version/16.5 Mobile/15E148 Safari/604.1"
)
IPAD_SAFARI = (
    "Mozilla/5.0 (iPad; CPU OS 15_7 like Mac OS X) AppleWebKit/605.1.15 "
    "(KHTML, like Gecko) Version/15.6 Mobile/15E148 Safari/604.1"
)
WINDOWS_FIREFOX = (
    "Mozilla/5.0 (Windows NT 10.0; Win64; x64; rv:109.0) Gecko/20100101 Firefox/117.0"
)
WINDOWS_EDGE = (
    "Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36 "
    "(KHTML, like Gecko) Chrome/116.0.0.0 Safari/537.36 Edg/116.0.1938.69"
)
MAC_SAFARI = (
    "Mozilla/5.0 (Macintosh; Intel Mac OS X 10_15_7) AppleWebKit/605.1.15 "
    "(KHTML, like Gecko) Version/16.6 Safari/605.1.15"
)
LINUX_FIREFOX = "Mozilla/5.0 (X11; Linux x86_64; rv:109.0) Gecko/20100101 Firefox/118.0"


def test_android_chrome():
    device, browser = classify(ANDROID_CHROME)
    assert device == "Android"
    assert "Android 13" in browser
    assert "Chrome 115" in browser


def test_short_chrome_version():
    device, browser = classify("Mozilla/5.0 (Linux; Android 13) Chrome/115")
    assert device == "Android"
    assert browser == "Android 13 Chrome 115"


def test_iphone_version_uses_dots():
    device, browser = classify(IPHONE_SAFARI)
    assert device == "iPhone"
    assert browser.startswith("iPhone OS 16.5")
    assert browser.endswith("Safari 604.1")


def test_ipad():
    device, browser = classify(IPAD_SAFARI)
    assert device == "iPad"
    assert "OS 15.7" in browser


def test_windows_firefox():
    assert classify(WINDOWS_FIREFOX) == ("Windows", "Windows NT 10.0 Firefox 117.0")


def test_mac_safari():
    device, browser = classify(MAC_SAFARI)
    assert device == "Mac"
    assert browser == "Mac OS X 10.15.7 Safari 605.1.15"


def test_linux_has_no_os_version():
    assert classify(LINUX_FIREFOX) == ("Linux", "Firefox 118.0")


def test_chromium_edge_reports_as_chrome():
    """Chrome is checked before Edge, so Chromium Edge shows up as Chrome."""
    _, browser = classify(WINDOWS_EDGE)
    assert "Chrome 116.0.0.0" in browser
    assert "Edge" not in browser


def test_legacy_edge_without_chrome_token():
    _, browser = classify("Mozilla/5.0 (Windows NT 10.0) Edge/18.19041")
    assert browser == "Windows NT 10.0 Edge 18.19041"


def test_opera_without_chrome_or_safari_token():
    _, browser = classify("Opera/9.80 (Linux) OPR/76.0.4017.123")
    assert browser == "Opera 76.0.4017.123"


@pytest.mark.parametrize("ua", ["", None])
def test_empty_user_agent(ua):
    assert classify(ua) == ("unknown", "")


def test_unrecognised_user_agent():
    assert classify("curl/8.1.2") == ("unknown", "")


def test_table_order_is_fixed():
    assert [name for name, _ in BROWSER_TABLE] == [
        "Chrome",
        "Firefox",
        "Safari",
        "Edge",
        "Opera",
    ]
    assert [family for _, family, _ in DEVICE_TABLE] == [
        "Android",
        "iPhone",
        "iPad",
        "Windows",
        "Mac",
        "Linux",
    ]
