"""Unit tests for user-agent parsing and client IP extraction."""

from __future__ import annotations

import pytest
from starlette.requests import Request

from app.core.devices import DeviceInfo, extract_client_ip, parse_user_agent

CHROME_WINDOWS = (
    "Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36 "
    "(KHTML, like Gecko) Chrome/120.0.0.0 Safari/537.36"
)
EDGE_WINDOWS = CHROME_WINDOWS + " Edg/120.0.0.0"
SAFARI_IPHONE = (
    "Mozilla/5.0 (iPhone; CPU iPhone OS 17_0 like Mac OS X) AppleWebKit/605.1.15 "
    "(KHTML, like Gecko) Version/17.0 Mobile/15E148 Safari/604.1"
)
FIREFOX_LINUX = "Mozilla/5.0 (X11; Linux x86_64; rv:121.0) Gecko/20100101 Firefox/121.0"
CHROME_ANDROID = (
    "Mozilla/5.0 (Linux; Android 14; Pixel 8) AppleWebKit/537.36 "
    "(KHTML, like Gecko) Chrome/120.0.0.0 Mobile Safari/537.36"
)


def _request(headers: dict[str, str], client: tuple[str, int] | None = ("10.0.0.9", 1234)) -> Request:
    scope = {
        "type": "http",
        "method": "GET",
        "path": "/",
        "headers": [(key.lower().encode(), value.encode()) for key, value in headers.items()],
        "client": client,
    }
    return Request(scope)


@pytest.mark.parametrize(
    ("user_agent", "expected"),
    [
        (CHROME_WINDOWS, DeviceInfo("Windows Chrome", "Desktop", "Chrome", "Windows")),
        (EDGE_WINDOWS, DeviceInfo("Windows Edge", "Desktop", "Edge", "Windows")),
        (SAFARI_IPHONE, DeviceInfo("iPhone", "Mobile", "Safari", "iOS")),
        (FIREFOX_LINUX, DeviceInfo("Linux Firefox", "Desktop", "Firefox", "Linux")),
        (CHROME_ANDROID, DeviceInfo("Pixel 8", "Mobile", "Chrome", "Android")),
    ],
)
def test_parse_user_agent_detects_common_clients(user_agent: str, expected: DeviceInfo) -> None:
    assert parse_user_agent(user_agent) == expected


@pytest.mark.parametrize("user_agent", [None, "", "   "])
def test_parse_user_agent_defaults_to_unknown(user_agent: str | None) -> None:
    """Missing user agents never raise and yield the Unknown defaults."""
    info = parse_user_agent(user_agent)
    assert info == DeviceInfo()
    assert info.device_name == "Unknown device"


def test_unrecognized_user_agent_is_unknown_device() -> None:
    assert parse_user_agent("curl/8.4.0").device_name == "Unknown device"


def test_extract_client_ip_prefers_first_forwarded_hop() -> None:
    request = _request({"x-forwarded-for": "203.0.113.7, 10.0.0.1", "x-real-ip": "198.51.100.2"})
    assert extract_client_ip(request) == "203.0.113.7"


def test_extract_client_ip_falls_back_to_proxy_headers_then_peer() -> None:
    assert extract_client_ip(_request({"x-real-ip": "198.51.100.2"})) == "198.51.100.2"
    assert extract_client_ip(_request({})) == "10.0.0.9"
    assert extract_client_ip(_request({}, client=None)) == "unknown"
