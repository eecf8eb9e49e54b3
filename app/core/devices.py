"""Best-effort device fingerprinting from request metadata."""

from __future__ import annotations

import re
from dataclasses import dataclass

from fastapi import Request

UNKNOWN = "Unknown"
UNKNOWN_DEVICE = "Unknown device"
_ANDROID_MODEL_PATTERN = re.compile(r"Android [0-9.]+; ([^;)]+)")
_IP_HEADERS = ("x-real-ip", "cf-connecting-ip", "true-client-ip", "x-client-ip")


@dataclass(frozen=True)
class DeviceInfo:
    """Device metadata derived from a User-Agent header."""

    device_name: str = UNKNOWN_DEVICE
    device_type: str = UNKNOWN
    browser: str = UNKNOWN
    os: str = UNKNOWN


def _detect_os(user_agent: str) -> tuple[str, str]:
    """Return (os, device_type) for a User-Agent string."""
    if "Windows" in user_agent:
        return "Windows", "Desktop"
    if "iPad" in user_agent:
        return "iOS", "Tablet"
    if "iPhone" in user_agent or "iPod" in user_agent:
        return "iOS", "Mobile"
    if "Mac OS" in user_agent:
        return "macOS", "Desktop"
    if "Android" in user_agent:
        return "Android", "Mobile"
    if "Linux" in user_agent:
        return "Linux", "Desktop"
    return UNKNOWN, UNKNOWN


def _detect_browser(user_agent: str) -> str:
    """Return the browser family for a User-Agent string."""
    if "Firefox/" in user_agent:
        return "Firefox"
    if "Edg/" in user_agent or "Edge/" in user_agent:
        return "Edge"
    if "OPR/" in user_agent or "Opera/" in user_agent:
        return "Opera"
    if "Chrome/" in user_agent:
        return "Chrome"
    if "Safari/" in user_agent:
        return "Safari"
    if "MSIE" in user_agent or "Trident/" in user_agent:
        return "Internet Explorer"
    return UNKNOWN


def _device_name(user_agent: str, os_name: str, device_type: str, browser: str) -> str:
    """Build a human-readable device label."""
    if device_type in {"Mobile", "Tablet"}:
        if "iPhone" in user_agent:
            return "iPhone"
        if "iPad" in user_agent:
            return "iPad"
        match = _ANDROID_MODEL_PATTERN.search(user_agent)
        if match:
            return match.group(1).strip()
        return "Mobile device"
    if os_name == UNKNOWN and browser == UNKNOWN:
        return UNKNOWN_DEVICE
    return f"{os_name} {browser}"


def parse_user_agent(user_agent: str | None) -> DeviceInfo:
    """Derive device name, type, browser, and OS, defaulting to Unknown."""
    if not user_agent or not user_agent.strip():
        return DeviceInfo()
    os_name, device_type = _detect_os(user_agent)
    browser = _detect_browser(user_agent)
    return DeviceInfo(
        device_name=_device_name(user_agent, os_name, device_type, browser),
        device_type=device_type,
        browser=browser,
        os=os_name,
    )


def extract_client_ip(request: Request) -> str:
    """Extract client IP from forwarding headers or the peer address."""
    forwarded_for = request.headers.get("x-forwarded-for", "").strip()
    if forwarded_for:
        first_hop = forwarded_for.split(",")[0].strip()
        if first_hop:
            return first_hop
    for header in _IP_HEADERS:
        value = request.headers.get(header, "").strip()
        if value:
            return value
    client = request.client
    return client.host if client else "unknown"
