# drivermon/backend/paths.py
"""
Realtime database layout shared with the device firmware and the admin console.
"""
from __future__ import annotations

DEVICES = "devices"
DRIVERS = "drivers"


def device_path(mac: str) -> str:
    return f"{DEVICES}/{mac}"


def device_status_path(mac: str) -> str:
    return f"{DEVICES}/{mac}/status"


def device_control_path(mac: str) -> str:
    return f"deviceControl/{mac}"


def primary_sessions_path(driver_id: str) -> str:
    return f"sessions/{driver_id}"


def legacy_sessions_path(driver_id: str) -> str:
    return f"driverData/{driver_id}/sessions"


def driver_path(driver_id: str) -> str:
    return f"{DRIVERS}/{driver_id}"


def user_path(uid: str) -> str:
    return f"users/{uid}"


def username_path(username: str) -> str:
    return f"usernames/{username}"
