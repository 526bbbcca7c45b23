# drivermon/app/admin.py
"""
Admin-side operations on the device registry, the driver directory and
reading commands.

Account creation and sign-in belong to the identity service; the functions
here only write the records the rest of the app reads.
"""
from __future__ import annotations

import logging
from typing import Dict, Iterable, List, Optional

from drivermon.backend.paths import (
    DEVICES,
    DRIVERS,
    device_control_path,
    device_path,
    driver_path,
    legacy_sessions_path,
    primary_sessions_path,
    user_path,
    username_path,
)
from drivermon.core.constants import DEVICE_TYPE_ASSIGNED, DEVICE_TYPE_TEST, REQUESTED_BY_ADMIN
from drivermon.core.errors import BackendReadError, BackendWriteError, CommandWriteError, UnknownDeviceError
from drivermon.interfaces.backend import Backend
from drivermon.runtime.reconciler import merge_sessions
from drivermon.runtime.state import (
    DeviceRecord,
    DriverProfile,
    ReadingCommand,
    SessionRecord,
    parse_registry,
    parse_sessions,
)

_log = logging.getLogger(__name__)


def list_devices(backend: Backend) -> Dict[str, DeviceRecord]:
    return parse_registry(backend.read_once(DEVICES))


def list_drivers(backend: Backend) -> List[DriverProfile]:
    data = backend.read_once(DRIVERS)
    if not isinstance(data, dict):
        return []
    return [DriverProfile.from_value(str(uid), v) for uid, v in data.items()]


def list_active_drivers(backend: Backend) -> List[DriverProfile]:
    return [d for d in list_drivers(backend) if d.active]


def _require_device(backend: Backend, mac: str) -> None:
    if backend.read_once(device_path(mac)) is None:
        raise UnknownDeviceError(
            f"Device '{mac}' is not registered.",
            hint="Devices appear in the registry once they have reported at least once.",
            details={"device_id": mac},
        )


def assign_device(backend: Backend, mac: str, driver_id: str) -> None:
    """Bind a device exclusively to one driver."""
    _require_device(backend, mac)
    backend.patch_update(device_path(mac), {"type": DEVICE_TYPE_ASSIGNED, "assignedDriver": driver_id})
    _log.info("DEVICE_ASSIGNED device=%s driver=%s", mac, driver_id)


def set_test_device(backend: Backend, mac: str) -> None:
    """Make a device the shared test device (usable by any driver)."""
    _require_device(backend, mac)
    backend.patch_update(device_path(mac), {"type": DEVICE_TYPE_TEST, "assignedDriver": None})

    others = [m for m, rec in list_devices(backend).items() if rec.is_test and m != mac]
    if others:
        # resolution falls back to the first test device found
        _log.warning("MULTIPLE_TEST_DEVICES devices=%s", [mac] + others)
    _log.info("DEVICE_SET_TEST device=%s", mac)


def admin_start_reading(backend: Backend, mac: str, driver_id: str, now_ms: int) -> ReadingCommand:
    """Send a start command on behalf of a driver, without countdown."""
    _require_device(backend, mac)
    cmd = ReadingCommand(
        start_reading=True,
        target_driver_id=driver_id,
        requested_by=REQUESTED_BY_ADMIN,
        timestamp_ms=int(now_ms),
    )
    try:
        backend.write(device_control_path(mac), cmd.to_payload())
    except BackendWriteError as e:
        raise CommandWriteError(
            f"Could not send START_READING to device {mac}.",
            hint="Resending a command is safe.",
            details={"device_id": mac, "cause": e.message},
        ) from e
    _log.info("ADMIN_START_READING device=%s driver=%s", mac, driver_id)
    return cmd


def register_driver(backend: Backend, uid: str, *, username: Optional[str], email: str) -> DriverProfile:
    """Write the user, driver and username records for an account created by the identity service."""
    backend.write(user_path(uid), {"role": "driver", "active": True})
    backend.write(driver_path(uid), {"username": username, "email": email, "active": True})
    if username:
        backend.write(username_path(username), uid)
    _log.info("DRIVER_REGISTERED driver=%s username=%s", uid, username)
    return DriverProfile(driver_id=uid, username=username, email=email, active=True)


def disable_driver(backend: Backend, uid: str) -> None:
    backend.patch_update(driver_path(uid), {"active": False})
    backend.patch_update(user_path(uid), {"active": False})
    _log.info("DRIVER_DISABLED driver=%s", uid)


def read_sessions_once(backend: Backend, driver_id: str) -> Dict[str, SessionRecord]:
    """Single-shot reconciled sessions for one driver."""
    try:
        primary = parse_sessions(backend.read_once(primary_sessions_path(driver_id)))
    except BackendReadError as e:
        _log.warning("SESSION_SOURCE_UNREADABLE driver=%s source=primary err=%s", driver_id, e)
        primary = {}
    try:
        legacy = parse_sessions(backend.read_once(legacy_sessions_path(driver_id)))
    except BackendReadError as e:
        _log.warning("SESSION_SOURCE_UNREADABLE driver=%s source=legacy err=%s", driver_id, e)
        legacy = {}
    return merge_sessions(primary, legacy)


def read_all_sessions(backend: Backend, driver_ids: Iterable[str]) -> Dict[str, Dict[str, SessionRecord]]:
    """Bulk read for exports: driver id -> reconciled sessions."""
    return {uid: read_sessions_once(backend, uid) for uid in driver_ids}
