from __future__ import annotations

import logging

import pytest

from drivermon.app import admin
from drivermon.backend.memory import MemoryBackend
from drivermon.core.errors import CommandWriteError, UnknownDeviceError

NOW = 1_760_000_000_000


def _db():
    return MemoryBackend({
        "devices": {
            "M1": {"type": "assigned", "assignedDriver": "d1"},
            "M2": {"type": "test"},
            "M3": {"type": "assigned", "assignedDriver": "d3"},
        },
        "drivers": {
            "d1": {"username": "alice", "email": "a@x.io", "active": True},
            "d2": {"username": "bob", "email": "b@x.io", "active": False},
            "d3": {"email": "c@x.io"},
        },
        "sessions": {"d1": {"s1": {"timestamp": 5}}},
        "driverData": {"d1": {"sessions": {"s1": {"timestamp": 1}, "s0": {"timestamp": 0}}}},
    })


def test_list_devices_keeps_registry_order():
    devices = admin.list_devices(_db())
    assert list(devices) == ["M1", "M2", "M3"]
    assert devices["M1"].assigned_driver_id == "d1"
    assert devices["M2"].is_test


def test_list_drivers_and_active_filter():
    b = _db()
    assert [d.driver_id for d in admin.list_drivers(b)] == ["d1", "d2", "d3"]
    active = admin.list_active_drivers(b)
    assert [d.driver_id for d in active] == ["d1", "d3"]
    assert active[1].display_name == "c@x.io"


def test_list_drivers_empty_directory():
    assert admin.list_drivers(MemoryBackend()) == []


def test_assign_device():
    b = _db()
    admin.assign_device(b, "M2", "d2")
    assert b.read_once("devices/M2") == {"type": "assigned", "assignedDriver": "d2"}


def test_assign_unknown_device():
    with pytest.raises(UnknownDeviceError) as ei:
        admin.assign_device(_db(), "NOPE", "d1")
    assert ei.value.details == {"device_id": "NOPE"}


def test_set_test_device_clears_assignment_and_warns_on_duplicates(caplog):
    b = _db()
    with caplog.at_level(logging.WARNING):
        admin.set_test_device(b, "M3")
    assert b.read_once("devices/M3") == {"type": "test"}
    assert "MULTIPLE_TEST_DEVICES" in caplog.text


def test_set_test_device_single(caplog):
    b = _db()
    admin.assign_device(b, "M2", "d2")
    with caplog.at_level(logging.WARNING):
        admin.set_test_device(b, "M3")
    assert "MULTIPLE_TEST_DEVICES" not in caplog.text


def test_admin_start_reading_writes_admin_command():
    b = _db()
    cmd = admin.admin_start_reading(b, "M1", "d1", NOW)
    assert cmd.requested_by == "admin"
    assert b.read_once("deviceControl/M1") == {
        "startReading": True,
        "targetDriver": "d1",
        "requestedBy": "admin",
        "timestamp": NOW,
    }


def test_admin_start_reading_write_failure():
    b = _db()
    b.fail_writes = True
    with pytest.raises(CommandWriteError):
        admin.admin_start_reading(b, "M1", "d1", NOW)


def test_register_and_disable_driver():
    b = MemoryBackend()
    profile = admin.register_driver(b, "u9", username="zoe", email="z@x.io")
    assert profile.display_name == "zoe"
    assert b.read_once("usernames/zoe") == "u9"
    assert b.read_once("users/u9") == {"role": "driver", "active": True}
    assert [d.driver_id for d in admin.list_active_drivers(b)] == ["u9"]

    admin.disable_driver(b, "u9")
    assert admin.list_active_drivers(b) == []
    assert b.read_once("users/u9/active") is False


def test_register_driver_without_username():
    b = MemoryBackend()
    admin.register_driver(b, "u9", username=None, email="z@x.io")
    assert b.read_once("usernames") is None
    assert b.read_once("drivers/u9") == {"email": "z@x.io", "active": True}


def test_read_sessions_once_merges_sources():
    sessions = admin.read_sessions_once(_db(), "d1")
    assert sessions["s1"].timestamp_ms == 5
    assert sessions["s0"].timestamp_ms == 0


def test_read_sessions_once_with_unreadable_legacy():
    b = _db()
    b.deny_read("driverData")
    assert set(admin.read_sessions_once(b, "d1")) == {"s1"}


def test_read_all_sessions():
    out = admin.read_all_sessions(_db(), ["d1", "d2"])
    assert set(out["d1"]) == {"s0", "s1"}
    assert out["d2"] == {}
