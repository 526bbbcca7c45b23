from __future__ import annotations

from drivermon.backend.memory import MemoryBackend
from drivermon.runtime.device_resolver import DeviceResolver, resolve_device
from drivermon.runtime.state import NO_DEVICE, ResolutionReason, parse_registry


def _registry(data):
    return parse_registry(data)


def test_assigned_device_wins_over_earlier_test_device():
    reg = _registry({
        "TEST": {"type": "test"},
        "MINE": {"type": "assigned", "assignedDriver": "d1"},
    })
    res = resolve_device(reg, "d1")
    assert res.device_id == "MINE"
    assert res.reason is ResolutionReason.ASSIGNED


def test_test_device_is_fallback():
    reg = _registry({
        "OTHER": {"type": "assigned", "assignedDriver": "d2"},
        "TEST": {"type": "test"},
    })
    res = resolve_device(reg, "d1")
    assert res.device_id == "TEST"
    assert res.reason is ResolutionReason.TEST_FALLBACK


def test_any_device_is_degraded_fallback():
    reg = _registry({
        "X": {"type": "assigned", "assignedDriver": "d2"},
        "Y": {"type": "assigned", "assignedDriver": "d3"},
    })
    res = resolve_device(reg, "d1")
    assert res.device_id == "X"
    assert res.reason is ResolutionReason.ARBITRARY_FALLBACK


def test_empty_registry_resolves_to_nothing():
    assert resolve_device({}, "d1") == NO_DEVICE
    assert not NO_DEVICE.resolved


def test_assignment_to_someone_else_does_not_count():
    reg = _registry({"A": {"type": "test", "assignedDriver": "d1"}})
    res = resolve_device(reg, "d1")
    # a test device carrying a stale assignedDriver is still only a test device
    assert res.reason is ResolutionReason.TEST_FALLBACK


def test_resolver_follows_live_reassignment():
    backend = MemoryBackend({"devices": {"TEST": {"type": "test"}}})
    resolver = DeviceResolver(backend, "d1")
    seen = []
    resolver.subscribe(seen.append)
    resolver.start()

    assert resolver.resolution.device_id == "TEST"

    backend.write("devices/MINE", {"type": "assigned", "assignedDriver": "d1"})
    assert resolver.resolution.device_id == "MINE"
    assert resolver.resolution.reason is ResolutionReason.ASSIGNED

    backend.patch_update("devices/MINE", {"assignedDriver": "d2"})
    assert resolver.resolution.device_id == "TEST"

    assert [r.device_id for r in seen] == ["TEST", "MINE", "TEST"]


def test_resolver_does_not_notify_on_unrelated_registry_change():
    backend = MemoryBackend({"devices": {"MINE": {"type": "assigned", "assignedDriver": "d1"}}})
    resolver = DeviceResolver(backend, "d1")
    seen = []
    resolver.subscribe(seen.append)
    resolver.start()

    backend.write("devices/MINE/status/lastSeen", 123)
    backend.write("devices/OTHER", {"type": "assigned", "assignedDriver": "d2"})
    assert len(seen) == 1


def test_resolver_registry_read_error_means_no_device():
    backend = MemoryBackend({"devices": {"TEST": {"type": "test"}}})
    resolver = DeviceResolver(backend, "d1")
    resolver.start()
    assert resolver.resolution.resolved

    backend.deny_read("devices")
    assert resolver.resolution == NO_DEVICE
    assert backend.subscription_count == 0


def test_resolver_stop_releases_subscription():
    backend = MemoryBackend()
    resolver = DeviceResolver(backend, "d1")
    resolver.start()
    assert backend.subscription_count == 1
    resolver.stop()
    assert backend.subscription_count == 0
