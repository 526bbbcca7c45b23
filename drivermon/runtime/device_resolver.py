# drivermon/runtime/device_resolver.py
from __future__ import annotations

import logging
from typing import Any, Callable, Dict, List, Mapping, Optional

from drivermon.backend.paths import DEVICES
from drivermon.core.errors import BackendReadError
from drivermon.interfaces.backend import Backend, Unsubscribe
from drivermon.runtime.state import (
    NO_DEVICE,
    DeviceRecord,
    DeviceResolution,
    ResolutionReason,
    parse_registry,
)

ResolutionCallback = Callable[[DeviceResolution], None]


def resolve_device(registry: Mapping[str, DeviceRecord], driver_id: str) -> DeviceResolution:
    """
    Pick the device a driver's session binds to.

    Priority:
      1. the device assigned to this driver
      2. the shared test device (several drivers may land on it at once)
      3. any registered device, first in registry order (degraded fallback)
      4. nothing
    """
    for mac, rec in registry.items():
        if rec.is_assigned_to(driver_id):
            return DeviceResolution(device_id=mac, reason=ResolutionReason.ASSIGNED)

    for mac, rec in registry.items():
        if rec.is_test:
            return DeviceResolution(device_id=mac, reason=ResolutionReason.TEST_FALLBACK)

    for mac in registry:
        return DeviceResolution(device_id=mac, reason=ResolutionReason.ARBITRARY_FALLBACK)

    return NO_DEVICE


class DeviceResolver:
    """
    Follows the device registry and re-resolves a driver's device on every change.

    Devices can be reassigned by an admin while the driver is looking at the
    screen; listeners are told whenever the resolution (device or reason) changes.
    """

    def __init__(self, backend: Backend, driver_id: str, *, logger: Optional[logging.Logger] = None):
        self._backend = backend
        self._driver_id = driver_id
        self._log = logger or logging.getLogger(__name__)

        self._registry: Dict[str, DeviceRecord] = {}
        self._resolution: DeviceResolution = NO_DEVICE
        self._unsub: Optional[Unsubscribe] = None
        self._listeners: List[ResolutionCallback] = []

    @property
    def resolution(self) -> DeviceResolution:
        return self._resolution

    def subscribe(self, cb: ResolutionCallback) -> Unsubscribe:
        self._listeners.append(cb)

        def _unsubscribe() -> None:
            if cb in self._listeners:
                self._listeners.remove(cb)

        return _unsubscribe

    def start(self) -> None:
        if self._unsub is None:
            self._unsub = self._backend.subscribe(DEVICES, self._on_registry, self._on_registry_error)

    def stop(self) -> None:
        if self._unsub is not None:
            try:
                self._unsub()
            finally:
                self._unsub = None

    def _on_registry(self, value: Any) -> None:
        self._registry = parse_registry(value)
        self._update(resolve_device(self._registry, self._driver_id))

    def _on_registry_error(self, err: BackendReadError) -> None:
        self._log.warning("DEVICE_REGISTRY_UNREADABLE driver=%s err=%s", self._driver_id, err)
        self._unsub = None
        self._registry = {}
        self._update(NO_DEVICE)

    def _update(self, resolution: DeviceResolution) -> None:
        if resolution == self._resolution:
            return
        self._resolution = resolution

        if resolution.reason is ResolutionReason.ARBITRARY_FALLBACK:
            self._log.warning(
                "DEVICE_RESOLVED_DEGRADED driver=%s device=%s (no assigned or test device)",
                self._driver_id,
                resolution.device_id,
            )
        else:
            self._log.info(
                "DEVICE_RESOLVED driver=%s device=%s reason=%s",
                self._driver_id,
                resolution.device_id,
                resolution.reason.value,
            )

        for cb in list(self._listeners):
            try:
                cb(resolution)
            except Exception:
                self._log.exception("RESOLUTION_CALLBACK_ERROR")
