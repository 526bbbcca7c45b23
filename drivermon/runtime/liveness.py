# drivermon/runtime/liveness.py
from __future__ import annotations

import logging
from typing import Any, Callable, List, Optional

from drivermon.backend.paths import device_status_path
from drivermon.core.constants import LIVENESS_POLL_MS, OFFLINE_THRESHOLD_MS, STALE_THRESHOLD_MS
from drivermon.core.errors import BackendReadError
from drivermon.interfaces.backend import Backend, Unsubscribe
from drivermon.runtime.scheduler import Scheduler, TimerHandle
from drivermon.runtime.state import ConnectionState, DeviceStatus

ConnectionCallback = Callable[[ConnectionState], None]


def classify(
    last_seen_ms: Optional[int],
    now_ms: int,
    *,
    stale_threshold_ms: int = STALE_THRESHOLD_MS,
    offline_threshold_ms: int = OFFLINE_THRESHOLD_MS,
) -> ConnectionState:
    """
    Map a heartbeat timestamp to a liveness state.

    None (device never reported) is NO_DATA. Otherwise the age decides:
    below the stale threshold CONNECTED, below the offline threshold STALE,
    anything older OFFLINE.
    """
    if last_seen_ms is None:
        return ConnectionState.NO_DATA

    age = int(now_ms) - int(last_seen_ms)
    if age < stale_threshold_ms:
        return ConnectionState.CONNECTED
    if age < offline_threshold_ms:
        return ConnectionState.STALE
    return ConnectionState.OFFLINE


class ConnectionMonitor:
    """
    Keeps the liveness label of one device current.

    Re-classifies on every status push and on a poll timer, because a device
    that simply stops reporting must still drift to STALE and OFFLINE.
    Listeners are told only about changes.
    """

    def __init__(
        self,
        backend: Backend,
        scheduler: Scheduler,
        *,
        stale_threshold_ms: int = STALE_THRESHOLD_MS,
        offline_threshold_ms: int = OFFLINE_THRESHOLD_MS,
        poll_interval_ms: int = LIVENESS_POLL_MS,
        logger: Optional[logging.Logger] = None,
    ):
        self._backend = backend
        self._scheduler = scheduler
        self._stale_ms = int(stale_threshold_ms)
        self._offline_ms = int(offline_threshold_ms)
        self._poll_ms = int(poll_interval_ms)
        self._log = logger or logging.getLogger(__name__)

        self._device_id: Optional[str] = None
        self._last_seen_ms: Optional[int] = None
        self._state = ConnectionState.NO_DATA

        self._unsub_status: Optional[Unsubscribe] = None
        self._poll: Optional[TimerHandle] = None
        self._listeners: List[ConnectionCallback] = []

    @property
    def state(self) -> ConnectionState:
        return self._state

    @property
    def device_id(self) -> Optional[str]:
        return self._device_id

    @property
    def last_seen_ms(self) -> Optional[int]:
        return self._last_seen_ms

    def subscribe(self, cb: ConnectionCallback) -> Unsubscribe:
        self._listeners.append(cb)

        def _unsubscribe() -> None:
            if cb in self._listeners:
                self._listeners.remove(cb)

        return _unsubscribe

    def start(self) -> None:
        if self._poll is None:
            self._poll = self._scheduler.call_every(self._poll_ms, self.reevaluate)

    def stop(self) -> None:
        if self._poll is not None:
            self._poll.cancel()
            self._poll = None
        self._release_status()
        self._device_id = None

    def bind(self, device_id: Optional[str]) -> None:
        """Follow `device_id`'s status feed (None: follow nothing)."""
        if device_id == self._device_id:
            return

        self._release_status()
        self._device_id = device_id
        self._last_seen_ms = None
        self._log.info("LIVENESS_BIND device=%s", device_id)

        if device_id is None:
            self._update(ConnectionState.NO_DATA)
            return

        # subscribe pushes the current status synchronously
        self._update(ConnectionState.NO_DATA)
        self._unsub_status = self._backend.subscribe(
            device_status_path(device_id),
            self._on_status,
            self._on_status_error,
        )

    def reevaluate(self) -> ConnectionState:
        state = classify(
            self._last_seen_ms,
            self._scheduler.now_ms(),
            stale_threshold_ms=self._stale_ms,
            offline_threshold_ms=self._offline_ms,
        )
        self._update(state)
        return state

    def _on_status(self, value: Any) -> None:
        self._last_seen_ms = DeviceStatus.from_value(value).last_seen_ms
        self.reevaluate()

    def _on_status_error(self, err: BackendReadError) -> None:
        self._log.warning("LIVENESS_STATUS_READ_FAILED device=%s err=%s", self._device_id, err)
        self._unsub_status = None
        self._last_seen_ms = None
        self.reevaluate()

    def _release_status(self) -> None:
        if self._unsub_status is not None:
            try:
                self._unsub_status()
            finally:
                self._unsub_status = None

    def _update(self, state: ConnectionState) -> None:
        if state == self._state:
            return
        prev, self._state = self._state, state
        self._log.info("LIVENESS_CHANGED device=%s %s->%s", self._device_id, prev.value, state.value)

        for cb in list(self._listeners):
            try:
                cb(state)
            except Exception:
                self._log.exception("LIVENESS_CALLBACK_ERROR")
