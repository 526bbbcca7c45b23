# drivermon/app/controller.py
from __future__ import annotations

import logging
from typing import Any, Callable, List, Optional, Tuple

from drivermon.app.config import MonitorConfig
from drivermon.backend.paths import driver_path
from drivermon.core.errors import BackendReadError
from drivermon.interfaces.backend import Backend, Unsubscribe
from drivermon.interfaces.command_sink import CommandSink
from drivermon.runtime.device_resolver import DeviceResolver
from drivermon.runtime.liveness import ConnectionMonitor
from drivermon.runtime.reading_session import ReadingSessionOrchestrator, StartDecision
from drivermon.runtime.reconciler import SessionReconciler, SessionView
from drivermon.runtime.scheduler import Scheduler
from drivermon.runtime.selector import LatestReadingTracker, gsr_series, session_history
from drivermon.runtime.state import (
    DeviceResolution,
    DriverProfile,
    DriverViewStatus,
    SessionRecord,
)

StatusCallback = Callable[[DriverViewStatus], None]


class DriverViewController:
    """
    App-level controller for one driver's live monitor view.

    Wires device resolution -> liveness -> reading orchestrator, and the
    session reconciler -> latest-reading tracker, and tears everything down
    in the right order (stop command first, then unsubscribe).
    """

    def __init__(
        self,
        config: MonitorConfig,
        *,
        backend: Backend,
        scheduler: Scheduler,
        driver_id: str,
        cmd_sink: Optional[CommandSink] = None,
        logger: Optional[logging.Logger] = None,
    ):
        self._config = config
        self._backend = backend
        self._scheduler = scheduler
        self._driver_id = driver_id
        self._cmd_sink = cmd_sink
        self._log = logger or logging.getLogger(__name__)

        self._build_parts()

        self._internal_unsubs: List[Unsubscribe] = []
        self._listeners: List[StatusCallback] = []
        self._last_status: Optional[DriverViewStatus] = None
        self._opened = False

    def _build_parts(self) -> None:
        """Fresh components for one view lifetime; the orchestrator cannot be reopened after teardown."""
        config, backend, scheduler, driver_id = self._config, self._backend, self._scheduler, self._driver_id
        self._resolver = DeviceResolver(backend, driver_id, logger=self._log)
        self._monitor = ConnectionMonitor(
            backend,
            scheduler,
            stale_threshold_ms=config.stale_threshold_ms,
            offline_threshold_ms=config.offline_threshold_ms,
            poll_interval_ms=config.liveness_poll_ms,
            logger=self._log,
        )
        self._orchestrator = ReadingSessionOrchestrator(
            backend,
            scheduler,
            driver_id=driver_id,
            requested_by=config.requested_by,
            countdown_s=config.countdown_s,
            auto_start_delay_ms=config.auto_start_delay_ms,
            tick_ms=config.tick_ms,
            cmd_sink=self._cmd_sink,
            logger=self._log,
        )
        self._reconciler = SessionReconciler(backend, driver_id, logger=self._log)
        self._latest = LatestReadingTracker(self._reconciler, logger=self._log)

        self._profile = DriverProfile(driver_id=driver_id)

    @property
    def config(self) -> MonitorConfig:
        return self._config

    @property
    def driver_id(self) -> str:
        return self._driver_id

    @property
    def is_open(self) -> bool:
        return self._opened

    def subscribe(self, cb: StatusCallback) -> Unsubscribe:
        self._listeners.append(cb)

        def _unsubscribe() -> None:
            if cb in self._listeners:
                self._listeners.remove(cb)

        return _unsubscribe

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------
    def open(self) -> None:
        if self._opened:
            return
        if self._orchestrator.closed:
            self._build_parts()
            self._last_status = None
        self._opened = True
        self._log.info("VIEW_OPEN driver=%s", self._driver_id)

        self._internal_unsubs = [
            self._resolver.subscribe(self._on_resolution),
            self._monitor.subscribe(self._on_connection),
            self._orchestrator.subscribe(lambda _s: self._changed()),
            self._latest.subscribe(lambda _r: self._changed()),
        ]

        try:
            self._latest.start()
            self._reconciler.start()
            self._monitor.start()
            self._resolver.start()
            self._internal_unsubs.append(
                self._backend.subscribe(driver_path(self._driver_id), self._on_profile, self._on_profile_error)
            )
        except Exception:
            try:
                self.close()
            except Exception:
                self._log.exception("VIEW_CLOSE_AFTER_OPEN_FAIL")
            raise

        self._orchestrator.update_connection(self._monitor.state)
        self._orchestrator.view_ready()
        self._changed()

    def close(self) -> None:
        if not self._opened:
            return
        self._log.info("VIEW_CLOSE driver=%s", self._driver_id)

        # stop command goes out before anything is released
        try:
            self._orchestrator.teardown()
        except Exception:
            self._log.exception("ORCHESTRATOR_TEARDOWN_ERROR")

        unsubs, self._internal_unsubs = self._internal_unsubs, []
        for unsub in unsubs:
            try:
                unsub()
            except Exception:
                self._log.exception("VIEW_UNSUBSCRIBE_ERROR")

        for part in (self._resolver, self._monitor, self._latest, self._reconciler):
            try:
                part.stop()
            except Exception:
                self._log.exception("VIEW_STOP_ERROR part=%s", type(part).__name__)

        self._listeners.clear()
        self._opened = False

    def __enter__(self) -> "DriverViewController":
        self.open()
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.close()

    # ------------------------------------------------------------------
    # UI operations
    # ------------------------------------------------------------------
    def start_reading(self) -> StartDecision:
        return self._orchestrator.request_start()

    def stop_reading(self) -> bool:
        return self._orchestrator.request_stop()

    def sessions(self) -> SessionView:
        return self._reconciler.view

    def history(self) -> List[SessionRecord]:
        return session_history(self._reconciler.view)

    def gsr_series(self) -> List[Tuple[int, float]]:
        return gsr_series(self._reconciler.view)

    def latest(self) -> Optional[SessionRecord]:
        return self._latest.latest

    def status(self) -> DriverViewStatus:
        return DriverViewStatus(
            driver=self._profile,
            resolution=self._resolver.resolution,
            connection=self._monitor.state,
            reading=self._orchestrator.state,
            latest=self._latest.latest,
            session_count=len(self._reconciler.view),
            can_start=self._orchestrator.can_start,
            can_stop=self._orchestrator.can_stop,
            last_error=self._orchestrator.last_error,
        )

    # ------------------------------------------------------------------
    # Callbacks
    # ------------------------------------------------------------------
    def _on_resolution(self, resolution: DeviceResolution) -> None:
        self._monitor.bind(resolution.device_id)
        self._orchestrator.update_device(resolution.device_id)
        self._changed()

    def _on_connection(self, _state: Any) -> None:
        self._orchestrator.update_connection(self._monitor.state)
        self._changed()

    def _on_profile(self, value: Any) -> None:
        self._profile = DriverProfile.from_value(self._driver_id, value)
        self._changed()

    def _on_profile_error(self, err: BackendReadError) -> None:
        self._log.warning("DRIVER_PROFILE_UNREADABLE driver=%s err=%s", self._driver_id, err)
        self._profile = DriverProfile(driver_id=self._driver_id)
        self._changed()

    def _changed(self) -> None:
        if not self._opened or not self._listeners:
            return
        st = self.status()
        if st == self._last_status:
            return
        self._last_status = st
        for cb in list(self._listeners):
            try:
                cb(st)
            except Exception:
                self._log.exception("VIEW_STATUS_CALLBACK_ERROR")
