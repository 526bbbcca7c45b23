# drivermon/runtime/reading_session.py
from __future__ import annotations

import logging
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Callable, List, Mapping, Optional

from drivermon.backend.paths import device_control_path
from drivermon.core.constants import (
    AUTO_START_COUNTDOWN_SEC,
    AUTO_START_DELAY_MS,
    COUNTDOWN_TICK_MS,
    REQUESTED_BY_DRIVER,
)
from drivermon.core.errors import BackendWriteError, CommandWriteError
from drivermon.interfaces.backend import Backend, Unsubscribe
from drivermon.interfaces.command_sink import CommandEvent, CommandSink
from drivermon.runtime.scheduler import Scheduler, TimerHandle
from drivermon.runtime.state import (
    IDLE,
    STOP_PATCH,
    ConnectionState,
    OrchestratorState,
    ReadingCommand,
    ReadingPhase,
)

StateCallback = Callable[[OrchestratorState], None]


class StartDecision(str, Enum):
    STARTED = "STARTED"
    ALREADY_COUNTING_DOWN = "ALREADY_COUNTING_DOWN"
    ALREADY_ACTIVE = "ALREADY_ACTIVE"
    NO_DEVICE = "NO_DEVICE"
    DEVICE_OFFLINE = "DEVICE_OFFLINE"
    CLOSED = "CLOSED"

    @property
    def accepted(self) -> bool:
        return self is StartDecision.STARTED


class ReadingSessionOrchestrator:
    """
    IDLE -> COUNTDOWN(n) -> ACTIVE state machine for one driver view.

    - start (manual, or automatic once per view) needs a resolved device
      that is not OFFLINE
    - the countdown ticks once per tick_ms; reaching 0 writes one start command
    - stop during the countdown just cancels; stop while ACTIVE writes
      {startReading: false}
    - teardown while ACTIVE always writes the stop command

    Exactly one timer handle is owned at any time: the auto-start delay while
    IDLE, or the next tick while counting down.

    Connectivity is not watched after a start has been committed: going
    OFFLINE during COUNTDOWN or ACTIVE does not cancel anything.
    """

    def __init__(
        self,
        backend: Backend,
        scheduler: Scheduler,
        *,
        driver_id: str,
        requested_by: str = REQUESTED_BY_DRIVER,
        countdown_s: int = AUTO_START_COUNTDOWN_SEC,
        auto_start_delay_ms: int = AUTO_START_DELAY_MS,
        tick_ms: int = COUNTDOWN_TICK_MS,
        cmd_sink: Optional[CommandSink] = None,
        logger: Optional[logging.Logger] = None,
    ):
        if countdown_s < 1:
            raise ValueError("countdown_s must be >= 1")

        self._backend = backend
        self._scheduler = scheduler
        self._driver_id = driver_id
        self._requested_by = requested_by
        self._countdown_s = int(countdown_s)
        self._auto_delay_ms = int(auto_start_delay_ms)
        self._tick_ms = int(tick_ms)
        self._cmd_sink = cmd_sink
        self._log = logger or logging.getLogger(__name__)

        self._state: OrchestratorState = IDLE
        self._timer: Optional[TimerHandle] = None

        self._device_id: Optional[str] = None
        self._connection = ConnectionState.NO_DATA

        self._view_ready = False
        self._auto_start_done = False
        self._manual_request_seen = False
        self._closed = False
        self._last_error: Optional[str] = None

        self._listeners: List[StateCallback] = []

    # ------------------------------------------------------------------
    # State
    # ------------------------------------------------------------------
    @property
    def state(self) -> OrchestratorState:
        return self._state

    @property
    def phase(self) -> ReadingPhase:
        return self._state.phase

    @property
    def last_error(self) -> Optional[str]:
        return self._last_error

    @property
    def closed(self) -> bool:
        return self._closed

    @property
    def auto_start_done(self) -> bool:
        return self._auto_start_done

    @property
    def can_start(self) -> bool:
        return not self._closed and self.phase is ReadingPhase.IDLE and self._guard() is None

    @property
    def can_stop(self) -> bool:
        return not self._closed and self.phase is not ReadingPhase.IDLE

    def subscribe(self, cb: StateCallback) -> Unsubscribe:
        self._listeners.append(cb)

        def _unsubscribe() -> None:
            if cb in self._listeners:
                self._listeners.remove(cb)

        return _unsubscribe

    # ------------------------------------------------------------------
    # Inputs
    # ------------------------------------------------------------------
    def update_device(self, device_id: Optional[str]) -> None:
        if device_id == self._device_id:
            return
        self._device_id = device_id

        active = self._state
        if active.phase is ReadingPhase.ACTIVE and active.device_id != device_id:
            # the reading was started on a device this driver no longer uses
            self._log.info("ORCH_DEVICE_SWITCHED old=%s new=%s", active.device_id, device_id)
            try:
                self._write_stop(active.device_id)
            except CommandWriteError as e:
                self._last_error = e.message
                self._log.warning("ORCH_STOP_ON_SWITCH_FAILED device=%s err=%s", active.device_id, e.message)
            self._set_state(IDLE)

        self._sync_auto_start()

    def update_connection(self, state: ConnectionState) -> None:
        self._connection = state
        self._sync_auto_start()

    def view_ready(self) -> None:
        self._view_ready = True
        self._sync_auto_start()

    # ------------------------------------------------------------------
    # Commands
    # ------------------------------------------------------------------
    def request_start(self) -> StartDecision:
        if self._closed:
            return StartDecision.CLOSED
        if self.phase is ReadingPhase.COUNTDOWN:
            return StartDecision.ALREADY_COUNTING_DOWN
        if self.phase is ReadingPhase.ACTIVE:
            return StartDecision.ALREADY_ACTIVE

        rejection = self._guard()
        if rejection is not None:
            self._log.info("ORCH_START_REJECTED reason=%s device=%s", rejection.value, self._device_id)
            return rejection

        self._manual_request_seen = True
        self._cancel_timer()
        self._begin_countdown()
        return StartDecision.STARTED

    def request_stop(self) -> bool:
        """
        Stop or cancel. Returns True if the state changed.

        Raises CommandWriteError if the stop command could not be written;
        the machine then stays ACTIVE so the stop can be retried.
        """
        if self._closed:
            return False
        self._manual_request_seen = True

        if self.phase is ReadingPhase.IDLE:
            self._cancel_timer()
            return False

        if self.phase is ReadingPhase.COUNTDOWN:
            self._cancel_timer()
            self._log.info("ORCH_COUNTDOWN_CANCELLED remaining=%s", self._state.remaining_s)
            self._set_state(IDLE)
            return True

        try:
            self._write_stop(self._state.device_id)
        except CommandWriteError as e:
            self._last_error = e.message
            raise
        self._last_error = None
        self._set_state(IDLE)
        return True

    def teardown(self) -> None:
        """Release the timer; a running reading is stopped first. Idempotent."""
        if self._closed:
            return
        self._closed = True
        self._cancel_timer()

        if self.phase is ReadingPhase.ACTIVE:
            try:
                self._write_stop(self._state.device_id)
            except CommandWriteError as e:
                self._last_error = e.message
                self._log.warning("ORCH_TEARDOWN_STOP_FAILED device=%s err=%s", self._state.device_id, e.message)

        if self.phase is not ReadingPhase.IDLE:
            self._set_state(IDLE)
        self._listeners.clear()
        self._log.info("ORCH_TEARDOWN driver=%s", self._driver_id)

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------
    def _guard(self) -> Optional[StartDecision]:
        if self._device_id is None:
            return StartDecision.NO_DEVICE
        if self._connection is ConnectionState.OFFLINE:
            return StartDecision.DEVICE_OFFLINE
        return None

    def _sync_auto_start(self) -> None:
        if (
            self._closed
            or not self._view_ready
            or self._auto_start_done
            or self._manual_request_seen
            or self.phase is not ReadingPhase.IDLE
        ):
            return

        if self._guard() is None:
            if self._timer is None:
                self._timer = self._scheduler.call_later(self._auto_delay_ms, self._on_auto_start)
        else:
            self._cancel_timer()

    def _on_auto_start(self) -> None:
        self._timer = None
        if self._closed or self._auto_start_done or self._manual_request_seen:
            return
        if self.phase is not ReadingPhase.IDLE or self._guard() is not None:
            return

        self._auto_start_done = True
        self._log.info("ORCH_AUTO_START device=%s", self._device_id)
        self._begin_countdown()

    def _begin_countdown(self) -> None:
        self._last_error = None
        self._log.info("ORCH_COUNTDOWN_START device=%s n=%d", self._device_id, self._countdown_s)
        self._set_state(
            OrchestratorState(
                phase=ReadingPhase.COUNTDOWN,
                remaining_s=self._countdown_s,
                device_id=self._device_id,
            )
        )
        self._timer = self._scheduler.call_later(self._tick_ms, self._on_tick)

    def _on_tick(self) -> None:
        self._timer = None
        if self._closed or self.phase is not ReadingPhase.COUNTDOWN:
            return

        remaining = int(self._state.remaining_s or 0) - 1
        self._set_state(
            OrchestratorState(
                phase=ReadingPhase.COUNTDOWN,
                remaining_s=remaining,
                device_id=self._device_id,
            )
        )
        if remaining > 0:
            self._timer = self._scheduler.call_later(self._tick_ms, self._on_tick)
        else:
            self._complete_countdown()

    def _complete_countdown(self) -> None:
        device_id = self._device_id
        if device_id is None:
            self._last_error = "No sensor device available when the countdown finished."
            self._log.warning("ORCH_START_ABORTED reason=no_device driver=%s", self._driver_id)
            self._set_state(IDLE)
            return

        cmd = ReadingCommand(
            start_reading=True,
            target_driver_id=self._driver_id,
            requested_by=self._requested_by,
            timestamp_ms=self._scheduler.now_ms(),
        )
        try:
            self._write_start(device_id, cmd)
        except CommandWriteError as e:
            self._last_error = e.message
            self._log.warning("ORCH_START_FAILED device=%s err=%s", device_id, e.message)
            self._set_state(IDLE)
            return

        self._set_state(OrchestratorState(phase=ReadingPhase.ACTIVE, device_id=device_id))

    def _write_start(self, device_id: str, cmd: ReadingCommand) -> None:
        payload = cmd.to_payload()
        self._send("START_READING", device_id, payload, lambda: self._backend.write(device_control_path(device_id), payload))

    def _write_stop(self, device_id: Optional[str]) -> None:
        if device_id is None:
            return
        payload = dict(STOP_PATCH)
        self._send("STOP_READING", device_id, payload, lambda: self._backend.patch_update(device_control_path(device_id), payload))

    def _send(self, name: str, device_id: str, payload: Mapping[str, Any], op: Callable[[], None]) -> None:
        self._trace(name, "send", device_id, payload)
        try:
            op()
        except (BackendWriteError, OSError) as e:
            self._trace(name, "error", device_id, {"error": str(e)})
            raise CommandWriteError(
                f"Could not send {name} to device {device_id}.",
                hint="Check the connection and try again; resending a command is safe.",
                details={"device_id": device_id, "cause": str(e)},
            ) from e
        self._log.info("%s device=%s driver=%s", name, device_id, self._driver_id)
        self._trace(name, "ok", device_id, payload)

    def _trace(self, name: str, kind: str, device_id: str, payload: Mapping[str, Any]) -> None:
        if self._cmd_sink is None:
            return
        try:
            self._cmd_sink.on_command(
                CommandEvent(
                    name=name,
                    kind=kind,
                    device_id=device_id,
                    payload=dict(payload),
                    ts_utc=datetime.now(timezone.utc).isoformat(),
                )
            )
        except Exception:
            self._log.exception("CMD_SINK_ERROR")

    def _cancel_timer(self) -> None:
        if self._timer is not None:
            self._timer.cancel()
            self._timer = None

    def _set_state(self, state: OrchestratorState) -> None:
        if state == self._state:
            return
        prev, self._state = self._state, state
        self._log.debug("ORCH_STATE %s->%s", prev, state)
        for cb in list(self._listeners):
            try:
                cb(state)
            except Exception:
                self._log.exception("ORCH_CALLBACK_ERROR")
