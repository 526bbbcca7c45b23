# drivermon/runtime/reconciler.py
from __future__ import annotations

import logging
from typing import Any, Callable, Dict, List, Mapping, Optional, TypeVar

from drivermon.backend.paths import legacy_sessions_path, primary_sessions_path
from drivermon.core.errors import BackendReadError
from drivermon.interfaces.backend import Backend, Unsubscribe
from drivermon.runtime.state import SessionRecord, parse_sessions

V = TypeVar("V")

SessionView = Mapping[str, SessionRecord]
ViewCallback = Callable[[SessionView], None]


def merge_sessions(primary: Mapping[str, V], legacy: Mapping[str, V]) -> Dict[str, V]:
    """
    Merge two keyed session collections.

    Primary is authoritative: legacy only fills keys primary does not have.
    Whole values are kept, fields are never mixed between sources.
    """
    merged: Dict[str, V] = dict(primary)
    for key, value in legacy.items():
        if key not in merged:
            merged[key] = value
    return merged


class SessionReconciler:
    """
    Live merge of a driver's primary and legacy session stores.

    Holds the last snapshot seen from each store in two cells and rebuilds
    the merged view from both whenever either one is written. Callbacks from
    the two stores may arrive in any order, or one may never arrive.

    A read failure on a store (the legacy path is often not provisioned) is
    logged and replaced by an empty snapshot; listeners never see it.
    """

    def __init__(
        self,
        backend: Backend,
        driver_id: str,
        *,
        logger: Optional[logging.Logger] = None,
    ):
        self._backend = backend
        self._driver_id = driver_id
        self._log = logger or logging.getLogger(__name__)

        self._primary: Dict[str, SessionRecord] = {}
        self._legacy: Dict[str, SessionRecord] = {}
        self._view: Dict[str, SessionRecord] = {}

        self._unsubs: List[Unsubscribe] = []
        self._listeners: List[ViewCallback] = []

    @property
    def driver_id(self) -> str:
        return self._driver_id

    @property
    def view(self) -> SessionView:
        return dict(self._view)

    def subscribe(self, cb: ViewCallback) -> Unsubscribe:
        self._listeners.append(cb)

        def _unsubscribe() -> None:
            if cb in self._listeners:
                self._listeners.remove(cb)

        return _unsubscribe

    def start(self) -> None:
        if self._unsubs:
            return
        self._log.info("RECONCILER_START driver=%s", self._driver_id)
        self._unsubs.append(
            self._backend.subscribe(
                primary_sessions_path(self._driver_id),
                self.set_primary,
                lambda err: self._on_read_error("primary", err),
            )
        )
        self._unsubs.append(
            self._backend.subscribe(
                legacy_sessions_path(self._driver_id),
                self.set_legacy,
                lambda err: self._on_read_error("legacy", err),
            )
        )

    def stop(self) -> None:
        unsubs, self._unsubs = self._unsubs, []
        for unsub in unsubs:
            try:
                unsub()
            except Exception:
                self._log.exception("RECONCILER_UNSUBSCRIBE_ERROR driver=%s", self._driver_id)

    # -- cells --------------------------------------------------------------
    def set_primary(self, value: Any) -> None:
        self._primary = parse_sessions(value)
        self._emit()

    def set_legacy(self, value: Any) -> None:
        self._legacy = parse_sessions(value)
        self._emit()

    def _on_read_error(self, source: str, err: BackendReadError) -> None:
        self._log.warning("SESSION_SOURCE_UNREADABLE driver=%s source=%s err=%s", self._driver_id, source, err)
        if source == "primary":
            self.set_primary(None)
        else:
            self.set_legacy(None)

    def _emit(self) -> None:
        self._view = merge_sessions(self._primary, self._legacy)
        view = dict(self._view)
        for cb in list(self._listeners):
            try:
                cb(view)
            except Exception:
                self._log.exception("RECONCILER_CALLBACK_ERROR driver=%s", self._driver_id)
