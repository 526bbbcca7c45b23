# drivermon/runtime/selector.py
from __future__ import annotations

import logging
from typing import Callable, List, Mapping, Optional, Tuple

from drivermon.interfaces.backend import Unsubscribe
from drivermon.runtime.reconciler import SessionReconciler
from drivermon.runtime.state import SessionRecord

LatestCallback = Callable[[Optional[SessionRecord]], None]

# fewer points than this draw no trend
GSR_MIN_POINTS = 2


def _order_key(rec: SessionRecord):
    return (rec.timestamp_ms, rec.session_id)


def select_latest(view: Mapping[str, SessionRecord]) -> Optional[SessionRecord]:
    """Newest record by timestamp; equal timestamps fall to the greatest session id."""
    if not view:
        return None
    return max(view.values(), key=_order_key)


def session_history(view: Mapping[str, SessionRecord]) -> List[SessionRecord]:
    """All records, newest first."""
    return sorted(view.values(), key=_order_key, reverse=True)


def gsr_series(view: Mapping[str, SessionRecord]) -> List[Tuple[int, float]]:
    """
    (timestamp_ms, gsr) points, oldest first.

    Records without a GSR value or without a timestamp (parsed as 0) are left out.
    """
    points = [r for r in view.values() if r.gsr is not None and r.timestamp_ms > 0]
    return [(r.timestamp_ms, r.gsr) for r in sorted(points, key=_order_key)]


class LatestReadingTracker:
    """Re-derives the newest reading on every reconciled view update."""

    def __init__(self, reconciler: SessionReconciler, *, logger: Optional[logging.Logger] = None):
        self._reconciler = reconciler
        self._log = logger or logging.getLogger(__name__)
        self._latest: Optional[SessionRecord] = None
        self._listeners: List[LatestCallback] = []
        self._unsub: Optional[Unsubscribe] = None

    @property
    def latest(self) -> Optional[SessionRecord]:
        return self._latest

    def subscribe(self, cb: LatestCallback) -> Unsubscribe:
        self._listeners.append(cb)

        def _unsubscribe() -> None:
            if cb in self._listeners:
                self._listeners.remove(cb)

        return _unsubscribe

    def start(self) -> None:
        if self._unsub is None:
            self._unsub = self._reconciler.subscribe(self._on_view)
            self._on_view(self._reconciler.view)

    def stop(self) -> None:
        if self._unsub is not None:
            try:
                self._unsub()
            finally:
                self._unsub = None

    def _on_view(self, view: Mapping[str, SessionRecord]) -> None:
        self._latest = select_latest(view)
        for cb in list(self._listeners):
            try:
                cb(self._latest)
            except Exception:
                self._log.exception("LATEST_CALLBACK_ERROR")
