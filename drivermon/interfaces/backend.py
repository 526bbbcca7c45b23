# drivermon/interfaces/backend.py
from __future__ import annotations

from typing import Any, Callable, Mapping, Optional, Protocol

from drivermon.core.errors import BackendReadError

Unsubscribe = Callable[[], None]
ValueCallback = Callable[[Any], None]               # value or None (absent)
ErrorCallback = Callable[[BackendReadError], None]


class Backend(Protocol):
    """
    Push-based, eventually-consistent realtime data service.

    `subscribe` delivers the current value right away and then again after
    every change at, above or below `path`.
    """

    def subscribe(
        self,
        path: str,
        on_value: ValueCallback,
        on_error: Optional[ErrorCallback] = None,
    ) -> Unsubscribe: ...

    def read_once(self, path: str) -> Any: ...

    def write(self, path: str, value: Any) -> None: ...

    def patch_update(self, path: str, partial: Mapping[str, Any]) -> None: ...
