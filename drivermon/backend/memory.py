# drivermon/backend/memory.py
from __future__ import annotations

import copy
import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, List, Mapping, Optional, Tuple

import yaml

from drivermon.core.errors import BackendReadError, BackendWriteError, SnapshotLoadError
from drivermon.interfaces.backend import ErrorCallback, Unsubscribe, ValueCallback

Parts = Tuple[str, ...]

_UNSET = object()


def split_path(path: str) -> Parts:
    return tuple(p for p in str(path).split("/") if p)


def _is_prefix(prefix: Parts, parts: Parts) -> bool:
    return parts[: len(prefix)] == prefix


@dataclass(eq=False)
class _Subscription:
    parts: Parts
    on_value: ValueCallback
    on_error: Optional[ErrorCallback]
    last: Any = field(default=_UNSET)
    active: bool = True


class MemoryBackend:
    """
    In-process realtime tree with push subscriptions.

    Semantics follow the hosted realtime database the app targets:
      - values are nested mappings addressed by '/'-separated paths
      - writing None (or an empty mapping) removes a node; empty parents disappear
      - subscribers get the current value on subscribe, then only on change
      - a read rule violation cancels the subscription through on_error

    Callbacks run synchronously on the writer's thread.
    """

    def __init__(self, data: Optional[Mapping[str, Any]] = None, *, logger: Optional[logging.Logger] = None):
        self._root: Dict[str, Any] = _prune(copy.deepcopy(dict(data or {})))
        self._subs: List[_Subscription] = []
        self._denied: List[Parts] = []
        self._log = logger or logging.getLogger(__name__)

        #: Simulate connectivity loss: every write raises BackendWriteError
        self.fail_writes = False

    # ------------------------------------------------------------------
    # Snapshot I/O
    # ------------------------------------------------------------------
    @classmethod
    def from_file(cls, path: str | Path, *, logger: Optional[logging.Logger] = None) -> "MemoryBackend":
        path = Path(path)
        try:
            with open(path, "r", encoding="utf-8") as f:
                data = yaml.safe_load(f) or {}
        except FileNotFoundError:
            raise SnapshotLoadError(
                f"Snapshot file not found: {path}",
                hint="Pass --snapshot pointing to a YAML or JSON export of the database.",
            ) from None
        except yaml.YAMLError as e:
            raise SnapshotLoadError(
                "Snapshot file is not valid YAML/JSON.",
                hint=str(e),
                details={"path": str(path)},
            ) from None

        if not isinstance(data, dict):
            raise SnapshotLoadError(
                "Snapshot root must be a mapping.",
                details={"path": str(path), "type": type(data).__name__},
            )
        return cls(data, logger=logger)

    def dump(self, path: str | Path) -> None:
        path = Path(path)
        path.parent.mkdir(parents=True, exist_ok=True)
        with open(path, "w", encoding="utf-8") as f:
            yaml.safe_dump(self._root, f, sort_keys=False, allow_unicode=True)

    def snapshot(self) -> Dict[str, Any]:
        return copy.deepcopy(self._root)

    # ------------------------------------------------------------------
    # Read rules
    # ------------------------------------------------------------------
    def deny_read(self, path: str) -> None:
        """Deny reads at/below `path`; live subscriptions there are cancelled."""
        parts = split_path(path)
        if parts not in self._denied:
            self._denied.append(parts)

        for sub in list(self._subs):
            if sub.active and _is_prefix(parts, sub.parts):
                self._cancel_with_error(sub)

    def allow_read(self, path: str) -> None:
        parts = split_path(path)
        if parts in self._denied:
            self._denied.remove(parts)

    def _is_denied(self, parts: Parts) -> bool:
        return any(_is_prefix(d, parts) for d in self._denied)

    def _denied_error(self, parts: Parts) -> BackendReadError:
        return BackendReadError(
            f"Permission denied at '{'/'.join(parts)}'.",
            details={"path": "/".join(parts)},
        )

    def _cancel_with_error(self, sub: _Subscription) -> None:
        sub.active = False
        if sub in self._subs:
            self._subs.remove(sub)

        err = self._denied_error(sub.parts)
        if sub.on_error is None:
            self._log.warning("SUBSCRIPTION_CANCELLED path=%s err=%s", "/".join(sub.parts), err)
            return
        try:
            sub.on_error(err)
        except Exception:
            self._log.exception("SUBSCRIPTION_ERROR_CALLBACK_FAILED path=%s", "/".join(sub.parts))

    # ------------------------------------------------------------------
    # Backend protocol
    # ------------------------------------------------------------------
    def subscribe(
        self,
        path: str,
        on_value: ValueCallback,
        on_error: Optional[ErrorCallback] = None,
    ) -> Unsubscribe:
        sub = _Subscription(parts=split_path(path), on_value=on_value, on_error=on_error)

        if self._is_denied(sub.parts):
            self._cancel_with_error(sub)
            return lambda: None

        self._subs.append(sub)
        self._deliver(sub)

        def _unsubscribe() -> None:
            sub.active = False
            if sub in self._subs:
                self._subs.remove(sub)

        return _unsubscribe

    def read_once(self, path: str) -> Any:
        parts = split_path(path)
        if self._is_denied(parts):
            raise self._denied_error(parts)
        return copy.deepcopy(self._get(parts))

    def write(self, path: str, value: Any) -> None:
        parts = split_path(path)
        self._check_writable(parts)
        self._set(parts, copy.deepcopy(value))
        self._notify(parts)

    def patch_update(self, path: str, partial: Mapping[str, Any]) -> None:
        parts = split_path(path)
        self._check_writable(parts)
        for key, value in partial.items():
            self._set(parts + split_path(key), copy.deepcopy(value))
        self._notify(parts)

    @property
    def subscription_count(self) -> int:
        return len(self._subs)

    # ------------------------------------------------------------------
    # Tree helpers
    # ------------------------------------------------------------------
    def _check_writable(self, parts: Parts) -> None:
        if self.fail_writes:
            raise BackendWriteError(
                f"Write to '{'/'.join(parts)}' failed: backend unreachable.",
                hint="Check network connectivity and retry.",
                details={"path": "/".join(parts)},
            )
        if not parts:
            raise BackendWriteError("Refusing to overwrite the database root.")

    def _get(self, parts: Parts) -> Any:
        node: Any = self._root
        for p in parts:
            if not isinstance(node, dict) or p not in node:
                return None
            node = node[p]
        return node

    def _set(self, parts: Parts, value: Any) -> None:
        value = _prune(value)
        if value is None or value == {}:
            self._delete(parts)
            return

        node = self._root
        for p in parts[:-1]:
            child = node.get(p)
            if not isinstance(child, dict):
                child = {}
                node[p] = child
            node = child
        node[parts[-1]] = value

    def _delete(self, parts: Parts) -> None:
        trail: List[Tuple[Dict[str, Any], str]] = []
        node: Any = self._root
        for p in parts:
            if not isinstance(node, dict) or p not in node:
                return
            trail.append((node, p))
            node = node[p]

        parent, key = trail.pop()
        del parent[key]

        # drop parents left empty
        while trail:
            parent, key = trail.pop()
            if parent[key] == {}:
                del parent[key]
            else:
                break

    def _notify(self, parts: Parts) -> None:
        for sub in list(self._subs):
            if not sub.active:
                continue
            if _is_prefix(sub.parts, parts) or _is_prefix(parts, sub.parts):
                self._deliver(sub)

    def _deliver(self, sub: _Subscription) -> None:
        value = self._get(sub.parts)
        if sub.last is not _UNSET and sub.last == value:
            return
        sub.last = copy.deepcopy(value)
        try:
            sub.on_value(copy.deepcopy(value))
        except Exception:
            self._log.exception("SUBSCRIBER_CALLBACK_ERROR path=%s", "/".join(sub.parts))


def _prune(value: Any) -> Any:
    """Drop None leaves and empty mappings from a value about to be stored."""
    if not isinstance(value, dict):
        return value
    out = {}
    for k, v in value.items():
        v = _prune(v)
        if v is None or v == {}:
            continue
        out[str(k)] = v
    return out
