# drivermon/runtime/state.py
from __future__ import annotations

import logging
from dataclasses import dataclass
from enum import Enum
from typing import Any, Dict, Mapping, Optional

from drivermon.core.constants import DEVICE_TYPE_ASSIGNED, DEVICE_TYPE_TEST

_log = logging.getLogger(__name__)


class ConnectionState(str, Enum):
    CONNECTED = "CONNECTED"
    STALE = "STALE"
    OFFLINE = "OFFLINE"
    NO_DATA = "NO_DATA"


class ResolutionReason(str, Enum):
    ASSIGNED = "ASSIGNED"
    TEST_FALLBACK = "TEST_FALLBACK"
    ARBITRARY_FALLBACK = "ARBITRARY_FALLBACK"
    NONE = "NONE"


class ReadingPhase(str, Enum):
    IDLE = "IDLE"
    COUNTDOWN = "COUNTDOWN"
    ACTIVE = "ACTIVE"


def _as_int(v: Any) -> Optional[int]:
    # bool is an int subclass, never a timestamp
    if isinstance(v, bool):
        return None
    if isinstance(v, int):
        return v
    if isinstance(v, float):
        return int(v)
    return None


def _as_float(v: Any) -> Optional[float]:
    if isinstance(v, bool) or v is None:
        return None
    if isinstance(v, (int, float)):
        return float(v)
    try:
        return float(v)
    except (TypeError, ValueError):
        return None


@dataclass(frozen=True)
class DeviceStatus:
    """
    Heartbeat reported by the device itself under devices/{mac}/status.
    """
    last_seen_ms: Optional[int] = None

    @classmethod
    def from_value(cls, value: Any) -> "DeviceStatus":
        if not isinstance(value, Mapping):
            return cls()
        return cls(last_seen_ms=_as_int(value.get("lastSeen")))


@dataclass(frozen=True)
class DeviceRecord:
    """
    Registry entry for one physical sensor, keyed by its MAC-like id.
    """
    device_id: str
    type: str
    assigned_driver_id: Optional[str] = None

    @property
    def is_test(self) -> bool:
        return self.type == DEVICE_TYPE_TEST

    def is_assigned_to(self, driver_id: str) -> bool:
        return self.type == DEVICE_TYPE_ASSIGNED and self.assigned_driver_id == driver_id

    @classmethod
    def from_value(cls, device_id: str, value: Any) -> "DeviceRecord":
        if not isinstance(value, Mapping):
            return cls(device_id=str(device_id), type="unknown")
        driver = value.get("assignedDriver")
        return cls(
            device_id=str(device_id),
            type=str(value.get("type") or "unknown"),
            assigned_driver_id=str(driver) if driver else None,
        )


def parse_registry(value: Any) -> Dict[str, DeviceRecord]:
    """Parse the devices/ node, keeping the backend's key order."""
    if not isinstance(value, Mapping):
        return {}
    return {str(mac): DeviceRecord.from_value(mac, v) for mac, v in value.items()}


@dataclass(frozen=True)
class SessionRecord:
    """
    One completed sensor reading. Written by the device, never by this package.
    """
    session_id: str
    timestamp_ms: int = 0
    temperature: Optional[float] = None
    heart_rate: Optional[float] = None
    spo2: Optional[float] = None
    gsr: Optional[float] = None

    @classmethod
    def from_value(cls, session_id: str, value: Mapping[str, Any]) -> "SessionRecord":
        return cls(
            session_id=str(session_id),
            timestamp_ms=_as_int(value.get("timestamp")) or 0,
            temperature=_as_float(value.get("temperature")),
            heart_rate=_as_float(value.get("heartRate")),
            spo2=_as_float(value.get("spo2")),
            gsr=_as_float(value.get("gsr")),
        )


def parse_sessions(value: Any) -> Dict[str, SessionRecord]:
    """Parse a sessions node (absent -> empty). Non-mapping entries are skipped."""
    if not isinstance(value, Mapping):
        return {}
    out: Dict[str, SessionRecord] = {}
    for sid, v in value.items():
        if not isinstance(v, Mapping):
            _log.warning("SESSION_ENTRY_SKIPPED id=%s type=%s", sid, type(v).__name__)
            continue
        out[str(sid)] = SessionRecord.from_value(sid, v)
    return out


@dataclass(frozen=True)
class ReadingCommand:
    """
    Command written to deviceControl/{mac}; the device watches that channel.
    """
    start_reading: bool
    target_driver_id: Optional[str] = None
    requested_by: Optional[str] = None
    timestamp_ms: Optional[int] = None

    def to_payload(self) -> Dict[str, Any]:
        return {
            "startReading": self.start_reading,
            "targetDriver": self.target_driver_id,
            "requestedBy": self.requested_by,
            "timestamp": self.timestamp_ms,
        }


STOP_PATCH: Mapping[str, Any] = {"startReading": False}


@dataclass(frozen=True)
class DeviceResolution:
    device_id: Optional[str]
    reason: ResolutionReason

    @property
    def resolved(self) -> bool:
        return self.device_id is not None


NO_DEVICE = DeviceResolution(device_id=None, reason=ResolutionReason.NONE)


@dataclass(frozen=True)
class OrchestratorState:
    phase: ReadingPhase
    remaining_s: Optional[int] = None
    device_id: Optional[str] = None

    def __str__(self) -> str:
        if self.phase is ReadingPhase.COUNTDOWN:
            return f"COUNTDOWN({self.remaining_s})"
        return self.phase.value


IDLE = OrchestratorState(phase=ReadingPhase.IDLE)


@dataclass(frozen=True)
class DriverProfile:
    driver_id: str
    username: Optional[str] = None
    email: Optional[str] = None
    active: bool = True

    @property
    def display_name(self) -> str:
        return self.username or self.email or self.driver_id

    @classmethod
    def from_value(cls, driver_id: str, value: Any) -> "DriverProfile":
        if not isinstance(value, Mapping):
            return cls(driver_id=driver_id)
        return cls(
            driver_id=driver_id,
            username=value.get("username") or None,
            email=value.get("email") or None,
            active=value.get("active") is not False,
        )


@dataclass(frozen=True)
class DriverViewStatus:
    """
    A snapshot of everything one driver view derives, safe to hand to the UI layer.
    """
    driver: DriverProfile
    resolution: DeviceResolution
    connection: ConnectionState
    reading: OrchestratorState
    latest: Optional[SessionRecord]
    session_count: int
    can_start: bool
    can_stop: bool
    last_error: Optional[str] = None
