from .liveness import classify, ConnectionMonitor
from .reconciler import merge_sessions, SessionReconciler
from .selector import select_latest, session_history, gsr_series, LatestReadingTracker
from .device_resolver import resolve_device, DeviceResolver
from .reading_session import ReadingSessionOrchestrator, StartDecision
from .scheduler import Scheduler, ManualScheduler
from .state import (
    ConnectionState,
    DeviceRecord,
    DeviceResolution,
    OrchestratorState,
    ReadingCommand,
    ReadingPhase,
    ResolutionReason,
    SessionRecord,
)

__all__ = [
    "classify", "ConnectionMonitor",
    "merge_sessions", "SessionReconciler",
    "select_latest", "session_history", "gsr_series", "LatestReadingTracker",
    "resolve_device", "DeviceResolver",
    "ReadingSessionOrchestrator", "StartDecision",
    "Scheduler", "ManualScheduler",
    "ConnectionState", "DeviceRecord", "DeviceResolution", "OrchestratorState",
    "ReadingCommand", "ReadingPhase", "ResolutionReason", "SessionRecord",
]
