# drivermon/core/errors.py
from __future__ import annotations


class DriverMonError(Exception):
    """
    Base class for all expected operational errors in the driver monitor.
    """

    #: Stable machine-readable identifier (for CLI exit mapping, UI messages, etc.)
    code: str = "unknown"

    def __init__(
        self,
        message: str,
        *,
        hint: str | None = None,
        details: dict | None = None,
    ):
        super().__init__(message)
        self.message = message
        self.hint = hint
        self.details = details or {}

    def __str__(self) -> str:
        return self.message


# ---------------------------------------------------------------------------
# Configuration / setup errors (no backend access yet)
# ---------------------------------------------------------------------------

class ConfigError(DriverMonError):
    """
    Monitor configuration is missing or invalid.

    Examples:
      - config file not found
      - missing 'monitor' root node
      - non-positive thresholds, stale threshold >= offline threshold
    """
    code = "config_error"


class SnapshotLoadError(DriverMonError):
    """
    A backend snapshot file could not be loaded.

    Examples:
      - file not found
      - malformed YAML / JSON
      - root node is not a mapping
    """
    code = "snapshot_load_error"


# ---------------------------------------------------------------------------
# Backend errors
# ---------------------------------------------------------------------------

class BackendReadError(DriverMonError):
    """
    A subscription or single-shot read was refused or failed.

    Examples:
      - path not readable for the current account
      - legacy session path not provisioned for a driver
    """
    code = "backend_read_error"


class BackendWriteError(DriverMonError):
    """
    A write or partial update could not be applied.

    Examples:
      - network loss
      - write rejected by backend rules
    """
    code = "backend_write_error"


class CommandWriteError(BackendWriteError):
    """
    A reading start/stop command could not be written to the device control channel.

    Commands are idempotent, so re-sending is always safe; the caller decides
    whether to retry.
    """
    code = "command_write_error"


# ---------------------------------------------------------------------------
# Registry errors
# ---------------------------------------------------------------------------

class UnknownDeviceError(DriverMonError):
    """
    An admin operation targeted a device id that is not in the registry.
    """
    code = "unknown_device"
