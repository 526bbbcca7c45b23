# drivermon/app/config.py
from __future__ import annotations

from dataclasses import dataclass, fields
from pathlib import Path
from typing import Any, Dict

import yaml

from drivermon.core.constants import (
    AUTO_START_COUNTDOWN_SEC,
    AUTO_START_DELAY_MS,
    COUNTDOWN_TICK_MS,
    LIVENESS_POLL_MS,
    OFFLINE_THRESHOLD_MS,
    REQUESTED_BY_ADMIN,
    REQUESTED_BY_DRIVER,
    STALE_THRESHOLD_MS,
)
from drivermon.core.errors import ConfigError


@dataclass(frozen=True)
class MonitorConfig:
    stale_threshold_ms: int = STALE_THRESHOLD_MS
    offline_threshold_ms: int = OFFLINE_THRESHOLD_MS
    countdown_s: int = AUTO_START_COUNTDOWN_SEC
    auto_start_delay_ms: int = AUTO_START_DELAY_MS
    tick_ms: int = COUNTDOWN_TICK_MS
    liveness_poll_ms: int = LIVENESS_POLL_MS
    requested_by: str = REQUESTED_BY_DRIVER

    def validate(self) -> "MonitorConfig":
        for name in ("stale_threshold_ms", "offline_threshold_ms", "countdown_s",
                     "auto_start_delay_ms", "tick_ms", "liveness_poll_ms"):
            v = getattr(self, name)
            if isinstance(v, bool) or not isinstance(v, int) or v <= 0:
                raise ConfigError(
                    f"'{name}' must be a positive integer (got {v!r}).",
                    details={"field": name},
                )
        if self.stale_threshold_ms >= self.offline_threshold_ms:
            raise ConfigError(
                "'stale_threshold_ms' must be below 'offline_threshold_ms'.",
                details={
                    "stale_threshold_ms": self.stale_threshold_ms,
                    "offline_threshold_ms": self.offline_threshold_ms,
                },
            )
        if self.requested_by not in (REQUESTED_BY_DRIVER, REQUESTED_BY_ADMIN):
            raise ConfigError(
                f"'requested_by' must be '{REQUESTED_BY_DRIVER}' or '{REQUESTED_BY_ADMIN}'.",
                details={"requested_by": self.requested_by},
            )
        return self

    @classmethod
    def from_mapping(cls, data: Dict[str, Any]) -> "MonitorConfig":
        known = {f.name for f in fields(cls)}
        unknown = sorted(set(data) - known, key=str)
        if unknown:
            raise ConfigError(
                f"Unknown monitor option(s): {', '.join(map(str, unknown))}.",
                hint=f"Known options: {', '.join(sorted(known))}",
            )
        return cls(**data).validate()


def load_config(path: str | Path) -> MonitorConfig:
    """Load a YAML file with a 'monitor' root node; missing keys keep defaults."""
    path = Path(path)
    try:
        with open(path, "r", encoding="utf-8") as f:
            data = yaml.safe_load(f) or {}
    except FileNotFoundError:
        raise ConfigError(f"Missing config file: {path}") from None
    except yaml.YAMLError as e:
        raise ConfigError(
            "Failed to parse config file.",
            hint=str(e),
            details={"path": str(path)},
        ) from None

    monitor = data.get("monitor") if isinstance(data, dict) else None
    if not isinstance(monitor, dict):
        raise ConfigError(
            "Config file is missing 'monitor' root node.",
            details={"path": str(path)},
        )
    return MonitorConfig.from_mapping(monitor)
