# drivermon/app/sinks.py
from __future__ import annotations

import json
import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from pathlib import Path
from typing import List, Optional

from drivermon.interfaces.command_sink import CommandEvent, CommandSink


@dataclass
class CommandTraceLogger(CommandSink):
    """
    Logs every reading command event; appends them as JSON lines when file_path is set.
    """
    logger: logging.Logger
    file_path: Optional[Path] = None

    def __post_init__(self) -> None:
        self._closed = False
        if self.file_path is not None:
            self.file_path.parent.mkdir(parents=True, exist_ok=True)

    def close(self) -> None:
        self._closed = True

    def on_command(self, event: CommandEvent) -> None:
        if self._closed:
            return

        self.logger.info("CMD %s %s device=%s payload=%s", event.name, event.kind, event.device_id, event.payload)
        if self.file_path is None:
            return

        out = {
            "name": event.name,
            "kind": event.kind,
            "device_id": event.device_id,
            "payload": dict(event.payload) if event.payload is not None else None,
            "ts_utc": event.ts_utc or datetime.now(timezone.utc).isoformat(),
        }
        out = {k: v for k, v in out.items() if v is not None}

        with open(self.file_path, "a", encoding="utf-8") as f:
            f.write(json.dumps(out, ensure_ascii=False) + "\n")


class RecordingCommandSink(CommandSink):
    """Keeps events in memory (status views, tests)."""

    def __init__(self) -> None:
        self.events: List[CommandEvent] = []

    def on_command(self, event: CommandEvent) -> None:
        self.events.append(event)

    def close(self) -> None:
        return None
