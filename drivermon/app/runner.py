# drivermon/app/runner.py
from __future__ import annotations

import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Optional

from drivermon.app.config import MonitorConfig
from drivermon.app.controller import DriverViewController
from drivermon.app.sinks import CommandTraceLogger
from drivermon.interfaces.backend import Backend
from drivermon.interfaces.command_sink import CommandSink
from drivermon.runtime.scheduler import Scheduler


@dataclass(frozen=True)
class AppRun:
    controller: DriverViewController
    backend: Backend
    scheduler: Scheduler
    cmd_sink: CommandSink

    def close(self) -> None:
        try:
            self.controller.close()
        finally:
            self.cmd_sink.close()


def start_run(
    cfg: MonitorConfig,
    *,
    backend: Backend,
    driver_id: str,
    scheduler: Optional[Scheduler] = None,
    commands_jsonl: Optional[Path] = None,
) -> AppRun:
    """Build (but do not open) a driver view over `backend`."""
    log = logging.getLogger(__name__)
    scheduler = scheduler or Scheduler()

    cmd_sink = CommandTraceLogger(
        logger=logging.getLogger("commands"),
        file_path=commands_jsonl,
    )

    controller = DriverViewController(
        cfg,
        backend=backend,
        scheduler=scheduler,
        driver_id=driver_id,
        cmd_sink=cmd_sink,
        logger=log,
    )

    return AppRun(
        controller=controller,
        backend=backend,
        scheduler=scheduler,
        cmd_sink=cmd_sink,
    )
