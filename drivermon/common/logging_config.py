# drivermon/common/logging_config.py
from __future__ import annotations

import logging
import sys
from dataclasses import dataclass
from datetime import datetime
from pathlib import Path
from typing import Optional


@dataclass(frozen=True)
class LogDefaults:
    level: str = "INFO"
    fmt: str = "%(asctime)s [%(levelname)s] %(name)s: %(message)s"
    filename_prefix: str = "drivermon"
    filename_ext: str = ".log"


DEFAULTS = LogDefaults()


def logs_root(base: Path | None = None) -> Path:
    root = (base or Path.cwd()) / "logs"
    root.mkdir(parents=True, exist_ok=True)
    return root


def make_log_path(*, suffix: str | None = None, directory: Path | None = None) -> Path:
    root = directory if directory else logs_root()
    ts = datetime.now().strftime("%Y-%m-%d_%H-%M-%S")
    base = f"{DEFAULTS.filename_prefix}_{ts}"
    if suffix:
        base += f"_{suffix}"
    return root / f"{base}{DEFAULTS.filename_ext}"


def configure_logging(level: str = DEFAULTS.level, *, log_path: Optional[Path] = None) -> None:
    """
    Console handler on the root logger, plus a file handler when `log_path` is given.
    Idempotent: handlers already installed for the same target are reused.
    A console handler left on a stream other than the current stderr is replaced.
    """
    root = logging.getLogger()
    root.setLevel(getattr(logging, str(level).upper(), logging.INFO))
    formatter = logging.Formatter(DEFAULTS.fmt)

    for h in list(root.handlers):
        if type(h) is logging.StreamHandler and h.stream is not sys.stderr:
            root.removeHandler(h)

    if not any(type(h) is logging.StreamHandler for h in root.handlers):
        sh = logging.StreamHandler(sys.stderr)
        sh.setFormatter(formatter)
        root.addHandler(sh)

    if log_path is None:
        return

    log_path.parent.mkdir(parents=True, exist_ok=True)
    target = str(log_path.resolve())
    for h in root.handlers:
        if isinstance(h, logging.FileHandler) and getattr(h, "baseFilename", None) == target:
            return

    fh = logging.FileHandler(log_path, encoding="utf-8", delay=True)
    fh.setFormatter(formatter)
    root.addHandler(fh)
