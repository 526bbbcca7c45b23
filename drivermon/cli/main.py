# drivermon/cli/main.py
from __future__ import annotations

import sys
from pathlib import Path
from typing import Optional

from drivermon.common.logging_config import configure_logging, make_log_path
from drivermon.core.errors import DriverMonError

from drivermon.cli.args import parse_args
from drivermon.cli.commands import (
    cmd_assign,
    cmd_classify,
    cmd_devices,
    cmd_gsr,
    cmd_history,
    cmd_resolve,
    cmd_set_test,
    cmd_simulate,
    load_cli_config,
)

COMMANDS = {
    "classify": cmd_classify,
    "devices": cmd_devices,
    "resolve": cmd_resolve,
    "history": cmd_history,
    "gsr": cmd_gsr,
    "assign": cmd_assign,
    "set-test": cmd_set_test,
    "simulate": cmd_simulate,
}


def _log_path(args) -> Optional[Path]:
    if args.log_file:
        return Path(args.log_file)
    if args.log:
        return make_log_path()
    return None


def main(argv: Optional[list[str]] = None) -> int:
    args = parse_args(argv)
    configure_logging(args.log_level, log_path=_log_path(args))

    try:
        cfg = load_cli_config(args.config)
        handler = COMMANDS.get(args.cmd)
        if handler is None:
            return 2
        return handler(args, cfg)
    except DriverMonError as e:
        print(f"ERROR: {e.message}")
        if e.hint:
            print(f"Hint: {e.hint}")
        return 1


if __name__ == "__main__":
    sys.exit(main())
