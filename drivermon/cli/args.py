# drivermon/cli/args.py
from __future__ import annotations

import argparse
from typing import Optional


def _positive_float(v: str) -> float:
    try:
        f = float(v)
    except ValueError:
        raise argparse.ArgumentTypeError(f"Invalid number '{v}'") from None
    if f <= 0:
        raise argparse.ArgumentTypeError(f"Expected a positive number, got '{v}'")
    return f


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="drivermon")
    parser.add_argument("--config", default=None, help="YAML file with a 'monitor' section.")
    parser.add_argument("--log-level", default="WARNING", help="Root log level (default: WARNING).")
    parser.add_argument("--log-file", default=None, help="Also write logs to this file.")
    parser.add_argument("--log", action="store_true", help="Also write logs to logs/drivermon_<timestamp>.log.")
    sub = parser.add_subparsers(dest="cmd", required=True)

    p_classify = sub.add_parser("classify", help="Classify a heartbeat timestamp.")
    p_classify.add_argument("--last-seen", type=int, default=None, help="Epoch ms of the last heartbeat (omit: never).")
    p_classify.add_argument("--now", type=int, default=None, help="Epoch ms to classify at (default: now).")

    snapshot = argparse.ArgumentParser(add_help=False)
    snapshot.add_argument("--snapshot", required=True, help="YAML/JSON export of the realtime database.")

    driver = argparse.ArgumentParser(add_help=False)
    driver.add_argument("--driver", required=True, help="Driver uid.")

    sub.add_parser("devices", parents=[snapshot], help="List registered devices and their liveness.")
    sub.add_parser("resolve", parents=[snapshot, driver], help="Show which device a driver binds to.")

    p_history = sub.add_parser("history", parents=[snapshot, driver], help="Reconciled session history.")
    p_history.add_argument("--limit", type=int, default=None)

    sub.add_parser("gsr", parents=[snapshot, driver], help="GSR readings over time, oldest first.")

    p_assign = sub.add_parser("assign", parents=[snapshot, driver], help="Assign a device to a driver.")
    p_assign.add_argument("--device", required=True)
    p_assign.add_argument("--out", default=None, help="Write the updated snapshot here (default: in place).")

    p_test = sub.add_parser("set-test", parents=[snapshot], help="Make a device the shared test device.")
    p_test.add_argument("--device", required=True)
    p_test.add_argument("--out", default=None, help="Write the updated snapshot here (default: in place).")

    p_sim = sub.add_parser("simulate", parents=[snapshot, driver], help="Run a live driver view in real time.")
    p_sim.add_argument("--secs", type=_positive_float, default=15.0)
    p_sim.add_argument("--start", action="store_true", help="Request a manual start right away.")
    p_sim.add_argument("--commands-jsonl", default=None, help="Trace reading commands to this file.")
    p_sim.add_argument("--save", default=None, help="Write the final database snapshot here.")

    return parser


def parse_args(argv: Optional[list[str]] = None) -> argparse.Namespace:
    return build_parser().parse_args(argv)
