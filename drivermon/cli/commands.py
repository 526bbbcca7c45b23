# drivermon/cli/commands.py
from __future__ import annotations

import argparse
from pathlib import Path
from typing import Optional

from drivermon.app import admin
from drivermon.app.config import MonitorConfig, load_config
from drivermon.app.runner import start_run
from drivermon.backend.memory import MemoryBackend
from drivermon.backend.paths import device_status_path
from drivermon.runtime.device_resolver import resolve_device
from drivermon.runtime.liveness import classify
from drivermon.runtime.scheduler import wall_clock_ms
from drivermon.runtime.selector import GSR_MIN_POINTS, gsr_series, session_history
from drivermon.runtime.state import DeviceStatus, DriverViewStatus, SessionRecord


def load_cli_config(path: Optional[str]) -> MonitorConfig:
    return load_config(path) if path else MonitorConfig()


# ---------------- printing ----------------

def format_session(rec: SessionRecord) -> str:
    parts = [f"{rec.session_id}", f"ts={rec.timestamp_ms}"]
    if rec.temperature is not None:
        parts.append(f"temp={rec.temperature:.1f}C")
    if rec.heart_rate is not None:
        parts.append(f"hr={rec.heart_rate:.0f}bpm")
    if rec.spo2 is not None:
        parts.append(f"spo2={rec.spo2:.0f}%")
    if rec.gsr is not None:
        parts.append(f"gsr={rec.gsr:.0f}")
    return " ".join(parts)


def print_view_status(st: DriverViewStatus) -> None:
    dev = st.resolution.device_id or "-"
    latest = format_session(st.latest) if st.latest else "(none)"
    print(
        f"[{st.driver.display_name}] device={dev} ({st.resolution.reason.value}) "
        f"link={st.connection.value} reading={st.reading} sessions={st.session_count} latest={latest}"
    )
    if st.last_error:
        print(f"  err: {st.last_error}")


def _save(backend: MemoryBackend, args: argparse.Namespace) -> None:
    out = Path(args.out) if getattr(args, "out", None) else Path(args.snapshot)
    backend.dump(out)
    print(f"Snapshot written: {out}")


# ---------------- commands ----------------

def cmd_classify(args: argparse.Namespace, cfg: MonitorConfig) -> int:
    now = args.now if args.now is not None else wall_clock_ms()
    state = classify(
        args.last_seen,
        now,
        stale_threshold_ms=cfg.stale_threshold_ms,
        offline_threshold_ms=cfg.offline_threshold_ms,
    )
    print(state.value)
    return 0


def cmd_devices(args: argparse.Namespace, cfg: MonitorConfig) -> int:
    backend = MemoryBackend.from_file(args.snapshot)
    devices = admin.list_devices(backend)
    if not devices:
        print("Devices: (none)")
        return 0

    now = wall_clock_ms()
    print("Devices:")
    for mac, rec in devices.items():
        status = DeviceStatus.from_value(backend.read_once(device_status_path(mac)))
        state = classify(
            status.last_seen_ms,
            now,
            stale_threshold_ms=cfg.stale_threshold_ms,
            offline_threshold_ms=cfg.offline_threshold_ms,
        )
        owner = f" driver={rec.assigned_driver_id}" if rec.assigned_driver_id else ""
        print(f"  - {mac} type={rec.type}{owner} link={state.value}")
    return 0


def cmd_resolve(args: argparse.Namespace, cfg: MonitorConfig) -> int:
    backend = MemoryBackend.from_file(args.snapshot)
    res = resolve_device(admin.list_devices(backend), args.driver)
    print(f"{res.device_id or '-'} {res.reason.value}")
    return 0 if res.resolved else 3


def cmd_history(args: argparse.Namespace, cfg: MonitorConfig) -> int:
    backend = MemoryBackend.from_file(args.snapshot)
    sessions = session_history(admin.read_sessions_once(backend, args.driver))
    if args.limit is not None:
        sessions = sessions[: max(0, args.limit)]
    if not sessions:
        print("No sessions.")
        return 0
    for rec in sessions:
        print(format_session(rec))
    return 0


def cmd_gsr(args: argparse.Namespace, cfg: MonitorConfig) -> int:
    backend = MemoryBackend.from_file(args.snapshot)
    points = gsr_series(admin.read_sessions_once(backend, args.driver))
    if not points:
        print("No GSR readings.")
        return 0
    for ts, value in points:
        print(f"{ts} {value:.0f}")
    if len(points) < GSR_MIN_POINTS:
        print(f"Not enough readings for a trend (need {GSR_MIN_POINTS}).")
    return 0


def cmd_assign(args: argparse.Namespace, cfg: MonitorConfig) -> int:
    backend = MemoryBackend.from_file(args.snapshot)
    admin.assign_device(backend, args.device, args.driver)
    print(f"ASSIGNED: {args.device} -> {args.driver}")
    _save(backend, args)
    return 0


def cmd_set_test(args: argparse.Namespace, cfg: MonitorConfig) -> int:
    backend = MemoryBackend.from_file(args.snapshot)
    admin.set_test_device(backend, args.device)
    print(f"TEST DEVICE: {args.device}")
    _save(backend, args)
    return 0


def cmd_simulate(args: argparse.Namespace, cfg: MonitorConfig) -> int:
    backend = MemoryBackend.from_file(args.snapshot)
    run = start_run(
        cfg,
        backend=backend,
        driver_id=args.driver,
        commands_jsonl=Path(args.commands_jsonl) if args.commands_jsonl else None,
    )
    try:
        run.controller.subscribe(print_view_status)
        run.controller.open()

        if args.start:
            decision = run.controller.start_reading()
            print(f"START: {decision.value}")

        run.scheduler.run_for(int(args.secs * 1000))
    finally:
        run.close()

    if args.save:
        backend.dump(Path(args.save))
        print(f"Snapshot written: {args.save}")
    return 0
