from __future__ import annotations

import logging
import shutil
import time
from pathlib import Path

import pytest
import yaml

from drivermon.cli.main import main

SAMPLES = Path(__file__).resolve().parents[3] / "samples"
NOW = 1_760_000_000_000


@pytest.fixture(autouse=True)
def _restore_root_logging():
    root = logging.getLogger()
    handlers, level = list(root.handlers), root.level
    yield
    for h in list(root.handlers):
        # only the handlers configure_logging installs
        if h not in handlers and type(h) in (logging.StreamHandler, logging.FileHandler):
            root.removeHandler(h)
            h.close()
    root.setLevel(level)


@pytest.fixture
def snapshot(tmp_path: Path) -> Path:
    dst = tmp_path / "snapshot.yml"
    shutil.copy(SAMPLES / "snapshot.yml", dst)
    return dst


@pytest.mark.parametrize(
    "last_seen, expected",
    [
        (NOW - 1_000, "CONNECTED"),
        (NOW - 40_000, "STALE"),
        (NOW - 90_000, "OFFLINE"),
    ],
)
def test_classify(capsys, last_seen, expected) -> None:
    rc = main(["classify", "--last-seen", str(last_seen), "--now", str(NOW)])
    assert rc == 0
    assert capsys.readouterr().out.strip() == expected


def test_classify_never_seen(capsys) -> None:
    assert main(["classify", "--now", str(NOW)]) == 0
    assert capsys.readouterr().out.strip() == "NO_DATA"


def test_classify_with_config_thresholds(tmp_path: Path, capsys) -> None:
    cfg = tmp_path / "monitor.yml"
    cfg.write_text("monitor:\n  stale_threshold_ms: 1000\n  offline_threshold_ms: 5000\n", encoding="utf-8")
    assert main(["--config", str(cfg), "classify", "--last-seen", str(NOW - 2_000), "--now", str(NOW)]) == 0
    assert capsys.readouterr().out.strip() == "STALE"


def test_bad_config_reports_error(tmp_path: Path, capsys) -> None:
    rc = main(["--config", str(tmp_path / "missing.yml"), "classify", "--now", str(NOW)])
    assert rc == 1
    assert capsys.readouterr().out.startswith("ERROR: Missing config file")


def test_numeric_config_key_reports_error(tmp_path: Path, capsys) -> None:
    cfg = tmp_path / "monitor.yml"
    cfg.write_text("monitor:\n  1: 5\n", encoding="utf-8")
    rc = main(["--config", str(cfg), "classify", "--now", str(NOW)])
    assert rc == 1
    assert capsys.readouterr().out.startswith("ERROR: Unknown monitor option(s): 1.")


def test_resolve(snapshot: Path, capsys) -> None:
    assert main(["resolve", "--snapshot", str(snapshot), "--driver", "uid-alice"]) == 0
    assert capsys.readouterr().out.strip() == "AA:BB:CC:DD:EE:01 ASSIGNED"

    assert main(["resolve", "--snapshot", str(snapshot), "--driver", "uid-bob"]) == 0
    assert capsys.readouterr().out.strip() == "AA:BB:CC:DD:EE:02 TEST_FALLBACK"


def test_resolve_empty_registry(tmp_path: Path, capsys) -> None:
    snap = tmp_path / "empty.yml"
    snap.write_text("drivers: {}\n", encoding="utf-8")
    assert main(["resolve", "--snapshot", str(snap), "--driver", "uid-alice"]) == 3
    assert capsys.readouterr().out.strip() == "- NONE"


def test_devices(snapshot: Path, capsys) -> None:
    assert main(["devices", "--snapshot", str(snapshot)]) == 0
    out = capsys.readouterr().out
    assert "AA:BB:CC:DD:EE:01 type=assigned driver=uid-alice" in out
    assert "AA:BB:CC:DD:EE:02 type=test" in out


def test_history_is_reconciled_newest_first(snapshot: Path, capsys) -> None:
    assert main(["history", "--snapshot", str(snapshot), "--driver", "uid-alice"]) == 0
    lines = capsys.readouterr().out.strip().splitlines()
    assert [line.split()[0] for line in lines] == ["s-300", "s-200", "s-100"]
    # primary copy of s-100 wins over the legacy one
    assert "temp=36.7C" in lines[2]


def test_history_limit_and_empty(snapshot: Path, capsys) -> None:
    assert main(["history", "--snapshot", str(snapshot), "--driver", "uid-alice", "--limit", "1"]) == 0
    assert capsys.readouterr().out.strip().startswith("s-300 ts=1760000000300")

    assert main(["history", "--snapshot", str(snapshot), "--driver", "uid-bob"]) == 0
    assert capsys.readouterr().out.strip() == "No sessions."


def test_assign_writes_snapshot(snapshot: Path, tmp_path: Path, capsys) -> None:
    out = tmp_path / "after.yml"
    rc = main([
        "assign", "--snapshot", str(snapshot), "--driver", "uid-bob",
        "--device", "AA:BB:CC:DD:EE:02", "--out", str(out),
    ])
    assert rc == 0
    data = yaml.safe_load(out.read_text(encoding="utf-8"))
    assert data["devices"]["AA:BB:CC:DD:EE:02"]["type"] == "assigned"
    assert data["devices"]["AA:BB:CC:DD:EE:02"]["assignedDriver"] == "uid-bob"

    # source snapshot untouched when --out is given
    src = yaml.safe_load(snapshot.read_text(encoding="utf-8"))
    assert src["devices"]["AA:BB:CC:DD:EE:02"]["type"] == "test"


def test_assign_unknown_device(snapshot: Path, capsys) -> None:
    rc = main(["assign", "--snapshot", str(snapshot), "--driver", "uid-bob", "--device", "FF:FF"])
    assert rc == 1
    out = capsys.readouterr().out
    assert "ERROR: Device 'FF:FF' is not registered." in out
    assert "Hint:" in out


def test_set_test_in_place(snapshot: Path, capsys) -> None:
    assert main(["set-test", "--snapshot", str(snapshot), "--device", "AA:BB:CC:DD:EE:01"]) == 0
    data = yaml.safe_load(snapshot.read_text(encoding="utf-8"))
    assert data["devices"]["AA:BB:CC:DD:EE:01"] == {"type": "test", "status": {"lastSeen": 1760000000000}}


def test_missing_snapshot(tmp_path: Path, capsys) -> None:
    rc = main(["devices", "--snapshot", str(tmp_path / "nope.yml")])
    assert rc == 1
    assert "Snapshot file not found" in capsys.readouterr().out


def test_simulate_manual_start_sends_nothing_before_countdown_ends(snapshot: Path, tmp_path: Path, capsys) -> None:
    data = yaml.safe_load(snapshot.read_text(encoding="utf-8"))
    data["devices"]["AA:BB:CC:DD:EE:01"]["status"]["lastSeen"] = int(time.time() * 1000)
    snapshot.write_text(yaml.safe_dump(data), encoding="utf-8")

    cmds = tmp_path / "cmds.jsonl"
    saved = tmp_path / "saved.yml"
    rc = main([
        "simulate", "--snapshot", str(snapshot), "--driver", "uid-alice",
        "--secs", "0.05", "--start", "--commands-jsonl", str(cmds), "--save", str(saved),
    ])
    assert rc == 0
    out = capsys.readouterr().out
    assert "START: STARTED" in out
    assert "[alice] device=AA:BB:CC:DD:EE:01 (ASSIGNED)" in out
    # the view closed mid-countdown: nothing was sent
    assert not cmds.exists() or cmds.read_text(encoding="utf-8") == ""
    assert "deviceControl" not in yaml.safe_load(saved.read_text(encoding="utf-8"))


def test_log_flag_writes_timestamped_file(tmp_path: Path, monkeypatch, capsys) -> None:
    monkeypatch.chdir(tmp_path)
    assert main(["--log", "--log-level", "INFO", "classify", "--now", str(NOW)]) == 0
    logging.getLogger("drivermon.test").info("hello")
    for h in logging.getLogger().handlers:
        h.flush()
    files = list((tmp_path / "logs").glob("drivermon_*.log"))
    assert len(files) == 1
    assert "hello" in files[0].read_text(encoding="utf-8")


def test_gsr_series_from_reconciled_sessions(snapshot: Path, capsys) -> None:
    assert main(["gsr", "--snapshot", str(snapshot), "--driver", "uid-alice"]) == 0
    assert capsys.readouterr().out.strip().splitlines() == [
        "1760000000100 412",
        "1760000000300 455",
    ]


def test_gsr_with_too_few_points(tmp_path: Path, capsys) -> None:
    snap = tmp_path / "one.yml"
    snap.write_text("sessions:\n  d1:\n    s1: {timestamp: 100, gsr: 400}\n", encoding="utf-8")
    assert main(["gsr", "--snapshot", str(snap), "--driver", "d1"]) == 0
    out = capsys.readouterr().out
    assert "100 400" in out
    assert "Not enough readings for a trend" in out

    assert main(["gsr", "--snapshot", str(snap), "--driver", "d2"]) == 0
    assert capsys.readouterr().out.strip() == "No GSR readings."
