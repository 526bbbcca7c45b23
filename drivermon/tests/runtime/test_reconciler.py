from __future__ import annotations

from drivermon.backend.memory import MemoryBackend
from drivermon.runtime.reconciler import SessionReconciler, merge_sessions
from drivermon.runtime.state import SessionRecord


def test_merge_primary_wins_and_legacy_fills_gaps():
    primary = {"s1": {"t": 5}}
    legacy = {"s1": {"t": 1}, "s2": {"t": 2}}
    assert merge_sessions(primary, legacy) == {"s1": {"t": 5}, "s2": {"t": 2}}


def test_merge_is_idempotent():
    primary = {"s1": {"t": 5}, "s3": {"t": 9}}
    legacy = {"s1": {"t": 1}, "s2": {"t": 2}}
    once = merge_sessions(primary, legacy)
    assert merge_sessions(once, legacy) == once


def test_merge_with_empty_legacy_is_primary():
    primary = {"s1": {"t": 5}}
    assert merge_sessions(primary, {}) == primary


def test_merge_does_not_mutate_inputs():
    primary = {"s1": 1}
    legacy = {"s2": 2}
    merge_sessions(primary, legacy)
    assert primary == {"s1": 1}
    assert legacy == {"s2": 2}


def test_merge_overrides_whole_record_not_fields():
    primary = {"s1": {"timestamp": 5}}
    legacy = {"s1": {"timestamp": 1, "temperature": 36.6}}
    assert merge_sessions(primary, legacy)["s1"] == {"timestamp": 5}


def _db():
    return {
        "sessions": {"d1": {"s1": {"timestamp": 5, "temperature": 37.0}}},
        "driverData": {"d1": {"sessions": {
            "s1": {"timestamp": 1, "temperature": 30.0},
            "s2": {"timestamp": 2, "gsr": 400},
        }}},
    }


def test_reconciler_merges_live_sources():
    backend = MemoryBackend(_db())
    rec = SessionReconciler(backend, "d1")
    emitted = []
    rec.subscribe(emitted.append)
    rec.start()

    view = rec.view
    assert set(view) == {"s1", "s2"}
    assert view["s1"].timestamp_ms == 5
    assert view["s1"].temperature == 37.0
    assert view["s2"].gsr == 400.0
    assert emitted[-1] == view


def test_reconciler_recombines_with_latest_snapshot_of_other_source():
    backend = MemoryBackend(_db())
    rec = SessionReconciler(backend, "d1")
    rec.start()

    backend.write("driverData/d1/sessions/s3", {"timestamp": 3})
    assert set(rec.view) == {"s1", "s2", "s3"}

    backend.write("sessions/d1/s2", {"timestamp": 20, "gsr": 999})
    view = rec.view
    assert view["s2"].timestamp_ms == 20
    assert view["s2"].gsr == 999.0
    assert "s3" in view


def test_reconciler_removing_primary_key_reveals_legacy_value():
    backend = MemoryBackend(_db())
    rec = SessionReconciler(backend, "d1")
    rec.start()

    backend.write("sessions/d1/s1", None)
    assert rec.view["s1"].timestamp_ms == 1


def test_reconciler_unreadable_legacy_is_treated_as_empty():
    backend = MemoryBackend(_db())
    backend.deny_read("driverData/d1/sessions")
    rec = SessionReconciler(backend, "d1")
    emitted = []
    rec.subscribe(emitted.append)
    rec.start()

    assert set(rec.view) == {"s1"}
    assert emitted

    # primary updates still flow
    backend.write("sessions/d1/s9", {"timestamp": 9})
    assert set(rec.view) == {"s1", "s9"}


def test_reconciler_legacy_revoked_mid_stream_drops_to_primary():
    backend = MemoryBackend(_db())
    rec = SessionReconciler(backend, "d1")
    rec.start()
    assert set(rec.view) == {"s1", "s2"}

    backend.deny_read("driverData/d1")
    assert set(rec.view) == {"s1"}


def test_reconciler_only_legacy_arrives():
    backend = MemoryBackend(_db())
    rec = SessionReconciler(backend, "d1")
    rec.set_legacy({"a": {"timestamp": 1}})
    assert set(rec.view) == {"a"}
    rec.set_primary({"a": {"timestamp": 7}})
    assert rec.view["a"].timestamp_ms == 7


def test_reconciler_repeated_callbacks_are_idempotent():
    rec = SessionReconciler(MemoryBackend(), "d1")
    rec.set_primary({"s1": {"timestamp": 5}})
    rec.set_legacy({"s2": {"timestamp": 2}})
    first = rec.view
    rec.set_legacy({"s2": {"timestamp": 2}})
    rec.set_primary({"s1": {"timestamp": 5}})
    assert rec.view == first


def test_reconciler_skips_malformed_entries():
    rec = SessionReconciler(MemoryBackend(), "d1")
    rec.set_primary({"s1": {"timestamp": 5}, "junk": 42})
    assert set(rec.view) == {"s1"}
    assert rec.view["s1"] == SessionRecord(session_id="s1", timestamp_ms=5)


def test_reconciler_stop_releases_subscriptions():
    backend = MemoryBackend(_db())
    rec = SessionReconciler(backend, "d1")
    rec.start()
    assert backend.subscription_count == 2
    rec.stop()
    rec.stop()
    assert backend.subscription_count == 0
