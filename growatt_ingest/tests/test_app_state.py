import sqlite3

import pytest

from growatt_ingest.models.integration import AuditEntry, IntegrationRecord
from growatt_ingest.models.raw_event import RawEvent
from growatt_ingest.services.app_state import AppState
from growatt_ingest.services.normalizer import normalize_single


def test_snapshot_upsert_overwrites_single_row(tmp_path):
    db_path = tmp_path / "state.db"
    state = AppState(path=db_path)

    state.upsert_snapshot("t1", normalize_single("SN1", {"data": {"pac": "100"}}), updated_at="2024-01-01T00:00:00+00:00")
    state.upsert_snapshot("t1", normalize_single("SN1", {"data": {"pac": "--", "fac": "50"}}), updated_at="2024-01-01T00:05:00+00:00")
    state.close()

    conn = sqlite3.connect(db_path)
    rows = conn.execute("SELECT inverter_sn, power_w, freq_hz, updated_at FROM growatt_inverter_rt").fetchall()
    assert rows == [("SN1", None, 50.0, "2024-01-01T00:05:00+00:00")]


def test_snapshots_are_scoped_by_tenant():
    state = AppState(persist=False)
    state.upsert_snapshot("t1", normalize_single("SN1", {"pac": 1}), updated_at="a")
    state.upsert_snapshot("t2", normalize_single("SN1", {"pac": 2}), updated_at="b")

    assert state.get_snapshot("t1", "SN1")["power_w"] == 1
    assert state.get_snapshot("t2", "SN1")["power_w"] == 2
    assert state.get_snapshot("t2", "SN1")["raw_payload"] == {"pac": 2}


def test_health_upsert_touches_only_given_columns():
    state = AppState(persist=False)
    state.upsert_health("t1", status="ok", last_ok_at="T1", checked_at="T1")
    state.upsert_health("t1", status="timeout", last_fail_at="T2", checked_at="T2", last_error_code="timeout")

    health = state.get_health("t1")
    assert health.status == "timeout"
    assert health.last_ok_at == "T1"
    assert health.last_fail_at == "T2"
    assert health.last_error_code == "timeout"
    assert state.get_health("other") is None


def test_health_rejects_unknown_status_and_columns():
    state = AppState(persist=False)

    with pytest.raises(ValueError):
        state.upsert_health("t1", status="degraded")
    with pytest.raises(ValueError):
        state.upsert_health("t1", status="ok", note="x")
    assert state.get_health("t1") is None


def test_raw_event_insert_or_ignore():
    state = AppState(persist=False)
    event = RawEvent("t1", "SN1", None, "hash-1", {"pac": 1})

    assert state.insert_raw_event(event) is True
    assert state.insert_raw_event(event) is False
    assert state.insert_raw_event(RawEvent("t2", "SN1", None, "hash-1", {"pac": 1})) is True
    assert state.count_raw_events("t1") == 1
    assert state.count_raw_events("t2", "SN1") == 1


def test_integration_round_trip_and_sync_status():
    state = AppState(persist=False)
    state.upsert_integration(
        IntegrationRecord(
            tenant_id="t1",
            provider="growatt_v1",
            status="connected",
            credentials={"growatt_base_url": "https://x/v1/"},
            tokens={"growatt_token": "t" * 20},
        )
    )

    assert state.update_integration_sync("t1", "growatt_v1", "2024-01-01", None) is True
    assert state.update_integration_sync("t1", "growatt_v1", None, "timeout") is True
    assert state.update_integration_sync("t9", "growatt_v1", "2024-01-01", None) is False

    record = state.get_integration("t1", "growatt_v1")
    assert record.tokens == {"growatt_token": "t" * 20}
    assert record.last_sync_at == "2024-01-01"
    assert record.sync_error == "timeout"
    assert state.get_integration("t1", "growatt") is None


def test_audit_entries_append():
    state = AppState(persist=False)
    state.append_audit(AuditEntry("t1", "user-1", "growatt_v1.config.saved", "monitoring_integrations", {"token_length": 20}))
    state.append_audit(AuditEntry("t1", "user-1", "growatt_v1.config.saved", "monitoring_integrations", {"token_length": 24}))

    entries = state.list_audit("t1")
    assert [e.metadata["token_length"] for e in entries] == [20, 24]
    assert entries[0].actor == "user-1"
