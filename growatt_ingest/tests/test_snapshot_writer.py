from growatt_ingest.services.app_state import AppState
from growatt_ingest.services.normalizer import normalize_single
from growatt_ingest.services.snapshot_writer import SnapshotWriter
from growatt_ingest.tests.fakes import FailingState
from growatt_ingest.logging import get_logger

LOG = get_logger("snapshot-writer-test")


def test_upsert_sets_ingestion_time_separately_from_device_time():
    state = AppState(persist=False)
    writer = SnapshotWriter(state, LOG)

    err = writer.upsert_snapshot("t1", normalize_single("SN1", {"data": {"time": "2020-01-01 00:00:00", "pac": "1"}}))

    row = state.get_snapshot("t1", "SN1")
    assert err is None
    assert row["ts_device"] == "2020-01-01 00:00:00"
    assert row["updated_at"].startswith("20")
    assert row["updated_at"] != row["ts_device"]


def test_upsert_failure_is_returned_not_raised():
    writer = SnapshotWriter(FailingState(AppState(persist=False), "upsert_snapshot"), LOG)

    err = writer.upsert_snapshot("t1", normalize_single("SN1", {"pac": 1}))

    assert isinstance(err, RuntimeError)
