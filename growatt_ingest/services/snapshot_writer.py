from __future__ import annotations

from typing import Optional

from growatt_ingest.models.snapshot import DeviceSnapshot
from growatt_ingest.services.app_state import utc_now


class SnapshotWriter:
    """Maintains the single "current" row per (tenant, device serial)."""

    def __init__(self, state, log):
        self.state = state
        self.log = log

    def upsert_snapshot(self, tenant_id: str, snapshot: DeviceSnapshot) -> Optional[Exception]:
        try:
            self.state.upsert_snapshot(tenant_id, snapshot, updated_at=utc_now())
        except Exception as exc:
            self.log.error("[Growatt-v1] Upsert RT error for %s: %s", snapshot.device_serial, exc)
            return exc
        return None
