from __future__ import annotations

import hashlib
import json
from typing import Any, Mapping

from growatt_ingest.models.raw_event import RawEvent
from growatt_ingest.models.snapshot import DeviceSnapshot
from growatt_ingest.services.app_state import utc_now


def canonical_json(payload: Mapping[str, Any]) -> str:
    return json.dumps(payload, sort_keys=True, separators=(",", ":"), ensure_ascii=False, default=str)


def payload_hash(
    tenant_id: str,
    device_serial: str,
    device_timestamp: str | None,
    raw_payload: Mapping[str, Any],
) -> str:
    material = f"{tenant_id}:{device_serial}:{device_timestamp or ''}:{canonical_json(raw_payload)}"
    return hashlib.sha256(material.encode("utf-8")).hexdigest()


class EventWriter:
    """Append-once historical log of raw vendor payloads.

    Best effort: a failed write is logged and reported as ``False`` so that
    the latest-state upsert and the caller's response are unaffected.
    """

    def __init__(self, state, log):
        self.state = state
        self.log = log

    def record_event(self, tenant_id: str, snapshot: DeviceSnapshot) -> bool:
        try:
            event = RawEvent(
                tenant_id=tenant_id,
                device_serial=snapshot.device_serial,
                device_timestamp=snapshot.device_timestamp,
                payload_hash=payload_hash(
                    tenant_id,
                    snapshot.device_serial,
                    snapshot.device_timestamp,
                    snapshot.raw_payload,
                ),
                raw_payload=snapshot.raw_payload,
                recorded_at=utc_now(),
            )
            inserted = self.state.insert_raw_event(event)
        except Exception as exc:
            self.log.error(
                "[Growatt-v1] Raw event insert error for %s: %s",
                snapshot.device_serial,
                exc,
            )
            return False
        if not inserted:
            self.log.debug("Duplicate payload for %s ignored (%s)", snapshot.device_serial, event.payload_hash[:12])
        return inserted
