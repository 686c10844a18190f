# growatt_ingest/models/raw_event.py
from dataclasses import dataclass
from typing import Any, Dict


@dataclass
class RawEvent:
    tenant_id: str
    device_serial: str
    device_timestamp: str | None
    payload_hash: str
    raw_payload: Dict[str, Any]
    recorded_at: str | None = None
