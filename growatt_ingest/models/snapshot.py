# growatt_ingest/models/snapshot.py
from dataclasses import asdict, dataclass, field
from typing import Any, Dict


@dataclass
class DeviceSnapshot:
    device_serial: str
    logger_serial: str | None
    device_timestamp: str | None  # vendor clock, not ingestion time
    status_text: str | None
    status_code: str | None
    power_w: float | None
    energy_today: float | None
    energy_total: float | None
    temperature_c: float | None
    freq_hz: float | None
    pv_v1: float | None
    pv_i1: float | None
    pv_v2: float | None
    pv_i2: float | None
    pv_v3: float | None
    pv_i3: float | None
    raw_payload: Dict[str, Any] = field(default_factory=dict)

    def telemetry(self) -> Dict[str, Any]:
        data = asdict(self)
        data.pop("raw_payload", None)
        return data

    def as_dict(self, include_raw: bool = False) -> Dict[str, Any]:
        data = self.telemetry()
        if include_raw:
            data["raw_payload"] = self.raw_payload
        return data
