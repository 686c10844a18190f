from __future__ import annotations

import math
from dataclasses import dataclass
from typing import Any, Callable, Dict, List, Mapping, Optional, Tuple

from growatt_ingest.models.snapshot import DeviceSnapshot

# Growatt's "no data" marker.
PLACEHOLDER = "--"

LOGGER_KEYS = ("dataloggerSn", "datalogSn")


def is_missing(value: Any) -> bool:
    return value is None or value == "" or value == PLACEHOLDER


def num_or_none(value: Any) -> Optional[float]:
    if is_missing(value) or isinstance(value, bool):
        return None
    try:
        number = float(value)
    except (TypeError, ValueError):
        return None
    if not math.isfinite(number):
        return None
    return number


def text_or_none(value: Any) -> Optional[str]:
    if is_missing(value):
        return None
    text = str(value).strip()
    return text or None


@dataclass(frozen=True)
class FieldRule:
    """Snapshot field sourced from the first non-missing vendor alias."""

    name: str
    keys: Tuple[str, ...]
    coerce: Callable[[Any], Any]

    def extract(self, payload: Mapping[str, Any]) -> Any:
        for key in self.keys:
            value = self.coerce(payload.get(key))
            if value is not None:
                return value
        return None


FIELD_RULES: Tuple[FieldRule, ...] = (
    FieldRule("device_timestamp", ("time",), text_or_none),
    FieldRule("status_text", ("statusText",), text_or_none),
    FieldRule("status_code", ("status",), text_or_none),
    FieldRule("power_w", ("pac", "power"), num_or_none),
    FieldRule("energy_today", ("powerToday", "eToday"), num_or_none),
    FieldRule("energy_total", ("powerTotal", "eTotal"), num_or_none),
    FieldRule("temperature_c", ("temperature",), num_or_none),
    FieldRule("freq_hz", ("fac",), num_or_none),
    FieldRule("pv_v1", ("vpv1",), num_or_none),
    FieldRule("pv_i1", ("ipv1",), num_or_none),
    FieldRule("pv_v2", ("vpv2",), num_or_none),
    FieldRule("pv_i2", ("ipv2",), num_or_none),
    FieldRule("pv_v3", ("vpv3",), num_or_none),
    FieldRule("pv_i3", ("ipv3",), num_or_none),
)


def payload_root(raw: Mapping[str, Any]) -> Mapping[str, Any]:
    """Metrics live under ``data`` in some responses and at the root in others."""
    nested = raw.get("data")
    if isinstance(nested, Mapping):
        return nested
    return raw


def _logger_serial(raw: Mapping[str, Any], payload: Mapping[str, Any]) -> Optional[str]:
    for source in (raw, payload):
        for key in LOGGER_KEYS:
            value = text_or_none(source.get(key))
            if value is not None:
                return value
    return None


def normalize_single(device_serial: str, raw: Mapping[str, Any]) -> DeviceSnapshot:
    if not isinstance(raw, Mapping):
        raw = {}
    payload = payload_root(raw)
    fields: Dict[str, Any] = {rule.name: rule.extract(payload) for rule in FIELD_RULES}
    return DeviceSnapshot(
        device_serial=device_serial,
        logger_serial=_logger_serial(raw, payload),
        raw_payload=dict(raw),
        **fields,
    )


def normalize_batch(raw: Mapping[str, Any]) -> List[DeviceSnapshot]:
    """Flatten an ``invs_data`` response into one snapshot per device.

    Each ``data[serial]`` entry nests the metrics under ``data[serial][serial]``
    with ``dataloggerSn`` alongside. Null placeholders for offline devices are
    skipped.
    """
    data = raw.get("data") if isinstance(raw, Mapping) else None
    if not isinstance(data, Mapping):
        return []

    snapshots: List[DeviceSnapshot] = []
    for serial, entry in data.items():
        if not isinstance(entry, Mapping):
            continue
        nested = entry.get(serial)
        metrics = nested if isinstance(nested, Mapping) else entry
        merged = {k: v for k, v in metrics.items() if k != "data"}
        logger = _logger_serial(entry, entry)
        if logger is not None:
            merged["dataloggerSn"] = logger
        snapshots.append(normalize_single(str(serial), merged))
    return snapshots
