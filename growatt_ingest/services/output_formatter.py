# growatt_ingest/services/output_formatter.py

from __future__ import annotations

import json
from typing import Any, Mapping

from growatt_ingest.services.dispatcher import CommandResult


def _fmt(value: Any, unit: str = "", precision: int = 1) -> str:
    if value is None:
        return "n/a"
    if isinstance(value, float):
        return f"{value:.{precision}f}{unit}"
    return f"{value}{unit}"


def _snapshot_line(snap: Mapping[str, Any]) -> str:
    pv_parts = []
    for n in (1, 2, 3):
        v = snap.get(f"pv_v{n}")
        i = snap.get(f"pv_i{n}")
        if v is None and i is None:
            continue
        pv_parts.append(f"PV{n}={_fmt(v, 'V')}/{_fmt(i, 'A')}")
    pv_txt = f"  {' '.join(pv_parts)}" if pv_parts else ""
    return (
        f"[{snap.get('device_serial')}] PAC={_fmt(snap.get('power_w'), 'W', 0)}  "
        f"today={_fmt(snap.get('energy_today'), 'kWh')}  total={_fmt(snap.get('energy_total'), 'kWh')}  "
        f"temp={_fmt(snap.get('temperature_c'), 'C')}  status={snap.get('status_text') or snap.get('status_code') or 'n/a'}"
        f"  at={snap.get('device_timestamp') or 'n/a'}{pv_txt}"
    )


def format_human(result: CommandResult) -> list[str]:
    body = result.body
    if not result.success:
        category = body.get("category")
        suffix = f" ({category})" if category else ""
        return [f"ERROR{suffix}: {body.get('error')}"]

    if result.action in ("realtime", "batch_realtime"):
        data = body.get("data")
        snapshots = data if isinstance(data, list) else [data]
        lines = [_snapshot_line(s) for s in snapshots if isinstance(s, Mapping)]
        if result.action == "batch_realtime":
            lines.insert(0, f"{body.get('count', len(lines))} inverter(s)")
        return lines
    if result.action == "health":
        health = body.get("health") or {}
        lines = [f"status={health.get('status')}"]
        for key in ("last_ok_at", "last_fail_at", "last_error_code", "last_http_status", "checked_at", "auth_mode"):
            if health.get(key) is not None:
                lines.append(f"  {key}={health[key]}")
        return lines
    if result.action == "get_config":
        config = body.get("config") or {}
        return [f"{key}={value}" for key, value in config.items()]
    if "message" in body:
        mode = body.get("auth_mode")
        return [f"{body['message']}" + (f" (auth={mode})" if mode else "")]
    return [json.dumps(body.get("data"), indent=2, default=str)]


def emit_json(result: CommandResult) -> None:
    print(json.dumps(result.body, indent=2, default=str))


def emit_human(result: CommandResult) -> None:
    for line in format_human(result):
        print(line)
