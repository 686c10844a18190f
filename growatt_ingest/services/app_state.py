# growatt_ingest/services/app_state.py

from __future__ import annotations

import json
import logging
import sqlite3
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, List, Optional, Union

from growatt_ingest.models.health import HEALTH_STATES, IntegrationHealth
from growatt_ingest.models.integration import AuditEntry, IntegrationRecord
from growatt_ingest.models.raw_event import RawEvent
from growatt_ingest.models.snapshot import DeviceSnapshot


HEALTH_COLUMNS = (
    "status",
    "last_ok_at",
    "last_fail_at",
    "last_error_code",
    "last_http_status",
    "checked_at",
    "auth_mode",
)

SNAPSHOT_COLUMNS = (
    "datalogger_sn",
    "ts_device",
    "status_text",
    "status_code",
    "power_w",
    "energy_today",
    "energy_total",
    "temperature_c",
    "freq_hz",
    "pv_v1",
    "pv_i1",
    "pv_v2",
    "pv_i2",
    "pv_v3",
    "pv_i3",
    "raw_payload",
    "updated_at",
)


def utc_now() -> str:
    return datetime.now(timezone.utc).isoformat()


def _dumps(value: Any) -> str:
    return json.dumps(value, sort_keys=True, default=str)


def _loads(raw: Optional[str], default=None):
    if raw is None:
        return default
    try:
        return json.loads(raw)
    except json.JSONDecodeError:
        return default


class AppState:
    """SQLite-backed credential, telemetry and health store.

    Every write is an upsert-by-key or insert-or-ignore-by-key, so callers
    never need read-then-write sequences.
    """

    def __init__(self, path: Optional[Union[Path, str]] = None, *, persist: bool = True):
        default_path = Path.home() / ".growatt_ingest_state.db"
        self._persist = persist
        self._log = logging.getLogger("growatt.state")
        if self._persist:
            resolved = Path(path).expanduser() if path else default_path
            resolved.parent.mkdir(parents=True, exist_ok=True)
            self.path: Optional[Path] = resolved
            self._conn = sqlite3.connect(self.path)
            self._conn.execute("PRAGMA journal_mode=WAL")
        else:
            self.path = None
            self._conn = sqlite3.connect(":memory:")
        self._conn.row_factory = sqlite3.Row
        self._init_schema()

    # ------------------------------------------------------------------
    def _init_schema(self) -> None:
        stmts = [
            """
            CREATE TABLE IF NOT EXISTS monitoring_integrations (
                tenant_id TEXT NOT NULL,
                provider TEXT NOT NULL,
                status TEXT NOT NULL DEFAULT 'disconnected',
                credentials TEXT NOT NULL DEFAULT '{}',
                tokens TEXT NOT NULL DEFAULT '{}',
                last_sync_at TEXT,
                sync_error TEXT,
                updated_at TEXT,
                PRIMARY KEY (tenant_id, provider)
            )
            """,
            """
            CREATE TABLE IF NOT EXISTS growatt_health_cache (
                tenant_id TEXT PRIMARY KEY,
                status TEXT NOT NULL DEFAULT 'unknown',
                last_ok_at TEXT,
                last_fail_at TEXT,
                last_error_code TEXT,
                last_http_status INTEGER,
                checked_at TEXT,
                auth_mode TEXT
            )
            """,
            """
            CREATE TABLE IF NOT EXISTS growatt_inverter_rt (
                tenant_id TEXT NOT NULL,
                inverter_sn TEXT NOT NULL,
                datalogger_sn TEXT,
                ts_device TEXT,
                status_text TEXT,
                status_code TEXT,
                power_w REAL,
                energy_today REAL,
                energy_total REAL,
                temperature_c REAL,
                freq_hz REAL,
                pv_v1 REAL,
                pv_i1 REAL,
                pv_v2 REAL,
                pv_i2 REAL,
                pv_v3 REAL,
                pv_i3 REAL,
                raw_payload TEXT,
                updated_at TEXT NOT NULL,
                PRIMARY KEY (tenant_id, inverter_sn)
            )
            """,
            """
            CREATE TABLE IF NOT EXISTS growatt_raw_events (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                tenant_id TEXT NOT NULL,
                inverter_sn TEXT NOT NULL,
                ts_device TEXT,
                payload_hash TEXT NOT NULL,
                raw_payload TEXT NOT NULL,
                recorded_at TEXT NOT NULL,
                UNIQUE (tenant_id, inverter_sn, payload_hash)
            )
            """,
            """
            CREATE TABLE IF NOT EXISTS audit_logs (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                tenant_id TEXT NOT NULL,
                user_id TEXT,
                action TEXT NOT NULL,
                table_name TEXT NOT NULL,
                metadata TEXT NOT NULL,
                created_at TEXT NOT NULL
            )
            """,
        ]
        for stmt in stmts:
            self._conn.execute(stmt)
        self._conn.commit()

    # ------------------------------------------------------------------
    def close(self) -> None:
        if self._conn:
            self._conn.commit()
            self._conn.close()
            self._conn = None

    # Credential store -------------------------------------------------
    def get_integration(self, tenant_id: str, provider: str) -> Optional[IntegrationRecord]:
        cur = self._conn.execute(
            "SELECT * FROM monitoring_integrations WHERE tenant_id = ? AND provider = ?",
            (tenant_id, provider),
        )
        row = cur.fetchone()
        if not row:
            return None
        return IntegrationRecord(
            tenant_id=row["tenant_id"],
            provider=row["provider"],
            status=row["status"],
            credentials=_loads(row["credentials"], {}) or {},
            tokens=_loads(row["tokens"], {}) or {},
            last_sync_at=row["last_sync_at"],
            sync_error=row["sync_error"],
            updated_at=row["updated_at"],
        )

    def upsert_integration(self, record: IntegrationRecord) -> None:
        self._conn.execute(
            """
            INSERT INTO monitoring_integrations(
                tenant_id, provider, status, credentials, tokens, last_sync_at, sync_error, updated_at
            )
            VALUES (?, ?, ?, ?, ?, ?, ?, ?)
            ON CONFLICT(tenant_id, provider) DO UPDATE SET
                status=excluded.status,
                credentials=excluded.credentials,
                tokens=excluded.tokens,
                sync_error=excluded.sync_error,
                updated_at=excluded.updated_at
            """,
            (
                record.tenant_id,
                record.provider,
                record.status,
                _dumps(record.credentials),
                _dumps(record.tokens),
                record.last_sync_at,
                record.sync_error,
                record.updated_at or utc_now(),
            ),
        )
        self._conn.commit()

    def update_integration_sync(
        self,
        tenant_id: str,
        provider: str,
        last_sync_at: Optional[str],
        sync_error: Optional[str],
    ) -> bool:
        """Record the outcome of the latest vendor call; returns False when no row exists."""
        if last_sync_at is not None:
            sql = """
                UPDATE monitoring_integrations
                SET last_sync_at = ?, sync_error = NULL
                WHERE tenant_id = ? AND provider = ?
            """
            params: tuple = (last_sync_at, tenant_id, provider)
        else:
            sql = """
                UPDATE monitoring_integrations
                SET sync_error = ?
                WHERE tenant_id = ? AND provider = ?
            """
            params = (sync_error, tenant_id, provider)
        cur = self._conn.execute(sql, params)
        self._conn.commit()
        return cur.rowcount > 0

    # Health cache ------------------------------------------------------
    def upsert_health(self, tenant_id: str, **fields: Any) -> None:
        """Upsert the tenant's health row, touching only the given columns."""
        unknown = set(fields) - set(HEALTH_COLUMNS)
        if unknown:
            raise ValueError(f"Unknown health columns: {sorted(unknown)}")
        if "status" in fields and fields["status"] not in HEALTH_STATES:
            raise ValueError(f"Unknown health status: {fields['status']}")
        columns = list(fields)
        column_sql = ", ".join(["tenant_id", *columns])
        placeholders = ", ".join("?" for _ in range(len(columns) + 1))
        updates = ", ".join(f"{col}=excluded.{col}" for col in columns)
        sql = f"INSERT INTO growatt_health_cache({column_sql}) VALUES ({placeholders})"
        if updates:
            sql += f" ON CONFLICT(tenant_id) DO UPDATE SET {updates}"
        else:
            sql += " ON CONFLICT(tenant_id) DO NOTHING"
        self._conn.execute(sql, (tenant_id, *[fields[c] for c in columns]))
        self._conn.commit()

    def get_health(self, tenant_id: str) -> Optional[IntegrationHealth]:
        cur = self._conn.execute(
            "SELECT * FROM growatt_health_cache WHERE tenant_id = ?",
            (tenant_id,),
        )
        row = cur.fetchone()
        if not row:
            return None
        return IntegrationHealth(tenant_id=row["tenant_id"], **{c: row[c] for c in HEALTH_COLUMNS})

    # Latest state ------------------------------------------------------
    def upsert_snapshot(self, tenant_id: str, snapshot: DeviceSnapshot, updated_at: str) -> None:
        values = (
            snapshot.logger_serial,
            snapshot.device_timestamp,
            snapshot.status_text,
            snapshot.status_code,
            snapshot.power_w,
            snapshot.energy_today,
            snapshot.energy_total,
            snapshot.temperature_c,
            snapshot.freq_hz,
            snapshot.pv_v1,
            snapshot.pv_i1,
            snapshot.pv_v2,
            snapshot.pv_i2,
            snapshot.pv_v3,
            snapshot.pv_i3,
            _dumps(snapshot.raw_payload),
            updated_at,
        )
        columns = ", ".join(SNAPSHOT_COLUMNS)
        placeholders = ", ".join("?" for _ in range(len(SNAPSHOT_COLUMNS) + 2))
        updates = ", ".join(f"{col}=excluded.{col}" for col in SNAPSHOT_COLUMNS)
        self._conn.execute(
            f"""
            INSERT INTO growatt_inverter_rt(tenant_id, inverter_sn, {columns})
            VALUES ({placeholders})
            ON CONFLICT(tenant_id, inverter_sn) DO UPDATE SET {updates}
            """,
            (tenant_id, snapshot.device_serial, *values),
        )
        self._conn.commit()

    def get_snapshot(self, tenant_id: str, device_serial: str) -> Optional[Dict[str, Any]]:
        cur = self._conn.execute(
            "SELECT * FROM growatt_inverter_rt WHERE tenant_id = ? AND inverter_sn = ?",
            (tenant_id, device_serial),
        )
        row = cur.fetchone()
        if not row:
            return None
        data = dict(row)
        data["raw_payload"] = _loads(data.get("raw_payload"), {})
        return data

    # Raw events --------------------------------------------------------
    def insert_raw_event(self, event: RawEvent) -> bool:
        """Insert-or-ignore on (tenant, serial, hash); True when a row was added."""
        cur = self._conn.execute(
            """
            INSERT INTO growatt_raw_events(
                tenant_id, inverter_sn, ts_device, payload_hash, raw_payload, recorded_at
            )
            VALUES (?, ?, ?, ?, ?, ?)
            ON CONFLICT(tenant_id, inverter_sn, payload_hash) DO NOTHING
            """,
            (
                event.tenant_id,
                event.device_serial,
                event.device_timestamp,
                event.payload_hash,
                _dumps(event.raw_payload),
                event.recorded_at or utc_now(),
            ),
        )
        self._conn.commit()
        return cur.rowcount > 0

    def count_raw_events(self, tenant_id: str, device_serial: Optional[str] = None) -> int:
        if device_serial is None:
            cur = self._conn.execute(
                "SELECT COUNT(*) FROM growatt_raw_events WHERE tenant_id = ?",
                (tenant_id,),
            )
        else:
            cur = self._conn.execute(
                "SELECT COUNT(*) FROM growatt_raw_events WHERE tenant_id = ? AND inverter_sn = ?",
                (tenant_id, device_serial),
            )
        return int(cur.fetchone()[0])

    # Audit -------------------------------------------------------------
    def append_audit(self, entry: AuditEntry) -> None:
        self._conn.execute(
            """
            INSERT INTO audit_logs(tenant_id, user_id, action, table_name, metadata, created_at)
            VALUES (?, ?, ?, ?, ?, ?)
            """,
            (
                entry.tenant_id,
                entry.actor,
                entry.action,
                entry.table,
                _dumps(entry.metadata),
                entry.created_at or utc_now(),
            ),
        )
        self._conn.commit()

    def list_audit(self, tenant_id: str) -> List[AuditEntry]:
        cur = self._conn.execute(
            "SELECT * FROM audit_logs WHERE tenant_id = ? ORDER BY id",
            (tenant_id,),
        )
        return [
            AuditEntry(
                tenant_id=row["tenant_id"],
                actor=row["user_id"],
                action=row["action"],
                table=row["table_name"],
                metadata=_loads(row["metadata"], {}) or {},
                created_at=row["created_at"],
            )
            for row in cur.fetchall()
        ]
