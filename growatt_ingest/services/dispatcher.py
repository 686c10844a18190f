from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Callable, Dict, List, Mapping, Optional

from growatt_ingest.errors import LOCAL_ERRORS, AdapterError, ParseError, ValidationError
from growatt_ingest.models.snapshot import DeviceSnapshot
from growatt_ingest.services.config_loader import IntegrationConfigLoader
from growatt_ingest.services.event_writer import EventWriter
from growatt_ingest.services.growatt_client import AuthMode, GrowattAPIClient
from growatt_ingest.services.health_tracker import HealthTracker
from growatt_ingest.services.identity import IdentityResolver, TenantResolver
from growatt_ingest.services.normalizer import normalize_batch, normalize_single
from growatt_ingest.services.snapshot_writer import SnapshotWriter

REALTIME_PATH = "/device/inverter/last_new_data"
BATCH_PATH = "/device/inverter/invs_data"
INFO_PATH = "/device/inverter/inv_data_info"

ACTIONS = (
    "save_config",
    "test_connection",
    "realtime",
    "batch_realtime",
    "info",
    "health",
    "get_config",
)

_FAILURE_MESSAGES = {
    "auth_error": "Authentication failed. Check the Growatt token.",
    "timeout": "Timed out connecting to Growatt. Try again.",
    "parse_error": "Invalid response from the Growatt server.",
}


@dataclass
class CommandResult:
    http_status: int
    body: Dict[str, Any]
    tenant_id: Optional[str] = None
    actor: Optional[str] = None
    action: Optional[str] = None
    auth_mode: Optional[str] = None

    @property
    def success(self) -> bool:
        return bool(self.body.get("success"))


def _device_serial(envelope: Mapping[str, Any]) -> str:
    serial = envelope.get("device_sn") or envelope.get("sn")
    if not isinstance(serial, str) or not serial.strip():
        raise ValidationError("device_sn is required")
    return serial.strip()


def _inverters(envelope: Mapping[str, Any]) -> List[str]:
    inverters = envelope.get("inverters")
    if not isinstance(inverters, list) or not inverters:
        raise ValidationError("inverters (list of serial numbers) is required")
    serials = []
    for item in inverters:
        if not isinstance(item, str) or not item.strip():
            raise ValidationError("inverters must contain non-empty serial numbers")
        serials.append(item.strip())
    return serials


def _page_num(envelope: Mapping[str, Any]) -> int:
    raw = envelope.get("pageNum")
    if raw is None:
        return 1
    if isinstance(raw, bool) or not isinstance(raw, int) or raw < 1:
        raise ValidationError("pageNum must be a positive integer")
    return raw


def error_body(error: AdapterError) -> Dict[str, Any]:
    if error.category == "upstream_error":
        message = f"Growatt server error: {error.tag}"
    else:
        message = _FAILURE_MESSAGES.get(error.category, error.message)
    return {"error": message, "category": error.category}


class CommandDispatcher:
    """Routes an inbound ``action`` envelope to the adapter components."""

    def __init__(
        self,
        client: GrowattAPIClient,
        config_loader: IntegrationConfigLoader,
        snapshots: SnapshotWriter,
        events: EventWriter,
        health: HealthTracker,
        log,
        *,
        identity: Optional[IdentityResolver] = None,
        tenants: Optional[TenantResolver] = None,
    ):
        self.client = client
        self.config_loader = config_loader
        self.snapshots = snapshots
        self.events = events
        self.health = health
        self.log = log
        self.identity = identity
        self.tenants = tenants
        self._handlers: Dict[str, Callable[[str, Optional[str], Mapping[str, Any]], CommandResult]] = {
            "save_config": self._save_config,
            "test_connection": self._test_connection,
            "realtime": self._realtime,
            "batch_realtime": self._batch_realtime,
            "info": self._info,
            "health": self._health,
            "get_config": self._get_config,
        }

    # ------------------------------------------------------------------
    def handle(self, credential: Optional[str], envelope: Mapping[str, Any]) -> CommandResult:
        """Resolve caller and tenant (failing closed), then dispatch."""
        action = envelope.get("action") if isinstance(envelope, Mapping) else None
        try:
            if self.identity is None or self.tenants is None:
                raise AdapterError("unknown_error", "Caller resolution is not configured")
            actor = self.identity.resolve(credential)
            tenant_id = self.tenants.resolve(actor)
        except AdapterError as exc:
            self.log.warning("Rejected %s request: %s", action or "unknown", exc.message)
            return CommandResult(exc.http_status, error_body(exc), action=action)
        return self.dispatch(tenant_id, actor, envelope)

    def dispatch(self, tenant_id: str, actor: Optional[str], envelope: Mapping[str, Any]) -> CommandResult:
        envelope = envelope if isinstance(envelope, Mapping) else {}
        action = envelope.get("action") or ""
        handler = self._handlers.get(action)
        try:
            if handler is None:
                raise ValidationError(f"Unknown action: {action}. Use: {', '.join(ACTIONS)}")
            result = handler(tenant_id, actor, envelope)
        except AdapterError as exc:
            log_fn = self.log.info if isinstance(exc, LOCAL_ERRORS) else self.log.error
            log_fn("[Growatt-v1] %s failed for %s: %s", action or "?", tenant_id, exc.tag)
            result = CommandResult(exc.http_status, error_body(exc))
        except Exception as exc:
            self.log.exception("[Growatt-v1] Unexpected error handling %s", action or "?")
            result = CommandResult(500, {"error": str(exc) or "Internal server error", "category": "unknown_error"})
        result.tenant_id = tenant_id
        result.actor = actor
        result.action = action
        return result

    # ------------------------------------------------------------------
    def _call_vendor(
        self,
        tenant_id: str,
        method: str,
        path: str,
        *,
        require_object: bool = True,
        **kwargs,
    ) -> tuple[Any, AuthMode]:
        """Vendor round-trip; every outcome past config resolution updates health."""
        config = self.config_loader.load(tenant_id)
        try:
            data, mode = self.client.request(config.base_url, config.token, method, path, **kwargs)
            if require_object and not isinstance(data, Mapping):
                raise ParseError(f"parse_error:Expected a JSON object, got {type(data).__name__}")
        except Exception as exc:
            self.health.record_failure(tenant_id, exc)
            tag = exc.tag if isinstance(exc, AdapterError) else "unknown_error"
            self.config_loader.mark_synced(tenant_id, error=tag)
            raise
        return data, mode

    def _mark_success(self, tenant_id: str, mode: AuthMode) -> None:
        self.health.record_success(tenant_id, auth_mode=mode.value)
        self.config_loader.mark_synced(tenant_id)

    def _persist(self, tenant_id: str, snapshots: List[DeviceSnapshot]) -> None:
        for snapshot in snapshots:
            self.snapshots.upsert_snapshot(tenant_id, snapshot)
            self.events.record_event(tenant_id, snapshot)

    def _fetch_realtime(self, tenant_id: str, serial: str) -> tuple[DeviceSnapshot, AuthMode]:
        raw, mode = self._call_vendor(tenant_id, "GET", REALTIME_PATH, params={"device_sn": serial})
        snapshot = normalize_single(serial, raw)
        self._persist(tenant_id, [snapshot])
        self._mark_success(tenant_id, mode)
        return snapshot, mode

    # Actions ----------------------------------------------------------
    def _save_config(self, tenant_id, actor, envelope) -> CommandResult:
        self.config_loader.save(tenant_id, actor, envelope.get("base_url"), envelope.get("token"))
        return CommandResult(200, {"success": True, "message": "Configuration saved"})

    def _test_connection(self, tenant_id, actor, envelope) -> CommandResult:
        serial = _device_serial(envelope)
        _, mode = self._fetch_realtime(tenant_id, serial)
        return CommandResult(
            200,
            {"success": True, "message": "Connection OK", "auth_mode": mode.value},
            auth_mode=mode.value,
        )

    def _realtime(self, tenant_id, actor, envelope) -> CommandResult:
        serial = _device_serial(envelope)
        snapshot, mode = self._fetch_realtime(tenant_id, serial)
        include_raw = envelope.get("raw") is True
        return CommandResult(
            200,
            {"success": True, "data": snapshot.as_dict(include_raw=include_raw)},
            auth_mode=mode.value,
        )

    def _batch_realtime(self, tenant_id, actor, envelope) -> CommandResult:
        inverters = _inverters(envelope)
        page_num = _page_num(envelope)
        raw, mode = self._call_vendor(
            tenant_id,
            "POST",
            BATCH_PATH,
            body={"pageNum": page_num, "inverters": inverters},
        )
        snapshots = normalize_batch(raw)
        self._persist(tenant_id, snapshots)
        self._mark_success(tenant_id, mode)
        include_raw = envelope.get("raw") is True
        data = [snap.as_dict(include_raw=include_raw) for snap in snapshots]
        return CommandResult(
            200,
            {"success": True, "count": len(data), "data": data},
            auth_mode=mode.value,
        )

    def _info(self, tenant_id, actor, envelope) -> CommandResult:
        serial = _device_serial(envelope)
        raw, mode = self._call_vendor(
            tenant_id,
            "GET",
            INFO_PATH,
            require_object=False,
            params={"device_sn": serial},
        )
        self._mark_success(tenant_id, mode)
        return CommandResult(200, {"success": True, "data": raw}, auth_mode=mode.value)

    def _health(self, tenant_id, actor, envelope) -> CommandResult:
        health = self.health.read(tenant_id).as_dict()
        return CommandResult(200, {"success": True, "health": health})

    def _get_config(self, tenant_id, actor, envelope) -> CommandResult:
        return CommandResult(200, {"success": True, "config": self.config_loader.describe(tenant_id)})
