from __future__ import annotations

from growatt_ingest.errors import AdapterError, extract_http_status
from growatt_ingest.models.health import IntegrationHealth
from growatt_ingest.services.app_state import utc_now


class HealthTracker:
    """Latest-known status of a tenant's vendor integration.

    One row per tenant, overwritten in place. A failure state is only left
    through a later successful call; there is no time-based recovery.
    """

    def __init__(self, state, log):
        self.state = state
        self.log = log

    # ------------------------------------------------------------------
    def _write(self, tenant_id: str, **fields) -> None:
        try:
            self.state.upsert_health(tenant_id, **fields)
        except Exception as exc:
            self.log.error("[Growatt-v1] Health cache update failed for %s: %s", tenant_id, exc)

    def record_success(self, tenant_id: str, auth_mode: str | None = None) -> None:
        now = utc_now()
        self._write(
            tenant_id,
            status="ok",
            checked_at=now,
            last_ok_at=now,
            last_error_code=None,
            last_http_status=None,
            auth_mode=auth_mode,
        )

    def record_failure(self, tenant_id: str, error: BaseException) -> str:
        if isinstance(error, AdapterError):
            status = error.health_status
            tag = error.tag
        else:
            status = "unknown"
            tag = f"unknown_error:{error}"
        now = utc_now()
        self._write(
            tenant_id,
            status=status,
            checked_at=now,
            last_fail_at=now,
            last_error_code=tag,
            last_http_status=extract_http_status(tag),
        )
        self.log.warning("Growatt integration for %s is now %s (%s)", tenant_id, status, tag)
        return status

    def reset(self, tenant_id: str) -> None:
        self._write(tenant_id, status="unknown", checked_at=utc_now())

    # ------------------------------------------------------------------
    def read(self, tenant_id: str) -> IntegrationHealth:
        health = self.state.get_health(tenant_id)
        return health or IntegrationHealth(tenant_id=tenant_id)
