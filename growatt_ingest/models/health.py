# growatt_ingest/models/health.py
from dataclasses import asdict, dataclass
from typing import Any, Dict

HEALTH_STATES = ("ok", "auth_error", "timeout", "upstream_error", "parse_error", "unknown")


@dataclass
class IntegrationHealth:
    tenant_id: str
    status: str = "unknown"
    last_ok_at: str | None = None
    last_fail_at: str | None = None
    last_error_code: str | None = None
    last_http_status: int | None = None
    checked_at: str | None = None
    auth_mode: str | None = None  # auth mode of the last successful call

    def as_dict(self) -> Dict[str, Any]:
        return asdict(self)
