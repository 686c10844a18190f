# growatt_ingest/models/integration.py
from dataclasses import dataclass, field
from typing import Any, Dict


@dataclass
class IntegrationRecord:
    """One row of the credential store, keyed by (tenant_id, provider)."""

    tenant_id: str
    provider: str
    status: str = "disconnected"
    credentials: Dict[str, Any] = field(default_factory=dict)
    tokens: Dict[str, Any] = field(default_factory=dict)
    last_sync_at: str | None = None
    sync_error: str | None = None
    updated_at: str | None = None


@dataclass
class IntegrationConfig:
    """Resolved vendor credentials for a tenant."""

    base_url: str
    token: str
    provider: str = "growatt_v1"

    def __repr__(self) -> str:
        return f"IntegrationConfig(base_url={self.base_url!r}, provider={self.provider!r}, token_length={len(self.token)})"


@dataclass
class AuditEntry:
    tenant_id: str
    actor: str | None
    action: str
    table: str
    metadata: Dict[str, Any]
    created_at: str | None = None
