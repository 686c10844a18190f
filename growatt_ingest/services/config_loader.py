from __future__ import annotations

import re
from typing import Any, Dict, Optional
from urllib.parse import urlparse

from growatt_ingest.config import GrowattAPIConfig
from growatt_ingest.errors import NotConfiguredError, ValidationError
from growatt_ingest.models.integration import AuditEntry, IntegrationConfig, IntegrationRecord
from growatt_ingest.services.app_state import utc_now
from growatt_ingest.services.growatt_client import mask_token
from growatt_ingest.services.health_tracker import HealthTracker

MIN_TOKEN_LENGTH = 16

_VERSION_SEGMENT = re.compile(r"^v\d+$", re.IGNORECASE)


def _first(*values: Any) -> Optional[str]:
    for value in values:
        if isinstance(value, str) and value.strip():
            return value.strip()
    return None


def normalize_base_url(base_url: str, version: str = "v1") -> str:
    """Guarantee ``.../vN/``: append the API version when the path lacks one."""
    url = base_url.strip().rstrip("/")
    last_segment = urlparse(url).path.rstrip("/").rsplit("/", 1)[-1]
    if not _VERSION_SEGMENT.match(last_segment):
        url = f"{url}/{version}"
    return url + "/"


class IntegrationConfigLoader:
    """Resolves and stores per-tenant Growatt credentials."""

    AUDIT_TABLE = "monitoring_integrations"

    def __init__(self, cfg: GrowattAPIConfig, state, health: HealthTracker, log):
        self.cfg = cfg
        self.state = state
        self.health = health
        self.log = log

    # ------------------------------------------------------------------
    def load(self, tenant_id: str) -> IntegrationConfig:
        record = self.state.get_integration(tenant_id, self.cfg.provider)
        if record is not None:
            base_url = _first(record.credentials.get("growatt_base_url")) or self.cfg.default_base_url
            token = _first(
                record.tokens.get("growatt_token"),
                record.credentials.get("growatt_token"),
            )
            provider = self.cfg.provider
        else:
            record = self.state.get_integration(tenant_id, self.cfg.legacy_provider)
            if record is None:
                raise NotConfiguredError(
                    "Growatt v1 integration not configured. Go to Integrations to set up."
                )
            self.log.debug("Using legacy '%s' integration for %s", self.cfg.legacy_provider, tenant_id)
            base_url = (
                _first(
                    record.credentials.get("growatt_base_url"),
                    record.credentials.get("base_url"),
                )
                or self.cfg.default_base_url
            )
            token = _first(
                record.tokens.get("apiKey"),
                record.tokens.get("api_key"),
                record.credentials.get("apiKey"),
            )
            provider = self.cfg.legacy_provider

        if not token:
            raise NotConfiguredError("Growatt API token not configured.")
        return IntegrationConfig(base_url=base_url, token=token, provider=provider)

    # ------------------------------------------------------------------
    @staticmethod
    def validate(base_url: Any, token: Any) -> None:
        if not isinstance(base_url, str) or not base_url.strip():
            raise ValidationError("base_url and token are required")
        if not isinstance(token, str) or not token:
            raise ValidationError("base_url and token are required")
        if len(token) < MIN_TOKEN_LENGTH:
            raise ValidationError(f"token must be at least {MIN_TOKEN_LENGTH} characters")
        parsed = urlparse(base_url.strip())
        if parsed.scheme not in ("http", "https") or not parsed.netloc:
            raise ValidationError("base_url must be an http(s) URL")

    def save(self, tenant_id: str, actor: str | None, base_url: Any, token: Any) -> str:
        self.validate(base_url, token)
        normalized = normalize_base_url(base_url)

        self.state.upsert_integration(
            IntegrationRecord(
                tenant_id=tenant_id,
                provider=self.cfg.provider,
                status="connected",
                credentials={"growatt_base_url": normalized},
                tokens={"growatt_token": token},
                sync_error=None,
                updated_at=utc_now(),
            )
        )
        self.health.reset(tenant_id)
        self.state.append_audit(
            AuditEntry(
                tenant_id=tenant_id,
                actor=actor,
                action=f"{self.cfg.provider}.config.saved",
                table=self.AUDIT_TABLE,
                metadata={
                    "provider": self.cfg.provider,
                    "base_url": normalized,
                    "token_length": len(token),
                },
            )
        )
        self.log.info(
            "Saved %s config for %s (base_url=%s, token=%s)",
            self.cfg.provider,
            tenant_id,
            normalized,
            mask_token(token),
        )
        return normalized

    # ------------------------------------------------------------------
    def describe(self, tenant_id: str) -> Dict[str, Any]:
        record = self.state.get_integration(tenant_id, self.cfg.provider)
        creds = record.credentials if record else {}
        tokens = record.tokens if record else {}
        return {
            "base_url": creds.get("growatt_base_url") or "",
            "has_token": bool(_first(tokens.get("growatt_token"), creds.get("growatt_token"))),
            "status": record.status if record else "disconnected",
            "last_sync_at": record.last_sync_at if record else None,
            "sync_error": record.sync_error if record else None,
        }

    def mark_synced(self, tenant_id: str, error: str | None = None) -> None:
        try:
            if error is None:
                self.state.update_integration_sync(tenant_id, self.cfg.provider, utc_now(), None)
            else:
                self.state.update_integration_sync(tenant_id, self.cfg.provider, None, error)
        except Exception as exc:
            self.log.error("Failed to record sync status for %s: %s", tenant_id, exc)
