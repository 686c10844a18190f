from __future__ import annotations

import hmac
from typing import Iterable, Optional, Protocol

from growatt_ingest.config import CallerConfig
from growatt_ingest.errors import IdentityError, TenantError


class IdentityResolver(Protocol):
    def resolve(self, credential: Optional[str]) -> str:
        """Return the caller identity or raise IdentityError."""


class TenantResolver(Protocol):
    def resolve(self, actor: str) -> str:
        """Return the caller's tenant id or raise TenantError."""


class StaticIdentityResolver:
    """Maps configured ``[caller:NAME]`` credentials to actors."""

    def __init__(self, callers: Iterable[CallerConfig]):
        self._callers = list(callers)

    def resolve(self, credential: Optional[str]) -> str:
        if credential:
            presented = credential.removeprefix("Bearer ").strip().encode("utf-8")
            for caller in self._callers:
                if hmac.compare_digest(presented, caller.credential.encode("utf-8")):
                    return caller.actor
        raise IdentityError()


class StaticTenantResolver:
    def __init__(self, callers: Iterable[CallerConfig]):
        self._tenants = {caller.actor: caller.tenant_id for caller in callers if caller.tenant_id}

    def resolve(self, actor: str) -> str:
        tenant_id = self._tenants.get(actor)
        if not tenant_id:
            raise TenantError()
        return tenant_id
