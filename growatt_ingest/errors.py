# growatt_ingest/errors.py

from __future__ import annotations

import re

_HTTP_STATUS_RE = re.compile(r":(\d{3})")


class AdapterError(Exception):
    """Base class for classified adapter failures.

    ``tag`` is the raw machine-readable error code (for example
    ``auth_error:401``); it is what the health row stores as
    ``last_error_code``.
    """

    category = "unknown_error"
    http_status = 500
    health_status = "unknown"

    def __init__(self, tag: str, message: str | None = None):
        super().__init__(message or tag)
        self.tag = tag
        self.message = message or tag

    @property
    def status_code(self) -> int | None:
        return extract_http_status(self.tag)


class AuthError(AdapterError):
    category = "auth_error"
    http_status = 401
    health_status = "auth_error"


class VendorTimeout(AdapterError):
    category = "timeout"
    http_status = 504
    health_status = "timeout"

    def __init__(self, tag: str = "timeout", message: str | None = None):
        super().__init__(tag, message)


class UpstreamError(AdapterError):
    category = "upstream_error"
    http_status = 502
    health_status = "upstream_error"

    def __init__(self, tag: str, message: str | None = None, *, retryable: bool = False):
        super().__init__(tag, message)
        self.retryable = retryable


class ParseError(AdapterError):
    category = "parse_error"
    http_status = 502
    health_status = "parse_error"


class NotConfiguredError(AdapterError):
    category = "not_configured"
    http_status = 400

    def __init__(self, message: str = "Growatt v1 integration not configured"):
        super().__init__("not_configured", message)


class ValidationError(AdapterError):
    category = "validation_error"
    http_status = 400

    def __init__(self, message: str):
        super().__init__("validation_error", message)


class IdentityError(AdapterError):
    category = "unauthorized"
    http_status = 401

    def __init__(self, message: str = "Unauthorized"):
        super().__init__("unauthorized", message)


class TenantError(AdapterError):
    category = "forbidden"
    http_status = 403

    def __init__(self, message: str = "Tenant not found"):
        super().__init__("forbidden", message)


# Failures that never reach the vendor and so never touch the health row.
LOCAL_ERRORS = (NotConfiguredError, ValidationError, IdentityError, TenantError)


def extract_http_status(tag: str | None) -> int | None:
    if not tag:
        return None
    match = _HTTP_STATUS_RE.search(tag)
    return int(match.group(1)) if match else None
