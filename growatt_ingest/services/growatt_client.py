from __future__ import annotations

import json
import socket
import threading
import time
from dataclasses import dataclass
from enum import Enum
from typing import Any, Callable, Dict, Optional, Sequence, Tuple

import requests
import urllib3

from growatt_ingest.config import GrowattAPIConfig
from growatt_ingest.errors import AuthError, ParseError, UpstreamError, VendorTimeout


class AuthMode(str, Enum):
    BEARER = "bearer"
    TOKEN_HEADER = "token_header"

    def headers(self, token: str) -> Dict[str, str]:
        if self is AuthMode.BEARER:
            return {"Authorization": f"Bearer {token}"}
        return {"Token": token}


def mask_token(token: str | None) -> str:
    token = token or ""
    if len(token) <= 8:
        return "****"
    return f"{token[:4]}{'*' * (len(token) - 8)}{token[-4:]}"


def _excerpt(text: str, limit: int) -> str:
    return (text or "")[:limit]


def _is_timeout(exc: BaseException) -> bool:
    """True when a timeout sits anywhere under ``exc``.

    requests re-raises a read timeout hit while buffering the body as
    ``ConnectionError(ReadTimeoutError(...))``.
    """
    pending = [exc]
    seen = set()
    while pending:
        current = pending.pop()
        if id(current) in seen:
            continue
        seen.add(id(current))
        if isinstance(current, urllib3.exceptions.NewConnectionError):
            # subclasses ConnectTimeoutError but means the connect was refused
            continue
        if isinstance(current, (requests.Timeout, urllib3.exceptions.TimeoutError, TimeoutError)):
            return True
        pending.extend(arg for arg in current.args if isinstance(arg, BaseException))
        pending.extend(link for link in (current.__cause__, current.__context__) if link is not None)
    return False


class _Exchange:
    """One request/response round-trip with a total deadline.

    The exchange runs on a daemon thread; if the deadline passes first the
    socket is shut down so the worker unblocks, and the caller moves on.
    """

    def __init__(self, session, method: str, url: str, kwargs: Dict[str, Any]):
        self.session = session
        self.method = method
        self.url = url
        self.kwargs = kwargs
        self.response = None
        self.status: Optional[int] = None
        self.text: Optional[str] = None
        self.error: Optional[BaseException] = None

    def _run(self) -> None:
        try:
            resp = self.session.request(self.method, self.url, stream=True, **self.kwargs)
            self.response = resp
            try:
                self.status = resp.status_code
                self.text = resp.text
            finally:
                resp.close()
        except Exception as exc:
            self.error = exc

    def run(self, seconds: float) -> bool:
        """Return False when the deadline passed before the exchange finished."""
        worker = threading.Thread(target=self._run, name="growatt-http", daemon=True)
        worker.start()
        worker.join(seconds)
        if worker.is_alive():
            self.abort()
            return False
        return True

    def abort(self) -> None:
        connection = getattr(getattr(self.response, "raw", None), "connection", None)
        sock = getattr(connection, "sock", None)
        if sock is None:
            return
        try:
            sock.shutdown(socket.SHUT_RDWR)
        except OSError:
            pass  # already closed by the peer


@dataclass(frozen=True)
class BackoffPolicy:
    """Fixed-schedule retry budget applied within one auth mode."""

    attempts: int = 3
    delays: Tuple[float, ...] = (0.5, 1.0, 2.0)

    def delay_for(self, attempt: int) -> float:
        if not self.delays:
            return 0.0
        return self.delays[min(attempt, len(self.delays) - 1)]

    def run(self, call: Callable[[int], Any], sleep: Callable[[float], None], log) -> Any:
        """Invoke ``call(attempt)`` until it succeeds or a terminal error is raised.

        Retryable outcomes (timeouts, retryable upstream errors) are re-raised
        once the budget is spent.
        """
        for attempt in range(self.attempts):
            try:
                return call(attempt)
            except (VendorTimeout, UpstreamError) as exc:
                if isinstance(exc, UpstreamError) and not exc.retryable:
                    raise
                if attempt >= self.attempts - 1:
                    raise
                delay = self.delay_for(attempt)
                log.debug("Retrying after %s in %.1fs", exc.tag, delay)
                sleep(delay)
        raise AssertionError("BackoffPolicy requires at least one attempt")


@dataclass(frozen=True)
class AuthFallback:
    """Try each auth mode in order; a credential rejection moves to the next."""

    modes: Tuple[AuthMode, ...] = (AuthMode.BEARER, AuthMode.TOKEN_HEADER)

    def run(self, call: Callable[[AuthMode], Any]) -> Tuple[Any, AuthMode]:
        last_error: Optional[AuthError] = None
        for mode in self.modes:
            try:
                return call(mode), mode
            except AuthError as exc:
                last_error = exc
        raise last_error or AuthError("auth_error", "No auth modes configured")


class GrowattAPIClient:
    """Growatt Open API v1 transport with retry and auth-header fallback.

    Knows nothing about telemetry schemas; callers get back the parsed JSON
    document plus the auth mode that was accepted.
    """

    def __init__(
        self,
        cfg: GrowattAPIConfig,
        log,
        session: Optional[requests.Session] = None,
        *,
        sleep: Callable[[float], None] = time.sleep,
        auth_modes: Sequence[AuthMode] = (AuthMode.BEARER, AuthMode.TOKEN_HEADER),
    ):
        self.cfg = cfg
        self.log = log
        self.session = session or requests.Session()
        self.sleep = sleep
        self.backoff = BackoffPolicy(attempts=cfg.max_attempts, delays=cfg.backoff_seconds)
        self.auth = AuthFallback(modes=tuple(auth_modes))

    # ------------------------------------------------------------------
    @staticmethod
    def _build_url(base_url: str, path: str) -> str:
        if not path.startswith("/"):
            path = "/" + path
        return f"{base_url.rstrip('/')}{path}"

    def request(
        self,
        base_url: str,
        token: str,
        method: str,
        path: str,
        params: Optional[Dict[str, Any]] = None,
        body: Any = None,
    ) -> Tuple[Any, AuthMode]:
        url = self._build_url(base_url, path)
        method = method.upper()

        def per_mode(mode: AuthMode):
            return self.backoff.run(
                lambda attempt: self._attempt(url, token, method, path, mode, attempt, params, body),
                self.sleep,
                self.log,
            )

        data, mode = self.auth.run(per_mode)
        if mode is not self.auth.modes[0]:
            self.log.info("Growatt %s %s accepted with %s auth", method, path, mode.value)
        return data, mode

    # ------------------------------------------------------------------
    def _attempt(
        self,
        url: str,
        token: str,
        method: str,
        path: str,
        mode: AuthMode,
        attempt: int,
        params: Optional[Dict[str, Any]],
        body: Any,
    ) -> Any:
        self.log.info(
            "[Growatt-v1] %s %s (%s, attempt %d), token=%s",
            method,
            path,
            mode.value,
            attempt + 1,
            mask_token(token),
        )

        kwargs: Dict[str, Any] = {
            "headers": mode.headers(token),
            "params": params or None,
            "timeout": self.cfg.timeout,
        }
        if body is not None and method == "POST":
            kwargs["json"] = body

        exchange = _Exchange(self.session, method, url, kwargs)
        if not exchange.run(self.cfg.timeout):
            self.log.warning("[Growatt-v1] %s exceeded its %.1fs deadline", path, self.cfg.timeout)
            raise VendorTimeout()

        exc = exchange.error
        if exc is not None:
            if _is_timeout(exc):
                self.log.warning("[Growatt-v1] %s timed out after %.1fs: %s", path, self.cfg.timeout, exc)
                raise VendorTimeout() from exc
            if isinstance(exc, (requests.ConnectionError, requests.exceptions.ChunkedEncodingError)):
                self.log.warning("[Growatt-v1] %s connection failed: %s", path, exc)
                raise UpstreamError("upstream_error:connection", str(exc), retryable=True) from exc
            raise exc

        status = exchange.status
        if status in (401, 403):
            self.log.warning(
                "[Growatt-v1] Auth failed (%s) with %s: %s",
                status,
                mode.value,
                _excerpt(exchange.text, 200),
            )
            raise AuthError(f"auth_error:{status}")

        if status == 429 or status >= 500:
            self.log.warning("[Growatt-v1] Retryable %s: %s", status, _excerpt(exchange.text, 100))
            raise UpstreamError(f"upstream_error:{status}", retryable=True)

        if not 200 <= status < 300:
            raise UpstreamError(f"upstream_error:{status}:{_excerpt(exchange.text, 200)}")

        text = exchange.text or ""
        try:
            return json.loads(text)
        except ValueError as exc:
            raise ParseError(f"parse_error:Invalid JSON: {_excerpt(text, 100)}") from exc
