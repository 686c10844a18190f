# growatt_ingest/tests/fakes.py

import json

from growatt_ingest.config import GrowattAPIConfig
from growatt_ingest.services.app_state import AppState
from growatt_ingest.services.config_loader import IntegrationConfigLoader
from growatt_ingest.services.dispatcher import CommandDispatcher
from growatt_ingest.services.event_writer import EventWriter
from growatt_ingest.services.growatt_client import GrowattAPIClient
from growatt_ingest.services.health_tracker import HealthTracker
from growatt_ingest.services.snapshot_writer import SnapshotWriter
from growatt_ingest.logging import get_logger

TOKEN = "abcd1234efgh5678ijkl"
TENANT = "tenant-1"


class FakeResponse:
    def __init__(self, status_code=200, payload=None, text=None):
        self.status_code = status_code
        if text is None:
            text = json.dumps(payload if payload is not None else {})
        self.text = text
        self.closed = False

    def close(self):
        self.closed = True


class FakeSession:
    """Replays scripted responses (or raises scripted exceptions) in order."""

    def __init__(self, script):
        self.script = list(script)
        self.calls = []

    def request(self, method, url, headers=None, params=None, timeout=None, json=None, stream=False):
        self.calls.append(
            {
                "method": method,
                "url": url,
                "headers": dict(headers or {}),
                "params": params,
                "timeout": timeout,
                "json": json,
                "stream": stream,
            }
        )
        if not self.script:
            raise AssertionError(f"Unexpected request: {method} {url}")
        step = self.script.pop(0)
        if isinstance(step, Exception):
            raise step
        if isinstance(step, tuple):
            return FakeResponse(*step)
        return step


class FailingState:
    """Wraps a real store and makes selected methods raise."""

    def __init__(self, inner, *failing):
        self._inner = inner
        self._failing = set(failing)

    def __getattr__(self, name):
        if name in self._failing:
            def _boom(*args, **kwargs):
                raise RuntimeError(f"{name} unavailable")
            return _boom
        return getattr(self._inner, name)


class Recorder:
    def __init__(self):
        self.sleeps = []

    def __call__(self, seconds):
        self.sleeps.append(seconds)


def make_client(script, cfg=None, log_name="growatt-test.client"):
    session = FakeSession(script)
    sleeper = Recorder()
    client = GrowattAPIClient(cfg or GrowattAPIConfig(), get_logger(log_name), session=session, sleep=sleeper)
    return client, session, sleeper


def make_dispatcher(script=(), state=None, cfg=None):
    cfg = cfg or GrowattAPIConfig()
    state = state if state is not None else AppState(persist=False)
    client, session, sleeper = make_client(script, cfg)
    health = HealthTracker(state, get_logger("growatt-test.health"))
    loader = IntegrationConfigLoader(cfg, state, health, get_logger("growatt-test.config"))
    dispatcher = CommandDispatcher(
        client=client,
        config_loader=loader,
        snapshots=SnapshotWriter(state, get_logger("growatt-test.snapshots")),
        events=EventWriter(state, get_logger("growatt-test.events")),
        health=health,
        log=get_logger("growatt-test.dispatcher"),
    )
    return dispatcher, session, state
