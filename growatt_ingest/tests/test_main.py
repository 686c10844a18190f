import json
import logging

import pytest

from growatt_ingest.cli import build_parser
from growatt_ingest.config import Config
from growatt_ingest.logging import get_logger
from growatt_ingest.main import build_dispatcher, build_envelope, main
from growatt_ingest.services.app_state import AppState
from growatt_ingest.tests.fakes import TOKEN, FakeSession

CONF = """
[state]
path = {state_path}

[caller:ops]
credential = ops-key
actor = ops-user
tenant_id = tenant-1

[logging]
console_quiet = true
structured_enabled = true
structured_path = {log_path}
"""


@pytest.fixture
def conf_path(tmp_path):
    path = tmp_path / "growatt.conf"
    path.write_text(
        CONF.format(
            state_path=tmp_path / "state.db",
            log_path=tmp_path / "commands.jsonl",
        )
    )
    return path


@pytest.fixture(autouse=True)
def restore_root_logger():
    root = logging.getLogger()
    orig_handlers = list(root.handlers)
    orig_level = root.level
    yield
    root.handlers.clear()
    root.handlers.extend(orig_handlers)
    root.setLevel(orig_level)


def _run(capsys, conf_path, *argv):
    code = main(["--config", str(conf_path), "--credential", "ops-key", "--json", *argv])
    return code, json.loads(capsys.readouterr().out)


def test_save_then_get_config(conf_path, capsys):
    code, body = _run(capsys, conf_path, "save-config", "--base-url", "https://openapi.growatt.com", "--token", TOKEN)
    assert code == 0
    assert body["success"] is True

    code, body = _run(capsys, conf_path, "get-config")
    assert code == 0
    assert body["config"]["base_url"] == "https://openapi.growatt.com/v1/"
    assert body["config"]["has_token"] is True

    code, body = _run(capsys, conf_path, "health")
    assert body["health"]["status"] == "unknown"

    log_lines = (conf_path.parent / "commands.jsonl").read_text().splitlines()
    assert [json.loads(line)["action"] for line in log_lines] == ["save_config", "get_config", "health"]
    assert all(TOKEN not in line for line in log_lines)


def test_token_from_environment(conf_path, capsys, monkeypatch):
    monkeypatch.setenv("GROWATT_TOKEN", TOKEN)

    code, body = _run(capsys, conf_path, "save-config", "--base-url", "https://openapi.growatt.com/v1")

    assert code == 0
    assert body["success"] is True


def test_short_token_exits_nonzero(conf_path, capsys):
    code, body = _run(capsys, conf_path, "save-config", "--base-url", "https://openapi.growatt.com", "--token", "short")

    assert code == 1
    assert body["category"] == "validation_error"


def test_realtime_without_config_is_not_configured(conf_path, capsys):
    code, body = _run(capsys, conf_path, "realtime", "--sn", "ABC123")

    assert code == 1
    assert body["category"] == "not_configured"


def test_unknown_credential_is_rejected(conf_path, capsys):
    code = main(["--config", str(conf_path), "--credential", "nope", "--json", "health"])

    body = json.loads(capsys.readouterr().out)
    assert code == 1
    assert body["category"] == "unauthorized"


def test_human_output(conf_path, capsys):
    code = main(["--config", str(conf_path), "--credential", "ops-key", "health"])

    assert code == 0
    assert capsys.readouterr().out.splitlines() == ["status=unknown"]


def test_build_envelope_for_batch():
    args = build_parser().parse_args(["batch-realtime", "INV1", "INV2", "--page", "2", "--raw"])

    assert build_envelope(args) == {
        "action": "batch_realtime",
        "inverters": ["INV1", "INV2"],
        "pageNum": 2,
        "raw": True,
    }


def test_build_dispatcher_wires_realtime(conf_path):
    app_cfg = Config.load(str(conf_path))
    session = FakeSession([(200, {"data": {"pac": "1500"}})])
    state = AppState(persist=False)
    dispatcher = build_dispatcher(app_cfg, state, get_logger("growatt-test.main"), session=session)

    saved = dispatcher.handle(
        "ops-key",
        {"action": "save_config", "base_url": "https://openapi.growatt.com", "token": TOKEN},
    )
    result = dispatcher.handle("ops-key", {"action": "realtime", "device_sn": "ABC123"})

    assert saved.http_status == 200
    assert result.body["data"]["power_w"] == 1500
    assert session.calls[0]["headers"] == {"Authorization": f"Bearer {TOKEN}"}
    assert state.get_snapshot("tenant-1", "ABC123") is not None
    state.close()
