# growatt_ingest/main.py

import logging
import os
import sys

from .cli import build_parser
from .config import AppConfig, Config
from .logging import CommandLogEntry, ConsoleLog, StructuredLog, get_logger

from .services.app_state import AppState
from .services.config_loader import IntegrationConfigLoader
from .services.dispatcher import CommandDispatcher
from .services.event_writer import EventWriter
from .services.growatt_client import GrowattAPIClient
from .services.health_tracker import HealthTracker
from .services.identity import StaticIdentityResolver, StaticTenantResolver
from .services.output_formatter import emit_human, emit_json
from .services.snapshot_writer import SnapshotWriter


def build_envelope(args) -> dict:
    """Translate CLI arguments into the inbound command envelope."""
    command = args.command
    if command == "save-config":
        return {
            "action": "save_config",
            "base_url": args.base_url,
            "token": args.token or os.environ.get("GROWATT_TOKEN"),
        }
    if command == "test-connection":
        return {"action": "test_connection", "device_sn": args.device_sn}
    if command == "realtime":
        return {"action": "realtime", "device_sn": args.device_sn, "raw": args.raw}
    if command == "batch-realtime":
        return {
            "action": "batch_realtime",
            "inverters": list(args.inverters),
            "pageNum": args.page,
            "raw": args.raw,
        }
    if command == "info":
        return {"action": "info", "device_sn": args.device_sn}
    if command == "health":
        return {"action": "health"}
    if command == "get-config":
        return {"action": "get_config"}
    raise ValueError(f"Unsupported command: {command}")


def build_dispatcher(app_cfg: AppConfig, state: AppState, log, session=None) -> CommandDispatcher:
    health = HealthTracker(state, get_logger("growatt.health"))
    return CommandDispatcher(
        client=GrowattAPIClient(app_cfg.growatt, get_logger("growatt.client"), session=session),
        config_loader=IntegrationConfigLoader(
            app_cfg.growatt,
            state,
            health,
            get_logger("growatt.config"),
        ),
        snapshots=SnapshotWriter(state, get_logger("growatt.snapshots")),
        events=EventWriter(state, get_logger("growatt.events")),
        health=health,
        log=log,
        identity=StaticIdentityResolver(app_cfg.callers),
        tenants=StaticTenantResolver(app_cfg.callers),
    )


def main(argv=None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)

    app_cfg = Config.load(args.config)
    console_logger = ConsoleLog(
        level="DEBUG" if args.debug else app_cfg.logging.console_level,
        quiet=args.quiet or app_cfg.logging.console_quiet,
        debug_modules=app_cfg.logging.debug_modules,
    )
    log = console_logger.setup()
    structured_logger = StructuredLog(
        app_cfg.logging.structured_path,
        app_cfg.logging.structured_enabled,
    )
    if args.debug:
        logging.getLogger("urllib3").setLevel(logging.INFO)

    state = AppState(path=app_cfg.state.path)
    try:
        dispatcher = build_dispatcher(app_cfg, state, log)
        credential = args.credential or os.environ.get("GROWATT_INGEST_CREDENTIAL")
        result = dispatcher.handle(credential, build_envelope(args))
    finally:
        state.close()

    structured_logger.write(CommandLogEntry.from_result(result))

    # --- stdout output ---
    if not args.quiet:
        if args.json:
            emit_json(result)
        else:
            emit_human(result)

    return 0 if result.success else 1


if __name__ == "__main__":
    sys.exit(main())
