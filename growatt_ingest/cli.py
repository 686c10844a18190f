# growatt_ingest/cli.py
import argparse


def _add_serial(cmd):
    cmd.add_argument(
        "--sn",
        "--device-sn",
        dest="device_sn",
        required=True,
        help="Inverter serial number",
    )


def build_parser():
    parser = argparse.ArgumentParser(
        prog="growatt-ingest",
        description="Growatt Open API telemetry ingestion adapter"
    )

    parser.add_argument(
        "--config",
        default="growatt_ingest.conf",
        help="Path to configuration file"
    )

    parser.add_argument(
        "--credential",
        default=None,
        help="Caller credential (defaults to $GROWATT_INGEST_CREDENTIAL)"
    )

    parser.add_argument(
        "--debug",
        action="store_true",
        help="Enable verbose debug logging"
    )

    parser.add_argument(
        "--quiet",
        action="store_true",
        help="Suppress stdout output (cron-friendly)"
    )

    parser.add_argument(
        "--json",
        action="store_true",
        help="Emit JSON instead of human-readable text"
    )

    sub = parser.add_subparsers(dest="command", required=True)

    cmd_save = sub.add_parser("save-config", help="Store Growatt base URL and API token")
    cmd_save.add_argument("--base-url", required=True, help="Growatt Open API base URL")
    cmd_save.add_argument(
        "--token",
        default=None,
        help="API token (defaults to $GROWATT_TOKEN; avoid passing secrets on the command line)",
    )

    cmd_test = sub.add_parser("test-connection", help="Probe the vendor API and update health")
    _add_serial(cmd_test)

    cmd_rt = sub.add_parser("realtime", help="Fetch realtime data for one inverter")
    _add_serial(cmd_rt)
    cmd_rt.add_argument("--raw", action="store_true", help="Include the raw vendor payload")

    cmd_batch = sub.add_parser("batch-realtime", help="Fetch realtime data for several inverters")
    cmd_batch.add_argument("inverters", nargs="+", help="Inverter serial numbers")
    cmd_batch.add_argument("--page", type=int, default=1, help="Vendor page number")
    cmd_batch.add_argument("--raw", action="store_true", help="Include raw vendor payloads")

    cmd_info = sub.add_parser("info", help="Fetch inverter device information")
    _add_serial(cmd_info)

    sub.add_parser("health", help="Show integration health")
    sub.add_parser("get-config", help="Show stored configuration (token omitted)")

    return parser
