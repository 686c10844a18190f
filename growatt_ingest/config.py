# growatt_ingest/config.py
from dataclasses import dataclass, field
from pathlib import Path
import configparser


@dataclass
class GrowattAPIConfig:
    provider: str = "growatt_v1"
    legacy_provider: str = "growatt"
    default_base_url: str = "https://openapi.growatt.com/v1"
    timeout: float = 10.0
    max_attempts: int = 3
    backoff_ms: list[int] = field(default_factory=lambda: [500, 1000, 2000])

    @property
    def backoff_seconds(self) -> tuple[float, ...]:
        return tuple(ms / 1000.0 for ms in self.backoff_ms)


@dataclass
class CallerConfig:
    name: str
    credential: str
    actor: str
    tenant_id: str


@dataclass
class StateConfig:
    path: str | None = None


@dataclass
class LoggingConfig:
    console_level: str = "INFO"
    console_quiet: bool = False
    debug_modules: list[str] = field(default_factory=list)
    structured_enabled: bool = False
    structured_path: str | None = None


@dataclass
class AppConfig:
    growatt: GrowattAPIConfig
    callers: list[CallerConfig]
    state: StateConfig
    logging: LoggingConfig


class Config:
    def __init__(self, path: str):
        self.path = Path(path)
        self.parser = configparser.ConfigParser(inline_comment_prefixes=("#",))
        # Credentials are case-sensitive.
        self.parser.optionxform = str
        read = self.parser.read(self.path)
        if not read:
            raise FileNotFoundError(f"Config file not found: {self.path}")

    @classmethod
    def load(cls, path: str) -> AppConfig:
        cfg = cls(path)

        p = cfg.parser

        def _as_bool(value: str) -> bool:
            return value.strip().lower() == "true"

        def _as_list(raw: str) -> list[str]:
            return [x.strip() for x in raw.split(",") if x.strip()]

        # --- Growatt API ---
        growatt_kwargs = {}
        if "growatt" in p:
            gw_sec = p["growatt"]
            if "provider" in gw_sec:
                growatt_kwargs["provider"] = gw_sec["provider"].strip()
            if "legacy_provider" in gw_sec:
                growatt_kwargs["legacy_provider"] = gw_sec["legacy_provider"].strip()
            base_url = gw_sec.get("default_base_url") or gw_sec.get("base_url")
            if base_url:
                growatt_kwargs["default_base_url"] = base_url.strip()
            if "timeout" in gw_sec:
                growatt_kwargs["timeout"] = float(gw_sec["timeout"])
            if "max_attempts" in gw_sec:
                attempts = int(gw_sec["max_attempts"])
                if attempts < 1:
                    raise ValueError("[growatt] max_attempts must be at least 1")
                growatt_kwargs["max_attempts"] = attempts
            if "backoff_ms" in gw_sec:
                growatt_kwargs["backoff_ms"] = [int(x) for x in _as_list(gw_sec["backoff_ms"])]
        growatt_cfg = GrowattAPIConfig(**growatt_kwargs)

        # --- Callers ---
        callers: list[CallerConfig] = []
        for section in p.sections():
            if not section.startswith("caller:"):
                continue
            name = section.split(":", 1)[1].strip()
            if not name:
                continue
            sec = p[section]
            for key in ("credential", "tenant_id"):
                if not sec.get(key, "").strip():
                    raise ValueError(f"Missing '{key}' in section [{section}]")
            callers.append(
                CallerConfig(
                    name=name,
                    credential=sec["credential"].strip(),
                    actor=(sec.get("actor") or name).strip(),
                    tenant_id=sec["tenant_id"].strip(),
                )
            )

        # --- State ---
        state_kwargs = {}
        if "state" in p and "path" in p["state"]:
            state_kwargs["path"] = p["state"]["path"]
        state_cfg = StateConfig(**state_kwargs)

        # --- Logging ---
        logging_kwargs = {}
        if "logging" in p:
            logging_sec = p["logging"]
            if "console_level" in logging_sec:
                logging_kwargs["console_level"] = logging_sec["console_level"]
            if "console_quiet" in logging_sec:
                logging_kwargs["console_quiet"] = _as_bool(logging_sec["console_quiet"])
            if "debug_modules" in logging_sec:
                logging_kwargs["debug_modules"] = _as_list(logging_sec["debug_modules"])
            if "structured_enabled" in logging_sec:
                logging_kwargs["structured_enabled"] = _as_bool(logging_sec["structured_enabled"])
            if "structured_path" in logging_sec:
                logging_kwargs["structured_path"] = logging_sec["structured_path"]
        logging_cfg = LoggingConfig(**logging_kwargs)

        return AppConfig(
            growatt=growatt_cfg,
            callers=callers,
            state=state_cfg,
            logging=logging_cfg,
        )
