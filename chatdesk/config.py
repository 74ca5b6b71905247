# chatdesk/config.py
import os
from dataclasses import dataclass, field, fields
from pathlib import Path
from typing import List, Optional

import yaml

DEFAULT_DB_URL = "sqlite:///" + str(Path.home() / ".chat-electron" / "data.db")
DEFAULT_CONFIG_PATH = "chatdesk.yaml"


@dataclass
class Settings:
    database_url: str = DEFAULT_DB_URL
    host: str = "127.0.0.1"
    port: int = 38765
    origins: List[str] = field(default_factory=lambda: ["*"])
    seed: bool = True
    log_level: str = "INFO"
    poll_conversations: float = 3.0
    poll_messages: float = 2.0

    @property
    def base_url(self) -> str:
        return f"http://{self.host}:{self.port}"


# env var -> (settings field, parser)
ENV_VARS = {
    "DATABASE_URL": ("database_url", str),
    "CHATDESK_HOST": ("host", str),
    "CHATDESK_PORT": ("port", int),
    "CHATDESK_ORIGINS": ("origins", lambda v: [o.strip() for o in v.split(",") if o.strip()]),
    "CHATDESK_SEED": ("seed", lambda v: v.strip().lower() not in ("0", "false", "no", "off")),
    "CHATDESK_LOG_LEVEL": ("log_level", lambda v: v.strip().upper()),
    "CHATDESK_POLL_CONVERSATIONS": ("poll_conversations", float),
    "CHATDESK_POLL_MESSAGES": ("poll_messages", float),
}


def _load_yaml(path: Path) -> dict:
    with open(path, "r", encoding="utf-8") as f:
        cfg = yaml.safe_load(f) or {}
    if not isinstance(cfg, dict):
        raise ValueError(f"{path}: expected a mapping at the top level")
    known = {f.name for f in fields(Settings)}
    unknown = set(cfg) - known
    if unknown:
        raise ValueError(f"{path}: unknown settings {sorted(unknown)}")
    return cfg


def load_settings(path: Optional[str] = None, env=None) -> Settings:
    """YAML file (if any) first, then environment variables on top."""
    env = os.environ if env is None else env
    values = {}

    cfg_path = path or env.get("CHATDESK_CONFIG")
    if cfg_path:
        values.update(_load_yaml(Path(cfg_path)))
    elif Path(DEFAULT_CONFIG_PATH).exists():
        values.update(_load_yaml(Path(DEFAULT_CONFIG_PATH)))

    for var, (name, parse) in ENV_VARS.items():
        raw = env.get(var)
        if raw is not None and raw != "":
            values[name] = parse(raw)

    if isinstance(values.get("origins"), str):
        values["origins"] = ENV_VARS["CHATDESK_ORIGINS"][1](values["origins"])
    return Settings(**values)
