"""Configuration for the explorer: defaults, ``config.toml`` and environment."""

from __future__ import annotations

import os
from dataclasses import dataclass, fields, replace
from pathlib import Path
from typing import Any, Dict, Optional

import toml

BASE_DIR = Path(os.environ.get("CPG_EXPLORER_HOME", str(Path.home() / ".cpg-explorer"))).expanduser()
CONFIG_FILE = BASE_DIR / "config.toml"

DEFAULT_DB_PATH = "/data/cpg.db"
DEFAULT_HOST = "127.0.0.1"
DEFAULT_PORT = 8080
DEFAULT_REQUEST_TIMEOUT = 10.0

# Environment variable -> settings field
ENV_VARS = {
    "CPG_DB_PATH": "db_path",
    "HOST": "host",
    "PORT": "port",
    "CPG_REQUEST_TIMEOUT": "request_timeout",
    "CPG_LOG_LEVEL": "log_level",
}


@dataclass(frozen=True)
class ExplorerSettings:
    db_path: str = DEFAULT_DB_PATH
    host: str = DEFAULT_HOST
    port: int = DEFAULT_PORT
    # Seconds per request; 0 disables the deadline.
    request_timeout: float = DEFAULT_REQUEST_TIMEOUT
    log_level: str = "INFO"
    cors_origins: tuple = ("*",)


def load_config(config_file: Optional[Path] = None) -> Dict[str, Any]:
    """Load the ``[server]`` section of the TOML config file.

    Returns an empty dict when the file does not exist.
    """
    path = config_file or CONFIG_FILE
    if not path.exists():
        return {}
    with open(path, "r", encoding="utf-8") as f:
        payload = toml.load(f)
    return payload.get("server", {})


def _coerce(name: str, value: Any) -> Any:
    if name == "port":
        return int(value)
    if name == "request_timeout":
        return float(value)
    if name == "cors_origins":
        if isinstance(value, str):
            return tuple(v.strip() for v in value.split(",") if v.strip())
        return tuple(value)
    return str(value)


def load_settings(config_file: Optional[Path] = None, **overrides: Any) -> ExplorerSettings:
    """Resolve settings from defaults, TOML, environment and explicit overrides.

    Later sources win. Overrides whose value is ``None`` are ignored so CLI
    options can be passed through unconditionally.
    """
    known = {f.name for f in fields(ExplorerSettings)}
    values: Dict[str, Any] = {}

    for key, value in load_config(config_file).items():
        if key in known:
            values[key] = _coerce(key, value)

    for env_name, key in ENV_VARS.items():
        raw = os.environ.get(env_name)
        if raw:
            values[key] = _coerce(key, raw)

    for key, value in overrides.items():
        if value is not None and key in known:
            values[key] = _coerce(key, value)

    return replace(ExplorerSettings(), **values)
