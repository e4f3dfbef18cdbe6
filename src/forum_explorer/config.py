"""Configuration utilities for the forum explorer."""

from __future__ import annotations

import json
import os
from dataclasses import dataclass, asdict
from pathlib import Path
from typing import Any, Dict


CONFIG_ENV_VAR = "FORUM_EXPLORER_CONFIG"
DEFAULT_CONFIG_PATH = (
    Path.home() / ".config" / "forum-explorer" / "config.json"
)

# Keys persisted by save_config(). Board filters, drafts and selection are
# view state and never written to disk.
PERSISTED_KEYS = ("base_url", "viewer_type", "viewer_id")

ENV_OVERRIDES = {
    "FORUM_EXPLORER_BASE_URL": "base_url",
    "FORUM_EXPLORER_VIEWER_TYPE": "viewer_type",
    "FORUM_EXPLORER_VIEWER_ID": "viewer_id",
    "FORUM_EXPLORER_TICKET": "ticket",
    "FORUM_EXPLORER_RUN_ID": "run_id",
}


@dataclass
class ExplorerConfig:
    """Connection and cadence settings for one explorer process."""

    base_url: str = "http://127.0.0.1:3001"
    viewer_type: str = "human"
    viewer_id: str = "human:operator"
    ticket: str = ""
    run_id: str = ""
    result_limit: int = 300
    debug_limit: int = 40
    stream_quiet_period: float = 0.150
    debug_interval: float = 15.0
    request_timeout: float = 10.0
    stream_enabled: bool = True
    host: str = "127.0.0.1"
    port: int = 8080

    def to_dict(self) -> dict:
        """Return the persisted subset as a JSON-serializable dictionary."""

        data = asdict(self)
        return {key: data[key] for key in PERSISTED_KEYS}


def config_path() -> Path:
    """Return the filesystem path where config is stored."""

    override = os.getenv(CONFIG_ENV_VAR)
    if override:
        return Path(override).expanduser().resolve()

    return DEFAULT_CONFIG_PATH


def _coerce(config: ExplorerConfig, key: str, value: Any) -> Any:
    """Coerce a raw file/env value to the type of the matching default."""

    default = getattr(config, key)
    if isinstance(default, bool):
        if isinstance(value, str):
            return value.strip().lower() in {"1", "true", "yes", "on"}
        return bool(value)
    if isinstance(default, int):
        try:
            return int(value)
        except (TypeError, ValueError) as exc:
            raise ValueError(f"Invalid integer for {key}: {value!r}") from exc
    if isinstance(default, float):
        try:
            return float(value)
        except (TypeError, ValueError) as exc:
            raise ValueError(f"Invalid number for {key}: {value!r}") from exc
    return str(value).strip()


def _read_file(path: Path) -> Dict[str, Any]:
    if not path.exists():
        return {}

    try:
        data = json.loads(path.read_text())
    except json.JSONDecodeError:
        # Malformed config; fall back to defaults but keep original file for inspection.
        return {}

    return data if isinstance(data, dict) else {}


def load_config() -> ExplorerConfig:
    """Load configuration from disk and environment, falling back to defaults."""

    config = ExplorerConfig()
    known = set(asdict(config))

    for key, value in _read_file(config_path()).items():
        if key in known and value is not None:
            setattr(config, key, _coerce(config, key, value))

    for env_var, key in ENV_OVERRIDES.items():
        value = os.getenv(env_var)
        if value is not None:
            setattr(config, key, _coerce(config, key, value))

    config.base_url = config.base_url.rstrip("/")
    return config


def save_config(config: ExplorerConfig) -> None:
    """Persist connection defaults to disk."""

    path = config_path()
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(json.dumps(config.to_dict(), indent=2))
