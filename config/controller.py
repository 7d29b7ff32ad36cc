"""Controller configuration loader/saver."""

from __future__ import annotations

import json
import logging
from dataclasses import asdict, dataclass, fields
from pathlib import Path
from typing import Any, Dict, Optional

from .env import env_bool, env_float, env_int, env_str

LOGGER = logging.getLogger("silar.config")

DEFAULT_BAUD_RATE = 9600
MIN_RECONNECT_DELAY_S = 0.1


def _config_path() -> Path:
    override = env_str("SILAR_CONFIG_PATH")
    if override:
        return Path(override).expanduser()
    return Path(__file__).resolve().with_name("controller.json")


@dataclass(frozen=True)
class ControllerConfig:
    """Connection and timing defaults for the SILAR controller."""

    port: str = ""
    baud_rate: int = DEFAULT_BAUD_RATE
    settle_delay_s: float = 2.0
    reconnect_delay_s: float = 10.0
    command_timeout_s: float = 5.0
    home_timeout_s: float = 30.0
    status_timeout_s: float = 2.0
    read_timeout_s: float = 0.05
    write_timeout_s: float = 1.0
    simulate: bool = False

    @classmethod
    def from_mapping(cls, data: Dict[str, Any]) -> "ControllerConfig":
        defaults = cls()
        return cls(
            port=str(data.get("port") or ""),
            baud_rate=int(data.get("baud_rate", defaults.baud_rate)),
            settle_delay_s=max(0.0, float(data.get("settle_delay_s", defaults.settle_delay_s))),
            reconnect_delay_s=max(MIN_RECONNECT_DELAY_S, float(data.get("reconnect_delay_s", defaults.reconnect_delay_s))),
            command_timeout_s=max(0.0, float(data.get("command_timeout_s", defaults.command_timeout_s))),
            home_timeout_s=max(0.0, float(data.get("home_timeout_s", defaults.home_timeout_s))),
            status_timeout_s=max(0.0, float(data.get("status_timeout_s", defaults.status_timeout_s))),
            read_timeout_s=max(0.0, float(data.get("read_timeout_s", defaults.read_timeout_s))),
            write_timeout_s=max(0.0, float(data.get("write_timeout_s", defaults.write_timeout_s))),
            simulate=_as_bool(data.get("simulate", defaults.simulate)),
        )

    def to_mapping(self) -> Dict[str, Any]:
        return asdict(self)

    def with_env_overrides(self) -> "ControllerConfig":
        """Return a copy with any ``SILAR_*`` environment variables applied."""

        data = self.to_mapping()
        data.update(
            port=env_str("SILAR_PORT", self.port) or "",
            baud_rate=env_int("SILAR_BAUD_RATE", self.baud_rate),
            settle_delay_s=env_float("SILAR_SETTLE_DELAY_S", self.settle_delay_s),
            reconnect_delay_s=env_float("SILAR_RECONNECT_DELAY_S", self.reconnect_delay_s),
            command_timeout_s=env_float("SILAR_COMMAND_TIMEOUT_S", self.command_timeout_s),
            home_timeout_s=env_float("SILAR_HOME_TIMEOUT_S", self.home_timeout_s),
            status_timeout_s=env_float("SILAR_STATUS_TIMEOUT_S", self.status_timeout_s),
            simulate=env_bool("SILAR_SIMULATION", self.simulate),
        )
        return ControllerConfig.from_mapping(data)


def _as_bool(value: Any) -> bool:
    """Interpret a JSON flag; strings use the same words as ``env_bool``."""

    if isinstance(value, bool):
        return value
    if isinstance(value, int) and value in (0, 1):
        return bool(value)
    if isinstance(value, str):
        text = value.strip().lower()
        if text in {"1", "true", "yes", "on"}:
            return True
        if text in {"0", "false", "no", "off"}:
            return False
    raise ValueError(f"Expected a boolean, got {value!r}")


def load_controller_config(path: Optional[Path] = None, *, apply_env: bool = True) -> ControllerConfig:
    """Load controller defaults from disk, falling back to baked-in values."""

    path = path or _config_path()
    config = ControllerConfig()
    try:
        raw = json.loads(path.read_text(encoding="utf-8"))
    except FileNotFoundError:
        raw = None
    except (OSError, ValueError):
        LOGGER.warning("Ignoring unreadable controller config %s", path, exc_info=True)
        raw = None
    if isinstance(raw, dict):
        known = {f.name for f in fields(ControllerConfig)}
        try:
            config = ControllerConfig.from_mapping({k: v for k, v in raw.items() if k in known})
        except (TypeError, ValueError):
            LOGGER.warning("Invalid values in controller config %s; using defaults", path)
    return config.with_env_overrides() if apply_env else config


def save_controller_config(config: ControllerConfig, path: Optional[Path] = None) -> None:
    """Persist the controller configuration to disk."""

    path = path or _config_path()
    path.parent.mkdir(parents=True, exist_ok=True)
    data = config.to_mapping()
    temporary = path.with_suffix(".json.tmp")
    with temporary.open("w", encoding="utf-8") as fh:
        json.dump(data, fh, indent=2, sort_keys=True)
        fh.write("\n")
    temporary.replace(path)


__all__ = ["ControllerConfig", "DEFAULT_BAUD_RATE", "MIN_RECONNECT_DELAY_S", "load_controller_config", "save_controller_config"]
