"""Project-wide configuration helpers."""

from .controller import ControllerConfig, DEFAULT_BAUD_RATE, load_controller_config, save_controller_config
from .env import ensure_env_loaded, env_bool, env_float, env_int, env_str

__all__ = [
    "ControllerConfig",
    "DEFAULT_BAUD_RATE",
    "ensure_env_loaded",
    "env_bool",
    "env_float",
    "env_int",
    "env_str",
    "load_controller_config",
    "save_controller_config",
]
