"""
User configuration loaded from config.yaml.

The file is optional. Every getter falls back to a built-in default when the
key is missing or has the wrong type, so a broken config never stops the
manager from starting.
"""

from pathlib import Path
from typing import Any, Dict, List, Optional

import yaml

from .logging_config import get_logger
from .settings import PATHS, TIMING

logger = get_logger("config")

# Explicit override; None means the config root's config.yaml
CONFIG_PATH: Optional[Path] = None

VALID_DIFF_MODES = ("full", "session")


def config_path() -> Path:
    return CONFIG_PATH if CONFIG_PATH is not None else PATHS.config_file


def load_config() -> Dict[str, Any]:
    """Load config.yaml. Returns {} when missing, invalid, or not a mapping."""
    path = config_path()
    if not path.exists():
        return {}
    try:
        with open(path) as f:
            data = yaml.safe_load(f)
    except (OSError, yaml.YAMLError) as e:
        logger.warning("Ignoring unreadable config %s: %s", path, e)
        return {}
    if not isinstance(data, dict):
        return {}
    return data


def save_config(data: Dict[str, Any]) -> None:
    path = config_path()
    path.parent.mkdir(parents=True, exist_ok=True)
    with open(path, "w") as f:
        yaml.safe_dump(data, f, default_flow_style=False, sort_keys=False)


def get_tick_interval() -> float:
    value = load_config().get("tick_interval")
    if isinstance(value, (int, float)) and value > 0:
        return float(value)
    return TIMING.tick_interval


def get_default_agent() -> str:
    value = load_config().get("default_agent")
    return value if isinstance(value, str) and value else "claude"


def get_log_level() -> Optional[str]:
    value = load_config().get("log_level")
    return value.upper() if isinstance(value, str) else None


def get_diff_mode() -> str:
    value = load_config().get("diff_mode")
    if isinstance(value, str) and value.lower() in VALID_DIFF_MODES:
        return value.lower()
    return "full"


def get_extra_waiting_markers() -> List[str]:
    """Additional case-insensitive waiting markers applied to every agent."""
    value = load_config().get("waiting_markers")
    if not isinstance(value, list):
        return []
    return [str(v).lower() for v in value if isinstance(v, (str, int))]


def get_filter_overrides() -> Dict[str, Dict[str, Any]]:
    """Per-agent chrome filter overrides, keyed by agent kind."""
    value = load_config().get("filters")
    if not isinstance(value, dict):
        return {}
    return {
        str(agent): cfg
        for agent, cfg in value.items()
        if isinstance(cfg, dict)
    }
