"""Runtime configuration for flowbridge.

Settings come from three layers, highest precedence first:

1. Environment variables (FLOWBRIDGE_*)
2. A YAML file: $FLOWBRIDGE_CONFIG, else ./flowbridge.yaml if it exists
3. Built-in defaults

Usage:
    from flowbridge.config.runtime_config import get_default_model, get_layout

    model = get_default_model()        # "gpt-4" unless overridden
    x, y_start, y_step = get_layout()  # (250, 50, 150)
"""

from __future__ import annotations

import copy
import logging
import os
from pathlib import Path
from typing import Any, Dict, Optional, Tuple

import yaml

logger = logging.getLogger(__name__)

_CONFIG_FILENAME = "flowbridge.yaml"
_cached_config: Optional[Dict[str, Any]] = None

ENV_CONFIG_PATH = "FLOWBRIDGE_CONFIG"
ENV_DEFAULT_MODEL = "FLOWBRIDGE_DEFAULT_MODEL"
ENV_FALLBACK_COMPONENT = "FLOWBRIDGE_FALLBACK_COMPONENT"
ENV_ENABLE_CORS = "FLOWBRIDGE_ENABLE_CORS"

_KNOWN_SECTIONS = ("defaults", "layout", "api")


def _default_config() -> Dict[str, Any]:
    """Return default configuration if no config file exists."""
    return {
        "defaults": {
            "model": "gpt-4",
            "fallback_component": "/builtin/openai",
            "schema_uri": "https://stepflow.org/schemas/v1/flow.json",
            "temperature": 0.7,
            "max_tokens": 2048,
            "top_p": 1.0,
            "frequency_penalty": 0,
            "presence_penalty": 0,
            "retry_max_attempts": 3,
            "compare_models": ["gpt-4", "claude-3-opus"],
        },
        "layout": {
            "x": 250,
            "y_start": 50,
            "y_step": 150,
        },
        "api": {
            "enable_cors": True,
            "store_path": None,
        },
    }


def _config_path() -> Optional[Path]:
    env_path = os.environ.get(ENV_CONFIG_PATH)
    if env_path:
        return Path(env_path)
    local = Path.cwd() / _CONFIG_FILENAME
    return local if local.exists() else None


def _merge(base: Dict[str, Any], override: Dict[str, Any]) -> Dict[str, Any]:
    for key, value in override.items():
        if key not in _KNOWN_SECTIONS:
            logger.warning("Ignoring unknown config section '%s'", key)
            continue
        if not isinstance(value, dict):
            logger.warning("Config section '%s' must be a mapping, ignoring", key)
            continue
        base[key].update(value)
    return base


def _load_config() -> Dict[str, Any]:
    """Load configuration, with caching."""
    global _cached_config
    if _cached_config is not None:
        return _cached_config

    config = _default_config()
    path = _config_path()
    if path is not None:
        if not path.exists():
            raise FileNotFoundError(f"Config file not found: {path}")
        try:
            with open(path, "r", encoding="utf-8") as f:
                data = yaml.safe_load(f) or {}
        except yaml.YAMLError as e:
            raise ValueError(f"Invalid YAML in config file {path}: {e}")
        if not isinstance(data, dict):
            raise ValueError(f"Config file {path} must contain a mapping")
        config = _merge(config, data)
        logger.debug("Loaded flowbridge config from %s", path)

    _cached_config = config
    return _cached_config


def reset_config() -> None:
    """Reset cached config (for testing)."""
    global _cached_config
    _cached_config = None


def get_config() -> Dict[str, Any]:
    """Return a copy of the effective file/default configuration."""
    return copy.deepcopy(_load_config())


def get_default(key: str, fallback: Any = None) -> Any:
    """Get a value from the defaults section."""
    return _load_config()["defaults"].get(key, fallback)


def get_default_model() -> str:
    return os.environ.get(ENV_DEFAULT_MODEL) or get_default("model", "gpt-4")


def get_fallback_component() -> str:
    return os.environ.get(ENV_FALLBACK_COMPONENT) or get_default(
        "fallback_component", "/builtin/openai"
    )


def get_schema_uri() -> str:
    return get_default("schema_uri", "https://stepflow.org/schemas/v1/flow.json")


def get_layout() -> Tuple[float, float, float]:
    """Return (x, y_start, y_step) for stacking imported nodes."""
    layout = _load_config()["layout"]
    return layout.get("x", 250), layout.get("y_start", 50), layout.get("y_step", 150)


def is_cors_enabled() -> bool:
    env_value = os.environ.get(ENV_ENABLE_CORS)
    if env_value is not None:
        return env_value.strip().lower() in ("1", "true", "yes", "on")
    return bool(_load_config()["api"].get("enable_cors", True))


def get_store_path() -> Optional[str]:
    return _load_config()["api"].get("store_path")
