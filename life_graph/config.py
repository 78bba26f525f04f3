"""Configuration for the life-graph service.

Loads from environment variables with sensible defaults.
Optionally reads a config.json file first; environment variables win.

Note:
    Environment variables use the ``LIFE_GRAPH_*`` prefix.  Provider keys
    keep their conventional names (``GEMINI_API_KEY``, ``OPENWEATHER_API_KEY``).
"""

from __future__ import annotations

import json
import logging
import os
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Callable, Optional

logger = logging.getLogger(__name__)

_TRUE_VALUES = {"1", "true", "yes", "on"}


def _to_bool(value: Any) -> bool:
    if isinstance(value, bool):
        return value
    return str(value).strip().lower() in _TRUE_VALUES


@dataclass
class Config:
    """Central configuration for the pipeline, store and HTTP API."""

    # Intent triage (Gemini generateContent)
    gemini_api_key: str = ""
    triage_model: str = "gemini-1.5-flash"
    triage_base_url: str = "https://generativelanguage.googleapis.com/v1beta"
    triage_timeout: float = 30.0
    triage_retries: int = 1
    triage_temperature: float = 0.4
    triage_max_output_tokens: int = 1024

    # Storage -- resolved in load_config() when empty
    db_path: str = ""
    history_dir: str = ""
    history_max_turns: int = 20
    query_max_rows: int = 100

    # Owner applied at the HTTP boundary when a request carries none
    default_owner_id: str = "default_user"

    # Weather tool (disabled without a key)
    weather_api_key: str = ""
    weather_base_url: str = "https://api.openweathermap.org/data/2.5"

    # API
    # Security: bind to localhost by default. Override with LIFE_GRAPH_HOST if needed.
    api_host: str = "127.0.0.1"
    api_port: int = 8788
    api_key: str = ""
    rate_limit_per_minute: int = 120

    # Exposes internal error detail in HTTP responses
    debug: bool = False

    def validate(self) -> list[str]:
        """Return a list of validation errors (empty == OK)."""
        errors: list[str] = []
        if not self.gemini_api_key:
            errors.append("GEMINI_API_KEY is required")
        if self.api_port < 1 or self.api_port > 65535:
            errors.append("LIFE_GRAPH_PORT must be 1-65535")
        if self.triage_timeout <= 0:
            errors.append("LIFE_GRAPH_TRIAGE_TIMEOUT must be > 0")
        if self.triage_retries < 0:
            errors.append("LIFE_GRAPH_TRIAGE_RETRIES must be >= 0")
        if self.history_max_turns < 1:
            errors.append("LIFE_GRAPH_HISTORY_TURNS must be >= 1")
        return errors


def _cast_for(cfg: Config, attr: str) -> Callable[[Any], Any]:
    current = getattr(cfg, attr)
    if isinstance(current, bool):
        return _to_bool
    return type(current)


def load_config(config_path: Optional[str] = None) -> Config:
    """Build a Config from a JSON file overlaid with environment variables.

    Environment variables (all optional):
        GEMINI_API_KEY
        OPENWEATHER_API_KEY
        LIFE_GRAPH_CONFIG
        LIFE_GRAPH_DB
        LIFE_GRAPH_HISTORY_DIR
        LIFE_GRAPH_HISTORY_TURNS
        LIFE_GRAPH_TRIAGE_MODEL
        LIFE_GRAPH_TRIAGE_URL
        LIFE_GRAPH_TRIAGE_TIMEOUT
        LIFE_GRAPH_TRIAGE_RETRIES
        LIFE_GRAPH_TRIAGE_TEMPERATURE
        LIFE_GRAPH_DEFAULT_OWNER
        LIFE_GRAPH_HOST
        LIFE_GRAPH_PORT
        LIFE_GRAPH_API_KEY
        LIFE_GRAPH_RATE_LIMIT
        LIFE_GRAPH_DEBUG
    """
    cfg = Config()

    # --- JSON file overlay ------------------------------------------------
    json_path = config_path or os.environ.get("LIFE_GRAPH_CONFIG")
    if json_path and Path(json_path).is_file():
        with open(json_path, "r") as fh:
            data = json.load(fh)
        for key, val in data.items():
            if hasattr(cfg, key):
                try:
                    setattr(cfg, key, _cast_for(cfg, key)(val))
                except (ValueError, TypeError):
                    logger.warning("Ignoring bad config value for %s: %r", key, val)

    # --- Environment variable overlay -------------------------------------
    env_map: dict[str, str] = {
        "GEMINI_API_KEY": "gemini_api_key",
        "OPENWEATHER_API_KEY": "weather_api_key",
        "LIFE_GRAPH_DB": "db_path",
        "LIFE_GRAPH_HISTORY_DIR": "history_dir",
        "LIFE_GRAPH_HISTORY_TURNS": "history_max_turns",
        "LIFE_GRAPH_TRIAGE_MODEL": "triage_model",
        "LIFE_GRAPH_TRIAGE_URL": "triage_base_url",
        "LIFE_GRAPH_TRIAGE_TIMEOUT": "triage_timeout",
        "LIFE_GRAPH_TRIAGE_RETRIES": "triage_retries",
        "LIFE_GRAPH_TRIAGE_TEMPERATURE": "triage_temperature",
        "LIFE_GRAPH_DEFAULT_OWNER": "default_owner_id",
        "LIFE_GRAPH_HOST": "api_host",
        "LIFE_GRAPH_PORT": "api_port",
        "LIFE_GRAPH_API_KEY": "api_key",
        "LIFE_GRAPH_RATE_LIMIT": "rate_limit_per_minute",
        "LIFE_GRAPH_DEBUG": "debug",
    }

    for env_key, attr in env_map.items():
        val = os.environ.get(env_key)
        if val is not None:
            try:
                setattr(cfg, attr, _cast_for(cfg, attr)(val))
            except (ValueError, TypeError):
                logger.warning("Ignoring bad value for %s: %r", env_key, val)

    # --- Default path resolution ------------------------------------------
    base_dir = Path.home() / ".life-graph"
    if not cfg.db_path:
        cfg.db_path = str(base_dir / "graph.sqlite")
    if not cfg.history_dir:
        cfg.history_dir = str(Path(cfg.db_path).parent / "conversations")

    return cfg
