"""Configuration defaults and environment overrides."""

from __future__ import annotations

import os
from dataclasses import dataclass

APP_NAME = "LocalWork"

# Backend inference engine
DEFAULT_BACKEND_URL = "http://127.0.0.1:8765"
DEFAULT_REQUEST_TIMEOUT = 30.0  # seconds
DEFAULT_TURN_TIMEOUT = 300.0  # seconds, generation with tool calls can be slow
DEFAULT_LOAD_TIMEOUT = 120.0  # seconds

# Local HTTP API for the UI
DEFAULT_HOST = "127.0.0.1"
DEFAULT_PORT = 8000

ENV_PREFIX = "LOCALWORK_"


def _env_float(name: str, default: float) -> float:
    raw = os.environ.get(ENV_PREFIX + name)
    if raw is None or raw == "":
        return default
    try:
        return float(raw)
    except ValueError as e:
        raise ValueError(f"{ENV_PREFIX}{name} must be a number, got {raw!r}") from e


@dataclass
class Settings:
    """Runtime settings for the core."""

    backend_url: str = DEFAULT_BACKEND_URL
    request_timeout: float = DEFAULT_REQUEST_TIMEOUT
    turn_timeout: float = DEFAULT_TURN_TIMEOUT
    load_timeout: float = DEFAULT_LOAD_TIMEOUT

    @classmethod
    def from_env(cls) -> Settings:
        """Build settings from ``LOCALWORK_*`` environment variables."""
        return cls(
            backend_url=os.environ.get(ENV_PREFIX + "BACKEND_URL") or DEFAULT_BACKEND_URL,
            request_timeout=_env_float("REQUEST_TIMEOUT", DEFAULT_REQUEST_TIMEOUT),
            turn_timeout=_env_float("TURN_TIMEOUT", DEFAULT_TURN_TIMEOUT),
            load_timeout=_env_float("LOAD_TIMEOUT", DEFAULT_LOAD_TIMEOUT),
        )
