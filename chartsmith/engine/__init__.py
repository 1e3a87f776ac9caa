"""Configuration and error types for the realtime sync pipeline."""
from __future__ import annotations

__all__ = [
    "SyncConfig",
    "SyncSettings",
    "load_yaml_config",
    "ChartsmithError",
]

from chartsmith.engine.config import SyncConfig
from chartsmith.engine.errors import ChartsmithError
from chartsmith.engine.yaml_config import SyncSettings, load_yaml_config
