"""YAML configuration loader.

Loads a single YAML file layered over the CHARTSMITH_* environment
defaults. When no YAML is provided, env vars work exactly as before.

Example YAML:
    endpoints:
      api: https://chartsmith.ai
      push: wss://push.chartsmith.ai/connection/websocket

    auth:
      token_env: CHARTSMITH_TOKEN   # or token: <literal>
      user_id: 7f0c2e

    push:
      max_attempts: 10
      base_delay_ms: 1000
      max_delay_ms: 30000
      plan_rerender_delay_seconds: 0.1

    state_dir: ~/.chartsmith
    log_level: DEBUG

    workspaces:
      ws-123:
        local_path: ~/charts/mychart
"""
from __future__ import annotations

import logging
import os
from dataclasses import dataclass, field
from pathlib import Path

import yaml

from .config import SyncConfig
from chartsmith.shared.models.workspace import WorkspaceMapping

logger = logging.getLogger(__name__)


@dataclass
class SyncSettings:
    """Complete parsed YAML configuration."""
    config: SyncConfig
    workspaces: list[WorkspaceMapping] = field(default_factory=list)


def _resolve_token(auth: dict) -> str | None:
    if auth.get("token"):
        return str(auth["token"])
    env_name = auth.get("token_env")
    if env_name:
        value = os.getenv(str(env_name))
        if not value:
            logger.warning(
                "load_yaml_config: auth.token_env=%s is not set", env_name,
            )
        return value or None
    return None


def _parse_workspaces(raw: object, base_dir: Path) -> list[WorkspaceMapping]:
    if not isinstance(raw, dict):
        return []
    mappings: list[WorkspaceMapping] = []
    for workspace_id, entry in raw.items():
        local_path = entry.get("local_path") if isinstance(entry, dict) else entry
        if not local_path:
            logger.warning(
                "load_yaml_config: workspace %s has no local_path, skipping",
                workspace_id,
            )
            continue
        path = Path(str(local_path)).expanduser()
        if not path.is_absolute():
            path = (base_dir / path).resolve()
        mappings.append(
            WorkspaceMapping(workspace_id=str(workspace_id), local_path=str(path))
        )
    return mappings


def load_yaml_config(
    path: str | Path, base: SyncConfig | None = None,
) -> SyncSettings:
    """Load and parse a YAML config file.

    Values found in the file override *base* (default: ``SyncConfig.from_env()``).
    Relative workspace paths are resolved against the file's directory.
    """
    path = Path(path)
    logger.info(
        "load_yaml_config: attempting to load config from %s (exists=%s)",
        path, path.exists(),
    )
    try:
        with open(path) as f:
            raw = yaml.safe_load(f) or {}
    except FileNotFoundError:
        logger.error(
            "load_yaml_config: config file not found at %s (absolute path: %s)",
            path, path.absolute(),
        )
        raise
    except yaml.YAMLError as exc:
        logger.error("load_yaml_config: YAML parse error in %s: %s", path, exc)
        raise

    if not isinstance(raw, dict):
        raise ValueError(f"{path}: top-level YAML must be a mapping")

    logger.info(
        "Parsed YAML config %s, sections: %s",
        path.name, ", ".join(sorted(raw)) if raw else "(empty)",
    )

    config = base if base is not None else SyncConfig.from_env()

    endpoints = raw.get("endpoints") or {}
    config.api_endpoint = endpoints.get("api", config.api_endpoint)
    config.www_endpoint = endpoints.get("www", config.www_endpoint)
    config.push_endpoint = endpoints.get("push", config.push_endpoint)

    auth = raw.get("auth") or {}
    config.auth_token = _resolve_token(auth) or config.auth_token
    if auth.get("user_id"):
        config.user_id = str(auth["user_id"])

    push = raw.get("push") or {}
    config.reconnect_max_attempts = int(
        push.get("max_attempts", config.reconnect_max_attempts)
    )
    config.reconnect_base_delay_ms = int(
        push.get("base_delay_ms", config.reconnect_base_delay_ms)
    )
    config.reconnect_max_delay_ms = int(
        push.get("max_delay_ms", config.reconnect_max_delay_ms)
    )
    config.plan_rerender_delay_seconds = float(
        push.get("plan_rerender_delay_seconds", config.plan_rerender_delay_seconds)
    )

    if raw.get("state_dir"):
        config.state_dir = str(Path(str(raw["state_dir"])).expanduser())
    if raw.get("log_level"):
        config.log_level = str(raw["log_level"])

    workspaces = _parse_workspaces(raw.get("workspaces"), path.parent)
    logger.info(
        "load_yaml_config: loaded %s (push=%s, workspaces=%d)",
        path, config.push_endpoint or "<none>", len(workspaces),
    )
    return SyncSettings(config=config, workspaces=workspaces)
