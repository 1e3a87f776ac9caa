"""Configuration loaded from environment variables.

All settings have sensible defaults. Override via CHARTSMITH_* env vars.
"""
from __future__ import annotations

import logging
import os
from dataclasses import dataclass
from pathlib import Path

logger = logging.getLogger(__name__)


DEFAULT_API_ENDPOINT = "https://chartsmith.ai"
DEFAULT_WWW_ENDPOINT = "https://chartsmith.ai"

# Reconnect policy. Delay before reconnect attempt n is
# min(RECONNECT_BASE_DELAY_MS * 2**n, RECONNECT_MAX_DELAY_MS).
RECONNECT_MAX_ATTEMPTS = 10
RECONNECT_BASE_DELAY_MS = 1000
RECONNECT_MAX_DELAY_MS = 30000

PLAN_RERENDER_DELAY_SECONDS = 0.1


@dataclass
class SyncConfig:
    """Realtime sync configuration."""

    # Backend endpoints
    api_endpoint: str = DEFAULT_API_ENDPOINT
    www_endpoint: str = DEFAULT_WWW_ENDPOINT
    # Centrifugo websocket endpoint. Empty disables the push channel.
    push_endpoint: str = ""

    # Credentials
    auth_token: str | None = None
    user_id: str | None = None

    # Push channel
    reconnect_max_attempts: int = RECONNECT_MAX_ATTEMPTS
    reconnect_base_delay_ms: int = RECONNECT_BASE_DELAY_MS
    reconnect_max_delay_ms: int = RECONNECT_MAX_DELAY_MS
    plan_rerender_delay_seconds: float = PLAN_RERENDER_DELAY_SECONDS

    # HTTP
    request_timeout_seconds: float = 30.0

    # Where workspace mappings and the active workspace id are kept.
    state_dir: str = str(Path.home() / ".chartsmith")

    # Logging
    log_level: str = "INFO"

    @property
    def push_enabled(self) -> bool:
        return bool(self.push_endpoint and self.auth_token and self.user_id)

    @classmethod
    def from_env(cls) -> SyncConfig:
        """Load configuration from CHARTSMITH_* environment variables."""
        overrides = sorted(
            k for k in os.environ if k.startswith("CHARTSMITH_")
        )
        if overrides:
            # Values are not logged: the token lives in the same namespace.
            logger.info(
                "SyncConfig.from_env: CHARTSMITH_* env overrides: %s",
                ", ".join(overrides),
            )
        else:
            logger.debug("SyncConfig.from_env: no CHARTSMITH_* env vars set, using defaults")

        config = cls(
            api_endpoint=os.getenv(
                "CHARTSMITH_API_ENDPOINT", cls.api_endpoint
            ),
            www_endpoint=os.getenv(
                "CHARTSMITH_WWW_ENDPOINT", cls.www_endpoint
            ),
            push_endpoint=os.getenv(
                "CHARTSMITH_PUSH_ENDPOINT", cls.push_endpoint
            ),
            auth_token=os.getenv("CHARTSMITH_TOKEN") or None,
            user_id=os.getenv("CHARTSMITH_USER_ID") or None,
            reconnect_max_attempts=int(os.getenv(
                "CHARTSMITH_RECONNECT_MAX_ATTEMPTS",
                str(cls.reconnect_max_attempts),
            )),
            reconnect_base_delay_ms=int(os.getenv(
                "CHARTSMITH_RECONNECT_BASE_MS",
                str(cls.reconnect_base_delay_ms),
            )),
            reconnect_max_delay_ms=int(os.getenv(
                "CHARTSMITH_RECONNECT_MAX_MS",
                str(cls.reconnect_max_delay_ms),
            )),
            plan_rerender_delay_seconds=float(os.getenv(
                "CHARTSMITH_PLAN_RERENDER_DELAY",
                str(cls.plan_rerender_delay_seconds),
            )),
            request_timeout_seconds=float(os.getenv(
                "CHARTSMITH_REQUEST_TIMEOUT",
                str(cls.request_timeout_seconds),
            )),
            state_dir=os.getenv("CHARTSMITH_STATE_DIR", cls.state_dir),
            log_level=os.getenv("CHARTSMITH_LOG_LEVEL", cls.log_level),
        )
        logger.info(
            "SyncConfig.from_env: api=%s push=%s user=%s state_dir=%s log_level=%s",
            config.api_endpoint,
            config.push_endpoint or "<none>",
            config.user_id or "<none>",
            config.state_dir,
            config.log_level,
        )
        return config
