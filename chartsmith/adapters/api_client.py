"""HTTP client for the Chartsmith backend.

Covers what the sync pipeline needs from the API: push tokens for the
realtime channel and the initial message/plan/render snapshot of a
workspace.
"""
from __future__ import annotations

import asyncio
import json
import logging
from dataclasses import dataclass
from typing import Any
from urllib.parse import urlsplit, urlunsplit

import aiohttp

from chartsmith.engine.config import SyncConfig
from chartsmith.engine.errors import ApiError, PushTokenError

logger = logging.getLogger(__name__)

_LOCAL_HOSTS = {"localhost", "127.0.0.1"}


def _is_local(url: str) -> bool:
    return (urlsplit(url).hostname or "") in _LOCAL_HOSTS


def normalize_endpoint(url: str) -> str:
    """Upgrade ``http:`` to ``https:`` except for localhost endpoints."""
    if not url:
        return url
    parts = urlsplit(url)
    if parts.scheme == "http" and not _is_local(url):
        return urlunsplit(parts._replace(scheme="https"))
    return url


def construct_api_url(base: str, endpoint: str) -> str:
    """Join *base* and *endpoint* with exactly one slash."""
    return f"{base.rstrip('/')}/{endpoint.lstrip('/')}"


@dataclass
class AuthData:
    token: str
    api_endpoint: str
    user_id: str
    push_endpoint: str = ""
    www_endpoint: str = ""

    @classmethod
    def from_config(cls, config: SyncConfig) -> AuthData | None:
        if not config.auth_token or not config.api_endpoint or not config.user_id:
            return None
        return cls(
            token=config.auth_token,
            api_endpoint=normalize_endpoint(config.api_endpoint),
            user_id=config.user_id,
            push_endpoint=config.push_endpoint,
            www_endpoint=normalize_endpoint(config.www_endpoint),
        )


class ApiClient:
    """Thin JSON-over-HTTP client; one instance per activation."""

    def __init__(
        self,
        auth: AuthData,
        session: aiohttp.ClientSession,
        timeout_seconds: float = 30.0,
    ) -> None:
        self._auth = auth
        self._session = session
        self._timeout = aiohttp.ClientTimeout(total=timeout_seconds)

    @property
    def auth(self) -> AuthData:
        return self._auth

    async def fetch(
        self,
        endpoint: str,
        method: str = "GET",
        body: Any = None,
        headers: dict[str, str] | None = None,
    ) -> Any:
        """Send a request and return the decoded JSON body (``{}`` when empty)."""
        url = construct_api_url(self._auth.api_endpoint, endpoint)
        scheme = urlsplit(url).scheme
        if scheme != "https" and not _is_local(url):
            raise ApiError(
                endpoint,
                f'protocol "{scheme}:" not supported for non-localhost, expected "https:"',
            )

        request_headers = {
            "Content-Type": "application/json",
            "Authorization": f"Bearer {self._auth.token}",
            **(headers or {}),
        }
        logger.debug("API %s %s", method, url)
        try:
            async with self._session.request(
                method,
                url,
                headers=request_headers,
                data=json.dumps(body) if body is not None else None,
                timeout=self._timeout,
            ) as resp:
                text = await resp.text()
                if not 200 <= resp.status < 300:
                    raise ApiError(endpoint, text[:500], status=resp.status)
        except aiohttp.ClientError as exc:
            raise ApiError(endpoint, f"{type(exc).__name__}: {exc}") from exc
        except asyncio.TimeoutError as exc:
            raise ApiError(endpoint, f"timed out after {self._timeout.total}s") from exc

        if not text:
            return {}
        try:
            return json.loads(text)
        except json.JSONDecodeError as exc:
            raise ApiError(endpoint, f"invalid JSON response: {text[:200]!r}") from exc

    async def fetch_push_token(self) -> str:
        """Ask the token issuer for a fresh push (Centrifugo) token."""
        try:
            response = await self.fetch("/push")
        except ApiError as exc:
            raise PushTokenError(str(exc)) from exc
        token = response.get("pushToken") if isinstance(response, dict) else None
        if not token:
            raise PushTokenError("response has no pushToken")
        return str(token)

    async def fetch_workspace_messages(self, workspace_id: str) -> list[dict[str, Any]]:
        response = await self.fetch(f"/workspace/{workspace_id}/messages")
        return _extract_list(response, "messages")

    async def fetch_workspace_plans(self, workspace_id: str) -> list[dict[str, Any]]:
        response = await self.fetch(f"/workspace/{workspace_id}/plans")
        plans = _extract_list(response, "plans")
        logger.info("Fetched %d plan(s) for workspace %s", len(plans), workspace_id)
        return plans

    async def fetch_workspace_renders(self, workspace_id: str) -> list[dict[str, Any]]:
        response = await self.fetch(f"v1/workspaces/{workspace_id}/renders")
        return _extract_list(response, "renders")


def _extract_list(response: Any, key: str) -> list[dict[str, Any]]:
    """Accept either a bare list or ``{key: [...]}``."""
    if isinstance(response, list):
        items = response
    elif isinstance(response, dict) and isinstance(response.get(key), list):
        items = response[key]
    else:
        logger.debug("No %s found in response or unexpected response format", key)
        return []
    return [item for item in items if isinstance(item, dict)]
