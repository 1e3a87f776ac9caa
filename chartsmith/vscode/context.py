"""Application context: builds the sync pipeline and owns its lifecycle.

Everything the pipeline needs is constructed here once and passed
down explicitly. Tests replace collaborators through the keyword
arguments instead of patching module globals.
"""
from __future__ import annotations

import logging
from pathlib import Path

import aiohttp

from chartsmith.adapters.api_client import ApiClient, AuthData
from chartsmith.adapters.event_bus import NotificationBus, UINotifier
from chartsmith.adapters.events import ArtifactUpdated, ChatMessageUpdated, PlanCreated, PlanUpdated
from chartsmith.adapters.pending_content import PendingContentStore
from chartsmith.engine.config import SyncConfig
from chartsmith.engine.errors import ApiError
from chartsmith.realtime.backoff import BackoffPolicy
from chartsmith.realtime.centrifugo import CentrifugoTransport
from chartsmith.realtime.handlers import (
    ArtifactHandler,
    ArtifactOutcome,
    ChatMessageHandler,
    PlanHandler,
)
from chartsmith.realtime.push_client import PushChannelClient
from chartsmith.realtime.router import EventRouter
from chartsmith.shared.models.workspace import ConnectionStatus, WorkspaceMapping
from chartsmith.shared.services.workspace_mappings import WorkspaceMappingStore
from chartsmith.vscode.store import WorkspaceStateStore

logger = logging.getLogger(__name__)


class AppContext:
    """Owns the store, the push client and the handlers for one activation."""

    def __init__(
        self,
        config: SyncConfig,
        notifier: UINotifier | None = None,
        *,
        mappings: WorkspaceMappingStore | None = None,
        api_client: ApiClient | None = None,
        push_client: PushChannelClient | None = None,
    ) -> None:
        self.config = config
        self.auth = AuthData.from_config(config)
        self.store = WorkspaceStateStore()
        self.pending = PendingContentStore()
        self.mappings = mappings or WorkspaceMappingStore(Path(config.state_dir))
        self.notifier: UINotifier = notifier or NotificationBus()

        self.chat_handler = ChatMessageHandler(self.store, self.notifier)
        self.plan_handler = PlanHandler(
            self.store, self.notifier, config.plan_rerender_delay_seconds,
        )
        self.artifact_handler = ArtifactHandler(
            self.store, self.mappings, self.pending, self.notifier,
        )
        self.router = EventRouter(self.store, {
            ChatMessageUpdated: self.chat_handler.handle,
            PlanCreated: self.plan_handler.handle,
            PlanUpdated: self.plan_handler.handle,
            ArtifactUpdated: self.artifact_handler.handle,
        })

        self.api_client = api_client
        self.push_client = push_client
        if push_client is not None:
            push_client.set_status_listener(self._on_connection_status)
        self._session: aiohttp.ClientSession | None = None

    async def activate(self) -> None:
        """Open network clients and restore the persisted active workspace."""
        if self.auth is None:
            logger.warning(
                "Not authenticated (set CHARTSMITH_TOKEN and CHARTSMITH_USER_ID); "
                "running without backend access",
            )
        else:
            if self.api_client is None or (self.push_client is None and self.config.push_enabled):
                self._session = aiohttp.ClientSession()
            if self.api_client is None:
                self.api_client = ApiClient(
                    self.auth, self._session, self.config.request_timeout_seconds,
                )
            if self.push_client is None and self.config.push_enabled:
                self.push_client = self._build_push_client(self._session)
            elif self.push_client is None:
                logger.info("No push endpoint configured; realtime updates disabled")

        workspace_id = self.mappings.get_active_workspace_id()
        if workspace_id:
            logger.info("Restoring active workspace %s", workspace_id)
            await self.set_active_workspace(workspace_id)

    def _build_push_client(self, session: aiohttp.ClientSession) -> PushChannelClient:
        return PushChannelClient(
            transport_factory=lambda: CentrifugoTransport(session),
            token_provider=self.api_client.fetch_push_token,
            on_frame=self.router.route,
            on_status=self._on_connection_status,
            endpoint=self.config.push_endpoint,
            user_id=self.auth.user_id,
            backoff=BackoffPolicy.from_config(self.config),
        )

    async def deactivate(self) -> None:
        if self.push_client is not None:
            await self.push_client.stop()
        self.plan_handler.cancel_pending()
        if self._session is not None:
            await self._session.close()
            self._session = None
        if isinstance(self.notifier, NotificationBus):
            self.notifier.close()
        logger.info("Chartsmith sync deactivated")

    # ── Workspaces ──

    def map_workspace(self, workspace_id: str, local_path: str | Path) -> WorkspaceMapping:
        mapping = WorkspaceMapping(
            workspace_id=workspace_id, local_path=str(Path(local_path).expanduser().resolve()),
        )
        self.mappings.save_mapping(mapping)
        return mapping

    async def set_active_workspace(self, workspace_id: str | None) -> bool:
        """Make *workspace_id* active (None clears it).

        Old workspace state is dropped before anything else happens, so
        no event for the new workspace can merge into stale collections.
        Returns False when *workspace_id* was already active.
        """
        changed = self.store.set_active_workspace(workspace_id)
        self.mappings.set_active_workspace_id(workspace_id)
        if not changed:
            return False

        await self.notifier.post_message({
            "command": "workspaceChanged",
            "workspaceId": workspace_id,
        })
        if self.push_client is not None:
            await self.push_client.set_workspace(workspace_id)
        if workspace_id is not None:
            await self.load_workspace(workspace_id)
        return True

    async def load_workspace(self, workspace_id: str) -> bool:
        """Fetch messages, plans and renders and fold them into the store."""
        if self.api_client is None:
            return False
        try:
            messages = await self.api_client.fetch_workspace_messages(workspace_id)
            plans = await self.api_client.fetch_workspace_plans(workspace_id)
            renders = await self.api_client.fetch_workspace_renders(workspace_id)
        except ApiError as exc:
            logger.warning("Failed to load workspace %s: %s", workspace_id, exc)
            return False

        if self.store.active_workspace_id != workspace_id:
            logger.info("Discarding stale snapshot for workspace %s", workspace_id)
            return False

        self.store.apply_snapshot(messages, plans, renders)
        logger.info(
            "Loaded workspace %s: %d message(s), %d plan(s), %d render(s)",
            workspace_id, len(self.store.messages), len(self.store.plans), len(self.store.renders),
        )
        await self.notifier.post_message({
            "command": "workspaceLoaded",
            "workspaceId": workspace_id,
            "messages": [m.to_dict() for m in self.store.messages],
            "plans": [p.to_dict() for p in self.store.plans],
            "renders": [r.to_dict() for r in self.store.renders],
        })
        return True

    # ── Pending content review ──

    async def accept_pending(self, workspace_id: str, plan_id: str, file_path: str) -> ArtifactOutcome:
        return await self.artifact_handler.accept(workspace_id, plan_id, file_path)

    async def reject_pending(self, workspace_id: str, plan_id: str, file_path: str) -> ArtifactOutcome:
        return await self.artifact_handler.reject(workspace_id, plan_id, file_path)

    async def _on_connection_status(self, status: ConnectionStatus) -> None:
        self.store.set_connection_status(status)
        await self.notifier.post_message({
            "command": "connectionStatus",
            "status": status.value,
        })
