"""Event handlers: merge into the store, touch disk, tell the UI.

One handler per event family. Each takes its collaborators in the
constructor and exposes an async ``handle(event)`` for the router.
"""
from __future__ import annotations

import asyncio
import logging
from enum import Enum
from pathlib import Path

from chartsmith.adapters.event_bus import UINotifier
from chartsmith.adapters.events import ArtifactUpdated, ChatMessageUpdated, PlanCreated, PlanUpdated
from chartsmith.adapters.pending_content import PendingContentStore
from chartsmith.engine.config import PLAN_RERENDER_DELAY_SECONDS
from chartsmith.engine.errors import ArtifactPathError, ArtifactWriteError
from chartsmith.shared.file_utils import read_text_or_none, resolve_artifact_path
from chartsmith.shared.models.message import entity_id
from chartsmith.shared.services.durable_write import ensure_file, write_chart_file
from chartsmith.shared.services.workspace_mappings import WorkspaceMappingStore
from chartsmith.vscode.store import WorkspaceStateStore

logger = logging.getLogger(__name__)


class ChatMessageHandler:
    def __init__(self, store: WorkspaceStateStore, notifier: UINotifier) -> None:
        self._store = store
        self._notifier = notifier

    async def handle(self, event: ChatMessageUpdated) -> bool:
        message_id = entity_id(event.chat_message)
        if message_id is None:
            logger.error(
                "chatmessage-updated without chatMessage.id in workspace %s", event.workspace_id,
            )
            return False
        if not self._store.merge_message(event.chat_message):
            return False
        merged = self._store.get_message(message_id)
        await self._notifier.post_message({
            "command": "messageUpdated",
            "workspaceId": event.workspace_id,
            "message": merged.to_dict(),
        })
        return True


class PlanHandler:
    """Merges plan events, then schedules a full re-render of the chat view.

    The re-render runs after a short delay so a burst of plan updates
    settles into one view refresh. A re-render scheduled for a workspace
    that is no longer active is dropped.
    """

    def __init__(
        self,
        store: WorkspaceStateStore,
        notifier: UINotifier,
        rerender_delay: float = PLAN_RERENDER_DELAY_SECONDS,
    ) -> None:
        self._store = store
        self._notifier = notifier
        self._rerender_delay = rerender_delay
        self._pending: dict[str, asyncio.Task] = {}

    @property
    def pending_rerenders(self) -> int:
        return sum(1 for t in self._pending.values() if not t.done())

    async def handle(self, event: PlanCreated | PlanUpdated) -> bool:
        plan_id = entity_id(event.plan)
        if plan_id is None:
            logger.error("%s without plan.id in workspace %s", event.event_type, event.workspace_id)
            return False
        if not self._store.merge_plan(event.plan):
            return False
        plan = self._store.find_plan(plan_id)
        logger.info("Plan %s %s (status=%s)", plan_id, event.event_type, plan.status or "?")
        await self._notifier.post_message({
            "command": "planUpdated",
            "workspaceId": event.workspace_id,
            "plan": plan.to_dict(),
            "reviewable": plan.is_reviewable,
        })
        self._schedule_rerender(event.workspace_id)
        return True

    def _schedule_rerender(self, workspace_id: str) -> None:
        existing = self._pending.get(workspace_id)
        if existing is not None and not existing.done():
            return
        task = asyncio.create_task(self._rerender_later(workspace_id))
        self._pending[workspace_id] = task
        task.add_done_callback(lambda t, ws=workspace_id: self._forget(ws, t))

    def _forget(self, workspace_id: str, task: asyncio.Task) -> None:
        if self._pending.get(workspace_id) is task:
            del self._pending[workspace_id]

    async def _rerender_later(self, workspace_id: str) -> None:
        await asyncio.sleep(self._rerender_delay)
        if self._store.active_workspace_id != workspace_id:
            logger.debug("Skipping re-render for inactive workspace %s", workspace_id)
            return
        await self._notifier.post_message({
            "command": "renderMessages",
            "workspaceId": workspace_id,
            "messages": [m.to_dict() for m in self._store.messages],
            "plans": [p.to_dict() for p in self._store.plans],
        })

    def cancel_pending(self) -> None:
        for task in list(self._pending.values()):
            task.cancel()
        self._pending.clear()


class ArtifactOutcome(Enum):
    SHOWN_FOR_REVIEW = "shown-for-review"
    OPENED = "opened"
    ACCEPTED = "accepted"
    REJECTED = "rejected"
    ERROR = "error"
    DROPPED = "dropped"


class ArtifactHandler:
    """Applies artifact events to the local chart directory.

    With pending content the change is staged and a diff is shown; the
    file on disk is untouched until ``accept``. Without pending content
    the file is created if missing and opened. Filesystem failures are
    reported to the UI as ``fileOperationFailed`` and never raised.
    """

    def __init__(
        self,
        store: WorkspaceStateStore,
        mappings: WorkspaceMappingStore,
        pending: PendingContentStore,
        notifier: UINotifier,
    ) -> None:
        self._store = store
        self._mappings = mappings
        self._pending = pending
        self._notifier = notifier

    async def handle(self, event: ArtifactUpdated) -> ArtifactOutcome:
        file_path = event.file_path
        workspace_id = event.workspace_id
        if not file_path:
            logger.error("artifact-updated without file.filePath in workspace %s", workspace_id)
            return ArtifactOutcome.DROPPED

        try:
            resolved = self.resolve(workspace_id, file_path)
        except ArtifactPathError as exc:
            return await self._fail(workspace_id, file_path, "resolve", exc)

        content = event.content_pending
        if content:
            return await self._stage_for_review(event, resolved, content)
        return await self._open(workspace_id, file_path, resolved)

    def resolve(self, workspace_id: str, file_path: str) -> Path:
        mapping = self._mappings.get_mapping(workspace_id)
        if mapping is None:
            raise ArtifactPathError(
                file_path, f"no local chart directory mapped for workspace {workspace_id}",
            )
        return resolve_artifact_path(mapping.local_path, file_path)

    async def _stage_for_review(
        self, event: ArtifactUpdated, resolved: Path, content: str,
    ) -> ArtifactOutcome:
        try:
            current = read_text_or_none(resolved)
        except (OSError, UnicodeDecodeError) as exc:
            return await self._fail(
                event.workspace_id, event.file_path, "read", exc, local_path=str(resolved),
            )

        self._pending.stage(
            event.workspace_id, event.plan_id, event.file_path, str(resolved), content,
        )
        await self._notifier.post_message({
            "command": "showFileDiff",
            "workspaceId": event.workspace_id,
            "planId": event.plan_id,
            "filePath": event.file_path,
            "localPath": str(resolved),
            "currentContent": current or "",
            "pendingContent": content,
        })
        return ArtifactOutcome.SHOWN_FOR_REVIEW

    async def _open(self, workspace_id: str, file_path: str, resolved: Path) -> ArtifactOutcome:
        try:
            created = ensure_file(resolved)
        except OSError as exc:
            return await self._fail(
                workspace_id, file_path, "create", exc, local_path=str(resolved),
            )
        if created:
            logger.info("Created empty file %s", resolved)
        await self._notifier.post_message({
            "command": "openFile",
            "workspaceId": workspace_id,
            "filePath": file_path,
            "localPath": str(resolved),
        })
        return ArtifactOutcome.OPENED

    async def accept(self, workspace_id: str, plan_id: str, file_path: str) -> ArtifactOutcome:
        """Write staged content to disk atomically and drop it from the store."""
        change = self._pending.get(workspace_id, plan_id, file_path)
        if change is None:
            return await self._fail(
                workspace_id, file_path, "accept",
                ArtifactPathError(file_path, "no pending content to accept"),
            )
        try:
            write_chart_file(Path(change.resolved_path), change.content)
        except OSError as exc:
            # Staged content is kept so the user can retry.
            return await self._fail(
                workspace_id, file_path, "write", exc, local_path=change.resolved_path,
            )

        self._pending.pop(workspace_id, plan_id, file_path)
        change.status = "accepted"
        logger.info("Applied pending content to %s", change.resolved_path)
        await self._notifier.post_message({
            "command": "fileChangeApplied",
            "filePath": file_path,
            "status": "accepted",
        })
        return ArtifactOutcome.ACCEPTED

    async def reject(self, workspace_id: str, plan_id: str, file_path: str) -> ArtifactOutcome:
        """Discard staged content; the file on disk is left as it was."""
        change = self._pending.pop(workspace_id, plan_id, file_path)
        if change is None:
            return await self._fail(
                workspace_id, file_path, "reject",
                ArtifactPathError(file_path, "no pending content to reject"),
            )
        change.status = "rejected"
        logger.info("Rejected pending content for %s", file_path)
        await self._notifier.post_message({
            "command": "fileChangeApplied",
            "filePath": file_path,
            "status": "rejected",
        })
        return ArtifactOutcome.REJECTED

    async def _fail(
        self,
        workspace_id: str,
        file_path: str,
        operation: str,
        exc: Exception,
        local_path: str | None = None,
    ) -> ArtifactOutcome:
        if isinstance(exc, ArtifactPathError):
            error = exc
            logger.error("Artifact %s failed: %s", operation, exc)
        else:
            error = ArtifactWriteError(file_path, workspace_id, operation, exc)
            logger.error("%s (local path %s)", error, local_path, exc_info=exc)
        message = {
            "command": "fileOperationFailed",
            "workspaceId": workspace_id,
            "filePath": file_path,
            "operation": operation,
            "error": str(error),
        }
        if local_path is not None:
            message["localPath"] = local_path
        await self._notifier.post_message(message)
        return ArtifactOutcome.ERROR
