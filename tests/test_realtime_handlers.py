from __future__ import annotations

import asyncio
from pathlib import Path
from typing import Any

import pytest

from chartsmith.adapters.events import ArtifactUpdated, ChatMessageUpdated, PlanUpdated
from chartsmith.adapters.pending_content import PendingContentStore
from chartsmith.realtime.handlers import (
    ArtifactHandler,
    ArtifactOutcome,
    ChatMessageHandler,
    PlanHandler,
)
from chartsmith.shared.models.workspace import WorkspaceMapping
from chartsmith.shared.services.workspace_mappings import WorkspaceMappingStore
from chartsmith.vscode.store import WorkspaceStateStore


class _RecordingNotifier:
    def __init__(self) -> None:
        self.messages: list[dict[str, Any]] = []

    async def post_message(self, message: dict[str, Any]) -> None:
        self.messages.append(message)

    def commands(self) -> list[str]:
        return [m["command"] for m in self.messages]


def _store(workspace_id: str = "ws-1") -> WorkspaceStateStore:
    store = WorkspaceStateStore()
    store.set_active_workspace(workspace_id)
    return store


# ── Chat messages ──


@pytest.mark.asyncio
async def test_chat_handler_merges_and_notifies() -> None:
    store = _store()
    store.set_messages([{"id": "m1", "prompt": "add an ingress"}])
    notifier = _RecordingNotifier()
    handler = ChatMessageHandler(store, notifier)

    ok = await handler.handle(ChatMessageUpdated(
        workspace_id="ws-1", chat_message={"id": "m1", "response": "Done", "isComplete": True},
    ))

    assert ok is True
    assert notifier.commands() == ["messageUpdated"]
    posted = notifier.messages[0]["message"]
    assert posted["prompt"] == "add an ingress"
    assert posted["response"] == "Done"
    assert posted["isComplete"] is True


@pytest.mark.asyncio
async def test_chat_handler_rejects_message_without_id() -> None:
    store = _store()
    notifier = _RecordingNotifier()
    handler = ChatMessageHandler(store, notifier)

    ok = await handler.handle(ChatMessageUpdated(workspace_id="ws-1", chat_message={"prompt": "x"}))

    assert ok is False
    assert store.messages == []
    assert notifier.messages == []


# ── Plans ──


@pytest.mark.asyncio
async def test_plan_handler_posts_update_then_delayed_rerender() -> None:
    store = _store()
    store.set_messages([{"id": "m1", "responsePlanId": "p1"}])
    notifier = _RecordingNotifier()
    handler = PlanHandler(store, notifier, rerender_delay=0.01)

    await handler.handle(PlanUpdated(workspace_id="ws-1", plan={"id": "p1", "status": "review"}))

    assert notifier.commands() == ["planUpdated"]
    assert notifier.messages[0]["reviewable"] is True
    await asyncio.sleep(0.05)

    assert notifier.commands() == ["planUpdated", "renderMessages"]
    render = notifier.messages[1]
    assert [m["id"] for m in render["messages"]] == ["m1"]
    assert [p["id"] for p in render["plans"]] == ["p1"]


@pytest.mark.asyncio
async def test_plan_handler_coalesces_burst_into_one_rerender() -> None:
    store = _store()
    notifier = _RecordingNotifier()
    handler = PlanHandler(store, notifier, rerender_delay=0.01)

    for status in ("planning", "review", "applying"):
        await handler.handle(PlanUpdated(workspace_id="ws-1", plan={"id": "p1", "status": status}))
    await asyncio.sleep(0.05)

    assert notifier.commands().count("renderMessages") == 1
    assert store.find_plan("p1").status == "applying"


@pytest.mark.asyncio
async def test_plan_rerender_dropped_after_workspace_switch() -> None:
    store = _store("ws-1")
    notifier = _RecordingNotifier()
    handler = PlanHandler(store, notifier, rerender_delay=0.01)

    await handler.handle(PlanUpdated(workspace_id="ws-1", plan={"id": "p1"}))
    store.set_active_workspace("ws-2")
    await asyncio.sleep(0.05)

    assert "renderMessages" not in notifier.commands()


@pytest.mark.asyncio
async def test_plan_handler_cancel_pending() -> None:
    store = _store()
    notifier = _RecordingNotifier()
    handler = PlanHandler(store, notifier, rerender_delay=0.05)

    await handler.handle(PlanUpdated(workspace_id="ws-1", plan={"id": "p1"}))
    assert handler.pending_rerenders == 1
    handler.cancel_pending()
    await asyncio.sleep(0.1)

    assert notifier.commands() == ["planUpdated"]


# ── Artifacts ──


def _artifact_setup(
    tmp_path: Path,
) -> tuple[ArtifactHandler, _RecordingNotifier, PendingContentStore, Path]:
    chart_dir = tmp_path / "charts" / "mychart"
    chart_dir.mkdir(parents=True)
    mappings = WorkspaceMappingStore(tmp_path / "state")
    mappings.save_mapping(WorkspaceMapping(workspace_id="ws-1", local_path=str(chart_dir)))
    pending = PendingContentStore()
    notifier = _RecordingNotifier()
    handler = ArtifactHandler(_store(), mappings, pending, notifier)
    return handler, notifier, pending, chart_dir


def _artifact(file_path: str, content: str | None = None, plan_id: str = "p1") -> ArtifactUpdated:
    file: dict[str, Any] = {"filePath": file_path}
    if content is not None:
        file["content_pending"] = content
    return ArtifactUpdated(workspace_id="ws-1", file=file, plan_id=plan_id)


@pytest.mark.asyncio
async def test_artifact_with_pending_content_is_staged_not_written(tmp_path: Path) -> None:
    handler, notifier, pending, chart_dir = _artifact_setup(tmp_path)
    target = chart_dir / "templates" / "deployment.yaml"
    target.parent.mkdir()
    target.write_text("replicas: 1\n", encoding="utf-8")

    outcome = await handler.handle(
        _artifact("mychart/templates/deployment.yaml", "replicas: 3\n"),
    )

    assert outcome is ArtifactOutcome.SHOWN_FOR_REVIEW
    assert target.read_text(encoding="utf-8") == "replicas: 1\n"
    assert len(pending) == 1
    diff = notifier.messages[-1]
    assert diff["command"] == "showFileDiff"
    assert diff["localPath"] == str(target)
    assert diff["currentContent"] == "replicas: 1\n"
    assert diff["pendingContent"] == "replicas: 3\n"
    assert diff["planId"] == "p1"


@pytest.mark.asyncio
async def test_accept_writes_pending_content(tmp_path: Path) -> None:
    handler, notifier, pending, chart_dir = _artifact_setup(tmp_path)
    await handler.handle(_artifact("templates/service.yaml", "kind: Service\n"))

    outcome = await handler.accept("ws-1", "p1", "templates/service.yaml")

    assert outcome is ArtifactOutcome.ACCEPTED
    assert (chart_dir / "templates" / "service.yaml").read_text(encoding="utf-8") == "kind: Service\n"
    assert len(pending) == 0
    assert notifier.messages[-1] == {
        "command": "fileChangeApplied",
        "filePath": "templates/service.yaml",
        "status": "accepted",
    }


@pytest.mark.asyncio
async def test_reject_leaves_disk_untouched(tmp_path: Path) -> None:
    handler, notifier, pending, chart_dir = _artifact_setup(tmp_path)
    await handler.handle(_artifact("values.yaml", "image: nginx\n"))

    outcome = await handler.reject("ws-1", "p1", "values.yaml")

    assert outcome is ArtifactOutcome.REJECTED
    assert not (chart_dir / "values.yaml").exists()
    assert len(pending) == 0
    assert notifier.messages[-1]["status"] == "rejected"


@pytest.mark.asyncio
async def test_accept_without_pending_content_reports_failure(tmp_path: Path) -> None:
    handler, notifier, _pending, _chart_dir = _artifact_setup(tmp_path)

    outcome = await handler.accept("ws-1", "p1", "values.yaml")

    assert outcome is ArtifactOutcome.ERROR
    failure = notifier.messages[-1]
    assert failure["command"] == "fileOperationFailed"
    assert failure["operation"] == "accept"


@pytest.mark.asyncio
async def test_artifact_without_pending_content_creates_and_opens(tmp_path: Path) -> None:
    handler, notifier, pending, chart_dir = _artifact_setup(tmp_path)

    outcome = await handler.handle(_artifact("templates/NOTES.txt"))

    target = chart_dir / "templates" / "NOTES.txt"
    assert outcome is ArtifactOutcome.OPENED
    assert target.exists()
    assert target.read_text(encoding="utf-8") == ""
    assert len(pending) == 0
    assert notifier.messages[-1] == {
        "command": "openFile",
        "workspaceId": "ws-1",
        "filePath": "templates/NOTES.txt",
        "localPath": str(target),
    }


@pytest.mark.asyncio
async def test_artifact_open_keeps_existing_file(tmp_path: Path) -> None:
    handler, _notifier, _pending, chart_dir = _artifact_setup(tmp_path)
    (chart_dir / "Chart.yaml").write_text("name: mychart\n", encoding="utf-8")

    outcome = await handler.handle(_artifact("Chart.yaml", ""))

    assert outcome is ArtifactOutcome.OPENED
    assert (chart_dir / "Chart.yaml").read_text(encoding="utf-8") == "name: mychart\n"


@pytest.mark.asyncio
async def test_artifact_path_escape_is_reported(tmp_path: Path) -> None:
    handler, notifier, pending, _chart_dir = _artifact_setup(tmp_path)

    outcome = await handler.handle(_artifact("../../etc/passwd", "root"))

    assert outcome is ArtifactOutcome.ERROR
    assert len(pending) == 0
    assert notifier.messages[-1]["command"] == "fileOperationFailed"
    assert notifier.messages[-1]["operation"] == "resolve"


@pytest.mark.asyncio
async def test_artifact_for_unmapped_workspace_is_reported(tmp_path: Path) -> None:
    handler, notifier, _pending, _chart_dir = _artifact_setup(tmp_path)

    event = ArtifactUpdated(workspace_id="ws-unmapped", file={"filePath": "values.yaml"})
    outcome = await handler.handle(event)

    assert outcome is ArtifactOutcome.ERROR
    assert "no local chart directory" in notifier.messages[-1]["error"]


@pytest.mark.asyncio
async def test_artifact_without_file_path_is_dropped(tmp_path: Path) -> None:
    handler, notifier, _pending, _chart_dir = _artifact_setup(tmp_path)

    outcome = await handler.handle(ArtifactUpdated(workspace_id="ws-1", file={}))

    assert outcome is ArtifactOutcome.DROPPED
    assert notifier.messages == []


@pytest.mark.asyncio
async def test_artifact_create_failure_is_reported(tmp_path: Path) -> None:
    handler, notifier, _pending, chart_dir = _artifact_setup(tmp_path)
    # A regular file where a directory is needed makes mkdir fail.
    (chart_dir / "templates").write_text("not a dir", encoding="utf-8")

    outcome = await handler.handle(_artifact("templates/svc.yaml"))

    assert outcome is ArtifactOutcome.ERROR
    failure = notifier.messages[-1]
    assert failure["command"] == "fileOperationFailed"
    assert failure["operation"] == "create"
    assert failure["filePath"] == "templates/svc.yaml"


@pytest.mark.asyncio
async def test_unreadable_existing_file_is_reported_not_staged(tmp_path: Path) -> None:
    handler, notifier, pending, chart_dir = _artifact_setup(tmp_path)
    target = chart_dir / "templates" / "blob.yaml"
    target.parent.mkdir()
    target.write_bytes(b"\xff\xfe\x00bad")

    outcome = await handler.handle(_artifact("templates/blob.yaml", "kind: ConfigMap\n"))

    assert outcome is ArtifactOutcome.ERROR
    assert len(pending) == 0
    assert [m["command"] for m in notifier.messages] == ["fileOperationFailed"]
    failure = notifier.messages[0]
    assert failure["operation"] == "read"
    assert failure["localPath"] == str(target)
    assert target.read_bytes() == b"\xff\xfe\x00bad"


@pytest.mark.asyncio
async def test_accept_keeps_crlf_line_endings(tmp_path: Path) -> None:
    handler, _notifier, _pending, chart_dir = _artifact_setup(tmp_path)
    target = chart_dir / "values.yaml"
    target.write_bytes(b"replicas: 1\r\nimage: nginx\r\n")

    await handler.handle(_artifact("values.yaml", "replicas: 3\nimage: nginx\n"))
    outcome = await handler.accept("ws-1", "p1", "values.yaml")

    assert outcome is ArtifactOutcome.ACCEPTED
    assert target.read_bytes() == b"replicas: 3\r\nimage: nginx\r\n"
