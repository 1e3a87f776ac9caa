from __future__ import annotations

import asyncio
from pathlib import Path
from types import SimpleNamespace
from unittest.mock import AsyncMock, MagicMock

import pytest

from chartsmith.adapters.event_bus import NotificationBus
from chartsmith.engine.config import SyncConfig
from chartsmith.engine.errors import ApiError
from chartsmith.realtime.handlers import ArtifactOutcome
from chartsmith.shared.models.workspace import ConnectionStatus
from chartsmith.shared.services.workspace_mappings import WorkspaceMappingStore
from chartsmith.vscode.context import AppContext


def _config(tmp_path: Path) -> SyncConfig:
    return SyncConfig(
        api_endpoint="http://localhost:3000",
        push_endpoint="ws://localhost:8000/connection/websocket",
        auth_token="t",
        user_id="u1",
        state_dir=str(tmp_path / "state"),
        plan_rerender_delay_seconds=0.01,
    )


def _api(snapshots: dict[str, dict] | None = None) -> SimpleNamespace:
    snapshots = snapshots or {}

    def _part(key: str):
        return lambda ws: list(snapshots.get(ws, {}).get(key, []))

    return SimpleNamespace(
        fetch_workspace_messages=AsyncMock(side_effect=_part("messages")),
        fetch_workspace_plans=AsyncMock(side_effect=_part("plans")),
        fetch_workspace_renders=AsyncMock(side_effect=_part("renders")),
        fetch_push_token=AsyncMock(return_value="push-token"),
    )


def _push_client() -> MagicMock:
    push = MagicMock()
    push.set_workspace = AsyncMock()
    push.stop = AsyncMock()
    return push


def _context(tmp_path: Path, api=None, push=None) -> AppContext:
    config = _config(tmp_path)
    return AppContext(
        config,
        NotificationBus(),
        mappings=WorkspaceMappingStore(Path(config.state_dir)),
        api_client=api or _api(),
        push_client=push or _push_client(),
    )


def _commands(ctx: AppContext) -> list[str]:
    return [m["command"] for m in ctx.notifier.drain()]


@pytest.mark.asyncio
async def test_activate_restores_persisted_workspace(tmp_path: Path) -> None:
    api = _api({"ws-1": {
        "messages": [{"id": "m1", "prompt": "hello"}],
        "plans": [{"id": "p1", "status": "review"}],
        "renders": [{"id": "r1"}],
    }})
    push = _push_client()
    ctx = _context(tmp_path, api, push)
    ctx.mappings.set_active_workspace_id("ws-1")

    await ctx.activate()

    assert ctx.store.active_workspace_id == "ws-1"
    assert [m.id for m in ctx.store.messages] == ["m1"]
    assert [p.id for p in ctx.store.plans] == ["p1"]
    assert [r.id for r in ctx.store.renders] == ["r1"]
    push.set_workspace.assert_awaited_once_with("ws-1")
    assert _commands(ctx) == ["workspaceChanged", "workspaceLoaded"]


@pytest.mark.asyncio
async def test_activate_without_persisted_workspace_stays_idle(tmp_path: Path) -> None:
    push = _push_client()
    ctx = _context(tmp_path, push=push)

    await ctx.activate()

    assert ctx.store.active_workspace_id is None
    push.set_workspace.assert_not_awaited()


@pytest.mark.asyncio
async def test_switch_persists_and_retargets_push_client(tmp_path: Path) -> None:
    push = _push_client()
    ctx = _context(tmp_path, push=push)

    await ctx.set_active_workspace("ws-a")
    await ctx.set_active_workspace("ws-b")
    assert await ctx.set_active_workspace("ws-b") is False

    assert ctx.mappings.get_active_workspace_id() == "ws-b"
    assert [c.args[0] for c in push.set_workspace.await_args_list] == ["ws-a", "ws-b"]

    await ctx.set_active_workspace(None)
    push.set_workspace.assert_awaited_with(None)
    assert ctx.mappings.get_active_workspace_id() is None


@pytest.mark.asyncio
async def test_stale_snapshot_is_discarded(tmp_path: Path) -> None:
    gate = asyncio.Event()
    snapshots = {
        "ws-a": [{"id": "a-1"}],
        "ws-b": [{"id": "b-1"}],
    }

    async def _messages(ws: str) -> list[dict]:
        if ws == "ws-a":
            await gate.wait()
        return snapshots[ws]

    api = _api()
    api.fetch_workspace_messages = AsyncMock(side_effect=_messages)
    ctx = _context(tmp_path, api)

    load_a = asyncio.create_task(ctx.set_active_workspace("ws-a"))
    await asyncio.sleep(0.01)
    await ctx.set_active_workspace("ws-b")
    gate.set()
    await load_a

    assert ctx.store.active_workspace_id == "ws-b"
    assert [m.id for m in ctx.store.messages] == ["b-1"]


@pytest.mark.asyncio
async def test_load_failure_leaves_store_empty(tmp_path: Path) -> None:
    api = _api()
    api.fetch_workspace_plans = AsyncMock(side_effect=ApiError("/workspace/ws-1/plans", "boom", 500))
    ctx = _context(tmp_path, api)

    await ctx.set_active_workspace("ws-1")

    assert ctx.store.plans == []
    assert "workspaceLoaded" not in _commands(ctx)


@pytest.mark.asyncio
async def test_connection_status_reaches_store_and_ui(tmp_path: Path) -> None:
    push = _push_client()
    ctx = _context(tmp_path, push=push)
    listener = push.set_status_listener.call_args.args[0]

    await listener(ConnectionStatus.RECONNECTING)

    assert ctx.store.connection_status is ConnectionStatus.RECONNECTING
    assert ctx.notifier.drain() == [{"command": "connectionStatus", "status": "reconnecting"}]


@pytest.mark.asyncio
async def test_pushed_frames_flow_into_store_and_disk(tmp_path: Path) -> None:
    ctx = _context(tmp_path)
    chart_dir = tmp_path / "charts" / "nginx"
    chart_dir.mkdir(parents=True)
    ctx.map_workspace("ws-1", chart_dir)
    await ctx.set_active_workspace("ws-1")
    ctx.notifier.drain()

    assert await ctx.router.route({
        "eventType": "chatmessage-updated",
        "workspaceId": "ws-1",
        "chatMessage": {"id": "m1", "prompt": "bump replicas", "responsePlanId": "p1"},
    })
    assert await ctx.router.route({
        "eventType": "plan-created",
        "workspaceId": "ws-1",
        "plan": {"id": "p1", "status": "review"},
    })
    assert await ctx.router.route({
        "eventType": "artifact-updated",
        "workspaceId": "ws-1",
        "file": {"filePath": "nginx/values.yaml", "planId": "p1", "content_pending": "replicas: 3\n"},
    })
    assert not await ctx.router.route({
        "eventType": "chatmessage-updated",
        "workspaceId": "ws-other",
        "chatMessage": {"id": "m-other"},
    })

    assert ctx.store.message_for_plan("p1").id == "m1"
    assert not (chart_dir / "values.yaml").exists()

    outcome = await ctx.accept_pending("ws-1", "p1", "nginx/values.yaml")

    assert outcome is ArtifactOutcome.ACCEPTED
    assert (chart_dir / "values.yaml").read_text(encoding="utf-8") == "replicas: 3\n"
    assert [m.id for m in ctx.store.messages] == ["m1"]
    commands = _commands(ctx)
    assert commands[:3] == ["messageUpdated", "planUpdated", "showFileDiff"]
    assert "fileChangeApplied" in commands
    ctx.plan_handler.cancel_pending()


@pytest.mark.asyncio
async def test_reject_pending_through_context(tmp_path: Path) -> None:
    ctx = _context(tmp_path)
    chart_dir = tmp_path / "chart"
    chart_dir.mkdir()
    ctx.map_workspace("ws-1", chart_dir)
    await ctx.set_active_workspace("ws-1")

    await ctx.router.route({
        "eventType": "artifact-updated",
        "workspaceId": "ws-1",
        "file": {"filePath": "Chart.yaml", "content_pending": "name: chart\n"},
    })
    outcome = await ctx.reject_pending("ws-1", "", "Chart.yaml")

    assert outcome is ArtifactOutcome.REJECTED
    assert not (chart_dir / "Chart.yaml").exists()
    assert len(ctx.pending) == 0


@pytest.mark.asyncio
async def test_deactivate_stops_push_client_and_closes_bus(tmp_path: Path) -> None:
    push = _push_client()
    ctx = _context(tmp_path, push=push)

    await ctx.deactivate()

    push.stop.assert_awaited_once()
    assert ctx.notifier.closed


@pytest.mark.asyncio
async def test_activate_without_credentials_has_no_network_clients(tmp_path: Path) -> None:
    ctx = AppContext(SyncConfig(state_dir=str(tmp_path)), NotificationBus())

    await ctx.activate()

    assert ctx.api_client is None
    assert ctx.push_client is None
    await ctx.deactivate()
