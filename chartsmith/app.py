"""chartsmith-sync: keep a local chart directory in step with a Chartsmith workspace.

Runs the realtime pipeline headless and prints every UI notification as
one JSON line on stdout. Generated file content is reviewed according
to ``--review``.
"""
from __future__ import annotations

import asyncio
import json
import logging
import os
import sys
from logging.handlers import RotatingFileHandler
from pathlib import Path

import yaml

from chartsmith.engine.config import SyncConfig
from chartsmith.engine.yaml_config import load_yaml_config
from chartsmith.realtime.handlers import ArtifactOutcome
from chartsmith.vscode.context import AppContext

logger = logging.getLogger(__name__)

REVIEW_MODES = ("prompt", "accept", "reject", "defer")


def _configure_logging(level_name: str, log_file: str | None) -> None:
    root = logging.getLogger()
    root.setLevel(getattr(logging, level_name.upper(), logging.INFO))
    root.handlers.clear()
    formatter = logging.Formatter(
        "%(asctime)s %(levelname)s %(name)s [pid=%(process)d] %(message)s"
    )
    stream_handler = logging.StreamHandler(sys.stderr)
    stream_handler.setFormatter(formatter)
    root.addHandler(stream_handler)
    if log_file:
        path = Path(log_file).expanduser()
        path.parent.mkdir(parents=True, exist_ok=True)
        file_handler = RotatingFileHandler(
            path, maxBytes=2_000_000, backupCount=5, encoding="utf-8"
        )
        file_handler.setFormatter(formatter)
        root.addHandler(file_handler)


def _parse_mapping(value: str) -> tuple[str, str]:
    workspace_id, sep, local_path = value.partition("=")
    if not sep or not workspace_id or not local_path:
        raise ValueError(f"expected WORKSPACE_ID=PATH, got {value!r}")
    return workspace_id, local_path


async def _ask(question: str) -> str:
    loop = asyncio.get_running_loop()
    try:
        return await loop.run_in_executor(None, input, question)
    except EOFError:
        return ""


async def _review(ctx: AppContext, message: dict, mode: str) -> ArtifactOutcome | None:
    """Resolve a showFileDiff notification according to *mode*."""
    workspace_id = message["workspaceId"]
    plan_id = message.get("planId", "")
    file_path = message["filePath"]
    if mode == "defer":
        return None
    if mode == "prompt":
        answer = await _ask(f"Apply generated content to {message['localPath']}? [y/N] ")
        accept = answer.strip().lower() in {"y", "yes"}
    else:
        accept = mode == "accept"
    if accept:
        return await ctx.accept_pending(workspace_id, plan_id, file_path)
    return await ctx.reject_pending(workspace_id, plan_id, file_path)


async def _run(ctx: AppContext, workspace_id: str | None, review_mode: str) -> None:
    await ctx.activate()
    if workspace_id:
        await ctx.set_active_workspace(workspace_id)
    if ctx.store.active_workspace_id is None:
        logger.warning("No active workspace; pass --workspace to choose one")

    try:
        async for message in ctx.notifier.consume():
            print(json.dumps(message), flush=True)
            if message.get("command") == "showFileDiff":
                await _review(ctx, message, review_mode)
    finally:
        await ctx.deactivate()


def main() -> None:
    import argparse

    parser = argparse.ArgumentParser(
        prog="chartsmith-sync",
        description="Chartsmith realtime sync for a local chart directory",
    )
    parser.add_argument(
        "--config", metavar="PATH",
        help="YAML config file for endpoints, credentials and workspaces",
    )
    parser.add_argument(
        "--workspace", metavar="ID",
        help="Workspace to activate (default: the last active one)",
    )
    parser.add_argument(
        "--map", metavar="ID=PATH", action="append", default=[],
        help="Map a workspace to a local chart directory (repeatable)",
    )
    parser.add_argument(
        "--review", choices=REVIEW_MODES, default="prompt",
        help="What to do with generated file content (default: prompt)",
    )
    parser.add_argument(
        "--verbose", "-v", action="store_true",
        help="Log at DEBUG level",
    )
    parser.add_argument(
        "--log-file", metavar="PATH",
        help="Also write logs to a rotating file",
    )
    args = parser.parse_args()

    level = "DEBUG" if args.verbose else os.getenv("CHARTSMITH_LOG_LEVEL", "INFO")
    _configure_logging(level, args.log_file)

    if args.config:
        try:
            settings = load_yaml_config(args.config)
        except (OSError, ValueError, yaml.YAMLError) as exc:
            print(f"Invalid config {args.config}: {exc}", file=sys.stderr)
            sys.exit(2)
        config, workspaces = settings.config, settings.workspaces
        if not args.verbose:
            logging.getLogger().setLevel(getattr(logging, config.log_level.upper(), logging.INFO))
    else:
        config, workspaces = SyncConfig.from_env(), []

    ctx = AppContext(config)
    for mapping in workspaces:
        ctx.map_workspace(mapping.workspace_id, mapping.local_path)
    for value in args.map:
        try:
            workspace_id, local_path = _parse_mapping(value)
        except ValueError as exc:
            parser.error(str(exc))
        ctx.map_workspace(workspace_id, local_path)

    logger.info(
        "Starting chartsmith-sync api=%s push=%s review=%s config=%s",
        config.api_endpoint, config.push_endpoint or "<none>", args.review, args.config or "<none>",
    )
    try:
        asyncio.run(_run(ctx, args.workspace, args.review))
    except KeyboardInterrupt:
        logger.info("Interrupted")


if __name__ == "__main__":
    main()
