"""Realtime push channel: transport, reconnect policy, routing, handlers."""
from __future__ import annotations

__all__ = [
    "ArtifactHandler",
    "ArtifactOutcome",
    "BackoffPolicy",
    "CentrifugoTransport",
    "ChatMessageHandler",
    "EventRouter",
    "PlanHandler",
    "PushChannelClient",
    "channel_name",
]

from chartsmith.realtime.backoff import BackoffPolicy
from chartsmith.realtime.centrifugo import CentrifugoTransport
from chartsmith.realtime.handlers import (
    ArtifactHandler,
    ArtifactOutcome,
    ChatMessageHandler,
    PlanHandler,
)
from chartsmith.realtime.push_client import PushChannelClient, channel_name
from chartsmith.realtime.router import EventRouter
