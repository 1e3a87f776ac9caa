"""Adapters package - Bridge between the sync pipeline and its collaborators.

Typed push events, the UI notification bus, the pending-content store
and the backend HTTP client.
"""
from __future__ import annotations

__all__ = [
    "ApiClient",
    "AuthData",
    "NotificationBus",
    "PendingContentStore",
    "PendingFileChange",
    "frame_to_event",
]

from chartsmith.adapters.api_client import ApiClient, AuthData
from chartsmith.adapters.event_bus import NotificationBus
from chartsmith.adapters.events import frame_to_event
from chartsmith.adapters.pending_content import PendingContentStore, PendingFileChange
