"""Chat message model and the merge-by-id contract shared by all entities."""

from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass, field
from typing import Any


def canonical_keys(data: Mapping[str, Any], aliases: Mapping[str, str]) -> dict[str, Any]:
    """Rewrite snake_case (or other alias) keys to their wire names."""
    return {aliases.get(key, key): value for key, value in data.items()}


def entity_id(data: object) -> str | None:
    """Return the identity key of a wire entity, or None when unusable."""
    if not isinstance(data, Mapping):
        return None
    value = data.get("id")
    if value is None or value == "":
        return None
    return str(value)


# wire key -> attribute name
_MESSAGE_FIELDS: dict[str, str] = {
    "id": "id",
    "prompt": "prompt",
    "response": "response",
    "isComplete": "is_complete",
    "responsePlanId": "response_plan_id",
    "responseRenderId": "response_render_id",
}

_MESSAGE_ALIASES: dict[str, str] = {
    "is_complete": "isComplete",
    "response_plan_id": "responsePlanId",
    "response_render_id": "responseRenderId",
}


@dataclass
class ChatMessage:
    id: str
    prompt: str = ""
    response: str | None = None
    is_complete: bool | None = None
    response_plan_id: str | None = None
    response_render_id: str | None = None
    # Wire fields this client does not model, kept for the UI.
    extra: dict[str, Any] = field(default_factory=dict)

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> ChatMessage:
        wire = canonical_keys(data, _MESSAGE_ALIASES)
        kwargs: dict[str, Any] = {}
        extra: dict[str, Any] = {}
        for key, value in wire.items():
            attr = _MESSAGE_FIELDS.get(key)
            if attr is None:
                extra[key] = value
            else:
                kwargs[attr] = value
        kwargs["id"] = str(kwargs.get("id", ""))
        if kwargs.get("prompt") is None:
            kwargs["prompt"] = ""
        return cls(extra=extra, **kwargs)

    def to_dict(self) -> dict[str, Any]:
        """Serialize to the camelCase wire shape, omitting unset fields."""
        d: dict[str, Any] = dict(self.extra)
        for key, attr in _MESSAGE_FIELDS.items():
            value = getattr(self, attr)
            if value is not None:
                d[key] = value
        return d

    def merged(self, update: Mapping[str, Any]) -> ChatMessage:
        """Return a copy with *update*'s keys applied over this message."""
        return ChatMessage.from_dict(
            {**self.to_dict(), **canonical_keys(update, _MESSAGE_ALIASES)}
        )
