"""
Subscription records and the in-memory subscription index.

The index keeps three views over the same records:
- by_id: authoritative id → Subscription
- id_by_channel_id: channel → subscription ids (list/edit/delete by channel)
- id_by_event: event kind → subscription ids (webhook dispatch)

Subscriptions with no "events" filter accept every event kind. They are kept
out of id_by_event and tracked in id_all_events instead.
"""

from __future__ import annotations

import base64
import uuid
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

EVENTS_FILTER = "events"


def new_id() -> str:
    """Return a fresh 26-character subscription id."""
    return base64.b32encode(uuid.uuid4().bytes).decode("ascii").lower().rstrip("=")


class Subscription(BaseModel):
    """A rule binding a channel to a set of per-field acceptance filters."""

    id: str = ""
    channel_id: str
    filters: dict[str, list[str]] = Field(default_factory=dict)

    @field_validator("filters", mode="before")
    @classmethod
    def _null_filters(cls, value: Any) -> Any:
        if value is None:
            return {}
        if isinstance(value, dict):
            return {k: ([] if v is None else v) for k, v in value.items()}
        return value

    @field_validator("filters")
    @classmethod
    def _dedupe_filters(cls, value: dict[str, list[str]]) -> dict[str, list[str]]:
        # A repeated event would otherwise be indexed, and matched, twice.
        return {k: list(dict.fromkeys(v)) for k, v in value.items()}

    @property
    def events(self) -> list[str]:
        return self.filters.get(EVENTS_FILTER, [])


def _remove_id(ids: list[str], id_to_remove: str) -> None:
    # Swap with last; order of the remaining ids is not preserved.
    for i, existing in enumerate(ids):
        if existing == id_to_remove:
            ids[i] = ids[-1]
            ids.pop()
            return


class ChannelSubscriptions(BaseModel):
    """Multi-index store of channel subscriptions."""

    by_id: dict[str, Subscription] = Field(default_factory=dict)
    id_by_channel_id: dict[str, list[str]] = Field(default_factory=dict)
    id_by_event: dict[str, list[str]] = Field(default_factory=dict)
    id_all_events: list[str] = Field(default_factory=list)

    @field_validator("by_id", "id_by_channel_id", "id_by_event", mode="before")
    @classmethod
    def _null_maps(cls, value: Any) -> Any:
        if value is None:
            return {}
        return value

    @field_validator("id_all_events", mode="before")
    @classmethod
    def _null_list(cls, value: Any) -> Any:
        return [] if value is None else value

    @model_validator(mode="after")
    def _rebuild_all_events(self) -> "ChannelSubscriptions":
        # Blobs written before id_all_events existed carry no such key.
        if "id_all_events" not in self.model_fields_set:
            self.id_all_events = [
                sub_id for sub_id, sub in self.by_id.items() if not sub.events
            ]
        return self

    def add(self, sub: Subscription) -> None:
        """Insert a subscription. The caller must have assigned a unique id."""
        self.by_id[sub.id] = sub
        self.id_by_channel_id.setdefault(sub.channel_id, []).append(sub.id)
        if sub.events:
            for event in sub.events:
                self.id_by_event.setdefault(event, []).append(sub.id)
        else:
            self.id_all_events.append(sub.id)

    def remove(self, sub: Subscription) -> None:
        """Delete a subscription and strip its id from every index."""
        self.by_id.pop(sub.id, None)
        self._strip(self.id_by_channel_id, sub.channel_id, sub.id)
        if sub.events:
            for event in sub.events:
                self._strip(self.id_by_event, event, sub.id)
        else:
            _remove_id(self.id_all_events, sub.id)

    @staticmethod
    def _strip(index: dict[str, list[str]], key: str, sub_id: str) -> None:
        ids = index.get(key)
        if ids is None:
            return
        _remove_id(ids, sub_id)
        if not ids:
            del index[key]

    def get(self, sub_id: str) -> Subscription | None:
        return self.by_id.get(sub_id)

    def ids_for_channel(self, channel_id: str) -> list[str]:
        return list(self.id_by_channel_id.get(channel_id, []))

    def ids_for_event(self, event: str) -> list[str]:
        return list(self.id_by_event.get(event, []))

    def for_channel(self, channel_id: str) -> list[Subscription]:
        return [
            self.by_id[sub_id]
            for sub_id in self.ids_for_channel(channel_id)
            if sub_id in self.by_id
        ]


class Subscriptions(BaseModel):
    """Persisted envelope; the "Channel" key matches existing stored blobs."""

    model_config = ConfigDict(populate_by_name=True)

    channel: ChannelSubscriptions = Field(
        default_factory=ChannelSubscriptions, alias="Channel"
    )

    @field_validator("channel", mode="before")
    @classmethod
    def _null_channel(cls, value: Any) -> Any:
        return ChannelSubscriptions() if value is None else value
