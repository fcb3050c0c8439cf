"""
Event matching: which channels should receive an incoming event.

Filter field names are resolved through a FieldRegistry, a mapping from field
name to an accessor over the event. Fields a subscription filters on but the
registry does not know are ignored.
"""

from __future__ import annotations

from typing import Any, Callable, Literal

from .models import EVENTS_FILTER, ChannelSubscriptions, Subscription

Accessor = Callable[[Any], str | None]
WildcardEvents = Literal["match_all", "ignore"]


class FieldRegistry:
    """Registered filter fields and how to read them from an event."""

    def __init__(self, event_field: str = EVENTS_FILTER):
        self._accessors: dict[str, Accessor] = {}
        self.event_field = event_field

    def register(self, name: str, accessor: Accessor) -> None:
        self._accessors[name] = accessor

    def unregister(self, name: str) -> None:
        self._accessors.pop(name, None)

    def get(self, name: str) -> Accessor | None:
        return self._accessors.get(name)

    def names(self) -> list[str]:
        return sorted(self._accessors)

    def event_kind(self, event: Any) -> str | None:
        accessor = self._accessors.get(self.event_field)
        if accessor is None:
            raise KeyError(f"no accessor registered for event field {self.event_field!r}")
        return accessor(event)


def jira_field_registry() -> FieldRegistry:
    registry = FieldRegistry()
    registry.register(EVENTS_FILTER, lambda e: e.webhook_event)
    registry.register("project", lambda e: e.issue.fields.project.key)
    registry.register("issue_type", lambda e: e.issue.fields.issue_type.id)
    return registry


class EventMatcher:
    """
    Computes target channels for an event.

    Candidates come from the event-kind index. With wildcard_events set to
    "match_all", subscriptions that name no event kinds are candidates for
    every event; with "ignore" they never match.
    """

    def __init__(
        self,
        registry: FieldRegistry | None = None,
        wildcard_events: WildcardEvents = "match_all",
    ):
        self._registry = registry or jira_field_registry()
        self._wildcard_events = wildcard_events

    @property
    def registry(self) -> FieldRegistry:
        return self._registry

    def accepts(self, sub: Subscription, event: Any) -> bool:
        for field, acceptable in sub.filters.items():
            # Blank acceptable values means all values are acceptable
            if not acceptable:
                continue
            accessor = self._registry.get(field)
            if accessor is None:
                continue
            if accessor(event) not in acceptable:
                return False
        return True

    def candidates(self, index: ChannelSubscriptions, event_kind: str | None) -> list[str]:
        ids = index.ids_for_event(event_kind) if event_kind else []
        if self._wildcard_events == "match_all":
            ids.extend(index.id_all_events)
        return list(dict.fromkeys(ids))

    def match(self, index: ChannelSubscriptions, event: Any) -> list[str]:
        channel_ids = []
        for sub_id in self.candidates(index, self._registry.event_kind(event)):
            sub = index.get(sub_id)
            if sub is None:
                continue
            if self.accepts(sub, event):
                channel_ids.append(sub.channel_id)
        return channel_ids
