"""
Subscription lifecycle operations.

Every read decodes a fresh copy of the persisted blob; every write is a pure
transform submitted to atomic_modify. No index instance outlives a call.
"""

from __future__ import annotations

from typing import Any

import structlog

from .atomic import DEFAULT_MAX_ATTEMPTS, atomic_modify
from .codec import decode_subscriptions, encode_subscriptions
from .errors import NotFoundError, StoreReadError, ValidationError
from .matcher import EventMatcher
from .metrics import MetricsCollector
from .models import Subscription, Subscriptions, new_id
from .store import KVStore

log = structlog.get_logger()

DEFAULT_KEY = "jirasub"


def validate_subscription(sub: Subscription) -> None:
    """Reject malformed subscription shapes before touching the store."""
    if not sub.channel_id:
        raise ValidationError("subscription channel_id is required")
    for field in sub.filters:
        if not field:
            raise ValidationError("filter field names must be non-empty")


class SubscriptionService:
    """Lists, edits and matches channel subscriptions held under one key."""

    def __init__(
        self,
        store: KVStore,
        *,
        key: str = DEFAULT_KEY,
        matcher: EventMatcher | None = None,
        compare_and_set: bool = True,
        max_attempts: int = DEFAULT_MAX_ATTEMPTS,
        metrics: MetricsCollector | None = None,
    ):
        self._store = store
        self._key = key
        self._matcher = matcher or EventMatcher()
        self._compare_and_set = compare_and_set
        self._max_attempts = max_attempts
        self._metrics = metrics

    async def load(self) -> Subscriptions:
        try:
            data = await self._store.get(self._key)
        except Exception as exc:
            raise StoreReadError("unable to read subscriptions") from exc
        return decode_subscriptions(data)

    async def _modify(self, mutate) -> None:
        counts: list[int] = []

        def transform(initial: bytes | None) -> bytes:
            subs = decode_subscriptions(initial)
            mutate(subs)
            counts.append(len(subs.channel.by_id))
            return encode_subscriptions(subs)

        await atomic_modify(
            self._store,
            self._key,
            transform,
            compare_and_set=self._compare_and_set,
            max_attempts=self._max_attempts,
            metrics=self._metrics,
        )
        if self._metrics:
            self._metrics.set_gauge("subscriptions_active", counts[-1])

    # --- Queries ---

    async def list_subscriptions(self, channel_id: str) -> list[Subscription]:
        subs = await self.load()
        return subs.channel.for_channel(channel_id)

    async def get_subscription(self, subscription_id: str) -> Subscription:
        subs = await self.load()
        sub = subs.channel.get(subscription_id)
        if sub is None:
            raise NotFoundError("could not find subscription")
        return sub

    async def match_subscriptions(self, event: Any) -> list[str]:
        subs = await self.load()
        return self._matcher.match(subs.channel, event)

    # --- Mutations ---

    async def add_subscription(self, sub: Subscription) -> str:
        """Persist a new subscription and return its assigned id."""
        if sub.id:
            raise ValidationError("new subscription must not carry an id")
        validate_subscription(sub)

        assigned: list[str] = []

        def mutate(subs: Subscriptions) -> None:
            sub_id = new_id()
            while sub_id in subs.channel.by_id:
                sub_id = new_id()
            subs.channel.add(sub.model_copy(update={"id": sub_id}))
            assigned.append(sub_id)

        await self._modify(mutate)
        sub_id = assigned[-1]
        log.info("service.subscription_added", id=sub_id, channel=sub.channel_id)
        if self._metrics:
            self._metrics.inc("subscription_writes_total", op="add")
        return sub_id

    async def edit_subscription(self, sub: Subscription) -> None:
        """Replace an existing subscription, which may move it to another channel."""
        if not sub.id:
            raise ValidationError("edited subscription must carry an id")
        validate_subscription(sub)

        def mutate(subs: Subscriptions) -> None:
            old = subs.channel.get(sub.id)
            if old is None:
                raise NotFoundError("existing subscription does not exist")
            subs.channel.remove(old)
            subs.channel.add(sub.model_copy())

        await self._modify(mutate)
        log.info("service.subscription_edited", id=sub.id, channel=sub.channel_id)
        if self._metrics:
            self._metrics.inc("subscription_writes_total", op="edit")

    async def remove_subscription(self, subscription_id: str) -> None:
        def mutate(subs: Subscriptions) -> None:
            old = subs.channel.get(subscription_id)
            if old is None:
                raise NotFoundError("could not find subscription")
            subs.channel.remove(old)

        await self._modify(mutate)
        log.info("service.subscription_removed", id=subscription_id)
        if self._metrics:
            self._metrics.inc("subscription_writes_total", op="remove")
