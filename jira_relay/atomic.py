"""
Read-modify-write against the KV store.

atomic_modify is the only path by which the subscription blob is written.
The transform is pure, so on a compare-and-set conflict the whole cycle is
re-run against a fresh read.
"""

from __future__ import annotations

from typing import Callable

import structlog

from .errors import ConcurrentModificationError, StoreReadError, StoreWriteError
from .metrics import MetricsCollector
from .store import KVStore

log = structlog.get_logger()

DEFAULT_MAX_ATTEMPTS = 10

Transform = Callable[[bytes | None], bytes]


async def atomic_modify(
    store: KVStore,
    key: str,
    transform: Transform,
    *,
    compare_and_set: bool = True,
    max_attempts: int = DEFAULT_MAX_ATTEMPTS,
    metrics: MetricsCollector | None = None,
) -> None:
    """
    Apply transform to the value at key and store the result.

    Errors raised by transform propagate unchanged and nothing is written.
    With compare_and_set disabled the write is an unconditional overwrite,
    which can lose a concurrent writer's update.
    """
    for attempt in range(1, max_attempts + 1):
        try:
            initial = await store.get(key)
        except Exception as exc:
            raise StoreReadError("unable to read initial value") from exc

        modified = transform(initial)

        try:
            if not compare_and_set:
                await store.set(key, modified)
                return
            if await store.compare_and_set(key, initial, modified):
                if attempt > 1:
                    log.info("atomic.resolved", key=key, attempts=attempt)
                return
        except Exception as exc:
            raise StoreWriteError("problem writing value") from exc

        log.warning("atomic.conflict", key=key, attempt=attempt)
        if metrics:
            metrics.inc("store_conflicts_total")

    if metrics:
        metrics.inc("store_conflicts_exhausted_total")
    raise ConcurrentModificationError(key, max_attempts)
