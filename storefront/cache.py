"""
Read-through cache for catalog datasets with stale-while-revalidate.

One instance per process, built in the app lifespan. Each dataset key
(products, categories, offers) has its own entry, policy and fetch
coordinator.

Read policy for get(key), by payload age:
- age < fresh_ttl: return the cached payload, no origin call.
- age < stale_ttl: return the cached payload, refresh in the background
  (at most one fetch in flight per key).
- otherwise, or nothing cached: join the in-flight fetch or start one and
  wait for it up to fetch_timeout. On failure serve the cached payload of any
  age, else the static fallback (which is never cached).

An empty origin result is cached when nothing is cached yet. When an entry
exists it is treated as a failed fetch and the entry is kept.

With a SnapshotStore, every installed payload is also written to disk and
restore() loads those files back as entries after a restart.
"""

from __future__ import annotations

import asyncio
import functools
import logging
import time
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, Iterable, NamedTuple, Optional, Sequence

from storefront.config import CachePolicy
from storefront.models import CacheKeyStatus, CacheSource, CacheState
from storefront.snapshot import SnapshotStore

logger = logging.getLogger(__name__)

ALL_KEYS = "all"


class EmptyResultError(Exception):
    """The origin answered with zero rows while a payload is cached."""


class Served(NamedTuple):
    """A payload and where it came from."""

    payload: Any
    source: CacheSource


@dataclass
class CacheEntry:
    """A cached payload with its fetch and access timestamps."""

    payload: tuple  # replaced wholesale, never mutated
    fetched_at: float  # time.monotonic() when fetched from the origin
    last_accessed_at: float

    def age(self, now: Optional[float] = None) -> float:
        """Seconds since the payload was fetched."""
        if now is None:
            now = time.monotonic()
        return now - self.fetched_at

    def idle(self, now: Optional[float] = None) -> float:
        """Seconds since the payload was last served."""
        if now is None:
            now = time.monotonic()
        return now - self.last_accessed_at


@dataclass
class FetchCoordinator:
    """Single-flight bookkeeping for one key."""

    in_flight: Optional[asyncio.Task] = None
    # Bumped by invalidate(); a fetch only installs if its generation matches.
    generation: int = 0


@dataclass
class Dataset:
    """A cacheable origin collection."""

    key: str
    loader: Callable[[], Awaitable[Sequence[Any]]]
    policy: CachePolicy
    fallback: tuple = field(default_factory=tuple)
    model: Optional[type] = None  # row model, needed for snapshots


class ReadThroughCache:
    """
    Per-key read-through cache over async origin loaders.

    All state is touched from the event loop thread only, so there are no
    locks: entries are swapped by reference and the coordinator's in-flight
    task is the only guard against duplicate origin fetches.
    """

    def __init__(
        self,
        datasets: Iterable[Dataset],
        snapshots: Optional[SnapshotStore] = None,
    ) -> None:
        self._datasets = {dataset.key: dataset for dataset in datasets}
        self._entries: dict[str, CacheEntry] = {}
        self._coordinators = {key: FetchCoordinator() for key in self._datasets}
        self._tasks: set[asyncio.Task] = set()
        self._snapshots = snapshots
        self._clock = time.monotonic  # overridable for testing

    @property
    def keys(self) -> list[str]:
        return list(self._datasets)

    def policy(self, key: str) -> CachePolicy:
        return self._dataset(key).policy

    def in_flight(self, key: str) -> Optional[asyncio.Task]:
        """Return the pending origin fetch for a key, if any."""
        self._dataset(key)
        return self._coordinators[key].in_flight

    async def get(self, key: str) -> tuple:
        """
        Return the collection for a key.

        Origin failures never propagate; the caller gets a cached or static
        payload instead. Raises KeyError for an unknown key.
        """
        return (await self.get_with_source(key)).payload

    async def get_with_source(self, key: str) -> Served:
        """Like get(), but also report whether the payload was a hit, miss, etc."""
        dataset = self._dataset(key)
        policy = dataset.policy
        now = self._clock()

        entry = self._entries.get(key)
        if entry is not None:
            age = entry.age(now)
            if age < policy.fresh_ttl:
                entry.last_accessed_at = now
                logger.debug("Cache hit for %s (%.1fs old)", key, age)
                return Served(entry.payload, CacheSource.hit)
            if age < policy.stale_ttl:
                entry.last_accessed_at = now
                if self._coordinators[key].in_flight is None:
                    logger.info(
                        "Serving stale %s (%.0fs old), refreshing in background",
                        key,
                        age,
                    )
                    self._start_fetch(dataset)
                return Served(entry.payload, CacheSource.stale)

        task = self._coordinators[key].in_flight
        if task is None:
            task = self._start_fetch(dataset)
        else:
            logger.debug("Joining in-flight fetch for %s", key)

        try:
            # shield: a timed-out fetch keeps running and still installs its result
            payload = await asyncio.wait_for(
                asyncio.shield(task), timeout=policy.fetch_timeout
            )
            return Served(payload, CacheSource.miss)
        except asyncio.TimeoutError:
            logger.warning(
                "Origin fetch for %s exceeded %.1fs", key, policy.fetch_timeout
            )
        except Exception as exc:
            logger.debug("Degrading %s after failed fetch: %s", key, exc)
        return self._degrade(dataset)

    def invalidate(self, key: str) -> list[str]:
        """
        Drop cached payloads so the next get() goes to the origin.

        ``key`` may be "all". Fetches already in flight are detached: they
        finish but their result is not installed. Snapshots are dropped too.
        """
        keys = self.keys if key == ALL_KEYS else [self._dataset(key).key]
        for name in keys:
            self._entries.pop(name, None)
            coordinator = self._coordinators[name]
            coordinator.generation += 1
            coordinator.in_flight = None
            if self._snapshots is not None:
                try:
                    self._snapshots.discard(name)
                except OSError as exc:
                    logger.warning("Could not remove %s snapshot: %s", name, exc)
        logger.info("Invalidated cache: %s", ", ".join(keys))
        return keys

    def restore(self) -> list[str]:
        """Load on-disk snapshots for keys that have nothing cached."""
        if self._snapshots is None:
            return []
        restored = []
        now = self._clock()
        for key, dataset in self._datasets.items():
            if key in self._entries or dataset.model is None:
                continue
            snapshot = self._snapshots.load(key, dataset.model)
            if snapshot is None:
                continue
            payload, age = snapshot
            self._entries[key] = CacheEntry(
                payload=payload, fetched_at=now - age, last_accessed_at=now
            )
            restored.append(key)
            logger.info("Restored %d %s from snapshot (%.0fs old)", len(payload), key, age)
        return restored

    def warm(self) -> None:
        """Start background fetches for every key that has nothing cached."""
        for key, dataset in self._datasets.items():
            if key not in self._entries and self._coordinators[key].in_flight is None:
                self._start_fetch(dataset)

    def status(self) -> list[CacheKeyStatus]:
        now = self._clock()
        result = []
        for key, dataset in self._datasets.items():
            policy = dataset.policy
            entry = self._entries.get(key)
            if entry is None:
                state = CacheState.empty
            elif entry.age(now) < policy.fresh_ttl:
                state = CacheState.fresh
            elif entry.age(now) < policy.stale_ttl:
                state = CacheState.stale
            else:
                state = CacheState.expired
            result.append(
                CacheKeyStatus(
                    key=key,
                    state=state,
                    items=len(entry.payload) if entry else 0,
                    age_seconds=round(entry.age(now), 3) if entry else None,
                    idle_seconds=round(entry.idle(now), 3) if entry else None,
                    in_flight=self._coordinators[key].in_flight is not None,
                    fresh_ttl=policy.fresh_ttl,
                    stale_ttl=policy.stale_ttl,
                )
            )
        return result

    async def aclose(self) -> None:
        """Cancel pending fetches. Called on shutdown."""
        tasks = list(self._tasks)
        for task in tasks:
            task.cancel()
        await asyncio.gather(*tasks, return_exceptions=True)
        for coordinator in self._coordinators.values():
            coordinator.in_flight = None

    # -- internals ----------------------------------------------------------

    def _dataset(self, key: str) -> Dataset:
        try:
            return self._datasets[key]
        except KeyError:
            raise KeyError(f"Unknown cache key: {key}") from None

    def _start_fetch(self, dataset: Dataset) -> asyncio.Task:
        coordinator = self._coordinators[dataset.key]
        task = asyncio.create_task(
            self._fetch(dataset, coordinator.generation),
            name=f"cache-fetch:{dataset.key}",
        )
        coordinator.in_flight = task
        self._tasks.add(task)
        task.add_done_callback(functools.partial(self._fetch_done, dataset.key))
        return task

    async def _fetch(self, dataset: Dataset, generation: int) -> tuple:
        key = dataset.key
        started = self._clock()
        payload = tuple(await dataset.loader())
        if not payload and key in self._entries:
            raise EmptyResultError(f"Origin returned no {key}, keeping cached payload")

        if self._coordinators[key].generation != generation:
            logger.info("Discarding %s fetch that started before invalidation", key)
            return payload

        now = self._clock()
        self._entries[key] = CacheEntry(
            payload=payload, fetched_at=now, last_accessed_at=now
        )
        logger.info(
            "Cached %d %s in %.0fms", len(payload), key, (now - started) * 1000
        )
        if self._snapshots is not None and dataset.model is not None:
            try:
                self._snapshots.save(key, payload)
            except OSError as exc:
                logger.warning("Could not write %s snapshot: %s", key, exc)
        return payload

    def _fetch_done(self, key: str, task: asyncio.Task) -> None:
        self._tasks.discard(task)
        coordinator = self._coordinators[key]
        if coordinator.in_flight is task:
            coordinator.in_flight = None
        if task.cancelled():
            return
        exc = task.exception()
        if exc is not None:
            # No retry here; the next get() past fresh_ttl tries again.
            logger.warning("Fetch for %s failed: %s", key, exc)

    def _degrade(self, dataset: Dataset) -> Served:
        entry = self._entries.get(dataset.key)
        if entry is not None:
            now = self._clock()
            entry.last_accessed_at = now
            logger.warning(
                "Serving cached %s (%.0fs old) while origin is unavailable",
                dataset.key,
                entry.age(now),
            )
            return Served(entry.payload, CacheSource.degraded)
        logger.warning("No cached %s, serving static fallback", dataset.key)
        return Served(dataset.fallback, CacheSource.fallback)
