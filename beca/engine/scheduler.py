"""Admission control for editor-triggered backend work.

Owns the three gates every outbound call passes through:

- a trailing-edge debounce timer per trigger class (``schedule_debounced``),
- a minimum-interval rate limiter per trigger class (``admit_rate_limited``),
- a TTL cache with in-flight deduplication per RequestKey (``get_or_fetch``).

Timers go through an injectable ``Clock`` so tests can advance time
deterministically instead of sleeping. All state is owned by one
scheduler instance and mutated on the event loop thread only.
"""
from __future__ import annotations

import asyncio
import logging
import time
from collections.abc import Awaitable, Callable
from typing import Any, Protocol, TypeVar

from .models import CacheEntry, RequestKey, RequestKind

logger = logging.getLogger(__name__)

T = TypeVar("T")

# Deferred unit of work dispatched once its debounce window closes.
WorkFn = Callable[[], Awaitable[None]]


class TimerHandle(Protocol):
    def cancel(self) -> None: ...


class Clock(Protocol):
    """Time source and timer factory used by the scheduler."""

    def now(self) -> float: ...

    def call_later(self, delay: float, callback: Callable[[], None]) -> TimerHandle: ...


class LoopClock:
    """Clock backed by ``time.monotonic`` and the running asyncio loop."""

    def now(self) -> float:
        return time.monotonic()

    def call_later(self, delay: float, callback: Callable[[], None]) -> TimerHandle:
        return asyncio.get_running_loop().call_later(max(delay, 0.0), callback)


class RequestScheduler:
    """Decides whether, and when, editor-triggered work reaches the backend."""

    def __init__(self, clock: Clock | None = None) -> None:
        self._clock: Clock = clock or LoopClock()
        self._timers: dict[RequestKind, TimerHandle] = {}
        # PendingSet: keys waiting for their trigger class timer to fire.
        self._pending: dict[RequestKind, dict[RequestKey, WorkFn]] = {}
        self._last_admitted: dict[RequestKind, float] = {}
        self._cache: dict[RequestKey, CacheEntry] = {}
        self._in_flight: dict[RequestKey, asyncio.Task[Any]] = {}
        self._dispatches: set[asyncio.Task[None]] = set()

    @property
    def clock(self) -> Clock:
        return self._clock

    # ── Debounce ──

    def schedule_debounced(self, key: RequestKey, work: WorkFn, delay: float) -> None:
        """Queue *work* for *key* and restart the timer of its trigger class.

        Re-scheduling a key that is already pending replaces its work
        (last write wins). Nothing is dispatched until *delay* seconds
        have passed since the most recent call for the same trigger class;
        the timer then drains every pending key of that class once.
        """
        kind = key.kind
        self._pending.setdefault(kind, {})[key] = work

        timer = self._timers.pop(kind, None)
        if timer is not None:
            timer.cancel()
        self._timers[kind] = self._clock.call_later(
            delay, lambda: self._flush(kind)
        )
        logger.debug(
            "Debounce scheduled key=%s delay=%.2fs pending=%d",
            key, delay, len(self._pending[kind]),
        )

    def is_pending(self, key: RequestKey) -> bool:
        return key in self._pending.get(key.kind, {})

    def pending_keys(self, kind: RequestKind) -> list[RequestKey]:
        return list(self._pending.get(kind, {}))

    def _flush(self, kind: RequestKind) -> None:
        self._timers.pop(kind, None)
        batch = self._pending.pop(kind, {})
        if not batch:
            return
        logger.debug("Debounce fired kind=%s keys=%d", kind.value, len(batch))
        for key, work in batch.items():
            task = asyncio.get_running_loop().create_task(self._run_dispatch(key, work))
            self._dispatches.add(task)
            task.add_done_callback(self._dispatches.discard)

    async def _run_dispatch(self, key: RequestKey, work: WorkFn) -> None:
        try:
            await work()
        except asyncio.CancelledError:
            raise
        except Exception:
            logger.exception("Dispatch failed key=%s", key)

    # ── Rate limit ──

    def admit_rate_limited(self, key: RequestKey, min_interval: float) -> bool:
        """Return True and record the call if *min_interval* has elapsed.

        The interval is measured from the last admitted call of the key's
        trigger class. Denied calls are not recorded.
        """
        now = self._clock.now()
        last = self._last_admitted.get(key.kind)
        if last is not None and now - last < min_interval:
            logger.debug(
                "Rate limit denied key=%s elapsed=%.3fs min=%.3fs",
                key, now - last, min_interval,
            )
            return False
        self._last_admitted[key.kind] = now
        return True

    # ── TTL cache ──

    def peek(self, key: RequestKey, ttl: float) -> Any | None:
        """Return the cached value for *key* if younger than *ttl*.

        Expired entries are evicted here, lazily.
        """
        entry = self._cache.get(key)
        if entry is None:
            return None
        if entry.is_fresh(self._clock.now(), ttl):
            return entry.value
        del self._cache[key]
        logger.debug("Cache expired key=%s", key)
        return None

    async def get_or_fetch(
        self,
        key: RequestKey,
        ttl: float,
        fetch: Callable[[], Awaitable[T]],
    ) -> T:
        """Cache-aside read-through with in-flight deduplication.

        A fresh cache hit returns without awaiting anything. On a miss,
        only the first caller runs *fetch*; callers arriving while it is
        outstanding await the same result. Failures propagate to every
        waiter and are never cached, so the next lookup retries.
        """
        entry = self._cache.get(key)
        if entry is not None:
            if entry.is_fresh(self._clock.now(), ttl):
                logger.debug("Cache hit key=%s", key)
                return entry.value
            del self._cache[key]

        task = self._in_flight.get(key)
        if task is None:
            task = asyncio.get_running_loop().create_task(
                self._fetch_and_store(key, ttl, fetch)
            )
            self._in_flight[key] = task
            task.add_done_callback(lambda _t, k=key: self._in_flight.pop(k, None))
        else:
            logger.debug("Joining in-flight fetch key=%s", key)
        # Shield so one waiter's cancellation does not abort the shared fetch.
        return await asyncio.shield(task)

    async def _fetch_and_store(
        self,
        key: RequestKey,
        ttl: float,
        fetch: Callable[[], Awaitable[T]],
    ) -> T:
        value = await fetch()
        if ttl > 0:
            self._cache[key] = CacheEntry(key=key, value=value, created_at=self._clock.now())
        return value

    def in_flight(self, key: RequestKey) -> bool:
        return key in self._in_flight

    def invalidate(self, key: RequestKey) -> None:
        self._cache.pop(key, None)

    def clear_cache(self, kind: RequestKind | None = None) -> int:
        """Drop cached entries (all, or only one trigger class). Returns count."""
        if kind is None:
            count = len(self._cache)
            self._cache.clear()
        else:
            stale = [k for k in self._cache if k.kind is kind]
            for k in stale:
                del self._cache[k]
            count = len(stale)
        logger.info("Cache cleared kind=%s entries=%d", kind.value if kind else "all", count)
        return count

    # ── Lifecycle ──

    async def wait_idle(self) -> None:
        """Wait for dispatched work and in-flight fetches to settle."""
        while self._dispatches or self._in_flight:
            pending = list(self._dispatches) + list(self._in_flight.values())
            await asyncio.gather(*pending, return_exceptions=True)

    def close(self) -> None:
        """Cancel timers and forget pending work. In-flight calls run to completion."""
        for timer in self._timers.values():
            timer.cancel()
        self._timers.clear()
        self._pending.clear()
