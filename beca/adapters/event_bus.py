"""Async message bus between the coordinator and rendering surfaces.

Host -> UI: ``post()`` fans each envelope out to every attached surface
queue, in order, without acknowledgment. A surface that attaches (or
re-attaches after being torn down) first receives a ``fullUpdate``
snapshot, so it can resynchronize no matter how many incremental
messages it missed.

UI -> Host: ``receive()`` queues envelopes for the coordinator's single
consumer loop (``inbound()``), preserving arrival order.
"""
from __future__ import annotations

import asyncio
import logging
from collections.abc import AsyncIterator, Callable
from typing import Any

from beca.adapters.events import (
    FullUpdate,
    UIMessage,
    dict_to_message,
)

logger = logging.getLogger(__name__)

SnapshotProvider = Callable[[], dict[str, Any]]


class UIMessageBus:
    """Ordered, lossy, at-least-once-per-event channel to UI surfaces."""

    def __init__(
        self,
        maxsize: int = 5000,
        snapshot_provider: SnapshotProvider | None = None,
    ) -> None:
        self._maxsize = maxsize
        self._snapshot_provider = snapshot_provider
        self._surfaces: list[asyncio.Queue[UIMessage]] = []
        self._inbound: asyncio.Queue[UIMessage] = asyncio.Queue(maxsize=maxsize)
        self._closed = False

    def set_snapshot_provider(self, provider: SnapshotProvider) -> None:
        self._snapshot_provider = provider

    @property
    def surface_count(self) -> int:
        return len(self._surfaces)

    # ── Host -> UI ──

    def snapshot(self) -> FullUpdate:
        state = self._snapshot_provider() if self._snapshot_provider else {}
        return FullUpdate(state=state)

    def attach(self) -> asyncio.Queue[UIMessage]:
        """Register a surface; its queue starts with a full-state snapshot."""
        queue: asyncio.Queue[UIMessage] = asyncio.Queue(maxsize=self._maxsize)
        queue.put_nowait(self.snapshot())
        self._surfaces.append(queue)
        logger.info("UI surface attached active_surfaces=%d", len(self._surfaces))
        return queue

    def detach(self, queue: asyncio.Queue[UIMessage]) -> None:
        try:
            self._surfaces.remove(queue)
        except ValueError:
            return
        logger.info("UI surface detached active_surfaces=%d", len(self._surfaces))

    def post(self, message: UIMessage) -> None:
        """Deliver *message* to every attached surface. No surface, no delivery."""
        if self._closed:
            return
        for queue in self._surfaces:
            try:
                queue.put_nowait(message)
            except asyncio.QueueFull:
                logger.warning(
                    "UI surface queue full, dropping: %s (queue size: %d)",
                    message.type, queue.qsize(),
                )

    def broadcast_full_update(self) -> None:
        self.post(self.snapshot())

    def make_callback(self) -> Callable[[dict[str, Any]], None]:
        """Return a callback for engine components that emit plain dicts."""
        def _callback(data: dict[str, Any]) -> None:
            self.post(dict_to_message(data))
        return _callback

    # ── UI -> Host ──

    async def receive(self, data: dict[str, Any] | UIMessage) -> UIMessage:
        """Queue a UI-originated message for the coordinator."""
        message = data if isinstance(data, UIMessage) else dict_to_message(data)
        if self._closed:
            logger.warning("UI message after close ignored: %s", message.type)
            return message
        try:
            # Backpressure instead of dropping user actions
            await asyncio.wait_for(self._inbound.put(message), timeout=30.0)
        except asyncio.TimeoutError:
            logger.error(
                "Inbound queue blocked for 30s, dropping: %s (queue size: %d)",
                message.type, self._inbound.qsize(),
            )
        return message

    async def inbound(self) -> AsyncIterator[UIMessage]:
        """Yield UI messages as they arrive. Stops on close()."""
        while not self._closed:
            try:
                message = await asyncio.wait_for(self._inbound.get(), timeout=0.5)
            except asyncio.TimeoutError:
                continue
            yield message

    def close(self) -> None:
        """Stop the inbound loop and further deliveries permanently."""
        self._closed = True
