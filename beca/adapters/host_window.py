"""Host notifications and confirmations routed through the UI bus.

A confirmation posts a ``confirmRequest`` and waits on a Future that the
UI resolves with a ``confirmResponse``. Unanswered requests time out as
declined.
"""
from __future__ import annotations

import asyncio
import logging
import uuid

from beca.adapters.event_bus import UIMessageBus
from beca.adapters.events import ConfirmRequest, Notification

logger = logging.getLogger(__name__)


class BusHostWindow:
    """``HostWindow`` implementation backed by a ``UIMessageBus``."""

    def __init__(self, bus: UIMessageBus, confirm_timeout_seconds: float = 120.0) -> None:
        self._bus = bus
        self._confirm_timeout = confirm_timeout_seconds
        self._confirm_futures: dict[str, asyncio.Future[bool]] = {}

    def notify(self, level: str, text: str) -> None:
        log = logger.error if level == "error" else logger.info
        log("Notification level=%s text=%s", level, text)
        self._bus.post(Notification(level=level, text=text))

    async def confirm(self, prompt: str) -> bool:
        if self._bus.surface_count == 0:
            logger.warning("Confirmation requested with no UI attached, declining")
            return False

        request_id = str(uuid.uuid4())
        future: asyncio.Future[bool] = asyncio.get_running_loop().create_future()
        self._confirm_futures[request_id] = future
        self._bus.post(ConfirmRequest(request_id=request_id, prompt=prompt))
        logger.info("Confirmation requested request_id=%s", request_id[:8])

        try:
            timeout = self._confirm_timeout if self._confirm_timeout > 0 else None
            return await asyncio.wait_for(future, timeout=timeout)
        except asyncio.TimeoutError:
            logger.warning("Confirmation timed out request_id=%s, declining", request_id[:8])
            return False
        finally:
            self._confirm_futures.pop(request_id, None)

    def resolve_confirm(self, request_id: str, accepted: bool) -> bool:
        """Resolve a pending confirmation. Returns False if it is unknown or done."""
        future = self._confirm_futures.get(request_id)
        if future and not future.done():
            future.set_result(bool(accepted))
            logger.info(
                "Confirmation resolved request_id=%s accepted=%s",
                request_id[:8], accepted,
            )
            return True
        logger.warning(
            "Confirmation resolve ignored request_id=%s (missing or already done)",
            request_id[:8],
        )
        return False

    def pending_requests(self) -> list[str]:
        return list(self._confirm_futures)
