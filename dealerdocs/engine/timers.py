"""
DealerDocs Timers — keyed one-shot callbacks on the running event loop.

Only two product timers exist: the upload error auto-dismiss and the grace
period before a PDF's object URL is released. Both are scheduled here so
they can be cancelled (superseded) by key and flushed on teardown.
"""

from __future__ import annotations

import asyncio
import logging
from datetime import datetime, timezone
from typing import Callable, Dict, List, Tuple

logger = logging.getLogger("dealerdocs.engine.timers")

Clock = Callable[[], datetime]


def utcnow() -> datetime:
    """Default clock: timezone-aware UTC now."""
    return datetime.now(timezone.utc)


class DeferredActions:
    """
    Keyed ``loop.call_later`` wrapper.

    Scheduling a key that is already pending replaces the earlier timer.
    """

    def __init__(self) -> None:
        self._pending: Dict[str, Tuple[asyncio.TimerHandle, Callable[[], None]]] = {}

    def call_later(self, delay_ms: int, key: str, callback: Callable[[], None]) -> None:
        """Run ``callback`` after ``delay_ms`` unless cancelled first."""
        self.cancel(key)
        loop = asyncio.get_running_loop()

        def _fire() -> None:
            self._pending.pop(key, None)
            try:
                callback()
            except Exception as e:
                logger.error(f"Deferred action '{key}' failed: {e}")

        handle = loop.call_later(max(delay_ms, 0) / 1000.0, _fire)
        self._pending[key] = (handle, _fire)

    def cancel(self, key: str) -> bool:
        """Cancel a pending timer. Returns True if one was pending."""
        entry = self._pending.pop(key, None)
        if entry is None:
            return False
        entry[0].cancel()
        return True

    def flush(self) -> int:
        """Run every pending callback now (teardown). Returns how many ran."""
        entries = list(self._pending.values())
        for handle, fire in entries:
            handle.cancel()
            fire()
        return len(entries)

    def cancel_all(self) -> None:
        for handle, _ in self._pending.values():
            handle.cancel()
        self._pending.clear()

    def pending(self) -> List[str]:
        return list(self._pending.keys())

    def is_pending(self, key: str) -> bool:
        return key in self._pending
