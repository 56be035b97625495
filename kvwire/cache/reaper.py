"""
Expiration Reaper Module

Two cooperating mechanisms remove expired keys from the KVStore without
waiting for a client to touch them:

- A periodic sweep that wakes every `interval` seconds and deletes every
  key whose expiration instant has passed.
- One-shot deletion timers scheduled when a SET carries EX/PX. A timer
  only deletes the value it was scheduled for (matched by generation),
  so an overwritten key is never removed by a stale timer.

Neither mechanism is tied to the client session that caused it.
"""

import asyncio
import logging
from typing import Dict, Optional, Tuple

from .store import KVStore
from ..config.settings import settings

logger = logging.getLogger(__name__)


class ExpirationReaper:
    """
    Background expiration for a KVStore.

    Usage:
        reaper = ExpirationReaper(store, interval=1.0)
        reaper.start()          # From inside a running event loop
        reaper.schedule_deletion("key", 10, generation)
        await reaper.stop()
    """

    def __init__(self, store: KVStore, interval: float = None):
        self.store = store
        self.interval = interval if interval is not None else settings.REAPER_INTERVAL

        self._task: Optional[asyncio.Task] = None
        # key -> (generation, pending deletion timer); at most one per key
        self._timers: Dict[str, Tuple[int, asyncio.TimerHandle]] = {}
        self._total_reaped = 0

    def sweep(self) -> int:
        """
        Run one sweep over the store.

        Returns:
            Number of keys removed
        """
        removed = self.store.cleanup_expired()
        if removed:
            self._total_reaped += removed
            logger.debug(f"Reaper removed {removed} expired keys")
        return removed

    async def _run(self) -> None:
        while True:
            await asyncio.sleep(self.interval)
            self.sweep()

    def start(self) -> None:
        """Start the periodic sweep on the running event loop."""
        if self.is_running():
            return
        self._task = asyncio.get_running_loop().create_task(self._run())
        logger.debug(f"Reaper started (interval={self.interval}s)")

    async def stop(self) -> None:
        """Stop the periodic sweep and cancel pending deletion timers."""
        for _, handle in self._timers.values():
            handle.cancel()
        self._timers.clear()

        if self._task is None:
            return

        self._task.cancel()
        try:
            await self._task
        except asyncio.CancelledError:
            pass
        finally:
            self._task = None
            logger.debug("Reaper stopped")

    def is_running(self) -> bool:
        """Check if the periodic sweep is active."""
        return self._task is not None and not self._task.done()

    def schedule_deletion(
            self,
            key: str,
            delay: float,
            generation: int
    ) -> Optional[asyncio.TimerHandle]:
        """
        Delete key after delay seconds if it still holds the given generation.

        Without a running event loop nothing is scheduled; the key is then
        removed by lazy expiration on read or by the next sweep.

        Returns:
            The timer handle, or None if no event loop is running
        """
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            logger.debug(f"No running event loop, '{key}' left to the sweep")
            return None

        previous = self._timers.pop(key, None)
        if previous is not None:
            # A newer generation supersedes the pending timer
            previous[1].cancel()

        handle = loop.call_later(delay, self._expire_key, key, generation)
        self._timers[key] = (generation, handle)
        logger.debug(f"Scheduled deletion of '{key}' in {delay}s (generation {generation})")
        return handle

    def _expire_key(self, key: str, generation: int) -> None:
        pending = self._timers.get(key)
        if pending is not None and pending[0] == generation:
            del self._timers[key]
        if self.store.delete_if_generation(key, generation):
            self._total_reaped += 1
            logger.debug(f"Expired key '{key}'")

    @property
    def pending_timers(self) -> int:
        """Number of scheduled deletions that have not fired yet."""
        return len(self._timers)

    @property
    def total_reaped(self) -> int:
        """Total keys removed by the sweep and by deletion timers."""
        return self._total_reaped
