"""Per-repository mutual exclusion for reference-cache mutation.

Each key maps to the completion future of the most recent acquirer. A new
acquirer installs its own future as the tail before awaiting the previous
one, so waiters are served strictly in arrival order.

Not reentrant: a holder must release before acquiring the same key again.
There is no timeout; a stuck git process holds the key until it exits.
"""

from __future__ import annotations

import asyncio
import logging
from contextlib import asynccontextmanager
from typing import AsyncIterator, Callable

from prreplay_core.models import RepoRef

logger = logging.getLogger(__name__)

Release = Callable[[], None]


class RepoLockManager:
    def __init__(self) -> None:
        self._tails: dict[str, asyncio.Future] = {}

    def is_locked(self, repo: RepoRef) -> bool:
        return repo.key in self._tails

    async def acquire(self, repo: RepoRef) -> Release:
        """Wait for every earlier holder of ``repo`` and return a release function."""
        key = repo.key
        loop = asyncio.get_running_loop()
        done = loop.create_future()
        previous = self._tails.get(key)
        self._tails[key] = done

        def release() -> None:
            if not done.done():
                done.set_result(None)
            if self._tails.get(key) is done:
                del self._tails[key]

        if previous is not None and not previous.done():
            logger.debug("Waiting for lock on %s", key)
            try:
                await asyncio.shield(previous)
            except asyncio.CancelledError:
                # Keep the chain intact: hand over once the previous holder is done.
                previous.add_done_callback(lambda _: release())
                raise

        logger.debug("Acquired lock on %s", key)
        return release

    @asynccontextmanager
    async def hold(self, repo: RepoRef) -> AsyncIterator[None]:
        """Hold the lock for ``repo``; released on every exit path."""
        release = await self.acquire(repo)
        try:
            yield
        finally:
            release()
            logger.debug("Released lock on %s", repo.key)
