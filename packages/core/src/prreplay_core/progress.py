"""Ordered progress channel consumed by the caller of a reproduction request.

Components push structured ``(kind, step, message)`` events; rendering them
is left to whoever iterates the channel. Exactly one result closes it.
"""

from __future__ import annotations

import asyncio
import logging
from typing import AsyncIterator, Union

from prreplay_core.models import TOTAL_STEPS, ProgressEvent, ReproductionResult

logger = logging.getLogger(__name__)

EVENT_KINDS = ("info", "success", "error", "progress")

ChannelItem = Union[ProgressEvent, ReproductionResult]


class ProgressChannel:
    def __init__(self, total_steps: int = TOTAL_STEPS):
        self.total_steps = total_steps
        self._queue: asyncio.Queue[ChannelItem] = asyncio.Queue()
        self._result: ReproductionResult | None = None

    @property
    def closed(self) -> bool:
        return self._result is not None

    @property
    def result(self) -> ReproductionResult | None:
        return self._result

    def emit(self, kind: str, message: str, step: int | None = None, data: dict | None = None) -> bool:
        """Queue an event. Returns False if the channel is already closed."""
        if kind not in EVENT_KINDS:
            raise ValueError(f"Unknown event kind: {kind!r}")
        if self.closed:
            logger.debug("Dropping %s event after result: %s", kind, message)
            return False
        event = ProgressEvent(
            kind=kind,
            message=message,
            step=step,
            total_steps=self.total_steps if step is not None else None,
            data=data,
        )
        self._queue.put_nowait(event)
        return True

    def info(self, message: str, step: int | None = None, **data) -> bool:
        return self.emit("info", message, step, data or None)

    def success(self, message: str, step: int | None = None, **data) -> bool:
        return self.emit("success", message, step, data or None)

    def error(self, message: str, step: int | None = None, **data) -> bool:
        return self.emit("error", message, step, data or None)

    def progress(self, message: str, step: int | None = None, **data) -> bool:
        return self.emit("progress", message, step, data or None)

    def finish(self, result: ReproductionResult) -> bool:
        """Close the channel with its single terminal result."""
        if self.closed:
            logger.debug("Channel already finished; ignoring second result")
            return False
        self._result = result
        self._queue.put_nowait(result)
        return True

    async def __aiter__(self) -> AsyncIterator[ChannelItem]:
        while True:
            item = await self._queue.get()
            yield item
            if isinstance(item, ReproductionResult):
                return

    def drain(self) -> list[ChannelItem]:
        """Return everything queued so far without waiting."""
        items: list[ChannelItem] = []
        while not self._queue.empty():
            items.append(self._queue.get_nowait())
        return items
