"""Progress event channel for migration runs."""

import asyncio
import logging
from typing import List

from ..models.migration import ProgressEvent

logger = logging.getLogger(__name__)


class ProgressChannel:
    """
    Fan-out of progress events to any number of subscribers.

    Each subscriber gets its own unbounded queue. Publishing never blocks
    and never calls into consumer code.
    """

    def __init__(self):
        self._queues: List[asyncio.Queue] = []

    def subscribe(self) -> asyncio.Queue:
        queue: asyncio.Queue = asyncio.Queue()
        self._queues.append(queue)
        return queue

    def publish(self, event: ProgressEvent) -> None:
        logger.debug(
            f"Progress: {event.state.value} {event.entity_type} "
            f"batch {event.batch_index}/{event.batch_count}"
        )
        for queue in self._queues:
            queue.put_nowait(event)

    def close(self) -> None:
        """Send ``None`` to every subscriber."""
        for queue in self._queues:
            queue.put_nowait(None)
