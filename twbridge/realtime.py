import asyncio, logging
from typing import AsyncIterator

log = logging.getLogger("realtime")

class Broadcaster:
    def __init__(self, maxsize: int = 256):
        self._queues = set()
        self._maxsize = maxsize

    @property
    def subscribers(self) -> int:
        return len(self._queues)

    async def register(self) -> AsyncIterator[dict]:
        q: asyncio.Queue = asyncio.Queue(self._maxsize)
        self._queues.add(q)
        try:
            while True:
                yield await q.get()
        finally:
            self._queues.discard(q)

    def publish(self, event: dict):
        """Non-blocking fan-out for callers that cannot await (listener callbacks)."""
        for q in list(self._queues):
            try:
                q.put_nowait(event)
            except asyncio.QueueFull:
                log.warning("Dropping event for slow subscriber: %s", event.get("event"))

broadcaster = Broadcaster()
