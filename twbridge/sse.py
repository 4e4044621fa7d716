from sse_starlette.sse import EventSourceResponse
from typing import AsyncIterator
import asyncio, json

def sse_stream(generator: AsyncIterator[dict], ping: int = 15) -> EventSourceResponse:
    async def event_publisher():
        async for ev in generator:
            yield {
                "event": ev.get("event", "message"),
                "data": json.dumps(ev["data"], default=str) if "data" in ev else json.dumps(ev, default=str)
            }
            await asyncio.sleep(0)
    return EventSourceResponse(event_publisher(), ping=ping)
