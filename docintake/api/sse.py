import json
from typing import Any, AsyncIterator, Dict

from starlette.responses import StreamingResponse


async def _format(events: AsyncIterator[Dict[str, Any]]) -> AsyncIterator[str]:
    async for event in events:
        yield f"data: {json.dumps(event, default=str)}\n\n"


def sse_response(events: AsyncIterator[Dict[str, Any]]) -> StreamingResponse:
    return StreamingResponse(
        _format(events),
        media_type="text/event-stream",
        headers={
            "Cache-Control": "no-cache",
            "Connection": "keep-alive",
            "X-Accel-Buffering": "no",
        },
    )
