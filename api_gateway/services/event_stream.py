"""
Server-sent event framing for progress streams.
"""

import json
from typing import AsyncIterator

from fastapi import Request
from fastapi.responses import StreamingResponse

from shared.models.progress import ProgressSnapshot
from modules.progress_broadcaster.broadcaster import ProgressBroadcaster

SSE_HEADERS = {
    "Cache-Control": "no-cache",
    "Connection": "keep-alive",
    "X-Accel-Buffering": "no",  # Disable nginx buffering
}


def format_event(snapshot: ProgressSnapshot) -> str:
    """One `data:` frame carrying the snapshot as JSON."""
    return f"data: {json.dumps(snapshot.model_dump(mode='json', exclude_none=True))}\n\n"


async def _events(
    broadcaster: ProgressBroadcaster,
    kind: str,
    record_id: str,
    request: Request,
) -> AsyncIterator[str]:
    async for snapshot in broadcaster.stream(kind, record_id, is_disconnected=request.is_disconnected):
        yield format_event(snapshot)


def event_stream_response(
    broadcaster: ProgressBroadcaster,
    kind: str,
    record_id: str,
    request: Request,
) -> StreamingResponse:
    """Stream progress snapshots for a job or composite as text/event-stream."""
    return StreamingResponse(
        _events(broadcaster, kind, record_id, request),
        media_type="text/event-stream",
        headers=SSE_HEADERS,
    )
