"""Server-sent event stream of translation lifecycle events."""

import json

from fastapi import APIRouter, Depends
from sse_starlette.sse import EventSourceResponse

from babeldesk.api.deps import get_events
from babeldesk.jobs.events import BroadcastEventSink

router = APIRouter()


@router.get("/events")
async def stream_events(events: BroadcastEventSink = Depends(get_events)):
    async def _generate():
        async for event in events.subscribe():
            yield {"event": event.get("event", "message"), "data": json.dumps(event)}

    return EventSourceResponse(_generate())
