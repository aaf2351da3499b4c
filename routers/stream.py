from fastapi import APIRouter, Request
from sse_starlette.sse import EventSourceResponse
from shared.state import event_bus
import asyncio
import json

router = APIRouter(tags=["Stream"])

@router.get("/events")
async def event_stream(request: Request, replay: int = 0):
    """
    Server-Sent Events (SSE) endpoint.
    Clients connect here to receive every bus event (PhaseChanged included).
    `replay` re-sends that many recent events first so a late client can catch up.
    """
    subscription = event_bus.subscribe("sse", replay=replay)

    async def event_generator():
        try:
            while True:
                # Check for client disconnect
                if await request.is_disconnected():
                    break

                event = await subscription.get()
                yield {
                    "event": event.name,
                    "data": json.dumps(event.model_dump(mode="json"))
                }
        except asyncio.CancelledError:
            pass
        finally:
            subscription.close()

    return EventSourceResponse(event_generator())

@router.get("/events/history")
async def event_history(limit: int = 50):
    """Recent bus events, oldest first."""
    return {"events": event_bus.history(limit)}
