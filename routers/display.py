from fastapi import APIRouter, Body
from typing import Any, Dict, Optional
from pydantic import BaseModel

from core.models import (
    AttributionFailed,
    AttributionPayload,
    AttributionReceived,
    BackRequested,
    NotificationReceived,
    PermissionResponded,
    PushTokenUpdated,
    RetryRequested,
)
from shared.state import event_bus, get_connectivity_monitor, get_phase_controller

router = APIRouter(prefix="/display", tags=["Display"])


class ConnectivityRequest(BaseModel):
    satisfied: bool


class PushTokenRequest(BaseModel):
    token: str


class PermissionRequest(BaseModel):
    # null = "not now": the prompt is dismissed without recording an answer
    granted: Optional[bool] = None


def _queued(event) -> dict:
    event_bus.publish(event)
    return {"status": "queued", "event": event.name}


@router.get("/phase")
async def get_phase():
    """Current display phase plus controller diagnostics."""
    return get_phase_controller().status()


@router.post("/attribution")
async def report_attribution(raw: Dict[str, Any] = Body(default_factory=dict)):
    """Raw conversion data as delivered by the attribution SDK."""
    return _queued(AttributionReceived(payload=AttributionPayload.from_raw(raw)))


@router.post("/attribution/failure")
async def report_attribution_failure():
    return _queued(AttributionFailed())


@router.post("/connectivity")
async def report_connectivity(request: ConnectivityRequest):
    # Goes through the monitor so repeated reports do not produce duplicate transitions
    changed = get_connectivity_monitor().observe(request.satisfied)
    return {"status": "queued" if changed else "unchanged"}


@router.post("/push-token")
async def report_push_token(request: PushTokenRequest):
    return _queued(PushTokenUpdated(token=request.token))


@router.post("/retry")
async def request_retry():
    """User tapped retry on the offline screen."""
    return _queued(RetryRequested())


@router.post("/notification")
async def report_notification(payload: Dict[str, Any] = Body(default_factory=dict)):
    return _queued(NotificationReceived(payload=payload))


@router.post("/permission")
async def report_permission(request: PermissionRequest):
    return _queued(PermissionResponded(granted=request.granted))


@router.post("/back")
async def request_back():
    """Back affordance: close the newest popup, else step the primary surface back."""
    return _queued(BackRequested())
