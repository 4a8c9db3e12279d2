"""
Telemetry Ingest Endpoint

Receives events from bundled pages. Unauthenticated and cross-origin:
bundles are served from arbitrary hosts and post with sendBeacon.
"""

import logging

from fastapi import APIRouter, Body, Depends, HTTPException
from pydantic import ValidationError as PydanticValidationError

from funnelforge.api.deps import get_telemetry
from funnelforge.api.schemas.analytics import EventAccepted
from funnelforge.db.models import FunnelEvent
from funnelforge.services.telemetry_ingest import TelemetryIngest

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/funnel", tags=["events"])


@router.post("/events", response_model=EventAccepted)
def track_event(
    payload: dict = Body(...),
    telemetry: TelemetryIngest = Depends(get_telemetry),
):
    """
    Record one telemetry event.

    Accepts the camelCase shape the bundle emits (funnelId, sessionId,
    visitorId, pageName, type, value, variant, timestamp).
    """
    try:
        event = FunnelEvent.model_validate(payload)
    except PydanticValidationError as e:
        missing = [".".join(str(p) for p in err["loc"]) for err in e.errors() if err["type"] == "missing"]
        detail = f"Missing required fields: {', '.join(missing)}" if missing else "Invalid event data"
        raise HTTPException(status_code=400, detail=detail)

    telemetry.record_event(event)
    return EventAccepted()
