"""
Funnel Analytics Endpoints

Step conversion, session timelines and visitor summaries built from the
raw event log, plus a KPI rebuild for repair.
"""

from fastapi import APIRouter, Depends, HTTPException, Query

from funnelforge.api.deps import get_current_user, get_funnel_store, get_telemetry
from funnelforge.api.schemas.analytics import (
    FunnelAnalyticsResponse,
    SessionListResponse,
    VisitorListResponse,
)
from funnelforge.api.schemas.funnels import FunnelIdRequest
from funnelforge.db import FunnelStore
from funnelforge.db.models import FunnelKPIs
from funnelforge.services.telemetry_ingest import TelemetryIngest


router = APIRouter(prefix="/api/funnel", tags=["analytics"])


def _require_kpis(store: FunnelStore, funnel_id: str) -> FunnelKPIs:
    kpis = store.get_kpis(funnel_id)
    if kpis is None:
        raise HTTPException(status_code=404, detail=f"Funnel '{funnel_id}' not found")
    return kpis


@router.get("/analytics", response_model=FunnelAnalyticsResponse)
def get_analytics(
    funnel_id: str = Query(..., description="Funnel to analyze"),
    user: str = Depends(get_current_user),
    store: FunnelStore = Depends(get_funnel_store),
    telemetry: TelemetryIngest = Depends(get_telemetry),
):
    """
    Per-step funnel analytics.

    Visitors are distinct visitor ids (session id for legacy events) with a
    page_view on the step. conversion_pct is relative to the first step,
    drop_off_pct to the previous one.
    """
    kpis = _require_kpis(store, funnel_id)
    analytics = telemetry.get_funnel_steps(funnel_id)
    return {
        "funnel_id": funnel_id,
        "steps": analytics.steps,
        "summary": analytics.summary,
        "kpis": kpis,
    }


@router.get("/sessions", response_model=SessionListResponse)
def get_sessions(
    funnel_id: str = Query(...),
    user: str = Depends(get_current_user),
    store: FunnelStore = Depends(get_funnel_store),
    telemetry: TelemetryIngest = Depends(get_telemetry),
):
    """Session timelines with outcome (converted/engaged/bounced), newest first."""
    _require_kpis(store, funnel_id)
    sessions = telemetry.get_sessions(funnel_id)
    return {"funnel_id": funnel_id, "sessions": sessions, "total": len(sessions)}


@router.get("/visitors", response_model=VisitorListResponse)
def get_visitors(
    funnel_id: str = Query(...),
    user: str = Depends(get_current_user),
    store: FunnelStore = Depends(get_funnel_store),
    telemetry: TelemetryIngest = Depends(get_telemetry),
):
    _require_kpis(store, funnel_id)
    visitors = telemetry.get_visitors(funnel_id)
    return {"funnel_id": funnel_id, "visitors": visitors, "total": len(visitors)}


@router.post("/recompute-kpis", response_model=FunnelKPIs)
def recompute_kpis(
    request: FunnelIdRequest,
    user: str = Depends(get_current_user),
    store: FunnelStore = Depends(get_funnel_store),
    telemetry: TelemetryIngest = Depends(get_telemetry),
):
    """Rebuild the KPI counters from the event log."""
    _require_kpis(store, request.funnel_id)
    return telemetry.recompute_kpis(request.funnel_id)
