"""
Analytics API Schemas

Read models over the telemetry event log.
"""

from datetime import datetime
from typing import List, Optional

from pydantic import BaseModel

from funnelforge.db.models import FunnelEvent, FunnelKPIs, SessionOutcome


class EventAccepted(BaseModel):
    status: str = "ok"


class FunnelStep(BaseModel):
    page_name: str
    page_order: int
    visitors: int
    cta_clicks: int
    emails: int
    purchases: int
    conversion_pct: int
    drop_off_pct: int


class FunnelStepsSummary(BaseModel):
    total_visitors: int
    total_purchases: int
    overall_conversion: int


class FunnelAnalyticsResponse(BaseModel):
    """Per-step visitors in declared page order, with drop-off."""

    funnel_id: str
    steps: List[FunnelStep]
    summary: Optional[FunnelStepsSummary] = None
    kpis: FunnelKPIs


class Session(BaseModel):
    session_id: str
    pages: List[str]
    events: List[FunnelEvent]
    started_at: datetime
    ended_at: datetime
    duration_ms: int
    outcome: SessionOutcome
    variant: Optional[str] = None


class SessionListResponse(BaseModel):
    funnel_id: str
    sessions: List[Session]
    total: int


class Visitor(BaseModel):
    visitor_id: str
    email: Optional[str] = None
    pages: List[str]
    total_pages: int
    completion_pct: int
    purchased: bool
    last_seen_at: datetime
    session_count: int


class VisitorListResponse(BaseModel):
    funnel_id: str
    visitors: List[Visitor]
    total: int
