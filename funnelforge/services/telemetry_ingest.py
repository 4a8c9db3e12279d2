"""
Telemetry Ingest

Consumes events posted by bundled pages and keeps the per-funnel KPI
counters current with O(1) updates per event. The counters are a cache over
the append-only event log; recompute_kpis() rebuilds them from scratch.

Also provides the read models built from the raw log: per-session
timelines, per-step funnel analytics, and per-visitor summaries.
"""

import logging
from dataclasses import dataclass, field
from datetime import datetime
from typing import Dict, List, Optional

from ..db.funnel_storage import FunnelStore
from ..db.models import FunnelEvent, FunnelKPIs, SessionOutcome

logger = logging.getLogger(__name__)

# event type -> KPI counter column
COUNTER_FOR_EVENT = {
    "cta_click": "cta_clicks",
    "email_capture": "email_captures",
    "purchase": "purchases",
}

ARM_CONVERSION_EVENTS = ("purchase", "email_capture")


# =============================================================================
# Read models
# =============================================================================


@dataclass
class SessionSummary:
    session_id: str
    pages: List[str]
    events: List[FunnelEvent]
    started_at: datetime
    ended_at: datetime
    duration_ms: int
    outcome: SessionOutcome
    variant: Optional[str] = None


@dataclass
class FunnelStep:
    page_name: str
    page_order: int
    visitors: int = 0
    cta_clicks: int = 0
    emails: int = 0
    purchases: int = 0
    conversion_pct: int = 0
    drop_off_pct: int = 0


@dataclass
class FunnelStepsSummary:
    total_visitors: int
    total_purchases: int
    overall_conversion: int


@dataclass
class FunnelAnalytics:
    steps: List[FunnelStep] = field(default_factory=list)
    summary: Optional[FunnelStepsSummary] = None


@dataclass
class VisitorSummary:
    visitor_id: str
    email: Optional[str]
    pages: List[str]
    total_pages: int
    completion_pct: int
    purchased: bool
    last_seen_at: datetime
    session_count: int


def visitor_key(event: FunnelEvent) -> str:
    """Visitor identity, falling back to the session for events without one."""
    return event.visitor_id or event.session_id


def session_outcome(events: List[FunnelEvent]) -> SessionOutcome:
    types = {e.type for e in events}
    if "purchase" in types:
        return "converted"
    if "cta_click" in types or "email_capture" in types:
        return "engaged"
    return "bounced"


def percent(part: int, whole: int) -> int:
    return round(part / whole * 100) if whole > 0 else 0


def _distinct(values) -> List[str]:
    seen = []
    for value in values:
        if value not in seen:
            seen.append(value)
    return seen


def fold_scroll_depth(avg: float, value: float, total_visitors: int) -> float:
    """Running mean weighted by visitor count (n = max(total_visitors, 1))."""
    n = total_visitors or 1
    return (avg * (n - 1) + value) / n


# =============================================================================
# Service
# =============================================================================


class TelemetryIngest:
    def __init__(self, store: FunnelStore):
        self.store = store

    # -------------------------------------------------------------------------
    # Ingest
    # -------------------------------------------------------------------------

    def record_event(self, event: FunnelEvent) -> None:
        """Append the event and apply its counter updates."""
        self.store.insert_event(event)
        funnel_id = event.funnel_id

        if event.type == "page_view":
            self.store.increment_kpi(funnel_id, "page_views")
            if self._is_new_visitor(event):
                self.store.increment_kpi(funnel_id, "total_visitors")
        elif event.type in COUNTER_FOR_EVENT:
            self.store.increment_kpi(funnel_id, COUNTER_FOR_EVENT[event.type])
        elif event.type == "scroll_depth":
            value = event.numeric_value
            if value is not None:
                self.store.apply_scroll_depth(funnel_id, value)
            else:
                logger.debug(f"Ignoring non-numeric scroll_depth for {funnel_id}: {event.value!r}")

        self.store.refresh_conversion_rate(funnel_id)

        if event.variant:
            self._update_arm(event)

        self.store.commit()

    def _is_new_visitor(self, event: FunnelEvent) -> bool:
        if not event.visitor_id:
            return True
        return self.store.register_visitor(event.funnel_id, event.visitor_id)

    def _update_arm(self, event: FunnelEvent) -> None:
        experiment = self.store.get_running_experiment(event.funnel_id, event.page_name)
        if experiment is None:
            return
        if event.type == "page_view":
            self.store.increment_arm(experiment.id, event.variant, "visitors")
        elif event.type in ARM_CONVERSION_EVENTS:
            self.store.increment_arm(experiment.id, event.variant, "conversions")

    def recompute_kpis(self, funnel_id: str) -> FunnelKPIs:
        """Rebuild the counters by replaying the event log in order."""
        kpis = FunnelKPIs()
        seen_visitors = set()
        for event in self.store.list_events(funnel_id):
            if event.type == "page_view":
                kpis.page_views += 1
                if not event.visitor_id or event.visitor_id not in seen_visitors:
                    kpis.total_visitors += 1
                if event.visitor_id:
                    seen_visitors.add(event.visitor_id)
            elif event.type in COUNTER_FOR_EVENT:
                column = COUNTER_FOR_EVENT[event.type]
                setattr(kpis, column, getattr(kpis, column) + 1)
            elif event.type == "scroll_depth" and event.numeric_value is not None:
                kpis.avg_scroll_depth = fold_scroll_depth(
                    kpis.avg_scroll_depth, event.numeric_value, kpis.total_visitors
                )

        kpis.conversion_rate = kpis.purchases / kpis.total_visitors if kpis.total_visitors else 0.0
        self.store.save_kpis(funnel_id, kpis)
        self.store.commit()
        logger.info(f"Recomputed KPIs for {funnel_id}: {kpis.total_visitors} visitors")
        return kpis

    # -------------------------------------------------------------------------
    # Read models
    # -------------------------------------------------------------------------

    def get_sessions(self, funnel_id: str) -> List[SessionSummary]:
        """Per-session timelines, newest session first."""
        by_session: Dict[str, List[FunnelEvent]] = {}
        for event in self.store.list_events(funnel_id):
            by_session.setdefault(event.session_id, []).append(event)

        sessions = []
        for session_id, events in by_session.items():
            events.sort(key=lambda e: e.timestamp)
            started_at, ended_at = events[0].timestamp, events[-1].timestamp
            sessions.append(
                SessionSummary(
                    session_id=session_id,
                    pages=_distinct(e.page_name for e in events),
                    events=events,
                    started_at=started_at,
                    ended_at=ended_at,
                    duration_ms=int((ended_at - started_at).total_seconds() * 1000),
                    outcome=session_outcome(events),
                    variant=next((e.variant for e in events if e.variant), None),
                )
            )

        sessions.sort(key=lambda s: s.started_at, reverse=True)
        return sessions

    def get_funnel_steps(self, funnel_id: str) -> FunnelAnalytics:
        """Per-step visitors and actions in declared page order."""
        pages = self.store.list_pages(funnel_id)
        if not pages:
            return FunnelAnalytics()

        events = self.store.list_events(funnel_id)
        steps = []
        for page in pages:
            page_events = [e for e in events if e.page_name == page.component_name]
            steps.append(
                FunnelStep(
                    page_name=page.component_name,
                    page_order=page.page_order,
                    visitors=len({visitor_key(e) for e in page_events if e.type == "page_view"}),
                    cta_clicks=sum(1 for e in page_events if e.type == "cta_click"),
                    emails=sum(1 for e in page_events if e.type == "email_capture"),
                    purchases=sum(1 for e in page_events if e.type == "purchase"),
                )
            )

        first = steps[0].visitors
        for i, step in enumerate(steps):
            step.conversion_pct = percent(step.visitors, first)
            if i > 0:
                prev = steps[i - 1].visitors
                step.drop_off_pct = percent(prev - step.visitors, prev)

        total_visitors = len({visitor_key(e) for e in events if e.type == "page_view"})
        total_purchases = sum(s.purchases for s in steps)
        return FunnelAnalytics(
            steps=steps,
            summary=FunnelStepsSummary(
                total_visitors=total_visitors,
                total_purchases=total_purchases,
                overall_conversion=percent(total_purchases, total_visitors),
            ),
        )

    def get_visitors(self, funnel_id: str) -> List[VisitorSummary]:
        """Per-visitor progress, most recently seen first."""
        total_pages = len(self.store.list_pages(funnel_id)) or 1

        by_visitor: Dict[str, List[FunnelEvent]] = {}
        for event in self.store.list_events(funnel_id):
            by_visitor.setdefault(visitor_key(event), []).append(event)

        visitors = []
        for key, events in by_visitor.items():
            events.sort(key=lambda e: e.timestamp)
            email = next(
                (
                    e.value for e in events
                    if e.type == "email_capture" and isinstance(e.value, str) and "@" in e.value
                ),
                None,
            )
            pages = _distinct(e.page_name for e in events)
            visitors.append(
                VisitorSummary(
                    visitor_id=key,
                    email=email,
                    pages=pages,
                    total_pages=total_pages,
                    completion_pct=percent(len(pages), total_pages),
                    purchased=any(e.type == "purchase" for e in events),
                    last_seen_at=events[-1].timestamp,
                    session_count=len({e.session_id for e in events}),
                )
            )

        visitors.sort(key=lambda v: v.last_seen_at, reverse=True)
        return visitors
