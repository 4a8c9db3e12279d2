"""
Telemetry Ingest Tests

Incremental KPI counters, arm statistics, recomputation from the event log
and the session / step / visitor read models.
Run with: pytest tests/test_telemetry_ingest.py -v
"""

from datetime import datetime, timedelta, timezone

import pytest

from funnelforge.db.models import Experiment, FunnelEvent, GeneratedPage, ProductInfo
from funnelforge.errors import NotFoundError
from funnelforge.services.telemetry_ingest import (
    TelemetryIngest,
    fold_scroll_depth,
    percent,
    session_outcome,
)

FUNNEL_ID = "acme-widget-x1y2z3"
PAGES = ["AcmeWidgetLanding", "AcmeWidgetCheckout", "AcmeWidgetThankYou"]
T0 = datetime(2026, 3, 1, 12, 0, tzinfo=timezone.utc)


@pytest.fixture
def funnel_store(store):
    store.create_funnel(
        FUNNEL_ID,
        ProductInfo(productName="Acme Widget", description="A widget"),
        [
            GeneratedPage(funnel_id=FUNNEL_ID, component_name=name, page_order=i, source_code="code")
            for i, name in enumerate(PAGES)
        ],
    )
    return store


@pytest.fixture
def ingest(funnel_store):
    return TelemetryIngest(funnel_store)


class EventFactory:
    def __init__(self):
        self.tick = 0

    def __call__(self, type, session="s1", visitor="v1", page=PAGES[0], value=None, variant=None):
        self.tick += 1
        return FunnelEvent(
            funnelId=FUNNEL_ID,
            pageName=page,
            sessionId=session,
            visitorId=visitor,
            type=type,
            value=value,
            variant=variant,
            timestamp=T0 + timedelta(seconds=self.tick),
        )


@pytest.fixture
def event():
    return EventFactory()


class TestHelpers:
    def test_percent(self):
        assert percent(1, 3) == 33
        assert percent(2, 3) == 67
        assert percent(5, 0) == 0

    def test_session_outcome(self, event):
        assert session_outcome([event("page_view"), event("purchase")]) == "converted"
        assert session_outcome([event("page_view"), event("email_capture")]) == "engaged"
        assert session_outcome([event("page_view"), event("scroll_depth", value=70)]) == "bounced"

    def test_fold_scroll_depth_with_no_visitors(self):
        assert fold_scroll_depth(0.0, 80.0, 0) == 80.0


class TestRecordEvent:
    def test_returning_visitor_counted_once(self, ingest, funnel_store, event):
        for _ in range(3):
            ingest.record_event(event("page_view", visitor="v1"))
        ingest.record_event(event("page_view", visitor="v2"))

        kpis = funnel_store.get_kpis(FUNNEL_ID)
        assert kpis.page_views == 4
        assert kpis.total_visitors == 2

    def test_visitor_already_registered_is_not_counted(self, ingest, funnel_store, event):
        # Another request registered v1 first; this view must not count it again
        funnel_store.register_visitor(FUNNEL_ID, "v1")

        ingest.record_event(event("page_view", visitor="v1"))

        kpis = funnel_store.get_kpis(FUNNEL_ID)
        assert kpis.page_views == 1
        assert kpis.total_visitors == 0

    def test_events_without_visitor_id_count_as_new(self, ingest, funnel_store, event):
        ingest.record_event(event("page_view", visitor=None))
        ingest.record_event(event("page_view", visitor=None))
        assert funnel_store.get_kpis(FUNNEL_ID).total_visitors == 2

    def test_counters_and_conversion_rate(self, ingest, funnel_store, event):
        for visitor in ("v1", "v2", "v3", "v4"):
            ingest.record_event(event("page_view", visitor=visitor))
        ingest.record_event(event("cta_click"))
        ingest.record_event(event("email_capture", value="a@example.com"))
        ingest.record_event(event("purchase"))

        kpis = funnel_store.get_kpis(FUNNEL_ID)
        assert (kpis.cta_clicks, kpis.email_captures, kpis.purchases) == (1, 1, 1)
        assert kpis.conversion_rate == pytest.approx(0.25)

    def test_scroll_depth_running_mean(self, ingest, funnel_store, event):
        ingest.record_event(event("page_view", visitor="v1"))
        ingest.record_event(event("scroll_depth", value=60))
        ingest.record_event(event("page_view", visitor="v2"))
        ingest.record_event(event("scroll_depth", value="80"))

        assert funnel_store.get_kpis(FUNNEL_ID).avg_scroll_depth == pytest.approx(70.0)

    def test_non_numeric_scroll_ignored(self, ingest, funnel_store, event):
        ingest.record_event(event("page_view"))
        ingest.record_event(event("scroll_depth", value="deep"))
        kpis = funnel_store.get_kpis(FUNNEL_ID)
        assert kpis.avg_scroll_depth == 0.0
        assert len(funnel_store.events) == 2

    def test_unknown_funnel(self, ingest):
        bad = FunnelEvent(funnelId="missing-abc123", sessionId="s1", type="page_view")
        with pytest.raises(NotFoundError):
            ingest.record_event(bad)

    def test_each_event_committed(self, ingest, funnel_store, event):
        before = funnel_store.commits
        ingest.record_event(event("page_view"))
        assert funnel_store.commits == before + 1


class TestArmStats:
    @pytest.fixture
    def experiment(self, funnel_store):
        return funnel_store.insert_experiment(
            Experiment(
                id=f"{FUNNEL_ID}-{PAGES[0]}-v1",
                funnel_id=FUNNEL_ID,
                page_name=PAGES[0],
                control_component=PAGES[0],
                test_component=f"{PAGES[0]}_v1",
            )
        )

    def test_views_and_conversions_by_arm(self, ingest, funnel_store, event, experiment):
        ingest.record_event(event("page_view", variant="control"))
        ingest.record_event(event("page_view", session="s2", visitor="v2", variant="test"))
        ingest.record_event(event("email_capture", session="s2", visitor="v2", variant="test"))
        ingest.record_event(event("purchase", session="s2", visitor="v2", variant="test"))
        ingest.record_event(event("cta_click", variant="control"))

        stored = funnel_store.get_experiment(experiment.id)
        assert (stored.control_stats.visitors, stored.control_stats.conversions) == (1, 0)
        assert (stored.test_stats.visitors, stored.test_stats.conversions) == (1, 2)

    def test_events_for_other_pages_ignored(self, ingest, funnel_store, event, experiment):
        ingest.record_event(event("page_view", page=PAGES[1], variant="test"))
        assert funnel_store.get_experiment(experiment.id).test_stats.visitors == 0

    def test_untagged_events_ignored(self, ingest, funnel_store, event, experiment):
        ingest.record_event(event("page_view"))
        stored = funnel_store.get_experiment(experiment.id)
        assert stored.control_stats.visitors == 0
        assert stored.test_stats.visitors == 0


class TestRecompute:
    def test_matches_incremental_counters(self, ingest, funnel_store, event):
        sequence = [
            event("page_view", visitor="v1"),
            event("page_view", visitor="v1", page=PAGES[1]),
            event("page_view", visitor="v2"),
            event("page_view", visitor=None, session="anon"),
            event("cta_click", visitor="v1"),
            event("email_capture", visitor="v2", value="b@example.com"),
            event("purchase", visitor="v1", page=PAGES[1]),
            event("bounce", visitor="v2"),
        ]
        for e in sequence:
            ingest.record_event(e)
        incremental = funnel_store.get_kpis(FUNNEL_ID)

        funnel_store.save_kpis(FUNNEL_ID, incremental.model_copy(update={"page_views": 0, "purchases": 0}))
        recomputed = ingest.recompute_kpis(FUNNEL_ID)

        assert recomputed == incremental
        assert funnel_store.get_kpis(FUNNEL_ID) == incremental


class TestReadModels:
    def _record_traffic(self, ingest, event):
        # v1 buys, v2 leaves at checkout, v3 bounces on landing
        ingest.record_event(event("page_view", session="s1", visitor="v1"))
        ingest.record_event(event("cta_click", session="s1", visitor="v1"))
        ingest.record_event(event("page_view", session="s1", visitor="v1", page=PAGES[1]))
        ingest.record_event(event("email_capture", session="s1", visitor="v1", page=PAGES[1], value="v1@example.com"))
        ingest.record_event(event("purchase", session="s1", visitor="v1", page=PAGES[1]))
        ingest.record_event(event("page_view", session="s1", visitor="v1", page=PAGES[2]))
        ingest.record_event(event("page_view", session="s2", visitor="v2"))
        ingest.record_event(event("page_view", session="s2", visitor="v2", page=PAGES[1]))
        ingest.record_event(event("page_view", session="s3", visitor="v3"))

    def test_funnel_steps(self, ingest, event):
        self._record_traffic(ingest, event)

        analytics = ingest.get_funnel_steps(FUNNEL_ID)

        assert [s.page_name for s in analytics.steps] == PAGES
        assert [s.visitors for s in analytics.steps] == [3, 2, 1]
        assert [s.conversion_pct for s in analytics.steps] == [100, 67, 33]
        assert [s.drop_off_pct for s in analytics.steps] == [0, 33, 50]
        assert analytics.steps[1].purchases == 1
        assert analytics.summary.total_visitors == 3
        assert analytics.summary.overall_conversion == 33

    def test_funnel_steps_without_pages(self, store):
        assert TelemetryIngest(store).get_funnel_steps("missing-abc123").steps == []

    def test_sessions_newest_first(self, ingest, event):
        self._record_traffic(ingest, event)

        sessions = ingest.get_sessions(FUNNEL_ID)

        assert [s.session_id for s in sessions] == ["s3", "s2", "s1"]
        s1 = sessions[2]
        assert s1.pages == PAGES
        assert s1.outcome == "converted"
        assert s1.duration_ms == 5000
        assert sessions[1].outcome == "bounced"

    def test_visitors(self, ingest, event):
        self._record_traffic(ingest, event)

        visitors = {v.visitor_id: v for v in ingest.get_visitors(FUNNEL_ID)}

        assert visitors["v1"].email == "v1@example.com"
        assert visitors["v1"].purchased
        assert visitors["v1"].completion_pct == 100
        assert visitors["v2"].completion_pct == 67
        assert visitors["v3"].email is None
        assert visitors["v3"].session_count == 1
