"""
Funnel Store Tests

SQL adapter behavior against a mocked psycopg2 connection: error mapping,
guarded counter columns and row conversion.
Run with: pytest tests/test_funnel_storage.py -v
"""

from datetime import datetime, timezone
from unittest.mock import MagicMock, Mock

import pytest
from psycopg2 import errors as pg_errors

from funnelforge.db.funnel_storage import VARIANT_PAGE_ORDER_BASE, FunnelStore
from funnelforge.db.models import Experiment, FunnelEvent, FunnelKPIs
from funnelforge.errors import ExperimentConflictError, NotFoundError

NOW = datetime(2026, 3, 1, 12, 0, tzinfo=timezone.utc)


# -----------------------------------------------------------------------------
# Fixtures
# -----------------------------------------------------------------------------


@pytest.fixture
def mock_db():
    """Create a mock database connection."""
    db = Mock()
    cursor = MagicMock()
    db.cursor.return_value.__enter__ = Mock(return_value=cursor)
    db.cursor.return_value.__exit__ = Mock(return_value=False)
    return db, cursor


@pytest.fixture
def funnel_store(mock_db):
    db, _ = mock_db
    return FunnelStore(db)


def experiment_row(**overrides):
    row = {
        "id": "acme-widget-x1y2z3-AcmeWidgetLanding-v1",
        "funnel_id": "acme-widget-x1y2z3",
        "page_name": "AcmeWidgetLanding",
        "status": "running",
        "control_component": "AcmeWidgetLanding",
        "test_component": "AcmeWidgetLanding_v1",
        "traffic_split": 0.5,
        "significance_threshold": 0.95,
        "control_visitors": 120,
        "control_conversions": 6,
        "test_visitors": 118,
        "test_conversions": 14,
        "winner": None,
        "started_at": NOW,
        "concluded_at": None,
    }
    row.update(overrides)
    return row


# -----------------------------------------------------------------------------
# Events & KPIs
# -----------------------------------------------------------------------------


class TestEvents:
    def test_insert_event_unknown_funnel(self, mock_db, funnel_store):
        db, cursor = mock_db
        cursor.execute.side_effect = pg_errors.ForeignKeyViolation("violates foreign key")

        event = FunnelEvent(funnelId="missing-abc123", sessionId="s1", type="page_view")
        with pytest.raises(NotFoundError):
            funnel_store.insert_event(event)
        db.rollback.assert_called_once()

    def test_insert_event_params(self, mock_db, funnel_store):
        _, cursor = mock_db
        event = FunnelEvent(funnelId="acme-widget-x1y2z3", sessionId="s1", type="email_capture", value="a@example.com")

        funnel_store.insert_event(event)

        params = cursor.execute.call_args[0][1]
        assert params[0] == "acme-widget-x1y2z3"
        assert params[5] == "a@example.com"

    def test_event_rows_restore_numeric_values(self, mock_db, funnel_store):
        _, cursor = mock_db
        base = {
            "funnel_id": "acme-widget-x1y2z3",
            "page_name": "AcmeWidgetLanding",
            "session_id": "s1",
            "visitor_id": "v1",
            "variant": None,
            "created_at": NOW,
        }
        cursor.fetchall.return_value = [
            {**base, "type": "scroll_depth", "value": "60"},
            {**base, "type": "email_capture", "value": "a@example.com"},
        ]

        events = funnel_store.list_events("acme-widget-x1y2z3")

        assert events[0].value == 60.0
        assert events[1].value == "a@example.com"

    def test_list_events_with_limit(self, mock_db, funnel_store):
        _, cursor = mock_db
        cursor.fetchall.return_value = []

        funnel_store.list_events("acme-widget-x1y2z3", limit=10, newest_first=True)

        sql, params = cursor.execute.call_args[0]
        assert "DESC" in sql
        assert "LIMIT" in sql
        assert params == ["acme-widget-x1y2z3", 10]

    @pytest.mark.parametrize("rowcount,expected", [(1, True), (0, False)])
    def test_register_visitor(self, mock_db, funnel_store, rowcount, expected):
        _, cursor = mock_db
        cursor.rowcount = rowcount

        assert funnel_store.register_visitor("acme-widget-x1y2z3", "v1") is expected

        sql, params = cursor.execute.call_args[0]
        assert "ON CONFLICT (funnel_id, visitor_id) DO NOTHING" in sql
        assert params == ("acme-widget-x1y2z3", "v1")


class TestKPIs:
    def test_increment_rejects_unknown_column(self, mock_db, funnel_store):
        _, cursor = mock_db
        with pytest.raises(ValueError):
            funnel_store.increment_kpi("acme-widget-x1y2z3", "id = 'x'; DROP TABLE funnels; --")
        cursor.execute.assert_not_called()

    def test_increment_known_column(self, mock_db, funnel_store):
        _, cursor = mock_db
        funnel_store.increment_kpi("acme-widget-x1y2z3", "purchases")
        sql = cursor.execute.call_args[0][0]
        assert "purchases = purchases + 1" in sql

    def test_get_kpis_missing_funnel(self, mock_db, funnel_store):
        _, cursor = mock_db
        cursor.fetchone.return_value = None
        assert funnel_store.get_kpis("missing-abc123") is None

    def test_get_kpis_converts_numeric(self, mock_db, funnel_store):
        _, cursor = mock_db
        cursor.fetchone.return_value = {
            "total_visitors": 4,
            "page_views": 9,
            "cta_clicks": 2,
            "email_captures": 1,
            "purchases": 1,
            "avg_scroll_depth": None,
            "conversion_rate": 0.25,
        }
        kpis = funnel_store.get_kpis("acme-widget-x1y2z3")
        assert kpis == FunnelKPIs(
            total_visitors=4, page_views=9, cta_clicks=2, email_captures=1,
            purchases=1, avg_scroll_depth=0.0, conversion_rate=0.25,
        )


# -----------------------------------------------------------------------------
# Funnels & Pages
# -----------------------------------------------------------------------------


class TestFunnels:
    @pytest.mark.parametrize("rowcount,expected", [(1, True), (0, False)])
    def test_set_hidden(self, mock_db, funnel_store, rowcount, expected):
        _, cursor = mock_db
        cursor.rowcount = rowcount
        assert funnel_store.set_hidden("acme-widget-x1y2z3", True) is expected

    def test_get_funnel_missing(self, mock_db, funnel_store):
        _, cursor = mock_db
        cursor.fetchone.return_value = None
        assert funnel_store.get_funnel("missing-abc123") is None

    def test_list_pages_excludes_variants_by_default(self, mock_db, funnel_store):
        _, cursor = mock_db
        cursor.fetchall.return_value = []

        funnel_store.list_pages("acme-widget-x1y2z3")

        sql, params = cursor.execute.call_args[0]
        assert "page_order <" in sql
        assert params == ("acme-widget-x1y2z3", VARIANT_PAGE_ORDER_BASE)


# -----------------------------------------------------------------------------
# Experiments
# -----------------------------------------------------------------------------


class TestExperiments:
    def test_insert_conflict(self, mock_db, funnel_store):
        db, cursor = mock_db
        cursor.execute.side_effect = pg_errors.UniqueViolation("duplicate key")

        experiment = Experiment(
            id="acme-widget-x1y2z3-AcmeWidgetLanding-v2",
            funnel_id="acme-widget-x1y2z3",
            page_name="AcmeWidgetLanding",
            control_component="AcmeWidgetLanding",
            test_component="AcmeWidgetLanding_v2",
        )
        with pytest.raises(ExperimentConflictError):
            funnel_store.insert_experiment(experiment)
        db.rollback.assert_called_once()

    def test_row_to_experiment(self, mock_db, funnel_store):
        _, cursor = mock_db
        cursor.fetchone.return_value = experiment_row()

        experiment = funnel_store.get_experiment("acme-widget-x1y2z3-AcmeWidgetLanding-v1")

        assert experiment.status == "running"
        assert experiment.control_stats.visitors == 120
        assert experiment.test_stats.conversions == 14

    def test_increment_arm_rejects_unknown(self, funnel_store):
        with pytest.raises(ValueError):
            funnel_store.increment_arm("exp", "holdout", "visitors")

    @pytest.mark.parametrize("rowcount,expected", [(1, True), (0, False)])
    def test_mark_concluded(self, mock_db, funnel_store, rowcount, expected):
        _, cursor = mock_db
        cursor.rowcount = rowcount
        assert funnel_store.mark_concluded("exp", "test", NOW) is expected
