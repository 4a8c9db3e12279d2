"""
Funnel Store

Durable storage for funnels, pages, telemetry events, experiments and
improvement logs. This is the system of record; the KPI columns on the
funnels row are a cache over funnel_events.
"""

import json
import logging
from datetime import datetime
from typing import List, Optional

from psycopg2 import errors as pg_errors

from ..errors import ExperimentConflictError, NotFoundError
from .models import (
    ArmStats,
    Experiment,
    Funnel,
    FunnelEvent,
    FunnelKPIs,
    FunnelStyle,
    GeneratedPage,
    ImageContext,
    ImprovementLog,
    PageSpec,
    ProductInfo,
)

logger = logging.getLogger(__name__)

# Improvement variants are stored after the funnel steps (order 99 + N).
# Rows at or above this order are never part of the step sequence.
VARIANT_PAGE_ORDER_BASE = 99

# Columns that record_event may bump with a plain "+ 1"
COUNTER_COLUMNS = frozenset({"page_views", "total_visitors", "cta_clicks", "email_captures", "purchases"})

_ARM_COLUMNS = {
    ("control", "visitors"): "control_visitors",
    ("control", "conversions"): "control_conversions",
    ("test", "visitors"): "test_visitors",
    ("test", "conversions"): "test_conversions",
}

_FUNNEL_COLUMNS = """
    id, product_name, product_type, description, price, target_audience,
    unique_selling_points, tone, style, image_urls, logo_url, image_contexts,
    hidden, created_at,
    total_visitors, page_views, cta_clicks, email_captures, purchases,
    avg_scroll_depth, conversion_rate
"""

_PAGE_COLUMNS = "funnel_id, component_name, page_order, source_code, page_spec, generation_error"

_EXPERIMENT_COLUMNS = """
    id, funnel_id, page_name, status, control_component, test_component,
    traffic_split, significance_threshold,
    control_visitors, control_conversions, test_visitors, test_conversions,
    winner, started_at, concluded_at
"""


class FunnelStore:
    """
    Storage adapter over a psycopg2 connection (RealDictCursor rows).

    The caller owns the transaction. Long-running flows call commit() after
    each durable step so that progress survives a later failure.
    """

    def __init__(self, db_connection):
        self.db = db_connection

    def commit(self) -> None:
        self.db.commit()

    # -------------------------------------------------------------------------
    # Funnels
    # -------------------------------------------------------------------------

    def create_funnel(
        self, funnel_id: str, product_info: ProductInfo, pages: List[GeneratedPage]
    ) -> Funnel:
        """Insert a funnel row and its page shells. Returns the stored funnel."""
        with self.db.cursor() as cur:
            cur.execute(
                """
                INSERT INTO funnels (
                    id, product_name, product_type, description, price,
                    target_audience, unique_selling_points, tone, style,
                    image_urls, logo_url, image_contexts
                ) VALUES (%s, %s, %s, %s, %s, %s, %s, %s, %s, %s, %s, %s)
                """,
                (funnel_id, *self._product_values(product_info)),
            )
        for page in pages:
            self.insert_page(page)
        return self.get_funnel(funnel_id)

    def get_funnel(self, funnel_id: str) -> Optional[Funnel]:
        """Get a funnel with its step pages, logs and experiments."""
        with self.db.cursor() as cur:
            cur.execute(f"SELECT {_FUNNEL_COLUMNS} FROM funnels WHERE id = %s", (funnel_id,))
            row = cur.fetchone()
        if not row:
            return None
        return self._row_to_funnel(row)

    def list_funnels(self, include_hidden: bool = False) -> List[Funnel]:
        """List funnels newest first."""
        with self.db.cursor() as cur:
            if include_hidden:
                cur.execute(f"SELECT {_FUNNEL_COLUMNS} FROM funnels ORDER BY created_at DESC")
            else:
                cur.execute(
                    f"SELECT {_FUNNEL_COLUMNS} FROM funnels WHERE hidden = FALSE ORDER BY created_at DESC"
                )
            rows = cur.fetchall()
        return [self._row_to_funnel(row) for row in rows]

    def update_product_info(self, funnel_id: str, product_info: ProductInfo) -> None:
        with self.db.cursor() as cur:
            cur.execute(
                """
                UPDATE funnels SET
                    product_name = %s, product_type = %s, description = %s,
                    price = %s, target_audience = %s, unique_selling_points = %s,
                    tone = %s, style = %s, image_urls = %s, logo_url = %s,
                    image_contexts = %s
                WHERE id = %s
                """,
                (*self._product_values(product_info), funnel_id),
            )

    def set_hidden(self, funnel_id: str, hidden: bool) -> bool:
        """Hide or restore a funnel. Returns False when it does not exist."""
        with self.db.cursor() as cur:
            cur.execute("UPDATE funnels SET hidden = %s WHERE id = %s", (hidden, funnel_id))
            return cur.rowcount > 0

    # -------------------------------------------------------------------------
    # Pages
    # -------------------------------------------------------------------------

    def list_pages(self, funnel_id: str, include_variants: bool = False) -> List[GeneratedPage]:
        """Pages in step order. Variant rows are excluded unless asked for."""
        with self.db.cursor() as cur:
            if include_variants:
                cur.execute(
                    f"SELECT {_PAGE_COLUMNS} FROM funnel_pages WHERE funnel_id = %s ORDER BY page_order",
                    (funnel_id,),
                )
            else:
                cur.execute(
                    f"""
                    SELECT {_PAGE_COLUMNS} FROM funnel_pages
                    WHERE funnel_id = %s AND page_order < %s
                    ORDER BY page_order
                    """,
                    (funnel_id, VARIANT_PAGE_ORDER_BASE),
                )
            rows = cur.fetchall()
        return [self._row_to_page(row) for row in rows]

    def get_page(self, funnel_id: str, component_name: str) -> Optional[GeneratedPage]:
        with self.db.cursor() as cur:
            cur.execute(
                f"SELECT {_PAGE_COLUMNS} FROM funnel_pages WHERE funnel_id = %s AND component_name = %s",
                (funnel_id, component_name),
            )
            row = cur.fetchone()
        return self._row_to_page(row) if row else None

    def find_page(self, component_name: str) -> Optional[GeneratedPage]:
        """Look a page up by component name alone (serving path)."""
        with self.db.cursor() as cur:
            cur.execute(
                f"SELECT {_PAGE_COLUMNS} FROM funnel_pages WHERE component_name = %s LIMIT 1",
                (component_name,),
            )
            row = cur.fetchone()
        return self._row_to_page(row) if row else None

    def insert_page(self, page: GeneratedPage) -> None:
        """Insert a page row, replacing source and order when it already exists."""
        with self.db.cursor() as cur:
            cur.execute(
                """
                INSERT INTO funnel_pages (funnel_id, component_name, page_order, source_code, page_spec)
                VALUES (%s, %s, %s, %s, %s)
                ON CONFLICT (funnel_id, component_name) DO UPDATE SET
                    page_order = EXCLUDED.page_order,
                    source_code = EXCLUDED.source_code,
                    page_spec = EXCLUDED.page_spec,
                    generation_error = NULL,
                    updated_at = NOW()
                """,
                (
                    page.funnel_id,
                    page.component_name,
                    page.page_order,
                    page.source_code,
                    json.dumps(page.page_spec.model_dump(by_alias=True)) if page.page_spec else None,
                ),
            )

    def replace_pages(self, funnel_id: str, pages: List[GeneratedPage]) -> None:
        """Delete every page row of the funnel and insert the given shells."""
        with self.db.cursor() as cur:
            cur.execute("DELETE FROM funnel_pages WHERE funnel_id = %s", (funnel_id,))
        for page in pages:
            self.insert_page(page)

    def set_page_source(self, funnel_id: str, component_name: str, source_code: str) -> None:
        """Store generated source and clear any previous error for the page."""
        with self.db.cursor() as cur:
            cur.execute(
                """
                UPDATE funnel_pages
                SET source_code = %s, generation_error = NULL, updated_at = NOW()
                WHERE funnel_id = %s AND component_name = %s
                """,
                (source_code, funnel_id, component_name),
            )

    def set_page_error(self, funnel_id: str, component_name: str, error: str) -> None:
        with self.db.cursor() as cur:
            cur.execute(
                """
                UPDATE funnel_pages
                SET generation_error = %s, updated_at = NOW()
                WHERE funnel_id = %s AND component_name = %s
                """,
                (error, funnel_id, component_name),
            )

    # -------------------------------------------------------------------------
    # Events & KPIs
    # -------------------------------------------------------------------------

    def insert_event(self, event: FunnelEvent) -> None:
        """Append one event.

        Raises:
            NotFoundError: the event names an unknown funnel
        """
        try:
            self._insert_event(event)
        except pg_errors.ForeignKeyViolation as e:
            self.db.rollback()
            raise NotFoundError(f"Funnel '{event.funnel_id}' not found") from e

    def _insert_event(self, event: FunnelEvent) -> None:
        with self.db.cursor() as cur:
            cur.execute(
                """
                INSERT INTO funnel_events (
                    funnel_id, page_name, session_id, visitor_id, type, value, variant, created_at
                ) VALUES (%s, %s, %s, %s, %s, %s, %s, %s)
                """,
                (
                    event.funnel_id,
                    event.page_name,
                    event.session_id,
                    event.visitor_id,
                    event.type,
                    str(event.value) if event.value is not None else None,
                    event.variant,
                    event.timestamp,
                ),
            )

    def register_visitor(self, funnel_id: str, visitor_id: str) -> bool:
        """Record a visitor's first page view. True only for the first call.

        Concurrent first views from one visitor serialize on the primary key,
        so exactly one of them gets True.
        """
        with self.db.cursor() as cur:
            cur.execute(
                """
                INSERT INTO funnel_visitors (funnel_id, visitor_id)
                VALUES (%s, %s)
                ON CONFLICT (funnel_id, visitor_id) DO NOTHING
                """,
                (funnel_id, visitor_id),
            )
            return cur.rowcount == 1

    def list_events(
        self, funnel_id: str, limit: Optional[int] = None, newest_first: bool = False
    ) -> List[FunnelEvent]:
        """Events of a funnel ordered by timestamp."""
        direction = "DESC" if newest_first else "ASC"
        sql = f"""
            SELECT funnel_id, page_name, session_id, visitor_id, type, value, variant, created_at
            FROM funnel_events
            WHERE funnel_id = %s
            ORDER BY created_at {direction}, id {direction}
        """
        params: list = [funnel_id]
        if limit is not None:
            sql += " LIMIT %s"
            params.append(limit)
        with self.db.cursor() as cur:
            cur.execute(sql, params)
            rows = cur.fetchall()
        return [self._row_to_event(row) for row in rows]

    def increment_kpi(self, funnel_id: str, column: str) -> None:
        if column not in COUNTER_COLUMNS:
            raise ValueError(f"Unknown KPI counter: {column}")
        with self.db.cursor() as cur:
            cur.execute(
                f"UPDATE funnels SET {column} = {column} + 1 WHERE id = %s",
                (funnel_id,),
            )

    def apply_scroll_depth(self, funnel_id: str, value: float) -> None:
        """Fold one scroll sample into the running mean in a single statement."""
        with self.db.cursor() as cur:
            cur.execute(
                """
                UPDATE funnels
                SET avg_scroll_depth =
                    (avg_scroll_depth * (GREATEST(total_visitors, 1) - 1) + %s)
                    / GREATEST(total_visitors, 1)
                WHERE id = %s
                """,
                (value, funnel_id),
            )

    def refresh_conversion_rate(self, funnel_id: str) -> None:
        with self.db.cursor() as cur:
            cur.execute(
                """
                UPDATE funnels
                SET conversion_rate = CASE WHEN total_visitors > 0
                    THEN purchases::float / total_visitors ELSE 0 END
                WHERE id = %s
                """,
                (funnel_id,),
            )

    def get_kpis(self, funnel_id: str) -> Optional[FunnelKPIs]:
        with self.db.cursor() as cur:
            cur.execute(
                """
                SELECT total_visitors, page_views, cta_clicks, email_captures, purchases,
                       avg_scroll_depth, conversion_rate
                FROM funnels WHERE id = %s
                """,
                (funnel_id,),
            )
            row = cur.fetchone()
        return self._row_to_kpis(row) if row else None

    def save_kpis(self, funnel_id: str, kpis: FunnelKPIs) -> None:
        """Overwrite the KPI cache (used by full recomputation)."""
        with self.db.cursor() as cur:
            cur.execute(
                """
                UPDATE funnels SET
                    total_visitors = %s, page_views = %s, cta_clicks = %s,
                    email_captures = %s, purchases = %s,
                    avg_scroll_depth = %s, conversion_rate = %s
                WHERE id = %s
                """,
                (
                    kpis.total_visitors, kpis.page_views, kpis.cta_clicks,
                    kpis.email_captures, kpis.purchases,
                    kpis.avg_scroll_depth, kpis.conversion_rate,
                    funnel_id,
                ),
            )

    # -------------------------------------------------------------------------
    # Experiments
    # -------------------------------------------------------------------------

    def insert_experiment(self, experiment: Experiment) -> Experiment:
        """Insert a running experiment.

        Raises:
            ExperimentConflictError: another experiment is already running
                for the same page (partial unique index)
        """
        try:
            with self.db.cursor() as cur:
                cur.execute(
                    f"""
                    INSERT INTO experiments (
                        id, funnel_id, page_name, status, control_component, test_component,
                        traffic_split, significance_threshold, started_at
                    ) VALUES (%s, %s, %s, 'running', %s, %s, %s, %s, %s)
                    RETURNING {_EXPERIMENT_COLUMNS}
                    """,
                    (
                        experiment.id,
                        experiment.funnel_id,
                        experiment.page_name,
                        experiment.control_component,
                        experiment.test_component,
                        experiment.traffic_split,
                        experiment.significance_threshold,
                        experiment.started_at,
                    ),
                )
                row = cur.fetchone()
        except pg_errors.UniqueViolation as e:
            self.db.rollback()
            raise ExperimentConflictError(
                f"An experiment is already running for '{experiment.page_name}'"
            ) from e
        return self._row_to_experiment(row)

    def get_experiment(self, experiment_id: str) -> Optional[Experiment]:
        with self.db.cursor() as cur:
            cur.execute(f"SELECT {_EXPERIMENT_COLUMNS} FROM experiments WHERE id = %s", (experiment_id,))
            row = cur.fetchone()
        return self._row_to_experiment(row) if row else None

    def get_running_experiment(self, funnel_id: str, page_name: str) -> Optional[Experiment]:
        with self.db.cursor() as cur:
            cur.execute(
                f"""
                SELECT {_EXPERIMENT_COLUMNS} FROM experiments
                WHERE funnel_id = %s AND page_name = %s AND status = 'running'
                """,
                (funnel_id, page_name),
            )
            row = cur.fetchone()
        return self._row_to_experiment(row) if row else None

    def list_experiments(self, funnel_id: str) -> List[Experiment]:
        with self.db.cursor() as cur:
            cur.execute(
                f"SELECT {_EXPERIMENT_COLUMNS} FROM experiments WHERE funnel_id = %s ORDER BY started_at",
                (funnel_id,),
            )
            rows = cur.fetchall()
        return [self._row_to_experiment(row) for row in rows]

    def count_experiments(self, funnel_id: str, page_name: str) -> int:
        with self.db.cursor() as cur:
            cur.execute(
                "SELECT COUNT(*) as count FROM experiments WHERE funnel_id = %s AND page_name = %s",
                (funnel_id, page_name),
            )
            return cur.fetchone()["count"]

    def increment_arm(self, experiment_id: str, variant: str, metric: str) -> None:
        """Bump visitors or conversions of one arm."""
        column = _ARM_COLUMNS.get((variant, metric))
        if column is None:
            raise ValueError(f"Unknown arm counter: {variant}/{metric}")
        with self.db.cursor() as cur:
            cur.execute(
                f"UPDATE experiments SET {column} = {column} + 1 WHERE id = %s AND status = 'running'",
                (experiment_id,),
            )

    def mark_concluded(self, experiment_id: str, winner: str, concluded_at: datetime) -> bool:
        """Conclude a running experiment. Returns False if it was not running."""
        with self.db.cursor() as cur:
            cur.execute(
                """
                UPDATE experiments
                SET status = 'concluded', winner = %s, concluded_at = %s
                WHERE id = %s AND status = 'running'
                """,
                (winner, concluded_at, experiment_id),
            )
            return cur.rowcount > 0

    # -------------------------------------------------------------------------
    # Improvement logs
    # -------------------------------------------------------------------------

    def insert_log(self, funnel_id: str, log: ImprovementLog) -> None:
        with self.db.cursor() as cur:
            cur.execute(
                """
                INSERT INTO improvement_logs (funnel_id, version, page_name, reasoning, kpi_snapshot, created_at)
                VALUES (%s, %s, %s, %s, %s, %s)
                """,
                (
                    funnel_id,
                    log.version,
                    log.page_name,
                    log.reasoning,
                    json.dumps(log.kpi_snapshot.model_dump()),
                    log.timestamp,
                ),
            )

    def list_logs(self, funnel_id: str) -> List[ImprovementLog]:
        with self.db.cursor() as cur:
            cur.execute(
                """
                SELECT version, page_name, reasoning, kpi_snapshot, created_at
                FROM improvement_logs WHERE funnel_id = %s ORDER BY version, id
                """,
                (funnel_id,),
            )
            rows = cur.fetchall()
        return [
            ImprovementLog(
                version=row["version"],
                page_name=row["page_name"],
                reasoning=row["reasoning"],
                kpi_snapshot=FunnelKPIs(**self._parse_json(row["kpi_snapshot"], {})),
                timestamp=row["created_at"],
            )
            for row in rows
        ]

    # -------------------------------------------------------------------------
    # Row mapping
    # -------------------------------------------------------------------------

    def _product_values(self, info: ProductInfo) -> tuple:
        return (
            info.product_name,
            info.product_type,
            info.description,
            info.price,
            info.target_audience,
            json.dumps(info.unique_selling_points),
            info.tone,
            json.dumps(info.style.model_dump(by_alias=True)) if info.style else None,
            json.dumps(info.image_urls),
            info.logo_url,
            json.dumps([c.model_dump() for c in info.image_contexts]),
        )

    def _parse_json(self, raw, default):
        """JSONB arrives as dict/list from psycopg2, but tolerate text."""
        if raw is None:
            return default
        if isinstance(raw, str):
            try:
                return json.loads(raw)
            except json.JSONDecodeError:
                logger.warning("Failed to parse JSON column value")
                return default
        return raw

    def _row_to_funnel(self, row: dict) -> Funnel:
        funnel_id = row["id"]
        style_data = self._parse_json(row.get("style"), None)
        product_info = ProductInfo(
            product_name=row["product_name"],
            product_type=row["product_type"],
            description=row["description"],
            price=row["price"],
            target_audience=row["target_audience"],
            unique_selling_points=self._parse_json(row["unique_selling_points"], []),
            tone=row["tone"],
            style=FunnelStyle.model_validate(style_data) if style_data else None,
            image_urls=self._parse_json(row.get("image_urls"), []),
            logo_url=row.get("logo_url"),
            image_contexts=[
                ImageContext(**c) for c in self._parse_json(row.get("image_contexts"), [])
            ],
        )
        pages = self.list_pages(funnel_id)
        return Funnel(
            id=funnel_id,
            product_info=product_info,
            pages=[p.component_name for p in pages],
            pages_ready=sum(1 for p in pages if p.source_code is not None),
            kpis=self._row_to_kpis(row),
            logs=self.list_logs(funnel_id),
            experiments=self.list_experiments(funnel_id),
            hidden=row["hidden"],
            created_at=row["created_at"],
        )

    def _row_to_kpis(self, row: dict) -> FunnelKPIs:
        return FunnelKPIs(
            total_visitors=row["total_visitors"],
            page_views=row["page_views"],
            cta_clicks=row["cta_clicks"],
            email_captures=row["email_captures"],
            purchases=row["purchases"],
            avg_scroll_depth=float(row["avg_scroll_depth"] or 0),
            conversion_rate=float(row["conversion_rate"] or 0),
        )

    def _row_to_page(self, row: dict) -> GeneratedPage:
        spec_data = self._parse_json(row.get("page_spec"), None)
        return GeneratedPage(
            funnel_id=row["funnel_id"],
            component_name=row["component_name"],
            page_order=row["page_order"],
            source_code=row["source_code"],
            page_spec=PageSpec.model_validate(spec_data) if spec_data else None,
            generation_error=row.get("generation_error"),
        )

    def _row_to_event(self, row: dict) -> FunnelEvent:
        value = row["value"]
        if value is not None:
            try:
                value = float(value)
            except ValueError:
                pass
        return FunnelEvent(
            funnel_id=row["funnel_id"],
            page_name=row["page_name"],
            session_id=row["session_id"],
            visitor_id=row["visitor_id"],
            type=row["type"],
            value=value,
            variant=row["variant"],
            timestamp=row["created_at"],
        )

    def _row_to_experiment(self, row: dict) -> Experiment:
        return Experiment(
            id=row["id"],
            funnel_id=row["funnel_id"],
            page_name=row["page_name"],
            status=row["status"],
            control_component=row["control_component"],
            test_component=row["test_component"],
            traffic_split=float(row["traffic_split"]),
            significance_threshold=float(row["significance_threshold"]),
            control_stats=ArmStats(
                visitors=row["control_visitors"], conversions=row["control_conversions"]
            ),
            test_stats=ArmStats(visitors=row["test_visitors"], conversions=row["test_conversions"]),
            winner=row["winner"],
            started_at=row["started_at"],
            concluded_at=row["concluded_at"],
        )

