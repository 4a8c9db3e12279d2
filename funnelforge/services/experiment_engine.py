"""
Experiment Engine

Variant lifecycle and significance testing for page A/B experiments.

- At most one running experiment per (funnel, page)
- Two-proportion z-test over the per-arm stats TelemetryIngest maintains
- Conclusion (threshold-gated, or forced) plus an injectable promotion hook
- Improvement proposals: generate a test variant and open an experiment
- Advisory experiment ideas, filtered to pages that exist

Serve-time variant assignment lives here too (assign_variant) so the hash is
defined in exactly one place.
"""

import json
import logging
import math
import re
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Callable, List, Optional

from ..db.funnel_storage import VARIANT_PAGE_ORDER_BASE, FunnelStore
from ..db.models import (
    ArmStats,
    Experiment,
    ExperimentIdea,
    Funnel,
    GeneratedPage,
    ImprovementLog,
    Variant,
)
from ..errors import ExperimentConflictError, NotFoundError, ValidationError
from ..prompts import build_experiment_ideas_prompt
from .page_synthesizer import PageSynthesizer, strip_code_fences

logger = logging.getLogger(__name__)

DEFAULT_TRAFFIC_SPLIT = 0.5
DEFAULT_SIGNIFICANCE_THRESHOLD = 0.95
MIN_ARM_VISITORS = 2
MIN_VISITORS_FOR_IDEAS = 5
RECENT_EVENT_WINDOW = 100
IDEAS_MAX_TOKENS = 1500
ASSIGNMENT_BUCKETS = 1000

# Abramowitz & Stegun 7.1.26
_ERF_A = (0.254829592, -0.284496736, 1.421413741, -1.453152027, 1.061405429)
_ERF_P = 0.3275911


# =============================================================================
# Statistics
# =============================================================================


def normal_cdf(x: float) -> float:
    """Standard normal CDF via a rational erf approximation (|error| < 1.5e-7)."""
    sign = -1.0 if x < 0 else 1.0
    x = abs(x) / math.sqrt(2.0)
    t = 1.0 / (1.0 + _ERF_P * x)
    a1, a2, a3, a4, a5 = _ERF_A
    y = 1.0 - ((((a5 * t + a4) * t + a3) * t + a2) * t + a1) * t * math.exp(-x * x)
    return 0.5 * (1.0 + sign * y)


def significance(control: ArmStats, test: ArmStats) -> float:
    """
    Two-sided confidence that the arms' conversion rates differ.

    Degenerate inputs (an arm with fewer than 2 visitors, pooled rate of 0
    or 1, zero standard error) give exactly 0.0.
    """
    n1, n2 = control.visitors, test.visitors
    if n1 < MIN_ARM_VISITORS or n2 < MIN_ARM_VISITORS:
        return 0.0

    pooled = (control.conversions + test.conversions) / (n1 + n2)
    if pooled <= 0 or pooled >= 1:
        return 0.0

    se = math.sqrt(pooled * (1 - pooled) * (1 / n1 + 1 / n2))
    if se == 0:
        return 0.0

    z = abs(test.conversions / n2 - control.conversions / n1) / se
    confidence = 1 - 2 * (1 - normal_cdf(z))
    return max(0.0, min(1.0, confidence))


def conversion_rate(stats: ArmStats) -> float:
    return stats.conversions / stats.visitors if stats.visitors else 0.0


@dataclass
class ExperimentResult:
    confidence: float
    leader: Variant
    can_promote: bool


def evaluate(experiment: Experiment) -> ExperimentResult:
    confidence = significance(experiment.control_stats, experiment.test_stats)
    leader = (
        "test"
        if conversion_rate(experiment.test_stats) > conversion_rate(experiment.control_stats)
        else "control"
    )
    return ExperimentResult(
        confidence=confidence,
        leader=leader,
        can_promote=confidence >= experiment.significance_threshold,
    )


# =============================================================================
# Variant assignment
# =============================================================================


def string_hash(value: str) -> int:
    """32-bit shift-and-subtract hash over UTF-16 code units, absolute value."""
    h = 0
    data = value.encode("utf-16-le")
    for i in range(0, len(data), 2):
        unit = data[i] | (data[i + 1] << 8)
        h = ((h << 5) - h + unit) & 0xFFFFFFFF
    if h >= 0x80000000:
        h -= 0x100000000
    return abs(h)


def assign_variant(session_id: str, experiment: Experiment) -> Variant:
    """Stable per (session, experiment); bucket below the split serves control."""
    bucket = (string_hash(session_id + experiment.id) % ASSIGNMENT_BUCKETS) / ASSIGNMENT_BUCKETS
    return "control" if bucket < experiment.traffic_split else "test"


def rename_component(code: str, old_name: str, new_name: str) -> str:
    return re.sub(rf"\b{re.escape(old_name)}\b", new_name, code)


# =============================================================================
# Engine
# =============================================================================


@dataclass
class ImprovementProposal:
    page: str
    test_variant: str
    experiment_id: str
    reasoning: str


PromotionHook = Callable[[Experiment], None]


class ExperimentEngine:
    def __init__(
        self,
        store: FunnelStore,
        synthesizer: Optional[PageSynthesizer] = None,
        promote: Optional[PromotionHook] = None,
    ):
        self.store = store
        self._synthesizer = synthesizer
        self.promote = promote or self.promote_test_source

    @property
    def synthesizer(self) -> PageSynthesizer:
        if self._synthesizer is None:
            self._synthesizer = PageSynthesizer()
        return self._synthesizer

    # -------------------------------------------------------------------------
    # Lifecycle
    # -------------------------------------------------------------------------

    def create_experiment(
        self,
        funnel_id: str,
        page_name: str,
        control_component: str,
        test_component: str,
        traffic_split: float = DEFAULT_TRAFFIC_SPLIT,
        significance_threshold: float = DEFAULT_SIGNIFICANCE_THRESHOLD,
        experiment_id: Optional[str] = None,
    ) -> Experiment:
        """
        Open a running experiment for a page.

        Raises:
            ValidationError: split or threshold outside (0, 1)
            ExperimentConflictError: the page already has a running experiment
        """
        if not 0 < traffic_split < 1:
            raise ValidationError(f"traffic_split must be between 0 and 1, got {traffic_split}")
        if not 0 < significance_threshold < 1:
            raise ValidationError(
                f"significance_threshold must be between 0 and 1, got {significance_threshold}"
            )

        if self.store.get_running_experiment(funnel_id, page_name) is not None:
            raise ExperimentConflictError(
                f"An experiment is already running for '{page_name}'. Conclude it first."
            )

        if experiment_id is None:
            version = self.store.count_experiments(funnel_id, page_name) + 1
            experiment_id = f"{funnel_id}-{page_name}-v{version}"

        experiment = self.store.insert_experiment(
            Experiment(
                id=experiment_id,
                funnel_id=funnel_id,
                page_name=page_name,
                control_component=control_component,
                test_component=test_component,
                traffic_split=traffic_split,
                significance_threshold=significance_threshold,
            )
        )
        self.store.commit()
        logger.info(f"Started experiment {experiment.id}: {control_component} vs {test_component}")
        return experiment

    def get_result(self, experiment_id: str) -> ExperimentResult:
        return evaluate(self._require_experiment(experiment_id))

    def conclude(self, experiment_id: str, winner: str, force: bool = False) -> Experiment:
        """
        Stamp a winner on a running experiment and trigger promotion.

        Raises:
            NotFoundError: unknown experiment id
            ValidationError: bad winner, or below threshold without force
            ExperimentConflictError: already concluded
        """
        if winner not in ("control", "test"):
            raise ValidationError("Winner must be 'control' or 'test'")

        experiment = self._require_experiment(experiment_id)
        if experiment.status == "concluded":
            raise ExperimentConflictError(f"Experiment '{experiment_id}' already concluded")

        if not force:
            result = evaluate(experiment)
            if not result.can_promote:
                raise ValidationError(
                    f"Confidence {result.confidence:.3f} is below threshold "
                    f"{experiment.significance_threshold}; use force to conclude anyway"
                )

        concluded_at = datetime.now(timezone.utc)
        if not self.store.mark_concluded(experiment_id, winner, concluded_at):
            raise ExperimentConflictError(f"Experiment '{experiment_id}' already concluded")

        experiment = experiment.model_copy(
            update={"status": "concluded", "winner": winner, "concluded_at": concluded_at}
        )
        self.promote(experiment)
        self.store.commit()
        logger.info(f"Concluded experiment {experiment_id}: winner={winner}, forced={force}")
        return experiment

    def promote_test_source(self, experiment: Experiment) -> None:
        """Copy a winning test variant into the control page row."""
        if experiment.winner != "test":
            return
        test_page = self.store.get_page(experiment.funnel_id, experiment.test_component)
        if test_page is None or test_page.source_code is None:
            logger.warning(f"No test source to promote for experiment {experiment.id}")
            return
        code = rename_component(
            test_page.source_code, experiment.test_component, experiment.control_component
        )
        self.store.set_page_source(experiment.funnel_id, experiment.control_component, code)
        logger.info(f"Promoted {experiment.test_component} into {experiment.control_component}")

    # -------------------------------------------------------------------------
    # Improvement
    # -------------------------------------------------------------------------

    def propose_improvement(self, funnel_id: str, page_name: str) -> ImprovementProposal:
        """
        Generate an improved variant of a page and start testing it.

        Raises:
            NotFoundError: unknown funnel, or the page has no source
            ExperimentConflictError: the page already has a running experiment
        """
        funnel = self._require_funnel(funnel_id)
        if self.store.get_running_experiment(funnel_id, page_name) is not None:
            raise ExperimentConflictError(
                f"An experiment is already running for '{page_name}'. Conclude it first."
            )

        page = self.store.get_page(funnel_id, page_name)
        if page is None or page.source_code is None:
            raise NotFoundError(f"Page '{page_name}' source code not found")

        recent_events = self.store.list_events(funnel_id, limit=RECENT_EVENT_WINDOW, newest_first=True)
        version = self.store.count_experiments(funnel_id, page_name) + 1
        test_component = f"{page_name}_v{version}"

        improved = self.synthesizer.improve_page(
            page_name, page.source_code, funnel.kpis, recent_events, funnel.product_info, test_component
        )

        self.store.insert_log(
            funnel_id,
            ImprovementLog(
                version=len(funnel.logs) + 1,
                page_name=page_name,
                reasoning=improved.reasoning,
                kpi_snapshot=funnel.kpis,
            ),
        )
        self.store.insert_page(
            GeneratedPage(
                funnel_id=funnel_id,
                component_name=test_component,
                page_order=VARIANT_PAGE_ORDER_BASE + version,
                source_code=improved.code,
            )
        )
        experiment = self.create_experiment(
            funnel_id,
            page_name,
            control_component=page_name,
            test_component=test_component,
            experiment_id=f"{funnel_id}-{page_name}-v{version}",
        )
        return ImprovementProposal(
            page=page_name,
            test_variant=test_component,
            experiment_id=experiment.id,
            reasoning=improved.reasoning,
        )

    def suggest_ideas(self, funnel: Funnel) -> List[ExperimentIdea]:
        """Advisory proposals; [] for low-traffic funnels or unparseable output."""
        if funnel.kpis.total_visitors < MIN_VISITORS_FOR_IDEAS:
            return []

        recent_events = self.store.list_events(funnel.id, limit=RECENT_EVENT_WINDOW, newest_first=True)
        prompt = build_experiment_ideas_prompt(funnel.pages, funnel.kpis, recent_events)
        raw = self.synthesizer.fast_client.complete(prompt, max_tokens=IDEAS_MAX_TOKENS)
        return parse_ideas(raw, funnel.pages)

    # -------------------------------------------------------------------------
    # Helpers
    # -------------------------------------------------------------------------

    def _require_experiment(self, experiment_id: str) -> Experiment:
        experiment = self.store.get_experiment(experiment_id)
        if experiment is None:
            raise NotFoundError(f"Experiment '{experiment_id}' not found")
        return experiment

    def _require_funnel(self, funnel_id: str) -> Funnel:
        funnel = self.store.get_funnel(funnel_id)
        if funnel is None:
            raise NotFoundError(f"Funnel '{funnel_id}' not found")
        return funnel


def parse_ideas(raw: str, pages: List[str]) -> List[ExperimentIdea]:
    """Validate generated ideas; drop malformed entries and unknown pages."""
    try:
        data = json.loads(strip_code_fences(raw))
    except json.JSONDecodeError as e:
        logger.warning(f"Experiment ideas unparseable: {e}")
        return []
    if not isinstance(data, list):
        logger.warning("Experiment ideas response is not a JSON array")
        return []

    ideas = []
    for item in data:
        try:
            idea = ExperimentIdea.model_validate(item)
        except ValueError as e:
            logger.debug(f"Dropping malformed idea: {e}")
            continue
        if idea.page_name in pages:
            ideas.append(idea)
        else:
            logger.debug(f"Dropping idea for unknown page '{idea.page_name}'")
    return ideas
