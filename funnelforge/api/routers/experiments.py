"""
Experiment API Endpoints

A/B experiment lifecycle: create, inspect significance, conclude, and
AI-assisted improvement and idea generation.
"""

import logging

from fastapi import APIRouter, Depends, HTTPException

from funnelforge.api.deps import (
    get_conclude_limiter,
    get_current_user,
    get_experiment_engine,
    get_funnel_store,
    get_improve_limiter,
)
from funnelforge.api.schemas.experiments import (
    ConcludeRequest,
    ConcludeResponse,
    CreateExperimentRequest,
    ExperimentIdeasResponse,
    ExperimentResponse,
    ExperimentResultResponse,
    ImproveRequest,
    ImproveResponse,
)
from funnelforge.api.schemas.funnels import FunnelIdRequest
from funnelforge.db import FunnelStore
from funnelforge.services.experiment_engine import ExperimentEngine, conversion_rate, evaluate
from funnelforge.services.rate_limiter import KeyedRateLimiter

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/funnel", tags=["experiments"])


@router.post("/experiment", response_model=ExperimentResponse, status_code=201)
def create_experiment(
    request: CreateExperimentRequest,
    user: str = Depends(get_current_user),
    store: FunnelStore = Depends(get_funnel_store),
    engine: ExperimentEngine = Depends(get_experiment_engine),
):
    """
    Start an experiment between two existing page components.

    Returns 409 if the page already has a running experiment.
    """
    for component in (request.control_component, request.test_component):
        page = store.get_page(request.funnel_id, component)
        if page is None or page.source_code is None:
            raise HTTPException(status_code=400, detail=f"Page '{component}' has no source code")

    experiment = engine.create_experiment(
        request.funnel_id,
        request.page_name,
        control_component=request.control_component,
        test_component=request.test_component,
        traffic_split=request.traffic_split,
        significance_threshold=request.significance_threshold,
    )
    return ExperimentResponse(experiment=experiment)


@router.get("/experiment/{experiment_id}", response_model=ExperimentResponse)
def get_experiment(
    experiment_id: str,
    store: FunnelStore = Depends(get_funnel_store),
):
    experiment = store.get_experiment(experiment_id)
    if not experiment:
        raise HTTPException(status_code=404, detail=f"Experiment '{experiment_id}' not found")
    return ExperimentResponse(experiment=experiment)


@router.get("/experiment/{experiment_id}/result", response_model=ExperimentResultResponse)
def get_experiment_result(
    experiment_id: str,
    store: FunnelStore = Depends(get_funnel_store),
):
    """Significance of the current arm stats and whether the winner may be promoted."""
    experiment = store.get_experiment(experiment_id)
    if not experiment:
        raise HTTPException(status_code=404, detail=f"Experiment '{experiment_id}' not found")

    result = evaluate(experiment)
    return ExperimentResultResponse(
        experiment_id=experiment.id,
        status=experiment.status,
        confidence=result.confidence,
        leader=result.leader,
        can_promote=result.can_promote,
        significance_threshold=experiment.significance_threshold,
        control_rate=conversion_rate(experiment.control_stats),
        test_rate=conversion_rate(experiment.test_stats),
    )


@router.post("/experiment/conclude", response_model=ConcludeResponse)
def conclude_experiment(
    request: ConcludeRequest,
    user: str = Depends(get_current_user),
    limiter: KeyedRateLimiter = Depends(get_conclude_limiter),
    engine: ExperimentEngine = Depends(get_experiment_engine),
):
    """
    Conclude an experiment.

    Below the significance threshold this needs force=true. When the test
    arm wins its source replaces the control page.
    """
    limiter.check(user)
    experiment = engine.conclude(request.experiment_id, request.winner, force=request.force)
    return ConcludeResponse(
        experiment_id=experiment.id,
        winner=experiment.winner,
        forced=request.force,
    )


@router.post("/improve", response_model=ImproveResponse)
def improve_page(
    request: ImproveRequest,
    user: str = Depends(get_current_user),
    limiter: KeyedRateLimiter = Depends(get_improve_limiter),
    engine: ExperimentEngine = Depends(get_experiment_engine),
):
    """Generate an improved variant of a page and start an experiment for it."""
    limiter.check(user)
    proposal = engine.propose_improvement(request.funnel_id, request.page_name)
    logger.info(f"User {user} started improvement experiment {proposal.experiment_id}")
    return ImproveResponse(
        page=proposal.page,
        test_variant=proposal.test_variant,
        experiment_id=proposal.experiment_id,
        reasoning=proposal.reasoning,
    )


@router.post("/experiment-ideas", response_model=ExperimentIdeasResponse)
def experiment_ideas(
    request: FunnelIdRequest,
    user: str = Depends(get_current_user),
    store: FunnelStore = Depends(get_funnel_store),
    engine: ExperimentEngine = Depends(get_experiment_engine),
):
    """Advisory experiment proposals. Nothing is applied."""
    funnel = store.get_funnel(request.funnel_id)
    if not funnel:
        raise HTTPException(status_code=404, detail=f"Funnel '{request.funnel_id}' not found")
    return ExperimentIdeasResponse(ideas=engine.suggest_ideas(funnel))
