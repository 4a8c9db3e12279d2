"""
Experiment API Schemas
"""

from typing import List

from pydantic import BaseModel, Field

from funnelforge.db.models import CamelModel, Experiment, ExperimentIdea, Variant


class CreateExperimentRequest(CamelModel):
    funnel_id: str = Field(alias="funnelId")
    page_name: str = Field(alias="pageName")
    control_component: str = Field(alias="controlComponent")
    test_component: str = Field(alias="testComponent")
    traffic_split: float = Field(default=0.5, alias="trafficSplit")
    significance_threshold: float = Field(default=0.95, alias="significanceThreshold")


class ConcludeRequest(CamelModel):
    experiment_id: str = Field(alias="experimentId")
    winner: str
    force: bool = False


class ImproveRequest(CamelModel):
    funnel_id: str = Field(alias="funnelId")
    page_name: str = Field(alias="pageName")


class ExperimentResponse(BaseModel):
    experiment: Experiment


class ExperimentResultResponse(BaseModel):
    experiment_id: str
    status: str
    confidence: float
    leader: Variant
    can_promote: bool
    significance_threshold: float
    control_rate: float
    test_rate: float


class ConcludeResponse(BaseModel):
    status: str = "ok"
    experiment_id: str
    winner: Variant
    forced: bool


class ImproveResponse(BaseModel):
    page: str
    test_variant: str
    experiment_id: str
    reasoning: str


class ExperimentIdeasResponse(BaseModel):
    ideas: List[ExperimentIdea]
