"""Pydantic models for funnel entities."""

from datetime import datetime, timezone
from typing import List, Literal, Optional, Union

from pydantic import BaseModel, ConfigDict, Field, field_validator

ProductType = Literal["physical", "digital", "service", "saas"]

Tone = Literal["professional", "casual", "urgent", "luxury"]

EventType = Literal[
    "page_view", "cta_click", "scroll_depth",
    "email_capture", "purchase", "bounce",
]

Variant = Literal["control", "test"]

ExperimentStatus = Literal["running", "concluded"]

# Legacy page types for funnels created without a brief
PageType = Literal["landing", "checkout", "thankyou"]

SessionOutcome = Literal["converted", "engaged", "bounced"]


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class CamelModel(BaseModel):
    """Accepts both camelCase wire names and snake_case field names."""

    model_config = ConfigDict(populate_by_name=True)


# -----------------------------------------------------------------------------
# Product & style
# -----------------------------------------------------------------------------


class FunnelColors(CamelModel):
    """Brand palette. Mapped onto the leaf-* design tokens at bundle time."""

    primary: str
    secondary: str
    accent: str
    background: str
    dark: str


class FunnelFonts(CamelModel):
    heading: str = "system-ui"
    body: str = "system-ui"


class FunnelStyle(CamelModel):
    colors: FunnelColors
    fonts: FunnelFonts = Field(default_factory=FunnelFonts)
    style_notes: str = Field(default="", alias="styleNotes")


class ImageContext(CamelModel):
    url: str
    context: str


class ProductInfo(CamelModel):
    """Product descriptor supplied by the brief."""

    product_name: str = Field(alias="productName")
    product_type: ProductType = Field(default="physical", alias="productType")
    description: str
    price: str = ""
    target_audience: str = Field(default="", alias="targetAudience")
    unique_selling_points: List[str] = Field(default_factory=list, alias="uniqueSellingPoints")
    tone: Tone = "professional"
    style: Optional[FunnelStyle] = None
    image_urls: List[str] = Field(default_factory=list, alias="imageUrls")
    logo_url: Optional[str] = Field(default=None, alias="logoUrl")
    image_contexts: List[ImageContext] = Field(default_factory=list, alias="imageContexts")

    @field_validator("product_name")
    @classmethod
    def product_name_not_blank(cls, v: str) -> str:
        if not v.strip():
            raise ValueError("productName must not be blank")
        return v


# -----------------------------------------------------------------------------
# Brief & pages
# -----------------------------------------------------------------------------


class PageSpec(CamelModel):
    """One page of a brief."""

    name: str
    component_suffix: str = Field(alias="componentSuffix")
    description: str = ""
    has_checkout: bool = Field(default=False, alias="hasCheckout")

    @field_validator("component_suffix")
    @classmethod
    def suffix_is_pascal_case(cls, v: str) -> str:
        if not v or not v[0].isupper() or not v.isalnum():
            raise ValueError(f"componentSuffix must be PascalCase alphanumerics, got '{v}'")
        return v


class FunnelBrief(CamelModel):
    product_info: ProductInfo = Field(alias="productInfo")
    page_specs: List[PageSpec] = Field(default_factory=list, alias="pageSpecs")
    design_notes: str = Field(default="", alias="designNotes")


class GeneratedPage(BaseModel):
    """A funnel page row. Null source_code means the page is still pending."""

    funnel_id: str
    component_name: str
    page_order: int
    source_code: Optional[str] = None
    page_spec: Optional[PageSpec] = None
    generation_error: Optional[str] = None

    @property
    def is_ready(self) -> bool:
        return self.source_code is not None


# -----------------------------------------------------------------------------
# Telemetry
# -----------------------------------------------------------------------------


class FunnelEvent(CamelModel):
    """One telemetry event posted by a bundled page. Append-only."""

    funnel_id: str = Field(alias="funnelId")
    page_name: str = Field(default="", alias="pageName")
    session_id: str = Field(alias="sessionId")
    visitor_id: Optional[str] = Field(default=None, alias="visitorId")
    type: EventType
    value: Optional[Union[float, str]] = None
    variant: Optional[Variant] = None
    timestamp: datetime = Field(default_factory=_utcnow)

    @property
    def numeric_value(self) -> Optional[float]:
        """Value as a number, or None when absent or non-numeric."""
        if self.value is None:
            return None
        try:
            return float(self.value)
        except (TypeError, ValueError):
            return None


class FunnelKPIs(BaseModel):
    """Denormalized per-funnel counters. A cache over the event log."""

    total_visitors: int = 0
    page_views: int = 0
    cta_clicks: int = 0
    email_captures: int = 0
    purchases: int = 0
    avg_scroll_depth: float = 0.0
    conversion_rate: float = 0.0


# -----------------------------------------------------------------------------
# Experiments & logs
# -----------------------------------------------------------------------------


class ArmStats(BaseModel):
    visitors: int = 0
    conversions: int = 0


class Experiment(BaseModel):
    id: str
    funnel_id: str
    page_name: str
    status: ExperimentStatus = "running"
    control_component: str
    test_component: str
    traffic_split: float = 0.5
    significance_threshold: float = 0.95
    control_stats: ArmStats = Field(default_factory=ArmStats)
    test_stats: ArmStats = Field(default_factory=ArmStats)
    winner: Optional[Variant] = None
    started_at: datetime = Field(default_factory=_utcnow)
    concluded_at: Optional[datetime] = None


class ImprovementLog(BaseModel):
    """Audit trail entry explaining why a page changed. Append-only."""

    version: int
    page_name: str
    reasoning: str
    kpi_snapshot: FunnelKPIs
    timestamp: datetime = Field(default_factory=_utcnow)


class ExperimentIdea(CamelModel):
    """Advisory proposal. Never applied automatically."""

    page_name: str = Field(alias="pageName")
    title: str
    description: str = ""
    target_metric: str = Field(default="", alias="targetMetric")
    reasoning: str = ""


# -----------------------------------------------------------------------------
# Funnel
# -----------------------------------------------------------------------------


class Funnel(BaseModel):
    id: str
    product_info: ProductInfo
    pages: List[str] = Field(default_factory=list)  # component names in step order
    pages_ready: int = 0
    kpis: FunnelKPIs = Field(default_factory=FunnelKPIs)
    logs: List[ImprovementLog] = Field(default_factory=list)
    experiments: List[Experiment] = Field(default_factory=list)
    hidden: bool = False
    created_at: datetime = Field(default_factory=_utcnow)
