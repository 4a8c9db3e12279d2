"""
Funnel API Schemas

Request and response models for funnel creation, brief updates and
page generation.
"""

from typing import List, Optional

from pydantic import BaseModel, Field

from funnelforge.db.models import CamelModel, Funnel, FunnelBrief
from funnelforge.services.brief_orchestrator import GenerationProgress


class FunnelIdRequest(CamelModel):
    funnel_id: str = Field(alias="funnelId")


class BriefUpdateRequest(FunnelBrief):
    """A brief addressed to an existing funnel."""

    funnel_id: str = Field(alias="funnelId")


class ReplaceImageRequest(CamelModel):
    funnel_id: str = Field(alias="funnelId")
    old_url: str = Field(alias="oldUrl")
    new_url: str = Field(alias="newUrl")


class FunnelResponse(BaseModel):
    funnel: Funnel


class FunnelListResponse(BaseModel):
    funnels: List[Funnel]
    total: int


class BriefUpdateResponse(BaseModel):
    funnel: Funnel
    regenerated: bool
    images_rewritten: int


class ReplaceImageResponse(BaseModel):
    status: str = "ok"
    pages_updated: int


class PageStatus(BaseModel):
    component_name: str
    page_order: int
    ready: bool
    generation_error: Optional[str] = None


class PageStatusResponse(BaseModel):
    funnel_id: str
    pages: List[PageStatus]


class PageFailureItem(BaseModel):
    page: str
    error: str


class GenerationProgressResponse(BaseModel):
    """
    Progress of a generation pass.

    `error` carries the last upstream error verbatim so callers can show
    why a pass stopped.
    """

    funnel_id: str
    pages_ready: int
    total_pages: int
    generated: int = 0
    complete: bool = False
    error: Optional[str] = None
    errors: List[PageFailureItem] = Field(default_factory=list)

    @classmethod
    def from_progress(cls, progress: GenerationProgress) -> "GenerationProgressResponse":
        return cls(
            funnel_id=progress.funnel_id,
            pages_ready=progress.pages_ready,
            total_pages=progress.total_pages,
            generated=progress.generated,
            complete=progress.complete,
            error=progress.last_error,
            errors=[PageFailureItem(page=f.page, error=f.error) for f in progress.errors],
        )


class RehostedImage(BaseModel):
    original_url: str
    url: str
    error: Optional[str] = None


class RehostImagesResponse(BaseModel):
    funnel_id: str
    images: List[RehostedImage]
    rehosted: int
    pages_updated: int
