"""
Funnel API Endpoints

Funnel creation from a brief, brief updates, resumable page generation,
image rehosting, listing and hide/restore.
"""

import logging

import anyio

from fastapi import APIRouter, Depends, HTTPException, Query

from funnelforge.api.deps import (
    get_brief_limiter,
    get_current_user,
    get_funnel_store,
    get_image_rehoster,
    get_orchestrator,
)
from funnelforge.api.schemas.funnels import (
    BriefUpdateRequest,
    BriefUpdateResponse,
    FunnelIdRequest,
    FunnelListResponse,
    FunnelResponse,
    GenerationProgressResponse,
    PageStatus,
    PageStatusResponse,
    RehostedImage,
    RehostImagesResponse,
    ReplaceImageRequest,
    ReplaceImageResponse,
)
from funnelforge.db import FunnelStore
from funnelforge.db.models import FunnelBrief
from funnelforge.services.brief_orchestrator import BriefOrchestrator
from funnelforge.services.image_rehost import ImageRehoster
from funnelforge.services.rate_limiter import KeyedRateLimiter

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/funnel", tags=["funnels"])


@router.post("/create", response_model=FunnelResponse, status_code=201)
def create_funnel(
    brief: FunnelBrief,
    user: str = Depends(get_current_user),
    orchestrator: BriefOrchestrator = Depends(get_orchestrator),
):
    """
    Create a funnel from a confirmed brief.

    Pages are created as pending shells; call /generate-all to fill them.
    """
    funnel = orchestrator.create_funnel(brief)
    logger.info(f"User {user} created funnel {funnel.id}")
    return FunnelResponse(funnel=funnel)


@router.post("/brief", response_model=BriefUpdateResponse)
def update_brief(
    request: BriefUpdateRequest,
    user: str = Depends(get_current_user),
    limiter: KeyedRateLimiter = Depends(get_brief_limiter),
    orchestrator: BriefOrchestrator = Depends(get_orchestrator),
):
    """
    Apply an edited brief to an existing funnel.

    When the page structure is unchanged only product and style fields are
    updated (no regeneration). Otherwise every page is reset to pending.
    """
    limiter.check(user)
    brief = FunnelBrief(
        product_info=request.product_info,
        page_specs=request.page_specs,
        design_notes=request.design_notes,
    )
    result = orchestrator.apply_brief(request.funnel_id, brief)
    return BriefUpdateResponse(
        funnel=result.funnel,
        regenerated=result.regenerated,
        images_rewritten=result.images_rewritten,
    )


@router.post("/generate-all", response_model=GenerationProgressResponse)
def generate_all(
    request: FunnelIdRequest,
    user: str = Depends(get_current_user),
    orchestrator: BriefOrchestrator = Depends(get_orchestrator),
):
    """
    Generate every pending page, in order.

    Safe to call repeatedly: pages that already have source are skipped.
    Returns 409 while another pass is running for the same funnel.
    """
    progress = orchestrator.generate_pending_pages(request.funnel_id)
    return GenerationProgressResponse.from_progress(progress)


@router.post("/generate-page", response_model=GenerationProgressResponse)
def generate_page(
    request: FunnelIdRequest,
    user: str = Depends(get_current_user),
    orchestrator: BriefOrchestrator = Depends(get_orchestrator),
):
    """Generate the next pending page only."""
    progress = orchestrator.generate_next_page(request.funnel_id)
    return GenerationProgressResponse.from_progress(progress)


@router.post("/replace-image", response_model=ReplaceImageResponse)
def replace_image(
    request: ReplaceImageRequest,
    user: str = Depends(get_current_user),
    store: FunnelStore = Depends(get_funnel_store),
    orchestrator: BriefOrchestrator = Depends(get_orchestrator),
):
    """Swap one image URL for another in every page of a funnel."""
    if request.old_url == request.new_url:
        raise HTTPException(status_code=400, detail="oldUrl and newUrl are identical")
    if store.get_funnel(request.funnel_id) is None:
        raise HTTPException(status_code=404, detail=f"Funnel '{request.funnel_id}' not found")

    updated = orchestrator.rewrite_images(request.funnel_id, {request.old_url: request.new_url})
    store.commit()
    return ReplaceImageResponse(pages_updated=updated)


@router.post("/rehost-images", response_model=RehostImagesResponse)
async def rehost_images(
    request: FunnelIdRequest,
    user: str = Depends(get_current_user),
    store: FunnelStore = Depends(get_funnel_store),
    orchestrator: BriefOrchestrator = Depends(get_orchestrator),
    rehoster: ImageRehoster = Depends(get_image_rehoster),
):
    """
    Copy the funnel's brief images into our object store.

    Images that cannot be fetched keep their original (https) URL. Page
    sources that already reference the old URLs are rewritten.
    """
    funnel = await anyio.to_thread.run_sync(lambda: store.get_funnel(request.funnel_id))
    if funnel is None:
        raise HTTPException(status_code=404, detail=f"Funnel '{request.funnel_id}' not found")

    results = await rehoster.rehost_all(funnel.product_info.image_urls, owner=request.funnel_id)
    updated = await anyio.to_thread.run_sync(
        lambda: orchestrator.replace_product_images(request.funnel_id, [r.url for r in results])
    )
    return RehostImagesResponse(
        funnel_id=request.funnel_id,
        images=[RehostedImage(original_url=r.original_url, url=r.url, error=r.error) for r in results],
        rehosted=sum(1 for r in results if r.rehosted),
        pages_updated=updated,
    )


@router.get("/list", response_model=FunnelListResponse)
def list_funnels(
    include_hidden: bool = Query(default=False),
    store: FunnelStore = Depends(get_funnel_store),
):
    """List funnels, newest first. Hidden funnels only on request."""
    funnels = store.list_funnels(include_hidden=include_hidden)
    return FunnelListResponse(funnels=funnels, total=len(funnels))


@router.post("/delete")
def hide_funnel(
    request: FunnelIdRequest,
    user: str = Depends(get_current_user),
    store: FunnelStore = Depends(get_funnel_store),
):
    """
    Hide a funnel from listings.

    Soft delete: pages, events and experiments are kept and /restore
    brings the funnel back.
    """
    if not store.set_hidden(request.funnel_id, True):
        raise HTTPException(status_code=404, detail=f"Funnel '{request.funnel_id}' not found")
    return {"status": "hidden", "funnel_id": request.funnel_id}


@router.post("/restore")
def restore_funnel(
    request: FunnelIdRequest,
    user: str = Depends(get_current_user),
    store: FunnelStore = Depends(get_funnel_store),
):
    if not store.set_hidden(request.funnel_id, False):
        raise HTTPException(status_code=404, detail=f"Funnel '{request.funnel_id}' not found")
    return {"status": "restored", "funnel_id": request.funnel_id}


@router.get("/{funnel_id}/pages", response_model=PageStatusResponse)
def get_page_status(
    funnel_id: str,
    store: FunnelStore = Depends(get_funnel_store),
):
    """Per-page readiness, including the last generation error of each page."""
    pages = store.list_pages(funnel_id)
    if not pages and store.get_funnel(funnel_id) is None:
        raise HTTPException(status_code=404, detail=f"Funnel '{funnel_id}' not found")
    return PageStatusResponse(
        funnel_id=funnel_id,
        pages=[
            PageStatus(
                component_name=p.component_name,
                page_order=p.page_order,
                ready=p.is_ready,
                generation_error=p.generation_error,
            )
            for p in pages
        ],
    )


@router.get("/{funnel_id}", response_model=FunnelResponse)
def get_funnel(
    funnel_id: str,
    store: FunnelStore = Depends(get_funnel_store),
):
    funnel = store.get_funnel(funnel_id)
    if not funnel:
        raise HTTPException(status_code=404, detail=f"Funnel '{funnel_id}' not found")
    return FunnelResponse(funnel=funnel)
