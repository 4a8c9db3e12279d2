"""
Standalone Page Serving

GET /f/{component_name} returns the bundled HTML for one funnel page,
choosing the experiment arm for the visitor's session when the page has a
running experiment.
"""

import logging
import random
import string
from typing import Optional

from fastapi import APIRouter, Depends, Request
from fastapi.responses import HTMLResponse, PlainTextResponse

from funnelforge.api.deps import get_funnel_store
from funnelforge.config import API_BASE
from funnelforge.db import FunnelStore
from funnelforge.services.experiment_engine import assign_variant
from funnelforge.services.standalone_bundler import BundleInput, build_standalone_html

logger = logging.getLogger(__name__)

router = APIRouter(tags=["pages"])

SESSION_COOKIE = "funnel-session-id"
CACHE_CONTROL = "public, s-maxage=60, stale-while-revalidate=300"
# The arm depends on the session cookie, so shared caches must not store it
EXPERIMENT_CACHE_CONTROL = "private, no-store"


def new_session_id() -> str:
    return "".join(random.choices(string.ascii_lowercase + string.digits, k=8))


def api_base_for(request: Request) -> str:
    """Configured base URL, else derived from the forwarded request headers."""
    if API_BASE:
        return API_BASE
    proto = request.headers.get("x-forwarded-proto", "https")
    host = request.headers.get("host", "localhost:8000")
    return f"{proto}://{host}"


def next_page_url(page_names, current: str) -> Optional[str]:
    if current not in page_names:
        return None
    index = page_names.index(current)
    if index < len(page_names) - 1:
        return f"/f/{page_names[index + 1]}"
    return None


@router.get("/f/{component_name}", response_class=HTMLResponse)
def serve_page(
    component_name: str,
    request: Request,
    store: FunnelStore = Depends(get_funnel_store),
):
    page = store.find_page(component_name)
    if page is None or page.source_code is None:
        return PlainTextResponse("Page not found", status_code=404)

    funnel_id = page.funnel_id
    code = page.source_code
    variant = None

    session_id = request.cookies.get(SESSION_COOKIE)
    issue_cookie = session_id is None
    experiment = store.get_running_experiment(funnel_id, component_name)
    if experiment is not None:
        session_id = session_id or new_session_id()
        variant = assign_variant(session_id, experiment)
        if variant == "test":
            test_page = store.get_page(funnel_id, experiment.test_component)
            if test_page is not None and test_page.source_code:
                code = test_page.source_code
            else:
                logger.warning(f"Test arm {experiment.test_component} has no source, serving control")
                variant = "control"

    funnel = store.get_funnel(funnel_id)
    style = funnel.product_info.style if funnel else None
    html = build_standalone_html(
        BundleInput(
            component_code=code,
            funnel_id=funnel_id,
            # Both arms report under the experiment's page so arm stats line up
            page_name=component_name,
            api_base=api_base_for(request),
            next_url=next_page_url(funnel.pages if funnel else [], component_name),
            colors=style.colors if style else None,
            fonts=style.fonts if style else None,
            variant=variant,
        )
    )

    if experiment is None:
        headers = {"Cache-Control": CACHE_CONTROL}
    else:
        headers = {"Cache-Control": EXPERIMENT_CACHE_CONTROL, "Vary": "Cookie"}
    response = HTMLResponse(html, headers=headers)
    if issue_cookie and session_id:
        response.set_cookie(SESSION_COOKIE, session_id, path="/", samesite="lax")
    return response
