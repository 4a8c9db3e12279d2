"""
FunnelForge HTTP client.

Small requests-based client for driving a remote FunnelForge API: trigger
generation, read progress, and wait for a funnel to finish generating with
bounded patience.
"""

import logging
import os
from typing import Callable, Optional

import requests

from .errors import FetchConnectionError, FetchTimeoutError, FunnelError, GenerationBusyError
from .services.brief_orchestrator import GenerationProgress, PageFailure
from .services.generation_poller import GenerationPoller

logger = logging.getLogger(__name__)

DEFAULT_TIMEOUT = 30


class FunnelAPIError(FunnelError):
    """Non-success response from the API."""

    def __init__(self, status: int, detail: str):
        super().__init__(f"API error {status}: {detail}")
        self.status = status
        self.detail = detail


class FunnelForgeClient:
    def __init__(
        self,
        base_url: Optional[str] = None,
        user_id: Optional[str] = None,
        timeout: float = DEFAULT_TIMEOUT,
        session: Optional[requests.Session] = None,
    ):
        self.base_url = (base_url or os.getenv("FUNNEL_API_BASE") or "http://localhost:8000").rstrip("/")
        self.user_id = user_id or os.getenv("FUNNEL_USER_ID", "cli")
        self.timeout = timeout
        self.session = session or requests.Session()

    def _request(self, method: str, path: str, **kwargs) -> dict:
        url = f"{self.base_url}{path}"
        headers = {"X-User-Id": self.user_id}
        try:
            response = self.session.request(method, url, headers=headers, timeout=self.timeout, **kwargs)
        except requests.Timeout as e:
            raise FetchTimeoutError(url, self.timeout) from e
        except requests.RequestException as e:
            raise FetchConnectionError(url, str(e)) from e

        if response.status_code >= 400:
            try:
                detail = response.json().get("detail", response.text)
            except ValueError:
                detail = response.text
            raise FunnelAPIError(response.status_code, str(detail))
        return response.json()

    # -------------------------------------------------------------------------
    # Generation
    # -------------------------------------------------------------------------

    def generate_all(self, funnel_id: str) -> GenerationProgress:
        return self._generate("/api/funnel/generate-all", funnel_id)

    def generate_page(self, funnel_id: str) -> GenerationProgress:
        return self._generate("/api/funnel/generate-page", funnel_id)

    def _generate(self, path: str, funnel_id: str) -> GenerationProgress:
        try:
            data = self._request("POST", path, json={"funnelId": funnel_id})
        except FunnelAPIError as e:
            if e.status == 409:
                raise GenerationBusyError(funnel_id) from e
            raise
        return _progress_from_response(data)

    def get_progress(self, funnel_id: str) -> GenerationProgress:
        data = self._request("GET", f"/api/funnel/{funnel_id}/pages")
        pages = data["pages"]
        return GenerationProgress(
            funnel_id=funnel_id,
            pages_ready=sum(1 for p in pages if p["ready"]),
            total_pages=len(pages),
            last_error=next((p["generation_error"] for p in pages if p.get("generation_error")), None),
        )

    def wait_for_generation(
        self,
        funnel_id: str,
        on_progress: Optional[Callable[[GenerationProgress], None]] = None,
        **poller_options,
    ) -> GenerationProgress:
        """Trigger generation and poll until every page is ready.

        Raises:
            GenerationStalledError: no progress after the allowed re-triggers
        """
        poller = GenerationPoller(
            trigger=lambda: self.generate_all(funnel_id),
            fetch_progress=lambda: self.get_progress(funnel_id),
            **poller_options,
        )
        return poller.run(on_progress=on_progress)

    # -------------------------------------------------------------------------
    # Reads
    # -------------------------------------------------------------------------

    def get_funnel(self, funnel_id: str) -> dict:
        return self._request("GET", f"/api/funnel/{funnel_id}")["funnel"]

    def get_experiment_result(self, experiment_id: str) -> dict:
        return self._request("GET", f"/api/funnel/experiment/{experiment_id}/result")


def _progress_from_response(data: dict) -> GenerationProgress:
    return GenerationProgress(
        funnel_id=data["funnel_id"],
        pages_ready=data["pages_ready"],
        total_pages=data["total_pages"],
        generated=data.get("generated", 0),
        last_error=data.get("error"),
        errors=[PageFailure(page=e["page"], error=e["error"]) for e in data.get("errors", [])],
    )
