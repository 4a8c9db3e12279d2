"""
FunnelForge Client Tests

requests-based API client with a mocked session.
Run with: pytest tests/test_client.py -v
"""

from unittest.mock import Mock

import pytest
import requests

from funnelforge.client import FunnelAPIError, FunnelForgeClient
from funnelforge.errors import FetchConnectionError, FetchTimeoutError, GenerationBusyError

FUNNEL_ID = "acme-widget-x1y2z3"


def make_response(status_code=200, payload=None):
    response = Mock()
    response.status_code = status_code
    response.json.return_value = payload if payload is not None else {}
    response.text = str(payload)
    return response


def pages_payload(ready):
    return {
        "funnel_id": FUNNEL_ID,
        "pages": [
            {"component_name": f"Page{i}", "page_order": i, "ready": i < ready, "generation_error": None}
            for i in range(3)
        ],
    }


@pytest.fixture
def session():
    return Mock()


@pytest.fixture
def client(session):
    return FunnelForgeClient(base_url="https://funnels.example.com/", user_id="user-1", session=session)


class TestRequests:
    def test_generate_all_parses_progress(self, client, session):
        session.request.return_value = make_response(payload={
            "funnel_id": FUNNEL_ID,
            "pages_ready": 2,
            "total_pages": 3,
            "generated": 1,
            "complete": False,
            "error": "Upstream timed out",
            "errors": [{"page": "AcmeWidgetThankYou", "error": "Upstream timed out"}],
        })

        progress = client.generate_all(FUNNEL_ID)

        assert progress.pages_ready == 2
        assert progress.last_error == "Upstream timed out"
        assert progress.errors[0].page == "AcmeWidgetThankYou"

        method, url = session.request.call_args[0]
        kwargs = session.request.call_args[1]
        assert method == "POST"
        assert url == "https://funnels.example.com/api/funnel/generate-all"
        assert kwargs["headers"] == {"X-User-Id": "user-1"}
        assert kwargs["json"] == {"funnelId": FUNNEL_ID}

    def test_conflict_means_busy(self, client, session):
        session.request.return_value = make_response(409, {"detail": "busy"})
        with pytest.raises(GenerationBusyError):
            client.generate_page(FUNNEL_ID)

    def test_error_detail_surfaced(self, client, session):
        session.request.return_value = make_response(404, {"detail": "Funnel 'x' not found"})
        with pytest.raises(FunnelAPIError) as exc_info:
            client.get_funnel("x")
        assert exc_info.value.status == 404
        assert exc_info.value.detail == "Funnel 'x' not found"

    def test_timeout_and_connection_errors_are_distinct(self, client, session):
        session.request.side_effect = requests.Timeout("slow")
        with pytest.raises(FetchTimeoutError):
            client.get_funnel(FUNNEL_ID)

        session.request.side_effect = requests.ConnectionError("refused")
        with pytest.raises(FetchConnectionError):
            client.get_funnel(FUNNEL_ID)

    def test_get_progress(self, client, session):
        payload = pages_payload(ready=1)
        payload["pages"][1]["generation_error"] = "Generated page could not be parsed"
        session.request.return_value = make_response(payload=payload)

        progress = client.get_progress(FUNNEL_ID)

        assert (progress.pages_ready, progress.total_pages) == (1, 3)
        assert progress.last_error == "Generated page could not be parsed"


class TestWaitForGeneration:
    def test_polls_until_complete(self, client, session):
        feed = iter([pages_payload(1), pages_payload(2), pages_payload(3)])

        def respond(method, url, **kwargs):
            if url.endswith("/generate-all"):
                return make_response(payload={"funnel_id": FUNNEL_ID, "pages_ready": 1, "total_pages": 3})
            return make_response(payload=next(feed))

        session.request.side_effect = respond
        seen = []

        progress = client.wait_for_generation(
            FUNNEL_ID, on_progress=seen.append, interval=0, sleep=lambda s: None
        )

        assert progress.complete
        assert [p.pages_ready for p in seen] == [2, 3]
