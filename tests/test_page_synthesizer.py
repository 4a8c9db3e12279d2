"""
Page Synthesizer Tests

Parsing of generated output, the single repair round-trip, style
generation and improvement variants. The generation client is mocked.
Run with: pytest tests/test_page_synthesizer.py -v
"""

import json
from unittest.mock import Mock

import pytest

from funnelforge.db.models import FunnelKPIs, PageSpec, ProductInfo
from funnelforge.errors import MalformedOutputError
from funnelforge.services.page_synthesizer import (
    ParsedOk,
    ParseFailed,
    PageSynthesizer,
    parse_generated_page,
    strip_code_fences,
)


def page_json(name="AcmeWidgetLanding", code="export default function AcmeWidgetLanding() {}", **extra):
    return json.dumps({"componentName": name, "code": code, **extra})


@pytest.fixture
def product():
    return ProductInfo(productName="Acme Widget", description="A widget", price="$49")


@pytest.fixture
def client():
    return Mock()


@pytest.fixture
def fast_client():
    return Mock()


@pytest.fixture
def synth(client, fast_client):
    return PageSynthesizer(client=client, fast_client=fast_client)


class TestParsing:
    def test_strip_fences(self):
        assert strip_code_fences('```json\n{"a": 1}\n```') == '{"a": 1}'
        assert strip_code_fences('```\n{"a": 1}```') == '{"a": 1}'

    def test_valid_page(self):
        result = parse_generated_page(page_json(reasoning="Clearer CTA"))
        assert isinstance(result, ParsedOk)
        assert result.component_name == "AcmeWidgetLanding"
        assert result.reasoning == "Clearer CTA"

    def test_fenced_page(self):
        assert isinstance(parse_generated_page(f"```json\n{page_json()}\n```"), ParsedOk)

    def test_truncated_output(self):
        raw = page_json()[:-10]
        result = parse_generated_page(raw)
        assert isinstance(result, ParseFailed)
        assert result.raw == raw

    @pytest.mark.parametrize("raw", [
        json.dumps({"code": "x"}),
        json.dumps({"componentName": "A", "code": "   "}),
        json.dumps({"componentName": 3, "code": "x"}),
        json.dumps(["not", "an", "object"]),
    ])
    def test_missing_or_empty_fields(self, raw):
        assert isinstance(parse_generated_page(raw), ParseFailed)


class TestSynthesizePage:
    def test_spec_page(self, synth, client, product):
        client.complete.return_value = page_json()
        spec = PageSpec(name="Landing", componentSuffix="Landing", description="Hero and CTA")

        result = synth.synthesize_page(product, "AcmeWidgetLanding", page_spec=spec, design_notes="Bold")

        assert result.code.startswith("// @ts-nocheck\n")
        prompt = client.complete.call_args[0][0]
        assert "AcmeWidgetLanding" in prompt
        assert client.complete.call_count == 1

    def test_existing_nocheck_marker_not_duplicated(self, synth, client, product):
        client.complete.return_value = page_json(code="// @ts-nocheck\nexport default function A() {}")
        result = synth.synthesize_page(product, "AcmeWidgetLanding", page_type="landing")
        assert result.code.count("@ts-nocheck") == 1

    def test_repair_after_truncation(self, synth, client, product):
        client.complete.side_effect = [page_json()[:-20], page_json()]

        result = synth.synthesize_page(product, "AcmeWidgetLanding", page_type="landing")

        assert result.component_name == "AcmeWidgetLanding"
        assert client.complete.call_count == 2

    def test_second_parse_failure_is_fatal(self, synth, client, product):
        client.complete.side_effect = ["{not json", "{still not json"]

        with pytest.raises(MalformedOutputError) as exc_info:
            synth.synthesize_page(product, "AcmeWidgetLanding", page_type="landing")

        assert exc_info.value.raw_tail == "{still not json"
        assert client.complete.call_count == 2

    def test_no_spec_or_type(self, synth, product):
        with pytest.raises(ValueError):
            synth.synthesize_page(product, "AcmeWidgetLanding")


class TestStyle:
    def test_generate_style(self, synth, fast_client, product):
        fast_client.complete.return_value = json.dumps({
            "colors": {
                "primary": "#ff6600", "secondary": "#003366", "accent": "#ffcc00",
                "background": "#fff8f0", "dark": "#111111",
            },
            "fonts": {"heading": "Playfair Display", "body": "Inter"},
            "styleNotes": "Warm",
        })

        style = synth.generate_style(product)

        assert style.colors.primary == "#ff6600"
        assert style.style_notes == "Warm"

    def test_invalid_style(self, synth, fast_client, product):
        fast_client.complete.return_value = json.dumps({"colors": {"primary": "#fff"}})
        with pytest.raises(MalformedOutputError):
            synth.generate_style(product)


class TestImprovePage:
    def test_variant_renamed_to_test_component(self, synth, client, product):
        client.complete.return_value = page_json(name="Whatever", reasoning="Shorter headline")

        result = synth.improve_page(
            "AcmeWidgetLanding", "export default function AcmeWidgetLanding() {}",
            FunnelKPIs(total_visitors=10), [], product, "AcmeWidgetLanding_v1",
        )

        assert result.component_name == "AcmeWidgetLanding_v1"
        assert result.reasoning == "Shorter headline"
        assert result.code.startswith("// @ts-nocheck")
