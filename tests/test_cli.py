"""
CLI Tests

Argument parsing and command behavior with storage patched out.
Run with: pytest tests/test_cli.py -v
"""

import json
from unittest.mock import MagicMock, patch

import pytest

from funnelforge import cli
from funnelforge.db.models import GeneratedPage, ProductInfo

FUNNEL_ID = "acme-widget-x1y2z3"


class TestParser:
    def test_significance_args(self):
        args = cli.build_parser().parse_args(["significance", "100", "10", "100", "25", "-t", "0.9"])
        assert (args.control_visitors, args.test_conversions) == (100, 25)
        assert args.threshold == 0.9
        assert args.func is cli.cmd_significance

    def test_bundle_requires_output(self):
        with pytest.raises(SystemExit):
            cli.build_parser().parse_args(["bundle", "AcmeWidgetLanding"])

    def test_no_command_prints_help(self, capsys):
        assert cli.main([]) == 0
        assert "funnelforge" in capsys.readouterr().out


class TestSignificance:
    def test_json_output(self, capsys):
        assert cli.main(["significance", "1000", "50", "1000", "80", "--json"]) == 0
        result = json.loads(capsys.readouterr().out)
        assert result["significant"] is True
        assert result["confidence"] > 0.99

    def test_degenerate_counts(self, capsys):
        cli.main(["significance", "1", "0", "1", "1"])
        assert "Confidence: 0.0000 (not significant" in capsys.readouterr().out


class TestBundle:
    @pytest.fixture
    def patched_store(self, store, brand_style):
        store.create_funnel(
            FUNNEL_ID,
            ProductInfo(productName="Acme Widget", description="A widget", style=brand_style),
            [
                GeneratedPage(
                    funnel_id=FUNNEL_ID,
                    component_name=name,
                    page_order=i,
                    source_code=f"export default function {name}() {{ return null; }}" if i == 0 else None,
                )
                for i, name in enumerate(["AcmeWidgetLanding", "AcmeWidgetCheckout"])
            ],
        )
        with patch.object(cli, "get_connection", return_value=MagicMock()), \
                patch.object(cli, "FunnelStore", return_value=store):
            yield store

    def test_writes_html(self, patched_store, tmp_path, capsys):
        output = tmp_path / "landing.html"

        code = cli.main(["bundle", "AcmeWidgetLanding", "-o", str(output), "--variant", "test"])

        assert code == 0
        html = output.read_text(encoding="utf-8")
        assert html.startswith("<!DOCTYPE html>")
        assert "400: \"#ff6600\"" in html
        assert "Wrote" in capsys.readouterr().out

    def test_pending_page(self, patched_store, tmp_path):
        output = tmp_path / "checkout.html"
        assert cli.main(["bundle", "AcmeWidgetCheckout", "-o", str(output)]) == 1
        assert not output.exists()


class TestGenerate:
    def test_funnel_errors_exit_nonzero(self, store, capsys):
        with patch.object(cli, "get_connection", return_value=MagicMock()), \
                patch.object(cli, "FunnelStore", return_value=store):
            assert cli.main(["generate", "missing-abc123"]) == 1
        assert "not found" in capsys.readouterr().err
