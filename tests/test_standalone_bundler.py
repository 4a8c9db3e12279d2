"""
Standalone Bundler Tests

Source sanitizing, script assembly and the rendered HTML document.
Run with: pytest tests/test_standalone_bundler.py -v
"""

import base64
import re

from funnelforge.db.models import FunnelColors, FunnelFonts
from funnelforge.services.standalone_bundler import (
    BundleInput,
    assemble_script,
    build_standalone_html,
    font_families,
    leaf_palette,
    sanitize_for_standalone,
    script_json,
)


COMPONENT = '''// @ts-nocheck
"use client";
import React, { useState } from 'react';
import './styles.css';
import FakeCheckout from '@/components/FakeCheckout';

export default function AcmeWidgetLanding({ onEvent, nextUrl }) {
  const [open, setOpen] = useState(false);
  return <button onClick={() => onEvent("cta_click")}>Buy</button>;
}
'''


def decoded_script(html: str) -> str:
    encoded = re.search(r'atob\("([A-Za-z0-9+/=]+)"\)', html).group(1)
    return base64.b64decode(encoded).decode("utf-8")


def bundle(**overrides) -> BundleInput:
    values = dict(
        component_code=COMPONENT,
        funnel_id="acme-widget-x1y2z3",
        page_name="AcmeWidgetLanding",
        api_base="https://funnels.example.com/",
        next_url="/f/AcmeWidgetCheckout",
    )
    values.update(overrides)
    return BundleInput(**values)


class TestSanitize:
    def test_strips_directives_and_imports(self):
        code = sanitize_for_standalone(COMPONENT)

        assert "use client" not in code
        assert "@ts-nocheck" not in code
        assert "import " not in code
        assert code.lstrip().startswith("const __Component__ = function AcmeWidgetLanding")

    def test_strips_multiline_imports(self):
        source = (
            '"use client";\n'
            "import React, {\n"
            "  useState,\n"
            "  useEffect,\n"
            '} from "react";\n'
            "import {\n"
            "  Star,\n"
            "} from 'lucide-react';\n"
            'import "./styles.css";\n'
            "export default function AcmeWidgetLanding({ onEvent }) {\n"
            '  return <main>from the makers of Acme</main>;\n'
            "}\n"
        )

        code = sanitize_for_standalone(source)

        assert "import" not in code
        assert "useState," not in code
        assert code.startswith("const __Component__ = function AcmeWidgetLanding")
        assert "from the makers of Acme" in code

    def test_only_first_export_default_rewritten(self):
        code = "export default function A() {}\nexport default function B() {}\n"
        sanitized = sanitize_for_standalone(code)
        assert sanitized.count("const __Component__ = ") == 1
        assert "export default function B" in sanitized


class TestAssembleScript:
    def test_mount_props_include_next_url(self):
        script = assemble_script(bundle())
        assert 'nextUrl: "/f/AcmeWidgetCheckout"' in script
        assert "onEvent: handleEvent" in script

    def test_no_next_url_on_last_page(self):
        assert "nextUrl" not in assemble_script(bundle(next_url=None)).split("root.render")[1]

    def test_fake_checkout_inlined_only_when_referenced(self):
        assert "function FakeCheckout(props)" in assemble_script(bundle())
        plain = "export default function Thanks() { return <p>Thanks</p>; }"
        assert "function FakeCheckout(props)" not in assemble_script(bundle(component_code=plain))


class TestDocument:
    def test_deterministic(self):
        assert build_standalone_html(bundle()) == build_standalone_html(bundle())

    def test_telemetry_identity_and_endpoint(self):
        html = build_standalone_html(bundle())

        assert 'funnelId: "acme-widget-x1y2z3"' in html
        assert 'pageName: "AcmeWidgetLanding"' in html
        assert 'fetch("https://funnels.example.com/api/funnel/events"' in html
        assert '__trackEvent__("page_view");' in html
        assert "depth > 50" in html

    def test_variant_embedded_when_set(self):
        assert "var __VARIANT__ = null;" in build_standalone_html(bundle())
        assert 'var __VARIANT__ = "test";' in build_standalone_html(bundle(variant="test"))

    def test_component_code_is_base64_embedded(self):
        html = build_standalone_html(bundle())
        assert "useState(false)" not in html
        assert "useState(false)" in decoded_script(html)

    def test_script_json_escapes_closing_tags(self):
        assert script_json("</script>") == '"<\\/script>"'

    def test_page_name_cannot_break_out_of_script(self):
        html = build_standalone_html(bundle(page_name="X</script><script>alert(1)"))
        assert "</script><script>alert(1)" not in html


class TestBrandTokens:
    def test_default_palette_without_colors(self):
        palette = dict(leaf_palette(None))
        assert palette["400"] == "#338bd5"
        assert palette["950"] == "#1b1b1b"

    def test_brand_colors_mapped_onto_leaf_shades(self):
        colors = FunnelColors(
            primary="#ff6600", secondary="#003366", accent="#ffcc00",
            background="#fff8f0", dark="#111111",
        )
        palette = dict(leaf_palette(colors))
        assert palette == {
            "100": "#fff8f0",
            "200": "#ffcc00",
            "400": "#ff6600",
            "700": "#003366",
            "900": "#ffcc00",
            "950": "#111111",
        }

    def test_font_links_skip_system_font(self):
        assert font_families(FunnelFonts()) == []
        assert font_families(FunnelFonts(heading="Inter", body="Inter")) == ["Inter"]

    def test_fonts_rendered(self):
        html = build_standalone_html(bundle(fonts=FunnelFonts(heading="Playfair Display", body="Inter")))
        assert "family=Playfair+Display:wght@400;500;600;700" in html
        assert "font-family: 'Inter', system-ui" in html
