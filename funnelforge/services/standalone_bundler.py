"""
Standalone Bundler

Compiles one generated page into a self-contained HTML document that runs
with no build step: React, ReactDOM, Babel and Tailwind come from CDNs, the
page source is Base64-embedded and compiled in the browser.

The document carries its own telemetry shim (page_view on load, one
scroll_depth sample past 50%, plus whatever the component reports through
onEvent) posting to the fixed events endpoint.

Output is a pure function of BundleInput: identical inputs give
byte-identical HTML.
"""

import base64
import html
import json
import re
from dataclasses import dataclass
from pathlib import Path
from string import Template
from typing import List, Optional
from urllib.parse import quote_plus

from ..db.models import FunnelColors, FunnelFonts

EVENTS_PATH = "/api/funnel/events"
SYSTEM_FONT = "system-ui"
FONT_WEIGHTS = "400;500;600;700"

# leaf-<shade> -> (palette field, default hex)
LEAF_SHADES = (
    ("100", "background", "#e8f1fb"),
    ("200", "accent", "#414141"),
    ("400", "primary", "#338bd5"),
    ("700", "secondary", "#2d1f93"),
    ("900", "accent", "#2e2e2e"),
    ("950", "dark", "#1b1b1b"),
)

_FAKE_CHECKOUT_PATH = Path(__file__).parent / "assets" / "fake_checkout.js"

_USE_CLIENT = re.compile(r"""^\s*["']use client["'];?[ \t]*\n?""", re.MULTILINE)
_TS_NOCHECK = re.compile(r"^\s*//\s*@ts-nocheck[ \t]*\n?", re.MULTILINE)
_IMPORT_FROM = re.compile(r"""^[ \t]*import\s+[^;'"]*?\bfrom\s*['"][^'"]+['"];?[ \t]*\n?""", re.MULTILINE)
_IMPORT_BARE = re.compile(r"""^\s*import\s+['"][^'"]+['"];?[ \t]*\n?""", re.MULTILINE)
_EXPORT_DEFAULT = re.compile(r"^\s*export\s+default\s+", re.MULTILINE)

HOOK_ALIASES = "var { useState, useEffect, useRef, useCallback, useMemo } = React;"
HANDLE_EVENT_SHIM = "function handleEvent(type, value) { __trackEvent__(type, value); }"


@dataclass
class BundleInput:
    """Everything the bundle depends on."""

    component_code: str
    funnel_id: str
    page_name: str
    api_base: str
    next_url: Optional[str] = None
    colors: Optional[FunnelColors] = None
    fonts: Optional[FunnelFonts] = None
    variant: Optional[str] = None


def sanitize_for_standalone(code: str) -> str:
    """
    Make generated module source evaluable as a plain script.

    Drops the first "use client" directive and @ts-nocheck marker, every
    import statement (multi-line ones included), and turns the first
    `export default` into an assignment to __Component__.
    """
    code = _USE_CLIENT.sub("", code, count=1)
    code = _TS_NOCHECK.sub("", code, count=1)
    code = _IMPORT_FROM.sub("", code)
    code = _IMPORT_BARE.sub("", code)
    return _EXPORT_DEFAULT.sub("const __Component__ = ", code, count=1)


def script_json(value) -> str:
    """JSON literal safe to place inside a <script> element."""
    return json.dumps(value).replace("</", "<\\/")


def load_fake_checkout_source() -> str:
    return _FAKE_CHECKOUT_PATH.read_text(encoding="utf-8")


def assemble_script(bundle: BundleInput) -> str:
    """The page script that is Base64-embedded and compiled in the browser."""
    mount_props = "onEvent: handleEvent"
    if bundle.next_url:
        mount_props += f", nextUrl: {script_json(bundle.next_url)}"

    parts = [HOOK_ALIASES]
    if "FakeCheckout" in bundle.component_code:
        parts.append(load_fake_checkout_source())
    parts.extend([
        sanitize_for_standalone(bundle.component_code),
        HANDLE_EVENT_SHIM,
        'var root = ReactDOM.createRoot(document.getElementById("root"));',
        f"root.render(React.createElement(__Component__, {{ {mount_props} }}));",
    ])
    return "\n".join(parts)


def leaf_palette(colors: Optional[FunnelColors]) -> List[tuple]:
    """(shade, hex) pairs for the Tailwind leaf namespace."""
    return [
        (shade, getattr(colors, field) if colors else default)
        for shade, field, default in LEAF_SHADES
    ]


def font_families(fonts: Optional[FunnelFonts]) -> List[str]:
    """Distinct non-system families to request from Google Fonts."""
    if fonts is None:
        return []
    families = []
    for family in (fonts.heading, fonts.body):
        if family and family != SYSTEM_FONT and family not in families:
            families.append(family)
    return families


def font_links(fonts: Optional[FunnelFonts]) -> str:
    families = font_families(fonts)
    if not families:
        return ""
    query = "&".join(f"family={quote_plus(f)}:wght@{FONT_WEIGHTS}" for f in families)
    href = html.escape(f"https://fonts.googleapis.com/css2?{query}&display=swap")
    return (
        '<link rel="preconnect" href="https://fonts.googleapis.com" />\n'
        '  <link rel="preconnect" href="https://fonts.gstatic.com" crossorigin />\n'
        f'  <link href="{href}" rel="stylesheet" />'
    )


def body_font_css(fonts: Optional[FunnelFonts]) -> str:
    if fonts and fonts.body and fonts.body != SYSTEM_FONT:
        family = re.sub(r"""['"<>;{}\\]""", "", fonts.body)
        return f"font-family: '{family}', system-ui, -apple-system, sans-serif;"
    return "font-family: system-ui, -apple-system, sans-serif;"


_PAGE_TEMPLATE = Template("""<!DOCTYPE html>
<html lang="en">
<head>
  <meta charset="UTF-8" />
  <meta name="viewport" content="width=device-width, initial-scale=1.0" />
  <title>${title}</title>
  ${font_links}
  <script src="https://cdn.jsdelivr.net/npm/react@18/umd/react.production.min.js"></script>
  <script src="https://cdn.jsdelivr.net/npm/react-dom@18/umd/react-dom.production.min.js"></script>
  <script src="https://cdn.jsdelivr.net/npm/@babel/standalone@7/babel.min.js"></script>
  <script src="https://cdn.tailwindcss.com"></script>
  <script>
    tailwind.config = {
      theme: {
        extend: {
          colors: {
            leaf: {
${leaf_colors}
            }
          }
        }
      }
    };
  </script>
  <style>
    body { margin: 0; ${body_font} }
  </style>
</head>
<body>
  <div id="root"></div>

  <script>
    var __SESSION_ID__ = (function() {
      var key = "funnel-session-id";
      var id = sessionStorage.getItem(key);
      if (!id) {
        var match = document.cookie.match(/funnel-session-id=([^;]+)/);
        id = match ? match[1] : Math.random().toString(36).slice(2, 10);
        sessionStorage.setItem(key, id);
      }
      document.cookie = key + "=" + id + ";path=/;SameSite=Lax";
      return id;
    })();

    var __VISITOR_ID__ = (function() {
      var match = document.cookie.match(/funnel-visitor-id=([^;]+)/);
      if (match) return match[1];
      var id = Math.random().toString(36).slice(2, 10) + Date.now().toString(36);
      document.cookie = "funnel-visitor-id=" + id + ";path=/;max-age=31536000;SameSite=Lax";
      return id;
    })();

    var __VARIANT__ = ${variant};

    function __trackEvent__(type, value) {
      var event = {
        funnelId: ${funnel_id},
        pageName: ${page_name},
        sessionId: __SESSION_ID__,
        visitorId: __VISITOR_ID__,
        type: type,
        value: value,
        timestamp: new Date().toISOString()
      };
      if (__VARIANT__) event.variant = __VARIANT__;
      var payload = JSON.stringify(event);
      if (navigator.sendBeacon) {
        navigator.sendBeacon(${events_url}, new Blob([payload], { type: "application/json" }));
      } else {
        fetch(${events_url}, {
          method: "POST",
          headers: { "Content-Type": "application/json" },
          body: payload
        }).catch(function() {});
      }
    }

    __trackEvent__("page_view");

    var __scrollTracked__ = false;
    window.addEventListener("scroll", function() {
      var scrollHeight = document.documentElement.scrollHeight - window.innerHeight;
      if (scrollHeight <= 0 || __scrollTracked__) return;
      var depth = Math.round((window.scrollY / scrollHeight) * 100);
      if (depth > 50) {
        __scrollTracked__ = true;
        __trackEvent__("scroll_depth", depth);
      }
    }, { passive: true });
  </script>

  <script>
    (function() {
      var __src = new TextDecoder().decode(Uint8Array.from(atob("${encoded_source}"), function(c) { return c.charCodeAt(0); }));
      var __out = Babel.transform(__src, {
        presets: [
          ["react", { runtime: "classic" }],
          ["typescript", { isTSX: true, allExtensions: true }]
        ]
      });
      eval(__out.code);
    })();
  </script>
</body>
</html>
""")


def build_standalone_html(bundle: BundleInput) -> str:
    """Render the standalone document for one page."""
    encoded = base64.b64encode(assemble_script(bundle).encode("utf-8")).decode("ascii")
    leaf_colors = ",\n".join(
        f"              {shade}: {script_json(hex_value)}"
        for shade, hex_value in leaf_palette(bundle.colors)
    )
    return _PAGE_TEMPLATE.substitute(
        title=html.escape(bundle.page_name),
        font_links=font_links(bundle.fonts),
        leaf_colors=leaf_colors,
        body_font=body_font_css(bundle.fonts),
        variant=script_json(bundle.variant),
        funnel_id=script_json(bundle.funnel_id),
        page_name=script_json(bundle.page_name),
        events_url=script_json(bundle.api_base.rstrip("/") + EVENTS_PATH),
        encoded_source=encoded,
    )
