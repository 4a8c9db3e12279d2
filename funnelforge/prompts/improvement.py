"""
Page Improvement Prompt

Asks for an improved variant of an existing page, steered by the funnel's
KPIs and a summary of recent visitor behavior. The result becomes the test
arm of a new experiment.
"""

from collections import Counter
from typing import List

from ..db.models import FunnelEvent, FunnelKPIs, ProductInfo
from .page_generation import build_color_guide

# Thresholds below which a weakness hint is added to the prompt
LOW_CTA_RATE = 0.05
LOW_SCROLL_DEPTH = 40
LOW_EMAIL_RATE = 0.02
LOW_CONVERSION_RATE = 0.01


def summarize_events(events: List[FunnelEvent]) -> str:
    """Per-type counts plus unique session count."""
    if not events:
        return "No events recorded yet."

    by_type = Counter(e.type for e in events)
    lines = [f"- {event_type}: {count} events" for event_type, count in by_type.items()]
    lines.append(f"- Unique sessions: {len({e.session_id for e in events})}")
    return "\n".join(lines)


def rate(numerator: int, visitors: int) -> float:
    return numerator / max(visitors, 1)


def weakness_hints(kpis: FunnelKPIs, prefix: str = "- ") -> List[str]:
    hints = []
    if rate(kpis.cta_clicks, kpis.total_visitors) < LOW_CTA_RATE:
        hints.append(f"{prefix}CTA click rate is very low: improve headline, CTA copy, button visibility and placement")
    if kpis.avg_scroll_depth < LOW_SCROLL_DEPTH:
        hints.append(f"{prefix}Most visitors don't scroll far: move key content and CTAs higher")
    if rate(kpis.email_captures, kpis.total_visitors) < LOW_EMAIL_RATE:
        hints.append(f"{prefix}Email capture rate is low: add better incentive, simplify form")
    if kpis.conversion_rate < LOW_CONVERSION_RATE:
        hints.append(f"{prefix}Conversion rate is very low: add urgency, social proof, reduce friction")
    return hints


def format_kpis(kpis: FunnelKPIs) -> str:
    click_pct = rate(kpis.cta_clicks, kpis.total_visitors) * 100 if kpis.total_visitors else 0
    return "\n".join([
        f"- Total Visitors: {kpis.total_visitors}",
        f"- CTA Clicks: {kpis.cta_clicks} ({click_pct:.1f}% click rate)",
        f"- Email Captures: {kpis.email_captures}",
        f"- Purchases: {kpis.purchases}",
        f"- Avg Scroll Depth: {kpis.avg_scroll_depth:.0f}%",
        f"- Conversion Rate: {kpis.conversion_rate * 100:.1f}%",
    ])


def build_improvement_prompt(
    page_name: str,
    existing_code: str,
    kpis: FunnelKPIs,
    recent_events: List[FunnelEvent],
    product: ProductInfo,
    test_component_name: str,
) -> str:
    """
    Build the improvement prompt.

    The response must name the component test_component_name so the variant
    can be served side by side with the control.
    """
    hints = "\n".join(weakness_hints(kpis)) or "- Metrics look healthy: make incremental copy and layout refinements"
    return f"""You are improving a sales funnel page based on real visitor performance data.

CURRENT PAGE: "{page_name}"

PERFORMANCE DATA:
{format_kpis(kpis)}

RECENT VISITOR BEHAVIOR:
{summarize_events(recent_events)}

CURRENT CODE:
```tsx
{existing_code}
```

IMPROVE this page to increase conversions. Based on the data:
{hints}

REQUIREMENTS:
- Rename the component to {test_component_name} and keep the same prop signature
- Keep calling onEvent for cta_click and email_capture events
{build_color_guide(product)}
- Self-contained, responsive, TypeScript-safe
- Make meaningful improvements: better copy, layout, visual hierarchy, social proof, urgency elements

Respond with ONLY a JSON object (no markdown, no code fences):
{{
  "componentName": "{test_component_name}",
  "reasoning": "1-2 sentences on what you improved and why",
  "code": "the full improved component code"
}}"""
