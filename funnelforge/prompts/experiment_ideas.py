"""Experiment idea prompt: advisory A/B test proposals from funnel data."""

from typing import List

from ..db.models import FunnelEvent, FunnelKPIs
from .improvement import rate, summarize_events, weakness_hints


def build_experiment_ideas_prompt(
    pages: List[str], kpis: FunnelKPIs, recent_events: List[FunnelEvent]
) -> str:
    click_pct = rate(kpis.cta_clicks, kpis.total_visitors) * 100
    email_pct = rate(kpis.email_captures, kpis.total_visitors) * 100
    warnings = "\n".join(weakness_hints(kpis, prefix="WARNING: "))

    return f"""You are a conversion rate optimization expert. Analyze this sales funnel data and suggest 2-4 concrete A/B test experiment ideas.

FUNNEL PAGES: {", ".join(pages)}

PERFORMANCE DATA:
- Total Visitors: {kpis.total_visitors}
- CTA Click Rate: {click_pct:.1f}%
- Email Capture Rate: {email_pct:.1f}%
- Purchases: {kpis.purchases}
- Avg Scroll Depth: {kpis.avg_scroll_depth:.0f}%
- Conversion Rate: {kpis.conversion_rate * 100:.1f}%

RECENT BEHAVIOR:
{summarize_events(recent_events)}

{warnings}

Return ONLY a JSON array (no markdown, no code fences) of 2-4 experiment ideas:
[
  {{
    "pageName": "exact page name from the list above",
    "title": "short title, e.g. Simplify hero CTA",
    "description": "what specific change to make in 1-2 sentences",
    "targetMetric": "the metric this aims to improve, e.g. CTA click rate",
    "reasoning": "why this change is suggested based on the data, 1-2 sentences"
  }}
]

Focus on the weakest metrics. Each idea should target a specific page and a specific, measurable improvement."""
