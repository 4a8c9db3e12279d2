"""
FunnelForge Prompts

Centralized prompt templates for generation service interactions.
"""

from .page_generation import (
    PAGE_LABELS,
    build_checkout_embed,
    build_color_guide,
    build_font_guide,
    build_image_guide,
    build_page_type_prompt,
    build_spec_page_prompt,
    legacy_page_type,
)

from .json_repair import (
    REPAIR_TAIL_CHARS,
    build_repair_prompt,
)

from .style import build_style_prompt

from .improvement import (
    build_improvement_prompt,
    summarize_events,
)

from .experiment_ideas import build_experiment_ideas_prompt

__all__ = [
    # Page generation
    "PAGE_LABELS",
    "build_checkout_embed",
    "build_color_guide",
    "build_font_guide",
    "build_image_guide",
    "build_page_type_prompt",
    "build_spec_page_prompt",
    "legacy_page_type",
    # Repair
    "REPAIR_TAIL_CHARS",
    "build_repair_prompt",
    # Style
    "build_style_prompt",
    # Improvement
    "build_improvement_prompt",
    "summarize_events",
    # Ideas
    "build_experiment_ideas_prompt",
]
