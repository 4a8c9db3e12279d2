"""
Page Synthesizer

Turns one page request into a parseable {componentName, code} result.

Flow per page:
1. Build the prompt (PageSpec-based or legacy page type)
2. One generation call (overloaded retries handled by GenerationClient)
3. Strip code fences and parse
4. On parse failure: one repair call over the tail of the raw output
5. Second failure: MalformedOutputError

Generated code always starts with the `// @ts-nocheck` marker.
"""

import json
import logging
import re
from dataclasses import dataclass
from typing import Optional, Union

from ..config import FAST_MODEL, PAGE_MAX_TOKENS, REPAIR_MAX_TOKENS
from ..db.models import FunnelStyle, PageSpec, PageType, ProductInfo
from ..errors import MalformedOutputError
from ..prompts import (
    build_improvement_prompt,
    build_page_type_prompt,
    build_repair_prompt,
    build_spec_page_prompt,
    build_style_prompt,
)
from .generation_client import GenerationClient

logger = logging.getLogger(__name__)

TS_NOCHECK = "// @ts-nocheck"
STYLE_MAX_TOKENS = 500
IMPROVE_MAX_TOKENS = 6000

_FENCE_OPEN = re.compile(r"^```json?\s*", re.IGNORECASE)
_FENCE_CLOSE = re.compile(r"\s*```$", re.IGNORECASE)


@dataclass
class ParsedOk:
    component_name: str
    code: str
    reasoning: str = ""


@dataclass
class ParseFailed:
    error: str
    raw: str


ParseResult = Union[ParsedOk, ParseFailed]


def strip_code_fences(text: str) -> str:
    """Remove a leading ```json / ``` fence and a trailing ``` fence."""
    cleaned = _FENCE_OPEN.sub("", text.strip())
    cleaned = _FENCE_CLOSE.sub("", cleaned)
    return cleaned.strip()


def parse_generated_page(raw: str) -> ParseResult:
    """
    Parse raw generation output into a tagged result.

    Both componentName and code must be present non-empty strings.
    """
    try:
        data = json.loads(strip_code_fences(raw))
    except json.JSONDecodeError as e:
        return ParseFailed(error=str(e), raw=raw)

    if not isinstance(data, dict):
        return ParseFailed(error=f"Expected a JSON object, got {type(data).__name__}", raw=raw)

    component_name = data.get("componentName")
    code = data.get("code")
    if not isinstance(component_name, str) or not component_name.strip():
        return ParseFailed(error="Missing or empty 'componentName'", raw=raw)
    if not isinstance(code, str) or not code.strip():
        return ParseFailed(error="Missing or empty 'code'", raw=raw)

    reasoning = data.get("reasoning")
    return ParsedOk(
        component_name=component_name,
        code=code,
        reasoning=reasoning if isinstance(reasoning, str) else "",
    )


def ensure_ts_nocheck(code: str) -> str:
    if "@ts-nocheck" in code:
        return code
    return f"{TS_NOCHECK}\n{code}"


class PageSynthesizer:
    """
    Generates page components, styles and improved variants.

    Owner of the parse + repair contract: callers either get a ParsedOk with
    normalized code, or an exception.
    """

    def __init__(
        self,
        client: Optional[GenerationClient] = None,
        fast_client: Optional[GenerationClient] = None,
    ):
        self.client = client or GenerationClient()
        self.fast_client = fast_client or GenerationClient(model=FAST_MODEL)

    def synthesize_page(
        self,
        product: ProductInfo,
        component_name: str,
        page_spec: Optional[PageSpec] = None,
        page_type: Optional[PageType] = None,
        has_next_url: bool = True,
        design_notes: str = "",
    ) -> ParsedOk:
        """
        Generate one page.

        Exactly one of page_spec / page_type drives the prompt; page_spec wins
        when both are given.

        Raises:
            MalformedOutputError: output unparseable even after repair
            openai.APIStatusError: upstream failure (including 529 after retries)
        """
        if page_spec is not None:
            prompt = build_spec_page_prompt(product, component_name, page_spec, design_notes)
        elif page_type is not None:
            prompt = build_page_type_prompt(page_type, product, component_name, has_next_url)
        else:
            raise ValueError(f"No page spec or page type for '{component_name}'")

        raw = self.client.complete(prompt, max_tokens=PAGE_MAX_TOKENS)
        result = parse_generated_page(raw)
        if isinstance(result, ParseFailed):
            logger.warning(
                f"JSON parse failed for {component_name}, attempting repair: {result.error}"
            )
            result = self.repair(result)

        result.code = ensure_ts_nocheck(result.code)
        return result

    def repair(self, failed: ParseFailed) -> ParsedOk:
        """One repair round-trip. A second parse failure is fatal."""
        raw = self.client.complete(
            build_repair_prompt(failed.raw, failed.error),
            max_tokens=REPAIR_MAX_TOKENS,
        )
        result = parse_generated_page(raw)
        if isinstance(result, ParseFailed):
            raise MalformedOutputError(
                f"Generated page could not be parsed after repair: {result.error}",
                raw_tail=raw[-200:],
            )
        return result

    def generate_style(self, product: ProductInfo) -> FunnelStyle:
        """
        Ask for a palette, fonts and style notes.

        Raises:
            MalformedOutputError: the response is not a valid style object
        """
        raw = self.fast_client.complete(build_style_prompt(product), max_tokens=STYLE_MAX_TOKENS)
        try:
            return FunnelStyle.model_validate(json.loads(strip_code_fences(raw)))
        except ValueError as e:
            # json.JSONDecodeError and pydantic's ValidationError are both ValueErrors
            raise MalformedOutputError(f"Generated style is invalid: {e}", raw_tail=raw[-200:]) from e

    def improve_page(
        self,
        page_name: str,
        existing_code: str,
        kpis,
        recent_events,
        product: ProductInfo,
        test_component_name: str,
    ) -> ParsedOk:
        """
        Generate an improved variant of an existing page.

        The returned component is always named test_component_name.
        """
        prompt = build_improvement_prompt(
            page_name, existing_code, kpis, recent_events, product, test_component_name
        )
        raw = self.client.complete(prompt, max_tokens=IMPROVE_MAX_TOKENS)
        result = parse_generated_page(raw)
        if isinstance(result, ParseFailed):
            logger.warning(f"Improvement for {page_name} unparseable, attempting repair: {result.error}")
            result = self.repair(result)

        result.component_name = test_component_name
        result.code = ensure_ts_nocheck(result.code)
        return result
