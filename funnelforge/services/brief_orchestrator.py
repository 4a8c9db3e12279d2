"""
Brief Orchestrator

Drives a funnel from a confirmed brief to fully generated pages.

Responsibilities:
- Derive canonical component names and create the funnel with pending shells
- Apply brief updates (style-only short-circuit vs full regeneration)
- Rewrite image URLs in existing page sources when the brief's images change
- Resume generation: synthesize only pending pages, in order, one at a time

Every page write is committed on its own, so a failure partway through leaves
the store reflecting exactly which pages have source.
"""

import logging
import random
import re
import string
from dataclasses import dataclass, field
from typing import Dict, List, Optional

from openai import APIError

from ..db.funnel_storage import FunnelStore
from ..db.models import Funnel, FunnelBrief, GeneratedPage, PageSpec, ProductInfo
from ..errors import FunnelError, NotFoundError, ValidationError
from ..prompts import legacy_page_type
from .page_synthesizer import PageSynthesizer
from .single_flight import SingleFlight, generation_guard

logger = logging.getLogger(__name__)

FUNNEL_ID_SUFFIX_LENGTH = 6
BASE36_ALPHABET = string.digits + string.ascii_lowercase
LEGACY_PAGE_SUFFIXES = ("Landing", "Checkout", "ThankYou")

_FUNNEL_ID_SUFFIX = re.compile(r"-[a-z0-9]{6}$")
_NON_ALNUM = re.compile(r"[^a-z0-9]+")


# =============================================================================
# Naming
# =============================================================================


def slugify(name: str) -> str:
    """Lowercase, non-alphanumeric runs collapsed to '-', trimmed."""
    return _NON_ALNUM.sub("-", name.lower()).strip("-")


def pascal_case(slug: str) -> str:
    return "".join(word[:1].upper() + word[1:] for word in slug.split("-") if word)


def derive_component_names(product_name: str, specs: List[PageSpec]) -> List[str]:
    """Component names for a brief, in spec order (legacy trio when no specs)."""
    pascal = pascal_case(slugify(product_name))
    if not pascal:
        raise ValidationError(f"Product name '{product_name}' has no letters or digits")
    suffixes = [s.component_suffix for s in specs] if specs else list(LEGACY_PAGE_SUFFIXES)
    names = [f"{pascal}{suffix}" for suffix in suffixes]
    duplicates = sorted({n for n in names if names.count(n) > 1})
    if duplicates:
        raise ValidationError(f"Duplicate page component names: {', '.join(duplicates)}")
    return names


def new_funnel_id(product_name: str, rng: Optional[random.Random] = None) -> str:
    """slug + '-' + 6 random base36 characters."""
    rng = rng or random.SystemRandom()
    suffix = "".join(rng.choice(BASE36_ALPHABET) for _ in range(FUNNEL_ID_SUFFIX_LENGTH))
    return f"{slugify(product_name)}-{suffix}"


def funnel_slug(funnel_id: str) -> str:
    """The product slug a funnel id was minted from."""
    return _FUNNEL_ID_SUFFIX.sub("", funnel_id)


def image_url_mapping(old_urls: List[str], new_urls: List[str]) -> Dict[str, str]:
    """Positional {old: new} pairs for URLs that changed."""
    return {old: new for old, new in zip(old_urls, new_urls) if old and new and old != new}


def rewrite_image_urls(source: str, mapping: Dict[str, str]) -> str:
    for old, new in mapping.items():
        source = source.replace(old, new)
    return source


# =============================================================================
# Results
# =============================================================================


@dataclass
class PageFailure:
    page: str
    error: str


@dataclass
class GenerationProgress:
    """Structured progress for one generation pass."""

    funnel_id: str
    pages_ready: int
    total_pages: int
    generated: int = 0
    last_error: Optional[str] = None
    errors: List[PageFailure] = field(default_factory=list)

    @property
    def complete(self) -> bool:
        return self.pages_ready >= self.total_pages


@dataclass
class BriefUpdateResult:
    funnel: Funnel
    regenerated: bool
    images_rewritten: int = 0


# =============================================================================
# Orchestrator
# =============================================================================


class BriefOrchestrator:
    def __init__(
        self,
        store: FunnelStore,
        synthesizer: Optional[PageSynthesizer] = None,
        guard: Optional[SingleFlight] = None,
        rng: Optional[random.Random] = None,
    ):
        self.store = store
        self.synthesizer = synthesizer or PageSynthesizer()
        self.guard = guard or generation_guard
        self.rng = rng

    # -------------------------------------------------------------------------
    # Brief intake
    # -------------------------------------------------------------------------

    def create_funnel(self, brief: FunnelBrief) -> Funnel:
        """Create a funnel whose pages are all pending shells."""
        product = brief.product_info.model_copy(deep=True)
        names = derive_component_names(product.product_name, brief.page_specs)
        funnel_id = new_funnel_id(product.product_name, self.rng)

        if product.style is None:
            try:
                product.style = self.synthesizer.generate_style(product)
            except (FunnelError, APIError) as e:
                logger.warning(f"Style generation failed for {funnel_id}, using defaults: {e}")

        self._apply_design_notes(product, brief.design_notes)

        specs = brief.page_specs or [None] * len(names)
        shells = [
            GeneratedPage(funnel_id=funnel_id, component_name=name, page_order=i, page_spec=spec)
            for i, (name, spec) in enumerate(zip(names, specs))
        ]
        funnel = self.store.create_funnel(funnel_id, product, shells)
        self.store.commit()
        logger.info(f"Created funnel {funnel_id} with {len(shells)} pending pages")
        return funnel

    def apply_brief(self, funnel_id: str, brief: FunnelBrief) -> BriefUpdateResult:
        """
        Update product/style fields and, when page identity changed, replace
        every page with a pending shell.

        A brief whose derived names equal the current page list never touches
        page rows (style-only update). A brief with no page specs keeps the
        current pages.
        """
        funnel = self._require_funnel(funnel_id)

        product = brief.product_info.model_copy(deep=True)
        if product.style is None:
            product.style = funnel.product_info.style
        self._apply_design_notes(product, brief.design_notes)

        regenerated = False
        if brief.page_specs:
            names = derive_component_names(funnel_slug(funnel_id), brief.page_specs)
            if names != funnel.pages:
                shells = [
                    GeneratedPage(funnel_id=funnel_id, component_name=name, page_order=i, page_spec=spec)
                    for i, (name, spec) in enumerate(zip(names, brief.page_specs))
                ]
                self.store.replace_pages(funnel_id, shells)
                regenerated = True
                logger.info(f"Brief changed page structure of {funnel_id}: {len(shells)} pages reset")
            else:
                logger.info(f"Style-only brief update for {funnel_id}")

        self.store.update_product_info(funnel_id, product)

        mapping = image_url_mapping(funnel.product_info.image_urls, product.image_urls)
        images_rewritten = self.rewrite_images(funnel_id, mapping) if mapping else 0

        self.store.commit()
        return BriefUpdateResult(
            funnel=self.store.get_funnel(funnel_id),
            regenerated=regenerated,
            images_rewritten=images_rewritten,
        )

    def replace_product_images(self, funnel_id: str, new_urls: List[str]) -> int:
        """Store a new image list and point existing page sources at it."""
        funnel = self._require_funnel(funnel_id)
        product = funnel.product_info.model_copy(deep=True)
        mapping = image_url_mapping(product.image_urls, new_urls)
        product.image_urls = list(new_urls)
        self.store.update_product_info(funnel_id, product)
        rewritten = self.rewrite_images(funnel_id, mapping) if mapping else 0
        self.store.commit()
        return rewritten

    def rewrite_images(self, funnel_id: str, mapping: Dict[str, str]) -> int:
        """Apply an {old_url: new_url} mapping to every stored page source."""
        rewritten = 0
        for page in self.store.list_pages(funnel_id, include_variants=True):
            if page.source_code is None:
                continue
            updated = rewrite_image_urls(page.source_code, mapping)
            if updated != page.source_code:
                self.store.set_page_source(funnel_id, page.component_name, updated)
                rewritten += 1
        if rewritten:
            logger.info(f"Rewrote image URLs in {rewritten} page(s) of {funnel_id}")
        return rewritten

    # -------------------------------------------------------------------------
    # Generation
    # -------------------------------------------------------------------------

    def generate_pending_pages(self, funnel_id: str) -> GenerationProgress:
        """Resume loop: synthesize every pending page in order.

        Raises:
            GenerationBusyError: a pass is already active for this funnel
            NotFoundError: unknown funnel
        """
        return self._run_pass(funnel_id, limit=None)

    def generate_next_page(self, funnel_id: str) -> GenerationProgress:
        """Advance exactly one pending page."""
        return self._run_pass(funnel_id, limit=1)

    def get_progress(self, funnel_id: str) -> GenerationProgress:
        pages = self.store.list_pages(funnel_id)
        if not pages and self.store.get_funnel(funnel_id) is None:
            raise NotFoundError(f"Funnel '{funnel_id}' not found")
        last_error = next((p.generation_error for p in pages if p.generation_error), None)
        return GenerationProgress(
            funnel_id=funnel_id,
            pages_ready=sum(1 for p in pages if p.is_ready),
            total_pages=len(pages),
            last_error=last_error,
        )

    def _run_pass(self, funnel_id: str, limit: Optional[int]) -> GenerationProgress:
        with self.guard.hold(funnel_id):
            funnel = self._require_funnel(funnel_id)
            pages = self.store.list_pages(funnel_id)
            total = len(pages)
            pending = [(i, p) for i, p in enumerate(pages) if p.source_code is None]
            if limit is not None:
                pending = pending[:limit]

            progress = GenerationProgress(
                funnel_id=funnel_id,
                pages_ready=total - sum(1 for p in pages if p.source_code is None),
                total_pages=total,
            )
            if not pending:
                return progress

            for index, page in pending:
                try:
                    code = self._synthesize(funnel, page, index, total)
                except (FunnelError, APIError, ValueError) as e:
                    message = str(e)
                    logger.error(f"Generation failed for {page.component_name} in {funnel_id}: {message}")
                    self.store.set_page_error(funnel_id, page.component_name, message)
                    self.store.commit()
                    progress.last_error = message
                    progress.errors.append(PageFailure(page=page.component_name, error=message))
                    break

                self.store.set_page_source(funnel_id, page.component_name, code)
                self.store.commit()
                progress.generated += 1
                progress.pages_ready += 1
                logger.info(
                    f"Generated {page.component_name} ({progress.pages_ready}/{total}) for {funnel_id}"
                )

            return progress

    def _synthesize(self, funnel: Funnel, page: GeneratedPage, index: int, total: int) -> str:
        product = funnel.product_info
        has_next_url = index < total - 1
        if page.page_spec is not None:
            design_notes = product.style.style_notes if product.style else ""
            result = self.synthesizer.synthesize_page(
                product,
                page.component_name,
                page_spec=page.page_spec,
                has_next_url=has_next_url,
                design_notes=design_notes,
            )
        else:
            page_type = legacy_page_type(index, total)
            if page_type is None:
                raise ValidationError(
                    f"Page '{page.component_name}' has no spec and no legacy page type"
                )
            result = self.synthesizer.synthesize_page(
                product, page.component_name, page_type=page_type, has_next_url=has_next_url
            )
        return result.code

    # -------------------------------------------------------------------------
    # Helpers
    # -------------------------------------------------------------------------

    def _require_funnel(self, funnel_id: str) -> Funnel:
        funnel = self.store.get_funnel(funnel_id)
        if funnel is None:
            raise NotFoundError(f"Funnel '{funnel_id}' not found")
        return funnel

    @staticmethod
    def _apply_design_notes(product: ProductInfo, design_notes: str) -> None:
        if design_notes and product.style is not None:
            product.style.style_notes = design_notes
