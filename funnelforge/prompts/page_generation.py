"""
Page Generation Prompts

Builds the single-page generation prompt for one funnel step, either from a
brief's PageSpec or from a legacy page type (landing / checkout / thankyou).

Every prompt pins the same output contract: exactly one JSON object
{"componentName": ..., "code": ...}.
"""

from typing import Optional

from ..db.models import PageSpec, PageType, ProductInfo


PAGE_LABELS = {
    "landing": "Landing Page",
    "checkout": "Checkout",
    "thankyou": "Thank You",
}

# Tokens used when the product has no palette. Must match the bundler defaults.
DEFAULT_COLOR_GUIDE = """- COLOR PALETTE (use these leaf-* Tailwind classes):
  - bg-leaf-100 (#e8f1fb): light blue tint for page backgrounds and sections
  - bg-leaf-400 (#338bd5) / text-white: blue for primary CTA buttons and key accents
  - text-leaf-700 / bg-leaf-700 (#2d1f93): deep purple for headings and bold accents
  - bg-leaf-900 (#2e2e2e): near-black for dark sections, footers, emphasis
  - Use bg-white for card backgrounds, text-gray-900 for strong text, text-gray-500 for muted"""

BRAND_COLOR_GUIDE = """- COLOR PALETTE (use these leaf-* Tailwind classes, they are mapped to the brand colors):
  - bg-leaf-100 ({background}): brand background for page sections
  - bg-leaf-400 ({primary}) / text-white: primary CTA buttons and key accents
  - text-leaf-700 / bg-leaf-700 ({secondary}): headings and bold accents
  - bg-leaf-900 ({accent}): highlights, badges, emphasis
  - bg-leaf-950 ({dark}): dark sections, footers
  - Use bg-white for card backgrounds, text-gray-900 for strong text, text-gray-500 for muted
  - NEVER write raw hex values in class names or styles; only leaf-* tokens"""

MOBILE_RULES = (
    "- MOBILE FIRST: Design for 375px mobile first, then enhance for larger screens. "
    "Stack layouts vertically on mobile (flex-col), horizontal on sm:+ (sm:flex-row). "
    "Buttons full-width on mobile (w-full sm:w-auto). Touch targets min 44px. "
    "No horizontal scroll. Use responsive text sizes (text-sm on mobile, sm:text-base+)."
)

OUTPUT_CONTRACT = """Respond with ONLY a JSON object (no markdown, no code fences):
{{
  "componentName": "{component_name}",
  "code": "full component code"
}}"""

MAX_CONTEXT_IMAGES = 8
MAX_BARE_IMAGES = 5
LOGO_CONTEXT = "Brand logo"


def build_color_guide(product: ProductInfo) -> str:
    """Semantic leaf-* token mapping for the product's palette (or defaults)."""
    if product.style is None:
        return DEFAULT_COLOR_GUIDE
    return BRAND_COLOR_GUIDE.format(**product.style.colors.model_dump())


def build_font_guide(product: ProductInfo) -> str:
    fonts = product.style.fonts if product.style else None
    if fonts is None or (fonts.heading == "system-ui" and fonts.body == "system-ui"):
        return ""
    heading = fonts.heading.replace(" ", "_")
    body = fonts.body.replace(" ", "_")
    return (
        f"\n- FONTS: Use font-['{heading}'] for headings, font-['{body}'] for body text "
        f"(Google Fonts loaded via CDN)"
    )


def build_image_guide(product: ProductInfo) -> str:
    """
    Image hints for the page.

    Contextual images (up to 8, logo excluded) take precedence over bare URLs
    (up to 5). The logo is always offered separately when present.
    """
    image_guide = ""
    if product.image_contexts:
        lines = [
            f'  - "{ic.url}": {ic.context}'
            for ic in product.image_contexts
            if ic.context != LOGO_CONTEXT
        ][:MAX_CONTEXT_IMAGES]
        if lines:
            image_guide = (
                "\n- PRODUCT IMAGES (use these in <img> tags with appropriate alt text):\n"
                + "\n".join(lines)
            )
    elif product.image_urls:
        urls = ", ".join(f'"{u}"' for u in product.image_urls[:MAX_BARE_IMAGES])
        image_guide = f"\n- PRODUCT IMAGES: You may use these image URLs in <img> tags: {urls}"

    logo_guide = ""
    if product.logo_url:
        logo_guide = (
            f'\n- BRAND LOGO: Available at "{product.logo_url}", use it in the header or hero section'
        )
    return image_guide + logo_guide


def build_checkout_embed(product: ProductInfo, navigate: bool) -> str:
    """The fixed FakeCheckout embedding contract."""
    on_purchase = 'onEvent("email_capture", email); onEvent("purchase");'
    if navigate:
        on_purchase += " window.location.href = nextUrl;"
    return (
        "- Import and render FakeCheckout:\n"
        '  `import FakeCheckout from "@/components/funnel/FakeCheckout";`\n'
        f'  `<FakeCheckout price="{product.price}" productName="{product.product_name}" '
        f"onPurchase={{(email) => {{ {on_purchase} }}}} />`\n"
        "- DO NOT create your own payment form, use FakeCheckout for that"
    )


def _product_header(product: ProductInfo, full: bool = True) -> str:
    lines = [
        f"PRODUCT: {product.product_name} ({product.product_type})",
        f"Description: {product.description}",
        f"Price: ${product.price}",
    ]
    if full:
        lines.append(f"Target Audience: {product.target_audience}")
        lines.append(f"Selling Points: {', '.join(product.unique_selling_points)}")
    lines.append(f"Tone: {product.tone}")
    return "\n".join(lines)


def _requirements(
    product: ProductInfo,
    component_name: str,
    has_next_url: bool,
    style_line: str,
    extra: str = "",
    allow_checkout_import: bool = False,
) -> str:
    props = "{ onEvent: (type: string, value?: string | number) => void"
    props += ", nextUrl: string }" if has_next_url else " }"
    imports = "React hooks from 'react'"
    if allow_checkout_import:
        imports += " and FakeCheckout"
    return f"""
CRITICAL REQUIREMENTS:
- The component is a "use client" React component named {component_name}
- Props: `{props}`
- Call `onEvent("cta_click")` when ANY call-to-action button is clicked
- Call `onEvent("email_capture", emailValue)` when an email is submitted
- Use ONLY Tailwind CSS for styling, with the leaf-* custom colors below
{build_color_guide(product)}{build_font_guide(product)}{style_line}{build_image_guide(product)}{extra}
- Self-contained (no fetch calls, no localStorage). External product images from the URLs above ARE allowed.
{MOBILE_RULES}
- Fully responsive using w-full, max-w-*, flex, grid
- TypeScript: type all useRef and useState calls
- Do NOT import anything except {imports}

{OUTPUT_CONTRACT.format(component_name=component_name)}"""


def build_spec_page_prompt(
    product: ProductInfo,
    component_name: str,
    spec: PageSpec,
    design_notes: str = "",
) -> str:
    """Prompt for a page described by a brief's PageSpec."""
    if design_notes:
        style_line = f"\n- DESIGN NOTES: {design_notes}"
    elif product.style and product.style.style_notes:
        style_line = f"\n- VISUAL STYLE: {product.style.style_notes}"
    else:
        style_line = ""

    extra = ""
    if spec.has_checkout:
        extra = "\n- This page has a checkout.\n" + build_checkout_embed(product, navigate=False)

    return f"""Generate a sales funnel page React component: "{spec.name}"

{_product_header(product)}

PAGE DESCRIPTION:
{spec.description}
{_requirements(product, component_name, True, style_line, extra, spec.has_checkout)}"""


def build_page_type_prompt(
    page_type: PageType,
    product: ProductInfo,
    component_name: str,
    has_next_url: bool,
) -> str:
    """Prompt for a legacy landing / checkout / thankyou page."""
    style_line = ""
    if product.style and product.style.style_notes:
        style_line = f"\n- VISUAL STYLE: {product.style.style_notes}"

    if page_type == "landing":
        cta = 'a strong CTA button (bg-leaf-400 text-white) that calls `onEvent("cta_click")`'
        if has_next_url:
            cta += " and navigates: `window.location.href = nextUrl`"
        body = f"""Generate a sales funnel LANDING PAGE React component.

{_product_header(product)}

This page should include:
- A compelling hero section with headline and subheadline on a bg-leaf-100 background
- Key benefits section using the selling points
- Social proof section (realistic testimonials or stats)
- {cta}"""
        checkout = False
    elif page_type == "checkout":
        body = f"""Generate a sales funnel CHECKOUT PAGE React component.

{_product_header(product, full=False)}

This page should:
- Show an order summary card with product name and price
- Include urgency/scarcity elements (limited time, limited stock)
{build_checkout_embed(product, navigate=has_next_url)}
- Include trust badges and a money-back guarantee note below the checkout
- Use bg-leaf-100 for the page background"""
        checkout = True
    elif page_type == "thankyou":
        body = f"""Generate a sales funnel THANK YOU / CONFIRMATION PAGE React component.

{_product_header(product, full=False)}

This page should:
- Display a success/celebration message with a checkmark icon (inline SVG)
- Confirm the purchase with product name and price
- Include a "What happens next" section with 2-3 steps
- Add a small note that this was a demo purchase (no real payment was processed)
- Use bg-leaf-100 for the page background
- This is the final page, no navigation needed"""
        checkout = False
    else:
        raise ValueError(f"Unknown page type: {page_type}")

    return body + "\n" + _requirements(
        product, component_name, has_next_url, style_line, allow_checkout_import=checkout
    )


# Four-page legacy funnels had an email step that reuses the landing layout
LEGACY_FOUR_PAGE_TYPES = ("landing", "landing", "checkout", "thankyou")
LEGACY_PAGE_TYPES = ("landing", "checkout", "thankyou")


def legacy_page_type(page_index: int, total_pages: int) -> Optional[PageType]:
    """Page type of a spec-less page, by its position in the funnel."""
    types = LEGACY_FOUR_PAGE_TYPES if total_pages == 4 else LEGACY_PAGE_TYPES
    if 0 <= page_index < len(types):
        return types[page_index]
    return None
