"""Style generation prompt for products that arrive without a palette."""

from ..db.models import ProductInfo


STYLE_PROMPT = """Generate a visual style for a sales funnel for this product:
Name: {product_name}
Type: {product_type}
Tone: {tone}
Description: {description}

Return ONLY a JSON object (no markdown):
{{
  "colors": {{
    "primary": "#hex, main CTA button color, bold and clickable",
    "secondary": "#hex, headings, complementary to primary",
    "accent": "#hex, badges/highlights, a pop color",
    "background": "#hex, very light page background tint",
    "dark": "#hex, dark sections/footer"
  }},
  "fonts": {{
    "heading": "a Google Font name for headings, e.g. Poppins, Montserrat",
    "body": "a Google Font name for body text, e.g. Inter, Open Sans"
  }},
  "styleNotes": "2-3 word visual style description, e.g. minimalist, rounded, airy"
}}

Pick colors that match the product's brand feel and tone. Make primary bold and high-contrast. Make background very light (near white). Pick fonts that match the tone."""


def build_style_prompt(product: ProductInfo) -> str:
    return STYLE_PROMPT.format(
        product_name=product.product_name,
        product_type=product.product_type,
        tone=product.tone,
        description=product.description,
    )
