"""
Prompt templates, one per strategy.

Every template asks for the same core fields (amount, date, description,
merchantName, category, and confidence where the model can judge it).
Some strategies add one extra field. The templates are rendered from a
shared skeleton so that the core fields cannot drift apart.
"""

from functools import partial
from typing import Callable, Optional

from pydantic import BaseModel, ConfigDict

from receipt_scanner.models.receipt import ImageAnalysis, Strategy, TransactionCategory


CATEGORY_LIST = ",".join(c.value for c in TransactionCategory)

CORE_FIELDS = ("amount", "date", "description", "merchantName", "category")


class ExtraField(BaseModel):
    """A strategy-specific field requested on top of the core ones."""
    model_config = ConfigDict(frozen=True)

    name: str
    bullet: str
    json_type: str


class PromptTemplate(BaseModel):
    model_config = ConfigDict(frozen=True)

    intro: str
    amount_hint: str
    closing: str
    ask_confidence: bool = True
    extra: Optional[ExtraField] = None
    use_case: str = ""

    @property
    def fields(self) -> tuple[str, ...]:
        fields = CORE_FIELDS + (("confidence",) if self.ask_confidence else ())
        return fields + ((self.extra.name,) if self.extra else ())


def _render(template: PromptTemplate) -> str:
    bullets = [
        f"- Total amount ({template.amount_hint})",
        "- Date (in ISO format)",
        "- Description or items purchased (brief summary)",
        "- Merchant/store name",
        f"- Suggested category (one of: {CATEGORY_LIST})",
    ]
    schema = [
        '  "amount": number',
        '  "date": "ISO date string"',
        '  "description": "string"',
        '  "merchantName": "string"',
        '  "category": "string"',
    ]
    if template.ask_confidence:
        bullets.append("- Confidence score (0-1) for the extraction")
        schema.append('  "confidence": number')
    if template.extra:
        bullets.append(f"- {template.extra.bullet}")
        schema.append(f'  "{template.extra.name}": {template.extra.json_type}')

    return (
        f"{template.intro} Extract the following information in JSON format:\n"
        + "\n".join(bullets)
        + "\n\nOnly respond with valid JSON in this exact format:\n{\n"
        + ",\n".join(schema)
        + f"\n}}\n\n{template.closing}\n"
    )


TEMPLATES: dict[Strategy, PromptTemplate] = {
    Strategy.LIGHTWEIGHT: PromptTemplate(
        intro="Analyze this simple receipt image.",
        amount_hint="just the number",
        closing="Focus on clear, printed text. If not a receipt, return an empty object.",
        ask_confidence=False,
        use_case="Simple printed receipts with clear text",
    ),
    Strategy.STANDARD: PromptTemplate(
        intro="Analyze this receipt image.",
        amount_hint="just the number",
        closing="Handle standard printed receipts with good clarity.",
        use_case="Standard printed receipts",
    ),
    Strategy.HANDWRITING: PromptTemplate(
        intro="Analyze this receipt image that may contain handwritten text.",
        amount_hint="just the number, even if handwritten",
        closing=(
            "Pay special attention to handwritten amounts and dates. If text is "
            "unclear, provide your best interpretation with lower confidence."
        ),
        extra=ExtraField(
            name="notes",
            bullet="Notes about any unclear or ambiguous text",
            json_type='"string"',
        ),
        use_case="Handwritten receipts with varied text styles",
    ),
    Strategy.BATCH: PromptTemplate(
        intro="Analyze this image that may contain multiple receipts or a complex layout.",
        amount_hint="just the number",
        closing="If multiple receipts are detected, focus on the primary or most prominent one.",
        extra=ExtraField(
            name="receiptCount",
            bullet="Number of receipts detected",
            json_type="number",
        ),
        use_case="Multiple receipts or complex layouts",
    ),
    Strategy.MIXED: PromptTemplate(
        intro="Analyze this receipt image that contains both printed and handwritten text.",
        amount_hint="just the number, prioritize printed over handwritten",
        closing="Handle mixed content by prioritizing printed text for amounts and dates.",
        extra=ExtraField(
            name="textTypeBreakdown",
            bullet="Text type breakdown (printed vs handwritten percentages)",
            json_type='{ "printed": number, "handwritten": number }',
        ),
        use_case="Mixed printed and handwritten content",
    ),
    Strategy.FALLBACK: PromptTemplate(
        intro="Analyze this receipt image using advanced processing techniques.",
        amount_hint="just the number",
        closing=(
            "Use your best judgment for unclear or damaged images. "
            "If it's not a receipt, return an empty object."
        ),
        extra=ExtraField(
            name="processingNotes",
            bullet="Processing notes",
            json_type='"string"',
        ),
        use_case="Fallback for complex or unclear images",
    ),
}


PROMPT_RENDERERS: dict[Strategy, Callable[[], str]] = {
    strategy: partial(_render, template)
    for strategy, template in TEMPLATES.items()
}


def get_template(strategy: Strategy) -> PromptTemplate:
    return TEMPLATES.get(strategy, TEMPLATES[Strategy.FALLBACK])


def render_prompt(strategy: Strategy) -> str:
    """Base prompt for a strategy; unknown strategies get the fallback prompt."""
    renderer = PROMPT_RENDERERS.get(strategy, PROMPT_RENDERERS[Strategy.FALLBACK])
    return renderer()


def analysis_context(analysis: ImageAnalysis) -> str:
    text_type = "Printed" if analysis.line_analysis.is_consistent else "Handwritten"
    return (
        "Based on the image analysis:\n"
        f"- Text Type: {text_type} text detected\n"
        f"- Complexity: {analysis.complexity_score.complexity.value} complexity\n"
        f"- Text Density: {analysis.text_density.density * 100:.1f}% of image\n"
        f"- Confidence: {analysis.confidence * 100:.1f}% analysis confidence\n\n"
    )


def build_prompt(strategy: Strategy, analysis: Optional[ImageAnalysis] = None) -> str:
    """Strategy prompt, prefixed with the analysis summary when one is available."""
    prompt = render_prompt(strategy)
    if analysis is None:
        return prompt
    return analysis_context(analysis) + prompt
