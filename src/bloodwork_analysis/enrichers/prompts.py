# ============================================================================
# src/bloodwork_analysis/enrichers/prompts.py
# ============================================================================
"""
Prompts for note enrichment.

Bump PROMPT_VERSION in config whenever SYSTEM_PROMPT or the batch
template changes; it is recorded in every note's provenance tag.
"""

from typing import Sequence

from ..core.models import ExtractedRow


SYSTEM_PROMPT = """You produce one encouraging, actionable sentence per blood test result.
At most 25 words. No diagnosis. No medication advice. Plain language.
If concerned, mention consulting a clinician. Do not contradict status."""


BATCH_TEMPLATE = """Return ONLY valid JSON: an array of items. If a JSON object is required, wrap the array as {{"data": [...]}}.
Each item:
{{"id": string, "note": string, "confidence": number}}

Rules:
- "id" repeats the id given below.
- "note" is ONE sentence, at most 25 words, friendly, actionable, plain language.
- "confidence" is between 0 and 1.

Data:
{items}"""


def format_number(value: float) -> str:
    """14.0 -> '14', 0.85 -> '0.85'"""
    return str(int(value)) if float(value).is_integer() else str(value)


def format_row(row: ExtractedRow) -> str:
    low = format_number(row.reference_range.min)
    high = format_number(row.reference_range.max)
    return (
        f"# {row.id}\n"
        f"Test: {row.test_name}\n"
        f"Value: {format_number(row.value)} {row.unit}\n"
        f"Normal Range: {low}-{high} {row.unit}\n"
        f"Status: {row.status.value}"
    )


def build_batch_prompt(rows: Sequence[ExtractedRow]) -> str:
    """User prompt enumerating one batch of rows."""
    return BATCH_TEMPLATE.format(items="\n".join(format_row(row) for row in rows))
