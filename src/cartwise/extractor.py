"""Turning free-form model output into typed records.

Every shape goes through the same JSON candidate search and strict pydantic
validation. Only the tax rate, a single number, falls back to mining the raw
text with regular expressions; multi-field records are never guessed at.
"""

import logging
import re
from typing import TypeVar

from pydantic import BaseModel, ValidationError

from .errors import ExtractionError
from .models import TaxRate

logger = logging.getLogger("cartwise")

T = TypeVar("T", bound=BaseModel)

_FENCE_OPEN = "```json"
_FENCE_CLOSE = "```"

_NUMBER = r"(\d+(?:\.\d+)?)"

# Priority order matters: the first pattern that matches decides the rate.
TAX_RATE_PATTERNS: tuple[tuple[str, re.Pattern], ...] = (
    ("key_value", re.compile(r"[\"']?tax_?rate[\"']?\s*[:=]\s*[\"']?" + _NUMBER, re.IGNORECASE)),
    (
        "sentence",
        re.compile(r"(?:tax rate|sales tax|combined rate)\b[^%\n]*?" + _NUMBER + r"\s*%", re.IGNORECASE),
    ),
    ("percent_sign", re.compile(_NUMBER + r"\s*%")),
    ("percent_word", re.compile(_NUMBER + r"\s*percent\b", re.IGNORECASE)),
    ("after_rate", re.compile(r"\brate\b[^\d\n]{0,30}?" + _NUMBER, re.IGNORECASE)),
    ("marker", re.compile(r"XX\s*" + _NUMBER + r"\s*XX", re.IGNORECASE)),
)


def json_candidate(text: str) -> str:
    """Locate the JSON object inside a response.

    A ```json fenced block wins; otherwise the span from the first "{" to the
    last "}". Text without either is returned trimmed.
    """
    trimmed = text.strip()
    start = trimmed.find(_FENCE_OPEN)
    if start != -1:
        body_start = start + len(_FENCE_OPEN)
        end = trimmed.find(_FENCE_CLOSE, body_start)
        if end != -1:
            return trimmed[body_start:end].strip()

    first = trimmed.find("{")
    last = trimmed.rfind("}")
    if first == -1 or last == -1 or last < first:
        return trimmed
    return trimmed[first : last + 1].strip()


def extract(text: str, shape: type[T]) -> T:
    """Decode the JSON candidate of `text` into `shape` or raise ExtractionError."""
    candidate = json_candidate(text)
    try:
        return shape.model_validate_json(candidate)
    except ValidationError as exc:
        logger.debug("Could not decode %s from %r: %s", shape.__name__, candidate[:200], exc)
        raise ExtractionError(f"response is not a valid {shape.__name__}", raw_text=text) from exc


def extract_tax_rate(text: str) -> float | None:
    """Mine a tax rate out of free text. Returns None when no pattern matches."""
    for name, pattern in TAX_RATE_PATTERNS:
        match = pattern.search(text)
        if match:
            logger.debug("Tax rate %s matched by %s pattern", match.group(1), name)
            return float(match.group(1))
    return None


def extract_tax(text: str) -> TaxRate:
    """Strict JSON first, then the regex cascade over the original text."""
    try:
        return extract(text, TaxRate)
    except ExtractionError:
        rate = extract_tax_rate(text)
        if rate is None:
            raise ExtractionError("no tax rate found in response", raw_text=text) from None
        return TaxRate(tax_rate=rate, explanation="Extracted from text response")


class _Explained(BaseModel):
    explanation: str | None = None


def extract_explanation(text: str) -> str | None:
    """The model's own "explanation" field, if the response carries one."""
    try:
        return extract(text, _Explained).explanation
    except ExtractionError:
        return None
