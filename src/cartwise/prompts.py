"""Default prompt templates, with optional per-type overrides.

Placeholders are written as {name} and substituted by plain replacement, so
the literal JSON braces in the templates need no escaping.
"""

from collections.abc import Mapping
from enum import Enum


class PromptType(str, Enum):
    TAX_RATE = "taxRate"
    PRICE_TAG = "priceTagAnalysis"
    PRICE_SEARCH = "priceSearch"
    PRICE_GUESS = "priceGuessing"
    ADDITIVES = "additiveAnalysis"


DEFAULT_TEMPLATES: dict[PromptType, str] = {
    PromptType.TAX_RATE: """\
What is the sales tax rate for "{itemName}"? {locationContext}
If the item name is ambiguous, generic (like "test", "123", "item") or not a real product, the rate is unknown.
Respond with ONLY a valid JSON object: {"taxRate": <rate>, "explanation": "<one sentence>"}
<rate> is the sales tax percentage as a number (6.25 for 6.25%), or null if unknown.""",
    PromptType.PRICE_TAG: """\
Analyze this price tag image. {locationContext}
Respond with ONLY a valid JSON object:
{"name": "<item_name>", "price": <price>, "taxRate": <tax_rate>, "taxDescription": "<description>", "ingredients": "<ingredients>", "analysisIssues": ["<issue>"]}
- name: the exact product name, "Unknown Item" if unreadable.
- price: a number without currency symbols, 0 if unreadable.
- taxRate: a number if printed on the tag, otherwise null.
- taxDescription: where the tax rate came from, "Unknown Taxes" if taxRate is null.
- ingredients: the full ingredients text if visible, otherwise null.
- analysisIssues: short notes explaining any default value you used, or [].""",
    PromptType.PRICE_SEARCH: """\
Search {site} for the current price of "{itemName}"{specText}. {locationContext}
Respond with ONLY a valid JSON object:
{"found": true, "itemName": "<listed name>", "price": <price>, "description": "<short description>", "sourceURL": "<product url>"}
If the item is not listed, respond with {"found": false, "itemName": "{itemName}", "price": null, "description": "<why not>", "sourceURL": null}.""",
    PromptType.PRICE_GUESS: """\
Find the current price of {brandText}"{itemName}"{detailsText} at {storeName} before taxes. {locationContext}
Check official websites, menus and delivery apps.
Respond with ONLY a valid JSON object: {"estimatedPrice": <price>, "sourceURL": "<url>", "explanation": "<where the price came from>"}
If no price is found, respond with {"estimatedPrice": null, "sourceURL": null, "explanation": "<why not>"}.""",
    PromptType.ADDITIVES: """\
Analyze the additives in "{productName}".
Risky additives include artificial colors (Red 40, Yellow 5, Blue 1), preservatives (BHA, BHT, TBHQ), artificial sweeteners (aspartame, sucralose), MSG, nitrites, nitrates and high fructose corn syrup.
Safe additives include vitamins, natural acids (citric, lactic), natural thickeners (xanthan gum, pectin) and natural colorings (beta-carotene, turmeric).
Respond with ONLY a valid JSON object:
{"riskyAdditives": [{"name": "<name>", "riskLevel": "High Risk|Medium Risk|Low Risk", "description": "<desc>"}], "safeAdditives": [{"name": "<name>", "description": "<desc>"}]}
If this is not a real, identifiable food or drink, respond with {"riskyAdditives": null, "safeAdditives": null, "explanation": "<why>"}.""",
}


def location_context(location: str | None) -> str:
    if location:
        return f"The user is located in {location}."
    return "No location provided."


def render(
    prompt_type: PromptType,
    fields: Mapping[str, str],
    overrides: Mapping[str, str] | None = None,
    enabled: frozenset[str] | set[str] = frozenset(),
) -> str:
    template = DEFAULT_TEMPLATES[prompt_type]
    if overrides and prompt_type.value in enabled and overrides.get(prompt_type.value):
        template = overrides[prompt_type.value]
    for name, value in fields.items():
        template = template.replace("{" + name + "}", value)
    return template
