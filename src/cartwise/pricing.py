"""Cost calculation and token estimation."""

from decimal import ROUND_DOWN, Decimal

from .models import TokenUsage
from .registry import REGISTRY, ModelRegistry

# Input tokens charged for one inline image when the provider reports no usage
IMAGE_TOKEN_ESTIMATE = 765

_SPECIAL_CHARS = frozenset(".,!?;:()[]{}\"'`-_=+*/\\|@#$%^&<>")


def cost(model_id: str, input_tokens: int, output_tokens: int, registry: ModelRegistry = REGISTRY) -> float:
    """Cost in USD. Unknown models are priced at the registry's default rates."""
    input_rate, output_rate = registry.rates(model_id)
    return (input_tokens / 1_000_000) * input_rate + (output_tokens / 1_000_000) * output_rate


def estimate_tokens(text: str) -> int:
    """Rough token count for providers that report no usage.

    About one token per four characters, inflated for JSON-looking text, dense
    punctuation and many newlines, then scaled by 1.2 to stay on the high side.
    """
    length = len(text)
    tokens = max(1, length // 4)
    if "{" in text or "[" in text:
        tokens = int(tokens * 1.15)
    special = sum(1 for ch in text if ch in _SPECIAL_CHARS)
    if special > length // 20:
        tokens = int(tokens * 1.1)
    newlines = text.count("\n")
    if newlines > 5:
        tokens += newlines // 2
    tokens = int(tokens * 1.2)
    return max(1, tokens)


def resolve_usage(reported: TokenUsage | None, prompt: str, response: str, has_image: bool = False) -> TokenUsage:
    """Provider-reported counts win; otherwise estimate from text length."""
    if reported is not None:
        return reported
    input_tokens = estimate_tokens(prompt)
    if has_image:
        input_tokens += IMAGE_TOKEN_ESTIMATE
    return TokenUsage(input_tokens=input_tokens, output_tokens=estimate_tokens(response))


def format_currency(amount: float, places: int = 6) -> str:
    """Format USD truncated (not rounded) to `places` decimals."""
    truncated = Decimal(str(amount)).quantize(Decimal(10) ** -places, rounding=ROUND_DOWN)
    return f"{truncated:f}"
