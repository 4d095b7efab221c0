"""Static table of supported models: provider, endpoint, vision support and pricing."""

import logging

from pydantic import BaseModel, ConfigDict

from .config import OPENAI_URL, PERPLEXITY_URL

logger = logging.getLogger("cartwise")


class ModelProfile(BaseModel):
    model_config = ConfigDict(frozen=True)

    identifier: str
    provider: str
    endpoint: str
    supports_vision: bool
    input_rate_per_million: float
    output_rate_per_million: float
    # Provider accepts web_search_options in the request body
    web_search: bool = False


def _profile(identifier, provider, endpoint, vision, input_rate, output_rate, web_search=False):
    return ModelProfile(
        identifier=identifier,
        provider=provider,
        endpoint=endpoint,
        supports_vision=vision,
        input_rate_per_million=input_rate,
        output_rate_per_million=output_rate,
        web_search=web_search,
    )


# USD per 1M tokens (input, output)
MODEL_PROFILES: tuple[ModelProfile, ...] = (
    # OpenAI
    _profile("gpt-4o-mini", "OpenAI", OPENAI_URL, True, 0.15, 0.60),
    _profile("gpt-4o", "OpenAI", OPENAI_URL, True, 2.50, 10.00),
    _profile("gpt-4.1-mini", "OpenAI", OPENAI_URL, True, 0.40, 1.60),
    _profile("gpt-3.5-turbo", "OpenAI", OPENAI_URL, False, 0.50, 1.50),
    # Perplexity
    _profile("sonar", "Perplexity", PERPLEXITY_URL, True, 1.00, 1.00, web_search=True),
    _profile("sonar-pro", "Perplexity", PERPLEXITY_URL, True, 3.00, 15.00, web_search=True),
    _profile("sonar-reasoning-pro", "Perplexity", PERPLEXITY_URL, True, 2.00, 8.00, web_search=True),
)


class ModelRegistry:
    """Read-only lookup over a fixed set of profiles.

    Unknown identifiers never fail: they resolve to a profile that borrows
    provider, endpoint and vision support from the single text-only model and
    is priced at the default rates (the midpoint between the cheapest and the
    most expensive known rate, taken separately for input and output).
    """

    def __init__(self, profiles=MODEL_PROFILES):
        self._profiles: dict[str, ModelProfile] = {p.identifier: p for p in profiles}
        text_only = [p for p in profiles if not p.supports_vision]
        if len(text_only) != 1:
            raise ValueError("registry needs exactly one non-vision text model")
        self.text_profile = text_only[0]
        inputs = [p.input_rate_per_million for p in profiles]
        outputs = [p.output_rate_per_million for p in profiles]
        self.default_input_rate = (min(inputs) + max(inputs)) / 2
        self.default_output_rate = (min(outputs) + max(outputs)) / 2

    def __contains__(self, model_id: str) -> bool:
        return model_id in self._profiles

    def resolve(self, model_id: str) -> ModelProfile:
        profile = self._profiles.get(model_id)
        if profile is not None:
            return profile
        logger.warning("Unknown model %s, using %s endpoint and default rates", model_id, self.text_profile.identifier)
        return self.text_profile.model_copy(
            update={
                "identifier": model_id,
                "input_rate_per_million": self.default_input_rate,
                "output_rate_per_million": self.default_output_rate,
            }
        )

    def rates(self, model_id: str) -> tuple[float, float]:
        profile = self._profiles.get(model_id)
        if profile is None:
            return self.default_input_rate, self.default_output_rate
        return profile.input_rate_per_million, profile.output_rate_per_million

    def provider_for(self, model_id: str) -> str:
        return self.resolve(model_id).provider

    def supported_models(self) -> list[str]:
        return sorted(self._profiles)


REGISTRY = ModelRegistry()
