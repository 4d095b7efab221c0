"""Capabilities exposed to the cart: tax, price tag, price search, price guess, additives."""

import logging
from collections import Counter

from .builder import build
from .completion import Completion
from .config import Settings
from .db import Database
from .errors import (
    AdditiveAnalysisError,
    AnalysisError,
    CartwiseError,
    ExtractionError,
    PriceGuessError,
    TaxAnalysisError,
    TransportError,
)
from .extractor import extract, extract_explanation, extract_tax
from .ledger import UsageLedger
from .models import (
    AdditiveRecord,
    AdditiveReport,
    AdditivesResponse,
    LedgerSnapshot,
    PriceGuess,
    PriceSearchResult,
    PriceTagRecord,
    PromptRequest,
    TaxRate,
    UsageCategory,
    UsageRecord,
)
from .pricing import cost, resolve_usage
from .prompts import PromptType, location_context, render
from .registry import REGISTRY, ModelProfile, ModelRegistry
from .retry import TaxRetryController
from .transport import Transport

logger = logging.getLogger("cartwise")

UNKNOWN_ITEM = "Unknown Item"


class AIService:
    def __init__(
        self,
        settings: Settings,
        transport: Transport,
        ledger: UsageLedger,
        retry: TaxRetryController | None = None,
        registry: ModelRegistry = REGISTRY,
    ):
        self.settings = settings
        self.transport = transport
        self.ledger = ledger
        self.retry = retry or TaxRetryController()
        self.registry = registry

    # --- plumbing ---

    def _prompt(self, prompt_type: PromptType, **fields: str) -> str:
        return render(
            prompt_type,
            fields,
            overrides=self.settings.custom_prompts,
            enabled=self.settings.enabled_prompts,
        )

    def _search_options(self) -> dict:
        return {
            "search_context_size": self.settings.tax_search_context_size,
            "search_recency_filter": self.settings.tax_search_recency_filter,
        }

    async def _send(self, request: PromptRequest) -> tuple[Completion, ModelProfile]:
        profile = self.registry.resolve(request.model_id)
        payload = build(request, profile, self.settings.credentials, self._search_options())
        completion = await self.transport.send(payload)
        return completion, profile

    async def _bill(
        self,
        category: UsageCategory,
        request: PromptRequest,
        profile: ModelProfile,
        completion: Completion,
        item_name: str | None = None,
    ):
        usage = resolve_usage(
            completion.usage, request.prompt, completion.content, has_image=request.image is not None
        )
        amount = cost(request.model_id, usage.input_tokens, usage.output_tokens, self.registry)
        await self.ledger.record(
            UsageRecord(
                category=category,
                prompt=request.prompt,
                response=completion.content,
                estimated_cost=amount,
                input_tokens=usage.input_tokens,
                output_tokens=usage.output_tokens,
                item_name=item_name,
                provider=profile.provider,
                model=request.model_id,
            )
        )
        logger.info(
            "CALL %s model=%s in=%d out=%d cost=$%.6f latency=%dms%s",
            category.value,
            request.model_id,
            usage.input_tokens,
            usage.output_tokens,
            amount,
            completion.latency_ms,
            "" if completion.usage else " (estimated)",
        )

    async def _exchange(self, category: UsageCategory, request: PromptRequest, item_name: str | None) -> str:
        completion, profile = await self._send(request)
        await self._bill(category, request, profile, completion, item_name)
        return completion.content

    # --- tax rate ---

    async def infer_tax_rate(self, item_name: str, location: str | None = None) -> float:
        """Sales tax percentage for an item, e.g. 6.25.

        Raises TaxAnalysisError when the retry budget runs out; callers show
        the item's tax as unknown.
        """
        if self.settings.use_manual_tax_rate:
            return self.settings.manual_tax_rate
        if self.settings.use_multi_attempt_tax:
            return await self._consensus_tax_rate(item_name, location)
        prompt = self._prompt(PromptType.TAX_RATE, itemName=item_name, locationContext=location_context(location))

        async def attempt(number: int) -> TaxRate:
            return await self._tax_attempt(item_name, prompt)

        return await self.retry.run(attempt, item_name)

    async def _tax_attempt(self, item_name: str, prompt: str) -> TaxRate:
        request = PromptRequest(model_id=self.settings.tax_model, prompt=prompt, web_search=True)
        content = await self._exchange(UsageCategory.TAX_LOOKUP, request, item_name)
        return extract_tax(content)

    async def _consensus_tax_rate(self, item_name: str, location: str | None) -> float:
        """Ask several times and keep the most common answer."""
        total = max(1, self.settings.tax_detection_attempts)
        prompt = self._prompt(PromptType.TAX_RATE, itemName=item_name, locationContext=location_context(location))
        rates = []
        for number in range(1, total + 1):
            try:
                outcome = await self._tax_attempt(item_name, prompt)
            except (ExtractionError, TransportError) as exc:
                logger.warning("Tax attempt %d/%d for %r failed: %s", number, total, item_name, exc)
                continue
            if outcome.tax_rate is None:
                logger.warning("Tax attempt %d/%d for %r returned no rate", number, total, item_name)
                continue
            rates.append(outcome.tax_rate)

        if not rates:
            raise TaxAnalysisError(f"All {total} tax detection attempts failed for '{item_name}'")
        rate, occurrences = Counter(rates).most_common(1)[0]
        logger.info("Consensus tax rate for %r: %.2f%% (%d/%d answers)", item_name, rate, occurrences, len(rates))
        return rate

    # --- price tag ---

    async def analyze_price_tag(
        self,
        image: bytes,
        location: str | None = None,
        media_type: str = "image/jpeg",
    ) -> PriceTagRecord:
        prompt = self._prompt(PromptType.PRICE_TAG, locationContext=location_context(location))
        request = PromptRequest(
            model_id=self.settings.photo_model,
            prompt=prompt,
            image=image,
            image_media_type=media_type,
            max_tokens=500,
        )
        try:
            completion, profile = await self._send(request)
        except TransportError as exc:
            raise AnalysisError(f"Price tag analysis failed: {exc}") from exc

        tag = None
        try:
            tag = extract(completion.content, PriceTagRecord)
        except ExtractionError as exc:
            raise AnalysisError(
                "Failed to decode price tag response",
                explanation=extract_explanation(completion.content),
            ) from exc
        finally:
            await self._bill(UsageCategory.IMAGE_ANALYSIS, request, profile, completion, tag.name if tag else None)

        if tag.tax_rate is None and tag.name.strip() and tag.name != UNKNOWN_ITEM:
            tag = await self._fill_tax(tag, location)
        return tag

    async def _fill_tax(self, tag: PriceTagRecord, location: str | None) -> PriceTagRecord:
        try:
            rate = await self.infer_tax_rate(tag.name, location)
        except CartwiseError as exc:
            logger.warning("Tax lookup for scanned item %r failed: %s", tag.name, exc)
            return tag.model_copy(
                update={
                    "tax_description": "Unknown Taxes",
                    "analysis_issues": [*tag.analysis_issues, f"Tax rate lookup failed: {exc}"],
                }
            )
        if self.settings.use_manual_tax_rate:
            source = "Manual rate"
        elif location:
            source = "Auto-detected"
        else:
            source = "Default rate"
        return tag.model_copy(update={"tax_rate": rate, "tax_description": f"{rate:g}% ({source})"})

    # --- prices ---

    async def search_price(
        self,
        item_name: str,
        site: str,
        spec: str | None = None,
        location: str | None = None,
    ) -> PriceSearchResult:
        """Look up a listed price for an item on one store site."""
        prompt = self._prompt(
            PromptType.PRICE_SEARCH,
            itemName=item_name,
            site=site,
            specText=f" ({spec})" if spec else "",
            locationContext=location_context(location),
        )
        request = PromptRequest(model_id=self.settings.search_model, prompt=prompt, web_search=True)
        try:
            content = await self._exchange(UsageCategory.PRICE_SEARCH, request, item_name)
        except TransportError as exc:
            raise AnalysisError(f"Price search for '{item_name}' failed: {exc}") from exc
        try:
            result = extract(content, PriceSearchResult)
        except ExtractionError as exc:
            raise AnalysisError(
                f"Failed to decode price search response for '{item_name}'",
                explanation=extract_explanation(content),
            ) from exc
        if not result.item_name:
            result = result.model_copy(update={"item_name": item_name})
        return result

    async def guess_price(
        self,
        item_name: str,
        location: str | None = None,
        store: str | None = None,
        brand: str | None = None,
        details: str | None = None,
    ) -> PriceGuess:
        prompt = self._prompt(
            PromptType.PRICE_GUESS,
            itemName=item_name,
            brandText=f"{brand} " if brand else "",
            detailsText=f" ({details})" if details else "",
            storeName=store or "a major retailer",
            locationContext=location_context(location),
        )
        request = PromptRequest(model_id=self.settings.guess_model, prompt=prompt, web_search=True)
        try:
            content = await self._exchange(UsageCategory.PRICE_GUESS, request, item_name)
        except TransportError as exc:
            raise PriceGuessError(f"Price guess for '{item_name}' failed: {exc}") from exc
        try:
            return extract(content, PriceGuess)
        except ExtractionError as exc:
            raise PriceGuessError(
                f"Failed to decode price guess for '{item_name}'",
                explanation=extract_explanation(content),
            ) from exc

    # --- additives ---

    async def analyze_additives(self, product_name: str) -> AdditiveReport:
        prompt = self._prompt(PromptType.ADDITIVES, productName=product_name)
        request = PromptRequest(model_id=self.settings.additive_model, prompt=prompt)
        try:
            content = await self._exchange(UsageCategory.ADDITIVE_ANALYSIS, request, product_name)
        except TransportError as exc:
            raise AdditiveAnalysisError(f"Additive analysis for '{product_name}' failed: {exc}") from exc
        try:
            response = extract(content, AdditivesResponse)
        except ExtractionError as exc:
            raise AdditiveAnalysisError(
                f"Failed to decode additive analysis for '{product_name}'",
                explanation=extract_explanation(content),
            ) from exc

        if response.risky_additives is None or response.safe_additives is None:
            raise AdditiveAnalysisError(
                response.explanation or f"Cannot determine additives for '{product_name}'",
                explanation=response.explanation,
            )
        additives = [
            AdditiveRecord(
                name=a.name,
                is_risky=True,
                risk_level=a.risk_level or "Medium Risk",
                description=a.description,
            )
            for a in response.risky_additives
        ]
        additives += [
            AdditiveRecord(name=a.name, is_risky=False, risk_level="Safe", description=a.description)
            for a in response.safe_additives
        ]
        return AdditiveReport(
            risky_count=len(response.risky_additives),
            safe_count=len(response.safe_additives),
            additives=additives,
        )

    def ledger_snapshot(self) -> LedgerSnapshot:
        return self.ledger.snapshot()

    async def close(self):
        await self.transport.close()
        await self.ledger.close()


async def open_service(settings: Settings | None = None, db_path=None) -> AIService:
    """Service wired to a real HTTP client and the on-disk ledger."""
    ledger = UsageLedger(Database(db_path))
    await ledger.open()
    return AIService(settings or Settings.from_env(), Transport(), ledger)
