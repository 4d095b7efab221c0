"""Pydantic models for cartwise requests, outcomes and usage records."""

import uuid
from datetime import UTC, datetime
from enum import Enum

from pydantic import BaseModel, ConfigDict, Field


def _utcnow():
    return datetime.now(UTC)


def _new_id() -> str:
    return str(uuid.uuid4())


class UsageCategory(str, Enum):
    """Billing category of one external call."""

    TAX_LOOKUP = "Tax Lookup"
    IMAGE_ANALYSIS = "Image Analysis"
    PRICE_GUESS = "Price Guess"
    PRICE_SEARCH = "Price Search"
    ADDITIVE_ANALYSIS = "Additive Analysis"


class PromptRequest(BaseModel):
    """One prompt bound for one model. Built per call, never shared."""

    model_config = ConfigDict(frozen=True, protected_namespaces=())

    model_id: str
    prompt: str
    image: bytes | None = None
    image_media_type: str = "image/jpeg"
    max_tokens: int = 300
    web_search: bool = False


class TokenUsage(BaseModel):
    input_tokens: int = 0
    output_tokens: int = 0

    @property
    def total_tokens(self) -> int:
        return self.input_tokens + self.output_tokens


# --- Extraction outcomes ---


class _Outcome(BaseModel):
    model_config = ConfigDict(frozen=True, populate_by_name=True)


class TaxRate(_Outcome):
    tax_rate: float | None = Field(default=None, alias="taxRate")
    explanation: str | None = None


class PriceTagRecord(_Outcome):
    name: str
    price: float
    tax_rate: float | None = Field(default=None, alias="taxRate")
    tax_description: str = Field(default="Unknown Taxes", alias="taxDescription")
    ingredients: str | None = None
    analysis_issues: list[str] = Field(default_factory=list, alias="analysisIssues")


class PriceSearchResult(_Outcome):
    found: bool
    item_name: str = Field(default="", alias="itemName")
    price: float | None = None
    description: str = ""
    source_url: str | None = Field(default=None, alias="sourceURL")


class PriceGuess(_Outcome):
    price: float | None = Field(default=None, alias="estimatedPrice")
    source_url: str | None = Field(default=None, alias="sourceURL")
    explanation: str | None = None


class AdditiveRecord(_Outcome):
    name: str
    is_risky: bool = Field(alias="isRisky")
    risk_level: str = Field(alias="riskLevel")
    description: str = ""


class AdditiveReport(_Outcome):
    risky_count: int = Field(alias="riskyCount")
    safe_count: int = Field(alias="safeCount")
    additives: list[AdditiveRecord] = Field(default_factory=list)


class AdditiveDetail(_Outcome):
    """One additive as the model reports it."""

    name: str
    risk_level: str | None = Field(default=None, alias="riskLevel")
    description: str = ""


class AdditivesResponse(_Outcome):
    """Wire shape of an additive analysis; null lists mean "cannot determine"."""

    risky_additives: list[AdditiveDetail] | None = Field(default=None, alias="riskyAdditives")
    safe_additives: list[AdditiveDetail] | None = Field(default=None, alias="safeAdditives")
    explanation: str | None = None


# --- Ledger ---


class UsageRecord(BaseModel):
    """A single completed external call."""

    model_config = ConfigDict(frozen=True)

    id: str = Field(default_factory=_new_id)
    timestamp: datetime = Field(default_factory=_utcnow)
    category: UsageCategory
    prompt: str = ""
    response: str = ""
    estimated_cost: float = 0.0
    input_tokens: int = 0
    output_tokens: int = 0
    item_name: str | None = None
    provider: str = ""
    model: str = ""


class CategoryTotals(BaseModel):
    count: int = 0
    cost: float = 0.0


class LedgerSnapshot(BaseModel):
    """Read-only view of the billing ledger."""

    model_config = ConfigDict(frozen=True)

    total_cost: float = 0.0
    total_calls: int = 0
    categories: dict[UsageCategory, CategoryTotals] = Field(default_factory=dict)
    providers: dict[str, CategoryTotals] = Field(default_factory=dict)
    baseline_amount: float = 0.0
    baseline_cost_at_set: float = 0.0
    baseline_set_at: datetime | None = None
    manual_adjustment: float = 0.0
    initial_credits: float = 0.0
    # provider name -> prepaid balance left, decremented by every billed call
    provider_credits: dict[str, float] = Field(default_factory=dict)
    history: list[UsageRecord] = Field(default_factory=list)

    @property
    def total_spent(self) -> float:
        return self.manual_adjustment + self.total_cost

    @property
    def spent_since_baseline(self) -> float:
        if self.baseline_set_at is None:
            return 0.0
        return max(0.0, self.total_cost - self.baseline_cost_at_set)

    @property
    def remaining_credits(self) -> float:
        return max(0.0, self.initial_credits - self.total_spent)

    @property
    def credits_used_fraction(self) -> float:
        if self.initial_credits <= 0:
            return 0.0
        return min(1.0, self.total_spent / self.initial_credits)

    def provider_calls_remaining(self, provider: str) -> int | None:
        """How many more calls to `provider` its own balance covers at its average cost."""
        balance = self.provider_credits.get(provider)
        totals = self.providers.get(provider)
        if not balance or totals is None or totals.count == 0 or totals.cost <= 0:
            return None
        return int(balance / (totals.cost / totals.count))

    def category(self, category: UsageCategory) -> CategoryTotals:
        return self.categories.get(category, CategoryTotals())

    def average_cost(self, category: UsageCategory) -> float | None:
        totals = self.category(category)
        if totals.count == 0:
            return None
        return totals.cost / totals.count

    def estimated_calls_remaining(self, category: UsageCategory) -> int | None:
        """How many more calls of this category the remaining credits cover."""
        average = self.average_cost(category)
        if not average or self.remaining_credits <= 0:
            return None
        return int(self.remaining_credits / average)
