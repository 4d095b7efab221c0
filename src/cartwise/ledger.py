"""Running ledger of API spend.

Counters only grow, except through `reset()`. Every mutation happens under a
single asyncio lock, and in-memory updates are applied without awaiting, so
concurrent calls finishing together cannot lose an increment. Storage errors
are logged and skipped: a failed write never fails the call being billed.
"""

import asyncio
import json
import logging
from datetime import UTC, datetime

from .config import HISTORY_LIMIT
from .db import Database
from .models import CategoryTotals, LedgerSnapshot, UsageCategory, UsageRecord

logger = logging.getLogger("cartwise")

_ALL = ("all", "")
_STATE_FLOATS = ("baseline_amount", "baseline_cost_at_set", "manual_adjustment", "initial_credits")


class UsageLedger:
    def __init__(self, db: Database | None = None, history_limit: int = HISTORY_LIMIT):
        self.db = db
        self.history_limit = history_limit
        self._lock = asyncio.Lock()
        self._clear()
        self.initial_credits = 0.0
        self.provider_credits: dict[str, float] = {}

    def _clear(self):
        self.total_cost = 0.0
        self.total_calls = 0
        self.categories: dict[UsageCategory, CategoryTotals] = {}
        self.providers: dict[str, CategoryTotals] = {}
        self.baseline_amount = 0.0
        self.baseline_cost_at_set = 0.0
        self.baseline_set_at: datetime | None = None
        self.manual_adjustment = 0.0
        self.history: list[UsageRecord] = []

    # --- lifecycle ---

    async def open(self):
        if self.db is None:
            return
        await self.db.init()
        await self._load()

    async def close(self):
        if self.db is not None:
            await self.db.close()

    async def _load(self):
        for row in await self.db.load_totals():
            totals = CategoryTotals(count=row["count"], cost=row["cost"])
            if (row["scope"], row["key"]) == _ALL:
                self.total_calls, self.total_cost = totals.count, totals.cost
            elif row["scope"] == "category":
                try:
                    self.categories[UsageCategory(row["key"])] = totals
                except ValueError:
                    logger.warning("Ignoring totals for unknown category %r", row["key"])
            elif row["scope"] == "provider":
                self.providers[row["key"]] = totals

        state = await self.db.load_state()
        for key in _STATE_FLOATS:
            if state.get(key) is not None:
                setattr(self, key, float(state[key]))
        if state.get("baseline_set_at"):
            self.baseline_set_at = datetime.fromisoformat(state["baseline_set_at"])
        if state.get("provider_credits"):
            self.provider_credits = {k: float(v) for k, v in json.loads(state["provider_credits"]).items()}

        self.history = await self.db.load_display(self.history_limit)

    # --- mutation ---

    async def record(self, record: UsageRecord):
        """Append one billed call and bump every counter it touches."""
        async with self._lock:
            evicted, totals, state = self._apply(record)
            if self.db is None:
                return
            try:
                await self.db.persist_record(record, evicted, totals, state)
            except Exception:
                logger.exception("Failed to persist usage record %s", record.id)

    def _apply(self, record: UsageRecord) -> tuple[list[str], list[tuple[str, str, int, float]], dict[str, str]]:
        category = self.categories.get(record.category, CategoryTotals())
        provider = self.providers.get(record.provider, CategoryTotals())
        category = CategoryTotals(count=category.count + 1, cost=category.cost + record.estimated_cost)
        provider = CategoryTotals(count=provider.count + 1, cost=provider.cost + record.estimated_cost)

        self.total_calls += 1
        self.total_cost += record.estimated_cost
        self.categories[record.category] = category
        self.providers[record.provider] = provider

        state = {}
        balance = self.provider_credits.get(record.provider, 0.0)
        if balance > 0:
            self.provider_credits[record.provider] = max(0.0, balance - record.estimated_cost)
            state["provider_credits"] = json.dumps(self.provider_credits)

        self.history.insert(0, record)
        evicted = [r.id for r in self.history[self.history_limit :]]
        del self.history[self.history_limit :]

        totals = [
            ("all", "", self.total_calls, self.total_cost),
            ("category", record.category.value, category.count, category.cost),
            ("provider", record.provider, provider.count, provider.cost),
        ]
        return evicted, totals, state

    async def reset(self):
        """Zero every counter, drop baseline and adjustment, empty the display log.

        Initial credits and per-provider balances are kept.
        """
        async with self._lock:
            logger.warning(
                "Resetting usage ledger (calls=%d, cost=$%.6f)", self.total_calls, self.total_cost
            )
            self._clear()
            if self.db is None:
                return
            try:
                await self.db.reset(keep_state=("initial_credits", "provider_credits"))
            except Exception:
                logger.exception("Failed to persist ledger reset")

    async def set_baseline(self, amount: float):
        """Remember `amount` as the spend reference point as of now."""
        async with self._lock:
            self.baseline_amount = amount
            self.baseline_cost_at_set = self.total_cost
            self.baseline_set_at = datetime.now(UTC)
            await self._save_state()

    async def set_total_spent(self, amount: float):
        """Adjust so that total spent reads `amount`. All-time counters are untouched."""
        async with self._lock:
            self.manual_adjustment = amount - self.total_cost
            await self._save_state()

    async def set_initial_credits(self, amount: float):
        async with self._lock:
            self.initial_credits = amount
            await self._save_state()

    async def set_provider_credits(self, provider: str, amount: float):
        """Set the prepaid balance for one provider; later calls to it draw it down."""
        async with self._lock:
            self.provider_credits[provider] = amount
            await self._save_state()

    async def _save_state(self):
        if self.db is None:
            return
        state = {key: repr(getattr(self, key)) for key in _STATE_FLOATS}
        state["baseline_set_at"] = self.baseline_set_at.isoformat() if self.baseline_set_at else None
        state["provider_credits"] = json.dumps(self.provider_credits)
        try:
            await self.db.save_state(state)
        except Exception:
            logger.exception("Failed to persist ledger state")

    # --- display log trimming (never touches counters) ---

    async def remove_history_item(self, record_id: str) -> bool:
        async with self._lock:
            before = len(self.history)
            self.history = [r for r in self.history if r.id != record_id]
            removed = len(self.history) != before
            if removed and self.db is not None:
                try:
                    await self.db.hide_records([record_id])
                except Exception:
                    logger.exception("Failed to persist history removal")
            return removed

    async def clear_history(self):
        async with self._lock:
            self.history = []
            if self.db is None:
                return
            try:
                await self.db.hide_records()
            except Exception:
                logger.exception("Failed to persist history clear")

    # --- read side ---

    def snapshot(self) -> LedgerSnapshot:
        return LedgerSnapshot(
            total_cost=self.total_cost,
            total_calls=self.total_calls,
            categories={k: v.model_copy() for k, v in self.categories.items()},
            providers={k: v.model_copy() for k, v in self.providers.items()},
            baseline_amount=self.baseline_amount,
            baseline_cost_at_set=self.baseline_cost_at_set,
            baseline_set_at=self.baseline_set_at,
            manual_adjustment=self.manual_adjustment,
            initial_credits=self.initial_credits,
            provider_credits=dict(self.provider_credits),
            history=list(self.history),
        )
