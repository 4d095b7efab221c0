"""Tests for the usage ledger and its SQLite store."""

import asyncio
import logging

import pytest

from cartwise.db import Database, decode_record, encode_record
from cartwise.ledger import UsageLedger
from cartwise.models import UsageCategory, UsageRecord


def make_record(cost=0.01, category=UsageCategory.TAX_LOOKUP, provider="Perplexity", **kw):
    return UsageRecord(category=category, estimated_cost=cost, provider=provider, model="sonar", **kw)


@pytest.fixture
async def stored_ledger(tmp_path):
    ledger = UsageLedger(Database(tmp_path / "ledger.db"))
    await ledger.open()
    yield ledger
    await ledger.close()


@pytest.mark.asyncio
async def test_record_updates_counters():
    ledger = UsageLedger()
    await ledger.record(make_record(0.5))
    await ledger.record(make_record(0.25, category=UsageCategory.IMAGE_ANALYSIS, provider="OpenAI"))
    s = ledger.snapshot()
    assert s.total_calls == 2
    assert s.total_cost == pytest.approx(0.75)
    assert s.category(UsageCategory.TAX_LOOKUP).count == 1
    assert s.category(UsageCategory.IMAGE_ANALYSIS).cost == pytest.approx(0.25)
    assert s.category(UsageCategory.PRICE_GUESS).count == 0
    assert s.providers["OpenAI"].count == 1
    assert s.history[0].category == UsageCategory.IMAGE_ANALYSIS


@pytest.mark.asyncio
async def test_history_is_capped_newest_first():
    ledger = UsageLedger()
    records = [make_record(item_name=f"item {i}") for i in range(25)]
    for r in records:
        await ledger.record(r)
    s = ledger.snapshot()
    assert s.total_calls == 25
    assert len(s.history) == 20
    assert [r.id for r in s.history] == [r.id for r in reversed(records)][:20]


@pytest.mark.asyncio
async def test_concurrent_records_are_all_counted():
    ledger = UsageLedger()
    await asyncio.gather(*(ledger.record(make_record(0.001)) for _ in range(50)))
    s = ledger.snapshot()
    assert s.total_calls == 50
    assert s.total_cost == pytest.approx(0.05)
    assert len(s.history) == 20


@pytest.mark.asyncio
async def test_totals_do_not_depend_on_order():
    records = [make_record(c) for c in (0.1, 0.02, 0.3, 0.004)]
    forward, backward = UsageLedger(), UsageLedger()
    for r in records:
        await forward.record(r)
    for r in reversed(records):
        await backward.record(r)
    assert forward.snapshot().total_cost == pytest.approx(backward.snapshot().total_cost)
    assert forward.snapshot().total_calls == backward.snapshot().total_calls


@pytest.mark.asyncio
async def test_reset_keeps_initial_credits():
    ledger = UsageLedger()
    await ledger.set_initial_credits(10.0)
    await ledger.record(make_record(1.0))
    await ledger.set_baseline(5.0)
    await ledger.reset()
    s = ledger.snapshot()
    assert s.total_calls == 0
    assert s.total_cost == 0
    assert s.categories == {}
    assert s.history == []
    assert s.baseline_set_at is None
    assert s.initial_credits == 10.0


@pytest.mark.asyncio
async def test_baseline_tracks_spend_since_set():
    ledger = UsageLedger()
    await ledger.record(make_record(0.5))
    assert ledger.snapshot().spent_since_baseline == 0
    await ledger.set_baseline(10.0)
    await ledger.record(make_record(0.25))
    s = ledger.snapshot()
    assert s.baseline_amount == 10.0
    assert s.spent_since_baseline == pytest.approx(0.25)


@pytest.mark.asyncio
async def test_set_total_spent_is_an_adjustment():
    ledger = UsageLedger()
    await ledger.record(make_record(1.0))
    await ledger.set_total_spent(5.0)
    s = ledger.snapshot()
    assert s.manual_adjustment == pytest.approx(4.0)
    assert s.total_spent == pytest.approx(5.0)
    assert s.total_cost == pytest.approx(1.0)


@pytest.mark.asyncio
async def test_credits():
    ledger = UsageLedger()
    await ledger.set_initial_credits(10.0)
    for _ in range(5):
        await ledger.record(make_record(0.5))
    s = ledger.snapshot()
    assert s.remaining_credits == pytest.approx(7.5)
    assert s.credits_used_fraction == pytest.approx(0.25)
    assert s.average_cost(UsageCategory.TAX_LOOKUP) == pytest.approx(0.5)
    assert s.estimated_calls_remaining(UsageCategory.TAX_LOOKUP) == 15
    assert s.estimated_calls_remaining(UsageCategory.PRICE_SEARCH) is None


@pytest.mark.asyncio
async def test_history_trimming_leaves_counters():
    ledger = UsageLedger()
    first, second = make_record(0.1), make_record(0.2)
    await ledger.record(first)
    await ledger.record(second)
    assert await ledger.remove_history_item(first.id)
    assert not await ledger.remove_history_item("missing")
    assert [r.id for r in ledger.snapshot().history] == [second.id]
    await ledger.clear_history()
    s = ledger.snapshot()
    assert s.history == []
    assert s.total_calls == 2
    assert s.total_cost == pytest.approx(0.3)


@pytest.mark.asyncio
async def test_persisted_ledger_reloads(tmp_path, stored_ledger):
    records = [make_record(0.1 * (i + 1), item_name=f"item {i}") for i in range(3)]
    for r in records:
        await stored_ledger.record(r)
    await stored_ledger.set_initial_credits(20.0)
    await stored_ledger.set_baseline(3.0)
    await stored_ledger.set_total_spent(1.0)

    reopened = UsageLedger(Database(tmp_path / "ledger.db"))
    await reopened.open()
    try:
        s = reopened.snapshot()
        assert s.total_calls == 3
        assert s.total_cost == pytest.approx(0.6)
        assert s.category(UsageCategory.TAX_LOOKUP).count == 3
        assert s.providers["Perplexity"].cost == pytest.approx(0.6)
        assert [r.id for r in s.history] == [r.id for r in reversed(records)]
        assert s.history[0].item_name == "item 2"
        assert s.initial_credits == 20.0
        assert s.baseline_amount == 3.0
        assert s.baseline_cost_at_set == pytest.approx(0.6)
        assert s.baseline_set_at is not None
        assert s.total_spent == pytest.approx(1.0)
    finally:
        await reopened.close()


@pytest.mark.asyncio
async def test_persisted_reset(tmp_path, stored_ledger):
    await stored_ledger.set_initial_credits(20.0)
    for _ in range(3):
        await stored_ledger.record(make_record())
    await stored_ledger.reset()

    reopened = UsageLedger(Database(tmp_path / "ledger.db"))
    await reopened.open()
    try:
        s = reopened.snapshot()
        assert s.total_calls == 0
        assert s.history == []
        assert s.initial_credits == 20.0
        # The archive survives; only the display log is emptied
        assert await reopened.db.count_records() == 3
    finally:
        await reopened.close()


@pytest.mark.asyncio
async def test_evicted_records_stay_archived(stored_ledger):
    records = [make_record() for _ in range(22)]
    for r in records:
        await stored_ledger.record(r)
    assert await stored_ledger.db.count_records() == 22
    archived = await stored_ledger.db.get_record(records[0].id)
    assert archived.id == records[0].id
    assert archived.timestamp == records[0].timestamp
    assert len(await stored_ledger.db.load_display(50)) == 20


@pytest.mark.asyncio
async def test_storage_failure_does_not_fail_the_call(tmp_path, caplog):
    # Never opened, so every write fails
    ledger = UsageLedger(Database(tmp_path / "unopened.db"))
    with caplog.at_level(logging.ERROR, logger="cartwise"):
        await ledger.record(make_record(0.5))
    assert ledger.snapshot().total_calls == 1
    assert ledger.snapshot().total_cost == 0.5
    assert "Failed to persist usage record" in caplog.text


def test_usage_record_json_round_trip():
    record = make_record(0.123456, item_name="Milk", prompt="p", response="r", input_tokens=10, output_tokens=2)
    assert decode_record(encode_record(record)).model_dump() == record.model_dump()


@pytest.mark.asyncio
async def test_provider_credits_are_drawn_down():
    ledger = UsageLedger()
    await ledger.set_provider_credits("Perplexity", 1.0)
    await ledger.set_provider_credits("OpenAI", 0.5)
    await ledger.record(make_record(0.25))
    await ledger.record(make_record(0.25))
    await ledger.record(make_record(0.1, provider="Anthropic"))
    s = ledger.snapshot()
    assert s.provider_credits["Perplexity"] == pytest.approx(0.5)
    assert s.provider_credits["OpenAI"] == 0.5
    assert "Anthropic" not in s.provider_credits
    assert s.provider_calls_remaining("Perplexity") == 2
    assert s.provider_calls_remaining("OpenAI") is None


@pytest.mark.asyncio
async def test_provider_credits_never_go_negative():
    ledger = UsageLedger()
    await ledger.set_provider_credits("Perplexity", 0.3)
    await ledger.record(make_record(0.5))
    await ledger.record(make_record(0.5))
    assert ledger.snapshot().provider_credits["Perplexity"] == 0.0


@pytest.mark.asyncio
async def test_provider_credits_persist_and_survive_reset(tmp_path, stored_ledger):
    await stored_ledger.set_provider_credits("Perplexity", 2.0)
    await stored_ledger.record(make_record(0.5))

    reopened = UsageLedger(Database(tmp_path / "ledger.db"))
    await reopened.open()
    try:
        assert reopened.snapshot().provider_credits == {"Perplexity": pytest.approx(1.5)}
        await reopened.reset()
        assert reopened.snapshot().provider_credits == {"Perplexity": pytest.approx(1.5)}
    finally:
        await reopened.close()

    again = UsageLedger(Database(tmp_path / "ledger.db"))
    await again.open()
    try:
        s = again.snapshot()
        assert s.total_calls == 0
        assert s.provider_credits["Perplexity"] == pytest.approx(1.5)
    finally:
        await again.close()
