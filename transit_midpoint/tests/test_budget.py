import datetime as dt
import logging

import pytest

from transit_midpoint.budget import FREE_TIER, BudgetConfig, BudgetState, provider_use_allowed
from transit_midpoint.budget_store import InMemoryBudgetStore, SqliteBudgetStore
from transit_midpoint.models import Coordinate

from .conftest import TIMES_SQUARE, UNION_SQUARE, make_ledger


class FakeClock:
    def __init__(self, moment):
        self.moment = moment

    def __call__(self):
        return self.moment


@pytest.mark.parametrize("usage,distance,expected", [
    (0.0, 0, True),
    (0.49, 10, True),
    (0.50, 2000, False),
    (0.50, 2001, True),
    (0.79, 2500, True),
    (0.80, 5000, False),
    (0.80, 5001, True),
    (0.95, 1_000_000, False),
    (1.20, 1_000_000, False),
])
def test_tiered_provider_use_policy(usage, distance, expected):
    assert provider_use_allowed(usage, distance) is expected


def test_quota_cap_blocks_consumption():
    small = make_ledger(google_cap=3)
    for _ in range(2):
        small.record("google")
    assert small.can_consume("google")
    assert not small.can_consume("google", cost=2)
    small.record("google")
    assert not small.can_consume("google")
    assert small.usage_percent("google") == pytest.approx(1.0)
    assert small.remaining("google") == 0


def test_free_tier_is_free_until_threshold():
    ledger = make_ledger(here_budget=0.0025, here_free=2)
    ledger.record("here")
    ledger.record("here")
    assert ledger.consumed("here") == 0
    assert ledger.usage_percent("here") == 0

    ledger.record("here")
    assert ledger.consumed("here") == pytest.approx(0.001)
    assert ledger.can_consume("here")
    ledger.record("here")
    assert ledger.consumed("here") == pytest.approx(0.002)
    assert not ledger.can_consume("here")
    assert ledger.get_state("here").consumed_units == 4


def test_free_tier_prospective_cost_straddles_threshold():
    ledger = make_ledger(here_budget=0.0015, here_free=1)
    # first request free, second billed
    assert ledger.can_consume("here", cost=2)
    assert not ledger.can_consume("here", cost=3)


def test_month_rollover_resets_counters(caplog):
    clock = FakeClock(dt.datetime(2025, 1, 31, 23, 59))
    ledger = make_ledger(clock=clock)
    ledger.record("google")
    ledger.record("google")
    assert ledger.get_state("google").period_month == "2025-01"

    clock.moment = dt.datetime(2025, 2, 1, 0, 1)
    with caplog.at_level(logging.INFO, logger="transit_midpoint.budget"):
        assert ledger.consumed("google") == 0
    state = ledger.get_state("google")
    assert state.period_month == "2025-02"
    assert state.last_reset_date == "2025-02-01"
    assert "new month detected" in caplog.text
    assert not ledger.reset_if_new_month("google")


def test_usage_warnings(caplog):
    ledger = make_ledger(google_cap=10)
    with caplog.at_level(logging.WARNING, logger="transit_midpoint.budget"):
        for _ in range(7):
            ledger.record("google")
        assert caplog.records == []
        ledger.record("google")
        assert "80% of monthly budget used" in caplog.records[-1].getMessage()
        ledger.record("google")
        assert "90% of monthly budget used" in caplog.records[-1].getMessage()


def test_policy_check_uses_trip_distance(ledger):
    ledger.set_state(BudgetState("google", ledger.get_state("google").period_month, consumed_units=1200))
    # 60% used: ~2.5 km trip passes, a short hop does not
    assert ledger.allows_provider_use("google", TIMES_SQUARE, UNION_SQUARE)
    assert not ledger.allows_provider_use("google", TIMES_SQUARE, Coordinate(40.7590, -73.9855))

    ledger.set_state(BudgetState("google", ledger.get_state("google").period_month, consumed_units=1920))
    assert not ledger.allows_provider_use("google", TIMES_SQUARE, UNION_SQUARE)


def test_manual_reset_and_status(ledger):
    ledger.record("google", cost=5)
    status = ledger.status()
    assert status["google"]["consumed_units"] == 5
    assert status["google"]["kind"] == "quota"
    assert status["here"]["kind"] == FREE_TIER
    assert status["google"]["can_consume"] is True

    ledger.reset("google")
    assert ledger.get_state("google").consumed_units == 0


def test_unknown_provider_raises(ledger):
    with pytest.raises(KeyError):
        ledger.can_consume("bing")


def test_config_validation():
    with pytest.raises(ValueError):
        BudgetConfig("x", kind="weekly")
    with pytest.raises(ValueError):
        BudgetConfig("x", monthly_cap=0)
    with pytest.raises(ValueError):
        BudgetConfig("x", kind=FREE_TIER, monthly_cap=10)


def test_state_persists_in_sqlite(tmp_path):
    db_path = str(tmp_path / "nested" / "budget.sqlite")
    store = SqliteBudgetStore(db_path)
    make_ledger(store=store).record("google", cost=3)
    store.close()

    reopened = SqliteBudgetStore(db_path)
    try:
        assert make_ledger(store=reopened).get_state("google").consumed_units == 3
        assert reopened.get("budget:google")["provider_id"] == "google"
        assert reopened.get("budget:missing") is None
    finally:
        reopened.close()


def test_in_memory_store_copies_values():
    store = InMemoryBudgetStore()
    value = {"consumed_units": 1}
    store.set("k", value)
    value["consumed_units"] = 99
    assert store.get("k") == {"consumed_units": 1}


def test_try_consume_charges_only_within_cap():
    small = make_ledger(google_cap=2)
    assert small.try_consume("google")
    assert small.try_consume("google")
    assert not small.try_consume("google")
    assert small.get_state("google").consumed_units == 2

    tiny = make_ledger(here_budget=0.001, here_free=1)
    assert tiny.try_consume("here", cost=2)
    assert not tiny.try_consume("here")
    state = tiny.get_state("here")
    assert state.consumed_units == 2
    assert state.spend == pytest.approx(0.001)
