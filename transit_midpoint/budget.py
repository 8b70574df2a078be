"""
Monthly usage budgeting for routing providers.

Two budget shapes are supported:

* ``quota``     - a fixed number of request units per calendar month
                  (Google Directions style).
* ``free_tier`` - free until ``free_tier_threshold`` requests in the month,
                  then every request costs ``cost_per_request`` against a
                  currency cap (HERE style).

Usage is charged at dispatch time. Nothing is refunded when the provider
later answers with an error or no route.
"""

import datetime as _dt
import logging
import threading
from dataclasses import asdict, dataclass
from typing import Callable, Dict, Iterable, Optional

from .budget_store import BudgetStore, InMemoryBudgetStore
from .geometry import distance_meters
from .models import Coordinate

logger = logging.getLogger(__name__)

QUOTA = "quota"
FREE_TIER = "free_tier"

# Usage tiers for deciding whether a resolution may use a provider at all
ALWAYS_ALLOW_BELOW = 0.50
SELECTIVE_BELOW = 0.80
CONSERVATIVE_BELOW = 0.95
SELECTIVE_MIN_DISTANCE_M = 2000
CONSERVATIVE_MIN_DISTANCE_M = 5000

WARN_USAGE = 0.80
ALERT_USAGE = 0.90


@dataclass(frozen=True)
class BudgetConfig:
    provider_id: str
    kind: str = QUOTA
    monthly_cap: float = 2000
    cost_per_request: float = 1.0
    free_tier_threshold: Optional[int] = None

    def __post_init__(self):
        if self.kind not in (QUOTA, FREE_TIER):
            raise ValueError(f"Unknown budget kind: {self.kind!r}")
        if self.monthly_cap <= 0:
            raise ValueError("monthly_cap must be positive")
        if self.kind == FREE_TIER and self.free_tier_threshold is None:
            raise ValueError("free_tier budgets need a free_tier_threshold")


@dataclass
class BudgetState:
    provider_id: str
    period_month: str
    consumed_units: int = 0
    spend: float = 0.0
    last_reset_date: str = ""

    @classmethod
    def from_dict(cls, data: dict) -> "BudgetState":
        return cls(
            provider_id=str(data.get("provider_id", "")),
            period_month=str(data.get("period_month", "")),
            consumed_units=int(data.get("consumed_units", 0) or 0),
            spend=float(data.get("spend", 0.0) or 0.0),
            last_reset_date=str(data.get("last_reset_date", "")),
        )

    def to_dict(self) -> dict:
        return asdict(self)


def period_for(moment: _dt.datetime) -> str:
    return f"{moment.year:04d}-{moment.month:02d}"


def provider_use_allowed(usage: float, trip_distance_m: float) -> bool:
    """Tiered policy: spend budget on longer trips as the month fills up."""
    if usage < ALWAYS_ALLOW_BELOW:
        return True
    if usage < SELECTIVE_BELOW:
        return trip_distance_m > SELECTIVE_MIN_DISTANCE_M
    if usage < CONSERVATIVE_BELOW:
        return trip_distance_m > CONSERVATIVE_MIN_DISTANCE_M
    # emergency reserve
    return False


class BudgetLedger:
    """Per-provider monthly usage bookkeeping backed by a key/value store."""

    def __init__(self, configs: Iterable[BudgetConfig] = (), store: Optional[BudgetStore] = None,
                 clock: Optional[Callable[[], _dt.datetime]] = None):
        self.store = store or InMemoryBudgetStore()
        self.clock = clock or _dt.datetime.now
        self._configs: Dict[str, BudgetConfig] = {}
        self._lock = threading.RLock()
        for config in configs:
            self.register(config)

    def register(self, config: BudgetConfig) -> None:
        with self._lock:
            self._configs[config.provider_id] = config

    def config(self, provider_id: str) -> BudgetConfig:
        try:
            return self._configs[provider_id]
        except KeyError:
            raise KeyError(f"No budget registered for provider {provider_id!r}")

    @property
    def provider_ids(self):
        return list(self._configs)

    # --- persisted surface ---

    @staticmethod
    def _key(provider_id: str) -> str:
        return f"budget:{provider_id}"

    def get_state(self, provider_id: str) -> BudgetState:
        self.config(provider_id)
        with self._lock:
            raw = self.store.get(self._key(provider_id))
            if raw is None:
                now = self.clock()
                return BudgetState(provider_id, period_for(now), last_reset_date=now.date().isoformat())
            state = BudgetState.from_dict(raw)
            state.provider_id = provider_id
            return state

    def set_state(self, state: BudgetState) -> None:
        self.config(state.provider_id)
        with self._lock:
            self.store.set(self._key(state.provider_id), state.to_dict())

    # --- bookkeeping ---

    def reset_if_new_month(self, provider_id: str) -> bool:
        with self._lock:
            state = self.get_state(provider_id)
            now = self.clock()
            current = period_for(now)
            if state.period_month == current:
                return False
            logger.info("%s budget: new month detected (%s -> %s), resetting counters",
                        provider_id, state.period_month or "unset", current)
            self.set_state(BudgetState(provider_id, current, last_reset_date=now.date().isoformat()))
            return True

    def reset(self, provider_id: str) -> BudgetState:
        """Zero the counters for the current month (debug tooling and tests)."""
        with self._lock:
            now = self.clock()
            state = BudgetState(provider_id, period_for(now), last_reset_date=now.date().isoformat())
            self.set_state(state)
            logger.info("%s budget: manual reset", provider_id)
            return state

    def _spend_after(self, config: BudgetConfig, state: BudgetState, cost: int) -> float:
        threshold = config.free_tier_threshold or 0
        billable_before = max(0, state.consumed_units - threshold)
        billable_after = max(0, state.consumed_units + cost - threshold)
        return state.spend + (billable_after - billable_before) * config.cost_per_request

    def _consumed(self, config: BudgetConfig, state: BudgetState) -> float:
        if config.kind == QUOTA:
            return state.consumed_units * config.cost_per_request
        return state.spend

    def consumed(self, provider_id: str) -> float:
        """Request units (quota) or currency spent (free tier) this month."""
        with self._lock:
            self.reset_if_new_month(provider_id)
            return self._consumed(self.config(provider_id), self.get_state(provider_id))

    def usage_percent(self, provider_id: str) -> float:
        """Fraction of the monthly cap used, 0.0 .. 1.0+."""
        with self._lock:
            config = self.config(provider_id)
            return self.consumed(provider_id) / config.monthly_cap

    def remaining(self, provider_id: str) -> float:
        with self._lock:
            config = self.config(provider_id)
            return max(0.0, config.monthly_cap - self.consumed(provider_id))

    def can_consume(self, provider_id: str, cost: int = 1) -> bool:
        with self._lock:
            self.reset_if_new_month(provider_id)
            config = self.config(provider_id)
            state = self.get_state(provider_id)
            if config.kind == QUOTA:
                prospective = (state.consumed_units + cost) * config.cost_per_request
            else:
                prospective = self._spend_after(config, state, cost)
            return prospective <= config.monthly_cap

    def record(self, provider_id: str, cost: int = 1) -> BudgetState:
        with self._lock:
            self.reset_if_new_month(provider_id)
            config = self.config(provider_id)
            state = self.get_state(provider_id)
            if config.kind == FREE_TIER:
                state.spend = self._spend_after(config, state, cost)
            state.consumed_units += cost
            self.set_state(state)
            self._log_usage(config, state)
            return state

    def try_consume(self, provider_id: str, cost: int = 1) -> bool:
        """Check and charge under one lock hold; False leaves the state untouched."""
        with self._lock:
            if not self.can_consume(provider_id, cost):
                return False
            self.record(provider_id, cost)
            return True

    def allows_provider_use(self, provider_id: str, origin: Coordinate, destination: Coordinate) -> bool:
        usage = self.usage_percent(provider_id)
        allowed = provider_use_allowed(usage, distance_meters(origin, destination))
        if not allowed:
            logger.info("%s budget policy: skipping provider to preserve budget (%.1f%% used)",
                        provider_id, usage * 100)
        return allowed

    def status(self) -> Dict[str, dict]:
        """Snapshot of every registered provider for status/debug tooling."""
        result = {}
        with self._lock:
            for provider_id, config in self._configs.items():
                self.reset_if_new_month(provider_id)
                state = self.get_state(provider_id)
                result[provider_id] = {
                    **state.to_dict(),
                    "kind": config.kind,
                    "monthly_cap": config.monthly_cap,
                    "consumed_units_or_spend": self._consumed(config, state),
                    "usage_percent": round(self._consumed(config, state) / config.monthly_cap * 100, 2),
                    "can_consume": self.can_consume(provider_id),
                }
        return result

    def _log_usage(self, config: BudgetConfig, state: BudgetState) -> None:
        pid = config.provider_id
        if config.kind == FREE_TIER and state.consumed_units <= (config.free_tier_threshold or 0):
            free_usage = state.consumed_units / config.free_tier_threshold if config.free_tier_threshold else 0.0
            logger.info("%s usage: %d/%d free requests (%.1f%%)",
                        pid, state.consumed_units, config.free_tier_threshold, free_usage * 100)
            if free_usage >= ALERT_USAGE:
                logger.warning("%s budget: using 90%%+ of free tier", pid)
            elif free_usage >= WARN_USAGE:
                logger.warning("%s budget: using 80%%+ of free tier", pid)
            return

        consumed = self._consumed(config, state)
        usage = consumed / config.monthly_cap
        logger.info("%s usage: %d requests, %.2f/%.2f (%.1f%%)",
                    pid, state.consumed_units, consumed, config.monthly_cap, usage * 100)
        if usage >= ALERT_USAGE:
            logger.warning("%s budget: 90%% of monthly budget used", pid)
        elif usage >= WARN_USAGE:
            logger.warning("%s budget: 80%% of monthly budget used", pid)
