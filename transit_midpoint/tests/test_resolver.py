import threading
import time

import pytest

from transit_midpoint.budget import BudgetState
from transit_midpoint.budget_store import InMemoryBudgetStore
from transit_midpoint.errors import AuthError, InvalidInput, NetworkError, NoRoute, ParseError, RateLimited
from transit_midpoint.geometry import spherical_midpoint
from transit_midpoint.hubs import HubRegistry, TransitHub
from transit_midpoint.models import Coordinate, ImportanceTier, RouteMetrics, TransportMode
from transit_midpoint.rate_limiter import RateLimiter, RetryPolicy
from transit_midpoint.resolver import MeetingPointResolver, ResolutionState

from .conftest import TIMES_SQUARE, UNION_SQUARE, FakeProvider, make_ledger

WEST = Coordinate(40.0, -74.02)
EAST = Coordinate(40.0, -73.98)


# Hubs step north off the line between WEST and EAST, so they sort hub-0 first.
def _hubs(count):
    return HubRegistry(
        [TransitHub(f"hub-{i}", Coordinate(40.0 + i * 0.002, -74.0), (), ImportanceTier.LOCAL)
         for i in range(count)],
        max_candidates=count,
    )


async def _no_sleep(seconds):
    return None


def _resolver(providers, ledger=None, **kwargs):
    limiter = RateLimiter(retry_policy=RetryPolicy(backoff_seconds=0), sleep=_no_sleep)
    return MeetingPointResolver(providers, ledger or make_ledger(), limiter, **kwargs)


def _from_user_and_friend(user_seconds, friend_seconds):
    def responder(origin, destination, mode):
        seconds = user_seconds if origin == TIMES_SQUARE else friend_seconds
        return RouteMetrics(seconds, 2000)
    return responder


@pytest.mark.asyncio
async def test_midtown_resolution_picks_a_hub():
    provider = FakeProvider("google", _from_user_and_friend(600, 720))
    resolver = _resolver([provider])
    candidates = resolver.candidates_for(TIMES_SQUARE, UNION_SQUARE)
    assert candidates

    result = await resolver.resolve(TIMES_SQUARE, UNION_SQUARE)

    assert result.used_provider is True
    assert result.coordinate == candidates[0].coordinate
    assert result.candidate_label == candidates[0].label
    assert result.provider_id == "google"
    assert result.score_breakdown.score == 600 + 720 + 3 * 120 - 300
    assert result.states == ["init", "budget_check", "candidate_evaluation", "scoring", "selected"]
    assert len(provider.calls) == 2 * len(candidates)
    assert resolver.ledger.get_state("google").consumed_units == 2 * len(candidates)


@pytest.mark.asyncio
async def test_nearly_exhausted_budget_falls_back_without_network_calls():
    ledger = make_ledger()
    ledger.set_state(BudgetState("google", ledger.get_state("google").period_month, consumed_units=1920))
    provider = FakeProvider("google", _from_user_and_friend(600, 720))

    result = await _resolver([provider], ledger).resolve(TIMES_SQUARE, UNION_SQUARE)

    assert result.used_provider is False
    assert result.coordinate == spherical_midpoint(TIMES_SQUARE, UNION_SQUARE)
    assert result.states[-1] == ResolutionState.GEOGRAPHIC_FALLBACK.value
    assert provider.calls == []
    assert ledger.get_state("google").consumed_units == 1920


@pytest.mark.asyncio
async def test_every_candidate_failing_falls_back_to_midpoint(caplog):
    def responder(origin, destination, mode):
        raise NoRoute("no transit here", "google")

    provider = FakeProvider("google", responder)
    resolver = _resolver([provider])
    candidates = resolver.candidates_for(TIMES_SQUARE, UNION_SQUARE)

    result = await resolver.resolve(TIMES_SQUARE, UNION_SQUARE)

    assert result.used_provider is False
    assert result.coordinate == spherical_midpoint(TIMES_SQUARE, UNION_SQUARE)
    assert [s.label for s in result.skipped] == [c.label for c in candidates]
    assert {s.reason for s in result.skipped} == {"no_route"}
    assert caplog.text.count("Skipping candidate") == len(candidates)
    # charged on dispatch, never refunded
    assert resolver.ledger.get_state("google").consumed_units == 2 * len(candidates)


@pytest.mark.asyncio
@pytest.mark.parametrize("error", [NetworkError, ParseError, RateLimited])
async def test_failed_candidates_are_skipped_and_others_still_win(error):
    def responder(origin, destination, mode):
        if destination.lat == pytest.approx(40.0):
            raise error("boom", "google")
        return RouteMetrics(600, 1000)

    provider = FakeProvider("google", responder)
    result = await _resolver([provider], hub_registry=_hubs(3)).resolve(WEST, EAST)

    assert result.used_provider is True
    assert result.candidate_label != "hub-0"
    assert [s.label for s in result.skipped] == ["hub-0"]
    assert result.skipped[0].reason == error.kind


@pytest.mark.asyncio
async def test_throttled_dispatch_is_retried_and_charged_again():
    attempts = []

    def responder(origin, destination, mode):
        attempts.append(origin)
        if len(attempts) == 1:
            raise RateLimited("HTTP 429", "google")
        return RouteMetrics(600, 1000)

    provider = FakeProvider("google", responder, concurrent_parties=False)
    resolver = _resolver([provider], hub_registry=_hubs(1))
    result = await resolver.resolve(WEST, EAST)

    assert result.used_provider is True
    assert len(attempts) == 3
    assert resolver.ledger.get_state("google").consumed_units == 3


@pytest.mark.asyncio
async def test_auth_failure_disables_provider_for_later_candidates():
    def rejecting(origin, destination, mode):
        raise AuthError("HTTP 401", "google")

    google = FakeProvider("google", rejecting, concurrent_parties=False)
    here = FakeProvider("here", lambda o, d, m: RouteMetrics(900, 3000), concurrent_parties=False)
    result = await _resolver([google, here], hub_registry=_hubs(3)).resolve(WEST, EAST)

    assert google.disabled
    assert len(google.calls) == 1
    assert len(here.calls) == 4
    assert result.provider_id == "here"
    assert [(s.label, s.reason) for s in result.skipped] == [("hub-0", "auth_error")]


@pytest.mark.asyncio
async def test_exhausted_budget_stops_network_calls_mid_resolution():
    ledger = make_ledger(google_cap=4)
    provider = FakeProvider("google")
    result = await _resolver([provider], ledger, hub_registry=_hubs(4)).resolve(WEST, EAST)

    assert result.used_provider is True
    assert len(provider.calls) == 4
    assert not ledger.can_consume("google")
    assert [(s.label, s.reason) for s in result.skipped] == [
        ("hub-2", "budget_exceeded"), ("hub-3", "budget_exceeded")]


@pytest.mark.asyncio
async def test_ring_candidates_when_no_hub_is_relevant():
    provider = FakeProvider("google")
    resolver = _resolver([provider], hub_registry=HubRegistry([]), ring_radius_m=500, ring_count=6)
    result = await resolver.resolve(WEST, EAST)

    assert result.used_provider is True
    assert result.candidate_label == "ring 500m @ 0°"
    assert len(provider.calls) == 12


@pytest.mark.asyncio
async def test_no_providers_means_geographic_midpoint():
    result = await _resolver([]).resolve(TIMES_SQUARE, UNION_SQUARE)
    assert result.used_provider is False
    assert result.states == ["init", "budget_check", "geographic_fallback"]


@pytest.mark.asyncio
async def test_provider_without_the_requested_mode_is_not_used():
    here = FakeProvider("here", supported_modes={TransportMode.TRAIN})
    result = await _resolver([here]).resolve(TIMES_SQUARE, UNION_SQUARE, user_mode="car")
    assert result.used_provider is False
    assert here.calls == []


@pytest.mark.asyncio
async def test_modes_are_passed_per_party():
    provider = FakeProvider("google")
    await _resolver([provider], hub_registry=_hubs(1)).resolve(WEST, EAST, user_mode="walk", friend_mode="bike")
    modes = {origin: mode for origin, _, mode in provider.calls}
    assert modes == {WEST: TransportMode.WALK, EAST: TransportMode.BIKE}


@pytest.mark.asyncio
@pytest.mark.parametrize("origin,kwargs", [
    ({"lat": 91, "lng": 0}, {}),
    ("nowhere", {}),
    ((40.0, -74.0), {"user_mode": "teleport"}),
])
async def test_invalid_input_is_raised_before_any_call(origin, kwargs):
    provider = FakeProvider("google")
    with pytest.raises(InvalidInput):
        await _resolver([provider]).resolve(origin, EAST, **kwargs)
    assert provider.calls == []


def test_resolve_sync_accepts_plain_mappings():
    provider = FakeProvider("google")
    result = _resolver([provider], hub_registry=_hubs(2)).resolve_sync(
        {"lat": 40.0, "lng": -74.02}, (40.0, -73.98))
    assert result.used_provider is True
    assert result.to_dict()["usedProvider"] is True
    assert result.to_dict()["coordinate"] == {"lat": 40.0, "lng": -74.0}


@pytest.mark.asyncio
async def test_default_candidate_limit_caps_dispatches_and_skips(caplog):
    def responder(origin, destination, mode):
        raise NoRoute("no transit here", "google")

    registry = HubRegistry(
        [TransitHub(f"hub-{i}", Coordinate(40.0 + i * 0.002, -74.0), (), ImportanceTier.LOCAL)
         for i in range(7)])
    provider = FakeProvider("google", responder)
    resolver = _resolver([provider], hub_registry=registry)

    result = await resolver.resolve(WEST, EAST)

    assert [s.label for s in result.skipped] == [f"hub-{i}" for i in range(5)]
    assert len(provider.calls) == 10
    assert caplog.text.count("Skipping candidate") == 5
    assert result.used_provider is False
    assert result.coordinate == spherical_midpoint(WEST, EAST)
    assert resolver.ledger.get_state("google").consumed_units == 10


def test_provider_without_a_budget_is_rejected_up_front():
    with pytest.raises(ValueError, match="bing"):
        _resolver([FakeProvider("google"), FakeProvider("bing")])


class SlowBudgetStore(InMemoryBudgetStore):
    """Widens the window between reading and writing budget state."""

    def get(self, key):
        time.sleep(0.01)
        return super().get(key)


def test_concurrent_resolutions_never_overspend_the_quota():
    ledger = make_ledger(google_cap=2, store=SlowBudgetStore())
    provider = FakeProvider("google")
    resolver = _resolver([provider], ledger, hub_registry=_hubs(1))
    results = []
    errors = []

    def run():
        try:
            results.append(resolver.resolve_sync(WEST, EAST))
        except Exception as e:
            errors.append(e)

    threads = [threading.Thread(target=run) for _ in range(4)]
    for thread in threads:
        thread.start()
    for thread in threads:
        thread.join()

    assert errors == []
    assert len(results) == 4
    assert ledger.get_state("google").consumed_units <= 2
    assert len(provider.calls) <= 2
