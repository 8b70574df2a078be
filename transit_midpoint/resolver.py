"""
Transit-optimized meeting point resolution.

The resolver walks a small state machine:

    INIT -> BUDGET_CHECK -> CANDIDATE_EVALUATION -> SCORING -> SELECTED
                         \\-> GEOGRAPHIC_FALLBACK (from any state)

Only InvalidInput ever escapes. Every provider failure costs at most one
candidate, and when nothing usable comes back the plain spherical midpoint is
returned, so a resolution always produces a coordinate.
"""

import asyncio
import datetime as _dt
import logging
from enum import Enum
from typing import List, Optional, Sequence, Tuple

from .budget import BudgetLedger
from .errors import AuthError, BudgetExceeded, ProviderError
from .geometry import generate_ring_candidates, spherical_midpoint
from .hubs import HubRegistry
from .models import (
    Candidate,
    Coordinate,
    ResolutionResult,
    RouteMetrics,
    SkippedCandidate,
    TransportMode,
)
from .providers import RoutingProvider
from .rate_limiter import RateLimiter
from .scoring import CandidateSelector, ScoringWeights

logger = logging.getLogger(__name__)

DEFAULT_RING_RADIUS_M = 1000
DEFAULT_RING_COUNT = 4
# Both parties are routed to every candidate
CALLS_PER_CANDIDATE = 2


class ResolutionState(str, Enum):
    INIT = "init"
    BUDGET_CHECK = "budget_check"
    CANDIDATE_EVALUATION = "candidate_evaluation"
    SCORING = "scoring"
    SELECTED = "selected"
    GEOGRAPHIC_FALLBACK = "geographic_fallback"


class MeetingPointResolver:
    """Finds a meeting point that balances transit time for two people.

    Providers are tried in the given order. The ledger and limiter are
    long-lived services shared by every resolution made through this object.
    """

    def __init__(self, providers: Sequence[RoutingProvider], ledger: BudgetLedger,
                 limiter: Optional[RateLimiter] = None, hub_registry: Optional[HubRegistry] = None,
                 weights: Optional[ScoringWeights] = None,
                 ring_radius_m: float = DEFAULT_RING_RADIUS_M, ring_count: int = DEFAULT_RING_COUNT):
        self.providers = list(providers)
        unbudgeted = [p.provider_id for p in self.providers if p.provider_id not in ledger.provider_ids]
        if unbudgeted:
            raise ValueError(f"No budget registered for provider(s): {', '.join(unbudgeted)}")
        self.ledger = ledger
        self.limiter = limiter or RateLimiter()
        self.hub_registry = hub_registry or HubRegistry()
        self.weights = weights or ScoringWeights()
        self.ring_radius_m = ring_radius_m
        self.ring_count = ring_count

    def cleanup(self):
        for provider in self.providers:
            provider.cleanup()

    # --- public API ---

    def resolve_sync(self, origin, destination, user_mode=TransportMode.TRAIN,
                     friend_mode=TransportMode.TRAIN,
                     departure_time: Optional[_dt.datetime] = None) -> ResolutionResult:
        """Blocking wrapper for resolve, for thread-per-request callers."""
        loop = asyncio.new_event_loop()
        asyncio.set_event_loop(loop)
        try:
            return loop.run_until_complete(
                self.resolve(origin, destination, user_mode, friend_mode, departure_time))
        finally:
            loop.close()

    async def resolve(self, origin, destination, user_mode=TransportMode.TRAIN,
                      friend_mode=TransportMode.TRAIN,
                      departure_time: Optional[_dt.datetime] = None) -> ResolutionResult:
        states: List[ResolutionState] = [ResolutionState.INIT, ResolutionState.BUDGET_CHECK]

        # Raises InvalidInput before any network call
        origin = Coordinate.coerce(origin)
        destination = Coordinate.coerce(destination)
        user_mode = TransportMode.parse(user_mode)
        friend_mode = TransportMode.parse(friend_mode)

        logger.info("=== RESOLVING MEETING POINT === user=%s (%s) friend=%s (%s)",
                    origin, user_mode.value, destination, friend_mode.value)

        providers = self.eligible_providers(origin, destination, user_mode, friend_mode)
        if not providers:
            logger.info("No routing provider available under current budget policy, using geographic midpoint")
            return self._geographic_fallback(origin, destination, states, [])

        states.append(ResolutionState.CANDIDATE_EVALUATION)
        candidates = self.candidates_for(origin, destination)
        logger.info("Evaluating %d candidate(s): %s", len(candidates), [c.label for c in candidates])

        selector = CandidateSelector(self.weights)
        skipped: List[SkippedCandidate] = []
        for candidate in candidates:
            provider = self._provider_for_candidate(providers)
            if provider is None:
                logger.info("Skipping candidate %s: no provider with remaining budget", candidate.label)
                skipped.append(SkippedCandidate(candidate.label, BudgetExceeded.kind))
                continue
            try:
                user_metrics, friend_metrics = await self._evaluate_candidate(
                    provider, candidate, origin, destination, user_mode, friend_mode, departure_time)
            except BudgetExceeded as e:
                logger.info("Skipping candidate %s: %s budget exhausted", candidate.label, provider.provider_id)
                skipped.append(SkippedCandidate(candidate.label, e.kind, provider.provider_id))
                continue
            except AuthError as e:
                provider.mark_disabled(str(e))
                logger.error("Skipping candidate %s: %s rejected credentials", candidate.label,
                             provider.provider_id)
                skipped.append(SkippedCandidate(candidate.label, e.kind, provider.provider_id))
                continue
            except ProviderError as e:
                logger.warning("Skipping candidate %s: %s via %s (%s)", candidate.label, e.kind,
                               provider.provider_id, e)
                skipped.append(SkippedCandidate(candidate.label, e.kind, provider.provider_id))
                continue

            if ResolutionState.SCORING not in states:
                states.append(ResolutionState.SCORING)
            selector.offer(candidate, user_metrics, friend_metrics, provider.provider_id)

        best = selector.best
        if best is None:
            logger.warning("No viable candidates (%d skipped), using geographic midpoint", len(skipped))
            return self._geographic_fallback(origin, destination, states, skipped)

        states.append(ResolutionState.SELECTED)
        logger.info("Optimal meeting point: %s via %s (score=%d, %d evaluated, %d skipped)",
                    best.candidate.label, best.provider_id, int(best.score), selector.evaluated,
                    len(skipped))
        return ResolutionResult(
            coordinate=best.candidate.coordinate,
            used_provider=True,
            candidate_label=best.candidate.label,
            score_breakdown=best.breakdown,
            provider_id=best.provider_id,
            user_metrics=best.user_metrics,
            friend_metrics=best.friend_metrics,
            skipped=skipped,
            states=[s.value for s in states],
        )

    # --- steps ---

    def eligible_providers(self, origin: Coordinate, destination: Coordinate,
                           user_mode: TransportMode, friend_mode: TransportMode) -> List[RoutingProvider]:
        eligible = []
        for provider in self.providers:
            pid = provider.provider_id
            if provider.disabled:
                logger.debug("%s is disabled (%s)", pid, provider.disabled_reason)
                continue
            if not (provider.supports(user_mode) and provider.supports(friend_mode)):
                logger.debug("%s does not support %s/%s", pid, user_mode.value, friend_mode.value)
                continue
            if not self.ledger.allows_provider_use(pid, origin, destination):
                continue
            eligible.append(provider)
        return eligible

    def candidates_for(self, origin: Coordinate, destination: Coordinate) -> List[Candidate]:
        candidates = self.hub_registry.filter_relevant(origin, destination)
        if candidates:
            return candidates
        center = spherical_midpoint(origin, destination)
        logger.info("No relevant hubs, generating %d ring candidates around %s", self.ring_count, center)
        return generate_ring_candidates(center, self.ring_radius_m, self.ring_count)

    def _provider_for_candidate(self, providers: Sequence[RoutingProvider]) -> Optional[RoutingProvider]:
        for provider in providers:
            if provider.disabled:
                continue
            if self.ledger.can_consume(provider.provider_id, CALLS_PER_CANDIDATE):
                return provider
        return None

    async def _evaluate_candidate(self, provider: RoutingProvider, candidate: Candidate,
                                  origin: Coordinate, destination: Coordinate,
                                  user_mode: TransportMode, friend_mode: TransportMode,
                                  departure_time: Optional[_dt.datetime]) -> Tuple[RouteMetrics, RouteMetrics]:
        target = candidate.coordinate
        if not provider.concurrent_parties:
            user_metrics = await self._dispatch(provider, origin, target, user_mode, departure_time)
            friend_metrics = await self._dispatch(provider, destination, target, friend_mode, departure_time)
            return user_metrics, friend_metrics

        results = await asyncio.gather(
            self._dispatch(provider, origin, target, user_mode, departure_time),
            self._dispatch(provider, destination, target, friend_mode, departure_time),
            return_exceptions=True,
        )
        for outcome in results:
            if isinstance(outcome, BaseException):
                raise outcome
        return results[0], results[1]

    async def _dispatch(self, provider: RoutingProvider, origin: Coordinate, destination: Coordinate,
                        mode: TransportMode, departure_time: Optional[_dt.datetime]) -> RouteMetrics:
        """One paced, budget-charged provider request (plus at most one throttle retry)."""
        pid = provider.provider_id

        async def attempt() -> RouteMetrics:
            if provider.disabled:
                raise AuthError(provider.disabled_reason or "provider disabled", pid)
            # Charged on dispatch and never refunded
            if not self.ledger.try_consume(pid):
                raise BudgetExceeded(f"{pid} monthly budget exhausted", pid)
            return await provider.get_route_async(origin, destination, mode, departure_time)

        return await self.limiter.run(pid, attempt)

    def _geographic_fallback(self, origin: Coordinate, destination: Coordinate,
                             states: List[ResolutionState],
                             skipped: List[SkippedCandidate]) -> ResolutionResult:
        states.append(ResolutionState.GEOGRAPHIC_FALLBACK)
        midpoint = spherical_midpoint(origin, destination)
        logger.info("Geographic midpoint: %s", midpoint)
        return ResolutionResult(
            coordinate=midpoint,
            used_provider=False,
            skipped=skipped,
            states=[s.value for s in states],
        )
