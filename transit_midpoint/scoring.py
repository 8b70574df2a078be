"""
Candidate scoring and best-candidate selection. Lower scores are better.

    score = user.duration + friend.duration
          + FAIRNESS_WEIGHT * |user.duration - friend.duration|
          + TRANSFER_WEIGHT_SECONDS * (user.transfers + friend.transfers)
          - MAJOR_HUB_BONUS_SECONDS (major hubs only)
"""

import logging
from dataclasses import dataclass
from typing import Optional

from .models import (
    Candidate,
    ImportanceTier,
    RouteMetrics,
    ScoreBreakdown,
    ScoreResult,
)

logger = logging.getLogger(__name__)

# Seconds of imbalance cost this many seconds of total travel
FAIRNESS_WEIGHT = 3.0
FAIRNESS_WEIGHT_RANGE = (2.0, 3.0)
TRANSFER_WEIGHT_SECONDS = 300.0
MAJOR_HUB_BONUS_SECONDS = 300.0


@dataclass(frozen=True)
class ScoringWeights:
    fairness_weight: float = FAIRNESS_WEIGHT
    transfer_weight: float = TRANSFER_WEIGHT_SECONDS
    major_hub_bonus: float = MAJOR_HUB_BONUS_SECONDS

    def __post_init__(self):
        low, high = FAIRNESS_WEIGHT_RANGE
        if not low <= self.fairness_weight <= high:
            raise ValueError(f"fairness_weight must be within [{low}, {high}], got {self.fairness_weight}")
        if self.transfer_weight < 0 or self.major_hub_bonus < 0:
            raise ValueError("transfer_weight and major_hub_bonus must be >= 0")

    def importance_bonus(self, tier: ImportanceTier) -> float:
        return -self.major_hub_bonus if tier == ImportanceTier.MAJOR else 0.0


def score(user: RouteMetrics, friend: RouteMetrics, tier: ImportanceTier,
          weights: Optional[ScoringWeights] = None) -> ScoreBreakdown:
    weights = weights or ScoringWeights()
    total = user.duration_seconds + friend.duration_seconds
    fairness = weights.fairness_weight * abs(user.duration_seconds - friend.duration_seconds)
    transfers = weights.transfer_weight * (user.transfer_count + friend.transfer_count)
    bonus = weights.importance_bonus(tier)
    return ScoreBreakdown(
        total_duration=total,
        fairness_penalty=fairness,
        transfer_penalty=transfers,
        importance_bonus=bonus,
        score=total + fairness + transfers + bonus,
    )


class CandidateSelector:
    """Keeps the strictly lowest score offered so far; earlier offers win ties."""

    def __init__(self, weights: Optional[ScoringWeights] = None):
        self.weights = weights or ScoringWeights()
        self.best: Optional[ScoreResult] = None
        self.evaluated = 0

    def offer(self, candidate: Candidate, user: RouteMetrics, friend: RouteMetrics,
              provider_id: Optional[str] = None) -> ScoreResult:
        breakdown = score(user, friend, candidate.importance, self.weights)
        result = ScoreResult(candidate, breakdown, user, friend, provider_id)
        self.evaluated += 1
        logger.info("%s: user=%dmin(%dt) friend=%dmin(%dt) score=%d",
                    candidate.label,
                    int(user.duration_seconds // 60), user.transfer_count,
                    int(friend.duration_seconds // 60), friend.transfer_count,
                    int(breakdown.score))
        if self.best is None or result.score < self.best.score:
            self.best = result
        return result
