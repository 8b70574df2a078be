"""
Standardized internal data structures shared by every part of the engine.
"""

import math
from dataclasses import dataclass, field
from enum import Enum, IntEnum
from typing import Any, Dict, List, Optional, Tuple

from .errors import InvalidInput


class TransportMode(str, Enum):
    """How one party wants to travel. TRAIN means public transit."""
    WALK = "walk"
    BIKE = "bike"
    TRAIN = "train"
    CAR = "car"

    @classmethod
    def parse(cls, value) -> "TransportMode":
        if isinstance(value, cls):
            return value
        if value is None:
            return cls.TRAIN
        try:
            return cls(str(value).strip().lower())
        except ValueError:
            raise InvalidInput(f"Unknown transport mode: {value!r}")


class ImportanceTier(IntEnum):
    MAJOR = 2
    SECONDARY = 1
    LOCAL = 0
    GENERATED = -1


@dataclass(frozen=True)
class Coordinate:
    """A validated (latitude, longitude) pair in degrees."""
    lat: float
    lng: float

    def __post_init__(self):
        try:
            lat = float(self.lat)
            lng = float(self.lng)
        except (TypeError, ValueError):
            raise InvalidInput(f"Coordinate values must be numbers: ({self.lat!r}, {self.lng!r})")
        if not (math.isfinite(lat) and math.isfinite(lng)):
            raise InvalidInput(f"Coordinate values must be finite: ({lat}, {lng})")
        if not -90.0 <= lat <= 90.0:
            raise InvalidInput(f"Latitude out of range: {lat}")
        if not -180.0 <= lng <= 180.0:
            raise InvalidInput(f"Longitude out of range: {lng}")
        object.__setattr__(self, "lat", lat)
        object.__setattr__(self, "lng", lng)

    @classmethod
    def coerce(cls, value) -> "Coordinate":
        """Accept a Coordinate, a (lat, lng) pair or a {'lat', 'lng'} mapping."""
        if isinstance(value, cls):
            return value
        if isinstance(value, dict):
            lat = value.get("lat", value.get("latitude"))
            lng = value.get("lng", value.get("lon", value.get("longitude")))
            if lat is None or lng is None:
                raise InvalidInput("Location must have lat and lng properties")
            return cls(lat, lng)
        if isinstance(value, (tuple, list)) and len(value) == 2:
            return cls(value[0], value[1])
        raise InvalidInput(f"Unsupported location value: {value!r}")

    def as_tuple(self) -> Tuple[float, float]:
        return (self.lat, self.lng)

    def to_dict(self) -> Dict[str, float]:
        return {"lat": self.lat, "lng": self.lng}

    def __str__(self) -> str:
        return f"{self.lat},{self.lng}"


@dataclass(frozen=True)
class Candidate:
    """A coordinate being evaluated as a possible meeting point."""
    coordinate: Coordinate
    label: str
    importance: ImportanceTier = ImportanceTier.GENERATED

    def to_dict(self) -> Dict[str, Any]:
        return {
            "label": self.label,
            "importance": self.importance.name.lower(),
            **self.coordinate.to_dict(),
        }


@dataclass(frozen=True)
class RouteMetrics:
    """Normalized summary of one itinerary. Always finite and non-negative."""
    duration_seconds: float
    distance_meters: float
    transfer_count: int = 0

    def __post_init__(self):
        for name in ("duration_seconds", "distance_meters"):
            value = getattr(self, name)
            if not isinstance(value, (int, float)) or not math.isfinite(value) or value < 0:
                raise ValueError(f"RouteMetrics.{name} must be finite and >= 0, got {value!r}")
        if not isinstance(self.transfer_count, int) or self.transfer_count < 0:
            raise ValueError(f"RouteMetrics.transfer_count must be an int >= 0, got {self.transfer_count!r}")

    def to_dict(self) -> Dict[str, Any]:
        return {
            "duration_seconds": self.duration_seconds,
            "duration_minutes": round(self.duration_seconds / 60, 1),
            "distance_meters": self.distance_meters,
            "transfer_count": self.transfer_count,
        }


@dataclass(frozen=True)
class RouteSegment:
    """One leg step / section of a provider route with usable coordinates."""
    mode: str
    start: Coordinate
    end: Coordinate
    line: Optional[str] = None

    @property
    def is_transit(self) -> bool:
        return self.mode == "transit"


@dataclass(frozen=True)
class NormalizedRoute:
    metrics: RouteMetrics
    summary: str = ""
    segments: Tuple[RouteSegment, ...] = ()

    def to_dict(self) -> Dict[str, Any]:
        return {
            "durationSeconds": self.metrics.duration_seconds,
            "distanceMeters": self.metrics.distance_meters,
            "transferCount": self.metrics.transfer_count,
            "summary": self.summary,
        }


class RouteStatus(str, Enum):
    OK = "OK"
    NO_ROUTE = "NO_ROUTE"
    ERROR = "ERROR"


@dataclass(frozen=True)
class RouteResponse:
    """Canonical response schema handed from an adapter to the scorer."""
    routes: Tuple[NormalizedRoute, ...]
    status: RouteStatus = RouteStatus.OK

    def to_dict(self) -> Dict[str, Any]:
        return {"routes": [r.to_dict() for r in self.routes], "status": self.status.value}


@dataclass(frozen=True)
class ScoreBreakdown:
    total_duration: float
    fairness_penalty: float
    transfer_penalty: float
    importance_bonus: float
    score: float

    def to_dict(self) -> Dict[str, float]:
        return {
            "total_duration_seconds": self.total_duration,
            "fairness_penalty_seconds": self.fairness_penalty,
            "transfer_penalty_seconds": self.transfer_penalty,
            "importance_bonus_seconds": self.importance_bonus,
            "score": self.score,
        }


@dataclass(frozen=True)
class ScoreResult:
    candidate: Candidate
    breakdown: ScoreBreakdown
    user_metrics: RouteMetrics
    friend_metrics: RouteMetrics
    provider_id: Optional[str] = None

    @property
    def score(self) -> float:
        return self.breakdown.score


@dataclass(frozen=True)
class SkippedCandidate:
    label: str
    reason: str
    provider_id: Optional[str] = None

    def to_dict(self) -> Dict[str, Optional[str]]:
        return {"label": self.label, "reason": self.reason, "provider": self.provider_id}


@dataclass
class ResolutionResult:
    """Terminal answer of one resolution call."""
    coordinate: Coordinate
    used_provider: bool
    candidate_label: Optional[str] = None
    score_breakdown: Optional[ScoreBreakdown] = None
    provider_id: Optional[str] = None
    user_metrics: Optional[RouteMetrics] = None
    friend_metrics: Optional[RouteMetrics] = None
    skipped: List[SkippedCandidate] = field(default_factory=list)
    states: List[str] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "coordinate": self.coordinate.to_dict(),
            "usedProvider": self.used_provider,
            "candidateLabel": self.candidate_label,
            "scoreBreakdown": self.score_breakdown.to_dict() if self.score_breakdown else None,
            "provider": self.provider_id,
            "userMetrics": self.user_metrics.to_dict() if self.user_metrics else None,
            "friendMetrics": self.friend_metrics.to_dict() if self.friend_metrics else None,
            "skippedCandidates": [s.to_dict() for s in self.skipped],
            "states": list(self.states),
        }
