"""
Catalog of well-connected transit hubs and the relevance filter that turns it
into meeting-point candidates for a pair of locations.
"""

import json
import logging
from dataclasses import dataclass
from typing import Iterable, List, Optional, Sequence, Tuple

from .geometry import distance_meters
from .models import Candidate, Coordinate, ImportanceTier

logger = logging.getLogger(__name__)

# Hub must be closer to each party than this fraction of the direct distance.
RELEVANCE_RATIO = 0.8
DEFAULT_MAX_CANDIDATES = 5


@dataclass(frozen=True)
class TransitHub:
    name: str
    coordinate: Coordinate
    lines: Tuple[str, ...] = ()
    importance: ImportanceTier = ImportanceTier.LOCAL

    def to_candidate(self) -> Candidate:
        return Candidate(coordinate=self.coordinate, label=self.name, importance=self.importance)


def _hub(name: str, lat: float, lng: float, lines: str, importance: ImportanceTier) -> TransitHub:
    return TransitHub(name, Coordinate(lat, lng), tuple(lines.split()), importance)


_MAJOR = ImportanceTier.MAJOR
_SECONDARY = ImportanceTier.SECONDARY

# New York City subway interchanges
NYC_HUBS: Tuple[TransitHub, ...] = (
    # Manhattan core
    _hub("Union Square", 40.7359, -73.9906, "4 5 6 L N Q R W", _MAJOR),
    _hub("Times Square", 40.7580, -73.9855, "1 2 3 7 N Q R W S", _MAJOR),
    _hub("14th St-8th Ave", 40.7394, -74.0020, "A C E L", _MAJOR),
    _hub("West 4th St", 40.7323, -74.0004, "A B C D E F M", _MAJOR),
    _hub("34th St-Herald Sq", 40.7497, -73.9880, "B D F M N Q R W", _MAJOR),
    _hub("34th St-Penn Station", 40.7506, -73.9935, "1 2 3 A C E", _MAJOR),
    # Cross-borough
    _hub("Atlantic Ave-Barclays", 40.6840, -73.9769, "B D N Q R W 2 3 4 5", _MAJOR),
    _hub("Jay St-MetroTech", 40.6924, -73.9874, "A C F R", _SECONDARY),
    # East side
    _hub("Lexington Ave/59th St", 40.7625, -73.9673, "4 5 6 N Q R W", _MAJOR),
    _hub("Grand Central", 40.7527, -73.9772, "4 5 6 7 S", _MAJOR),
    _hub("Canal St", 40.7185, -74.0057, "J Z N Q R W 6", _SECONDARY),
    # Upper Manhattan
    _hub("125th St", 40.8075, -73.9370, "4 5 6 A B C D", _MAJOR),
    # L train (Williamsburg)
    _hub("Lorimer St", 40.7140, -73.9502, "L", _SECONDARY),
    _hub("Graham Ave", 40.7148, -73.9439, "L", _SECONDARY),
)


class HubRegistry:
    """Static hub catalog plus the geographic relevance filter."""

    def __init__(self, hubs: Optional[Iterable[TransitHub]] = None,
                 max_candidates: int = DEFAULT_MAX_CANDIDATES):
        self.hubs: Tuple[TransitHub, ...] = tuple(NYC_HUBS if hubs is None else hubs)
        self.max_candidates = max_candidates

    @classmethod
    def from_json_file(cls, path: str, max_candidates: int = DEFAULT_MAX_CANDIDATES) -> "HubRegistry":
        """Load a catalog from a JSON list of
        {"name", "lat", "lng", "lines": [...], "importance": "major|secondary|local"}.
        """
        with open(path, "r", encoding="utf-8") as fh:
            raw = json.load(fh)
        hubs: List[TransitHub] = []
        for item in raw:
            importance = ImportanceTier[str(item.get("importance", "local")).upper()]
            hubs.append(TransitHub(
                name=item["name"],
                coordinate=Coordinate(item["lat"], item["lng"]),
                lines=tuple(item.get("lines", [])),
                importance=importance,
            ))
        logger.info("Loaded %d hubs from %s", len(hubs), path)
        return cls(hubs, max_candidates=max_candidates)

    def filter_relevant(self, point1: Coordinate, point2: Coordinate,
                        limit: Optional[int] = None) -> List[Candidate]:
        return [hub.to_candidate() for hub in filter_relevant_hubs(
            self.hubs, point1, point2, self.max_candidates if limit is None else limit)]


def filter_relevant_hubs(hubs: Sequence[TransitHub], point1: Coordinate, point2: Coordinate,
                         limit: int = DEFAULT_MAX_CANDIDATES) -> List[TransitHub]:
    """Hubs lying substantially between the two points, best first.

    Order: importance descending, then combined distance to both points
    ascending, then name.
    """
    max_reasonable = distance_meters(point1, point2) * RELEVANCE_RATIO

    scored = []
    for hub in hubs:
        d1 = distance_meters(point1, hub.coordinate)
        d2 = distance_meters(point2, hub.coordinate)
        if d1 < max_reasonable and d2 < max_reasonable:
            scored.append((-int(hub.importance), d1 + d2, hub.name, hub))

    scored.sort(key=lambda item: item[:3])
    return [item[3] for item in scored[:max(0, limit)]]
