"""
Spherical geometry helpers: midpoint, distances and generated ring candidates.
"""

import math
from typing import List

from geopy.distance import geodesic

from .errors import InvalidInput
from .models import Candidate, Coordinate, ImportanceTier


def _normalize_longitude(lng: float) -> float:
    lng = (lng + 180.0) % 360.0 - 180.0
    # keep +180 instead of folding it to -180
    return 180.0 if lng == -180.0 else lng


def spherical_midpoint(point1: Coordinate, point2: Coordinate) -> Coordinate:
    """Great-circle midpoint of two coordinates.

    Near-antipodal inputs make cos(lat1) + Bx approach zero, so the resulting
    longitude is numerically unstable. Such inputs are not special-cased.
    """
    if point1 == point2:
        return point1

    lat1, lng1 = math.radians(point1.lat), math.radians(point1.lng)
    lat2, lng2 = math.radians(point2.lat), math.radians(point2.lng)
    d_lng = lng2 - lng1

    bx = math.cos(lat2) * math.cos(d_lng)
    by = math.cos(lat2) * math.sin(d_lng)

    lat3 = math.atan2(
        math.sin(lat1) + math.sin(lat2),
        math.sqrt((math.cos(lat1) + bx) ** 2 + by ** 2),
    )
    lng3 = lng1 + math.atan2(by, math.cos(lat1) + bx)

    return Coordinate(
        max(-90.0, min(90.0, math.degrees(lat3))),
        _normalize_longitude(math.degrees(lng3)),
    )


def distance_meters(point1: Coordinate, point2: Coordinate) -> float:
    """Geodesic (WGS-84) distance in meters."""
    return geodesic(point1.as_tuple(), point2.as_tuple()).meters


def generate_ring_candidates(center: Coordinate, radius_meters: float, count: int) -> List[Candidate]:
    """Evenly spaced candidates on a ring of radius_meters around center.

    Bearings start at due north and go clockwise.
    """
    if radius_meters is None or not math.isfinite(radius_meters) or radius_meters < 0:
        raise InvalidInput(f"radius_meters must be a finite value >= 0, got {radius_meters!r}")
    if count <= 0:
        return []

    ring = geodesic(meters=radius_meters)
    step = 360.0 / count
    candidates: List[Candidate] = []
    for i in range(count):
        bearing = step * i
        dest = ring.destination(center.as_tuple(), bearing)
        candidates.append(Candidate(
            coordinate=Coordinate(dest.latitude, _normalize_longitude(dest.longitude)),
            label=f"ring {int(round(radius_meters))}m @ {bearing:.0f}°",
            importance=ImportanceTier.GENERATED,
        ))
    return candidates
