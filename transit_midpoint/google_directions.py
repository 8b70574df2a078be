"""
Google Directions API adapter.
"""

import logging
from typing import Any, Dict, List, Optional

from .errors import AuthError, NetworkError, ParseError, RateLimited
from .models import NormalizedRoute, RouteMetrics, RouteResponse, RouteSegment, RouteStatus, TransportMode
from .providers import (
    RouteRequest,
    RoutingProvider,
    count_transfers,
    default_departure_time,
    non_negative,
    safe_coordinate,
    sanitize_distance,
    sanitize_duration,
)

logger = logging.getLogger(__name__)

GOOGLE_MODES = {
    TransportMode.WALK: "walking",
    TransportMode.BIKE: "bicycling",
    TransportMode.TRAIN: "transit",
    TransportMode.CAR: "driving",
}

NO_ROUTE_STATUSES = {"ZERO_RESULTS", "NOT_FOUND", "INVALID_REQUEST",
                     "MAX_ROUTE_LENGTH_EXCEEDED", "MAX_WAYPOINTS_EXCEEDED"}


def _text_value(container: Any) -> Optional[float]:
    """Google wraps numbers as {'text': '12 mins', 'value': 720}."""
    if isinstance(container, dict):
        return non_negative(container.get("value"))
    return None


class GoogleDirectionsProvider(RoutingProvider):
    provider_id = "google"
    display_name = "Google Maps"
    base_url = "https://maps.googleapis.com/maps/api/directions/json"

    def build_params(self, request: RouteRequest) -> Dict[str, Any]:
        mode = GOOGLE_MODES[request.mode]
        params: Dict[str, Any] = {
            "origin": str(request.origin),
            "destination": str(request.destination),
            "mode": mode,
            "key": self.api_key,
            "alternatives": "true" if request.alternatives else "false",
        }
        if mode in ("transit", "driving"):
            departure = request.departure_time or default_departure_time()
            params["departure_time"] = int(departure.timestamp())
        if mode == "transit":
            params["transit_mode"] = "subway|bus"
            params["transit_routing_preference"] = "fewer_transfers"
        return params

    def parse_payload(self, payload: Dict[str, Any]) -> RouteResponse:
        status = payload.get("status")
        error_message = payload.get("error_message") or status
        if status in NO_ROUTE_STATUSES:
            logger.info("Google Directions status %s: %s", status, error_message)
            return RouteResponse(routes=(), status=RouteStatus.NO_ROUTE)
        if status == "OVER_QUERY_LIMIT":
            raise RateLimited(error_message, self.provider_id)
        if status == "REQUEST_DENIED":
            raise AuthError(error_message, self.provider_id)
        if status == "UNKNOWN_ERROR":
            raise NetworkError(error_message, self.provider_id)
        if status != "OK":
            raise ParseError(f"unexpected status {status!r}", self.provider_id)

        raw_routes = payload.get("routes")
        if not isinstance(raw_routes, list):
            raise ParseError("'routes' is missing or not a list", self.provider_id)

        routes = [self._parse_route(r) for r in raw_routes if isinstance(r, dict)]
        if not routes:
            return RouteResponse(routes=(), status=RouteStatus.NO_ROUTE)
        return RouteResponse(routes=tuple(routes), status=RouteStatus.OK)

    def _parse_route(self, route: Dict[str, Any]) -> NormalizedRoute:
        legs = route.get("legs") if isinstance(route.get("legs"), list) else []

        duration: Optional[float] = None
        distance: Optional[float] = None
        segments: List[RouteSegment] = []
        for leg in legs:
            if not isinstance(leg, dict):
                continue
            leg_duration = _text_value(leg.get("duration"))
            if leg_duration is not None:
                duration = (duration or 0.0) + leg_duration
            leg_distance = _text_value(leg.get("distance"))
            if leg_distance is not None:
                distance = (distance or 0.0) + leg_distance
            steps = leg.get("steps") if isinstance(leg.get("steps"), list) else []
            for step in steps:
                segment = self._parse_step(step)
                if segment is not None:
                    segments.append(segment)

        if duration is None:
            duration = _text_value(route.get("duration"))
        if distance is None:
            distance = _text_value(route.get("distance"))

        summary = route.get("summary") if isinstance(route.get("summary"), str) else ""
        if not summary:
            summary = " → ".join(s.line for s in segments if s.is_transit and s.line)

        return NormalizedRoute(
            metrics=RouteMetrics(
                duration_seconds=sanitize_duration(duration),
                distance_meters=sanitize_distance(distance),
                transfer_count=count_transfers(segments),
            ),
            summary=summary,
            segments=tuple(segments),
        )

    @staticmethod
    def _parse_step(step: Any) -> Optional[RouteSegment]:
        if not isinstance(step, dict):
            return None
        start = safe_coordinate(step.get("start_location"))
        end = safe_coordinate(step.get("end_location"))
        if start is None or end is None:
            logger.debug("Dropping step with unusable coordinates: %s / %s",
                         step.get("start_location"), step.get("end_location"))
            return None
        mode = str(step.get("travel_mode") or "unknown").lower()
        line = None
        details = step.get("transit_details")
        if isinstance(details, dict) and isinstance(details.get("line"), dict):
            line = details["line"].get("short_name") or details["line"].get("name")
        return RouteSegment(mode=mode, start=start, end=end, line=line)
