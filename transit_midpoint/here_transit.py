"""
HERE Public Transit API (v8) adapter.

HERE throttles aggressively, so this adapter defaults to sequential party
requests and is usually paired with a non-zero rate-limiter delay.
"""

import datetime as _dt
import logging
from typing import Any, Dict, List, Optional, Tuple

from .errors import AuthError, NetworkError, RateLimited
from .models import (
    Coordinate,
    NormalizedRoute,
    RouteMetrics,
    RouteResponse,
    RouteSegment,
    RouteStatus,
    TransportMode,
)
from .providers import (
    RouteRequest,
    RoutingProvider,
    count_transfers,
    default_departure_time,
    non_negative,
    parse_iso8601_duration,
    safe_coordinate,
    sanitize_distance,
    sanitize_duration,
)

logger = logging.getLogger(__name__)

TRANSIT_MODES = ("subway", "train", "bus")


def _parse_time(value: Any) -> Optional[_dt.datetime]:
    if not isinstance(value, str) or not value:
        return None
    text = value.strip()
    if text.endswith("Z"):
        text = text[:-1] + "+00:00"
    try:
        return _dt.datetime.fromisoformat(text)
    except ValueError:
        return None


def _place_coordinate(endpoint: Dict[str, Any]) -> Optional[Coordinate]:
    place = endpoint.get("place")
    return safe_coordinate(place.get("location")) if isinstance(place, dict) else None


def _duration_value(value: Any) -> Optional[float]:
    """HERE sends durations either as seconds or as ISO-8601 strings."""
    number = non_negative(value)
    if number is not None:
        return number
    parsed = parse_iso8601_duration(value)
    return parsed if parsed is not None and parsed >= 0 else None


class HereTransitProvider(RoutingProvider):
    provider_id = "here"
    display_name = "HERE"
    base_url = "https://transit.router.hereapi.com/v8/routes"
    supported_modes = frozenset({TransportMode.TRAIN})

    def __init__(self, api_key: str, concurrent_parties: bool = False, **kwargs):
        super().__init__(api_key, concurrent_parties=concurrent_parties, **kwargs)

    def build_params(self, request: RouteRequest) -> Dict[str, Any]:
        departure = request.departure_time or default_departure_time()
        if departure.tzinfo is None:
            departure = departure.astimezone()
        return {
            "origin": str(request.origin),
            "destination": str(request.destination),
            "apikey": self.api_key,
            "return": "polyline,travelSummary,actions",
            "lang": "en-US",
            "modes": ",".join(TRANSIT_MODES),
            "alternatives": "2" if request.alternatives else "0",
            "departureTime": departure.replace(microsecond=0).isoformat(),
        }

    def parse_payload(self, payload: Dict[str, Any]) -> RouteResponse:
        if "error" in payload:
            status = payload.get("status")
            message = payload.get("error_description") or payload.get("title") or payload.get("error")
            if status in (401, 403):
                raise AuthError(str(message), self.provider_id)
            if status == 429:
                raise RateLimited(str(message), self.provider_id)
            raise NetworkError(f"HERE API error: {message}", self.provider_id)

        raw_routes = payload.get("routes")
        if not isinstance(raw_routes, list) or not raw_routes:
            notices = payload.get("notices") if isinstance(payload.get("notices"), list) else []
            codes = [n.get("code") for n in notices if isinstance(n, dict)]
            logger.info("HERE returned no routes (notices: %s)", codes or "none")
            return RouteResponse(routes=(), status=RouteStatus.NO_ROUTE)

        routes = [self._parse_route(r) for r in raw_routes if isinstance(r, dict)]
        if not routes:
            return RouteResponse(routes=(), status=RouteStatus.NO_ROUTE)
        return RouteResponse(routes=tuple(routes), status=RouteStatus.OK)

    def _parse_route(self, route: Dict[str, Any]) -> NormalizedRoute:
        sections = route.get("sections") if isinstance(route.get("sections"), list) else []

        duration = 0.0
        distance: Optional[float] = None
        segments: List[RouteSegment] = []
        for raw in sections:
            parsed = self._parse_section(raw)
            if parsed is None:
                continue
            segment, section_duration, section_length = parsed
            segments.append(segment)
            if section_duration is not None:
                duration += section_duration
            if section_length is not None:
                distance = (distance or 0.0) + section_length

        summary_block = route.get("travelSummary") if isinstance(route.get("travelSummary"), dict) else {}
        total_duration: Optional[float] = duration if duration > 0 else None
        if total_duration is None:
            total_duration = _duration_value(summary_block.get("duration"))
        if total_duration is None:
            total_duration = _duration_value(route.get("duration"))
        if distance is None:
            distance = non_negative(summary_block.get("length"))

        lines = [s.line for s in segments if s.is_transit and s.line]
        return NormalizedRoute(
            metrics=RouteMetrics(
                duration_seconds=sanitize_duration(total_duration),
                distance_meters=sanitize_distance(distance),
                transfer_count=count_transfers(segments),
            ),
            summary=" → ".join(lines),
            segments=tuple(segments),
        )

    @staticmethod
    def _parse_section(section: Any) -> Optional[Tuple[RouteSegment, Optional[float], Optional[float]]]:
        """(segment, duration, length) for one section, or None when it must be dropped."""
        if not isinstance(section, dict):
            return None
        departure = section.get("departure") if isinstance(section.get("departure"), dict) else {}
        arrival = section.get("arrival") if isinstance(section.get("arrival"), dict) else {}
        start, end = _place_coordinate(departure), _place_coordinate(arrival)
        if start is None or end is None:
            logger.debug("Dropping HERE section %s with unusable coordinates", section.get("id"))
            return None

        section_duration: Optional[float] = None
        depart_at, arrive_at = _parse_time(departure.get("time")), _parse_time(arrival.get("time"))
        if depart_at is not None and arrive_at is not None:
            try:
                seconds = (arrive_at - depart_at).total_seconds()
            except TypeError:
                # naive vs aware timestamps
                seconds = None
            section_duration = non_negative(seconds)
        summary = section.get("travelSummary") if isinstance(section.get("travelSummary"), dict) else {}
        if section_duration is None:
            section_duration = _duration_value(summary.get("duration"))
        section_length = non_negative(summary.get("length"))

        section_type = str(section.get("type") or "unknown")
        transport = section.get("transport") if isinstance(section.get("transport"), dict) else {}
        line = transport.get("name") or transport.get("shortName")
        mode = "transit" if section_type == "transit" else (
            "walking" if section_type == "pedestrian" else section_type)
        segment = RouteSegment(mode=mode, start=start, end=end,
                               line=str(line) if line is not None else None)
        return segment, section_duration, section_length
