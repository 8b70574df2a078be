"""
Provider adapter contract plus the sanitize-or-default helpers every adapter
runs its wire payload through before anything reaches the scorer.
"""

import asyncio
import concurrent.futures
import datetime as _dt
import functools
import logging
import math
import re
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Any, Dict, Iterable, Optional

import requests

from .errors import AuthError, InvalidInput, NetworkError, NoRoute, ParseError, RateLimited
from .models import (
    Coordinate,
    RouteMetrics,
    RouteResponse,
    RouteSegment,
    RouteStatus,
    TransportMode,
)
from .settings import PLACEHOLDER_API_KEY

logger = logging.getLogger(__name__)

# Safe defaults substituted for unusable upstream values
DEFAULT_DURATION_SECONDS = 1800.0
DEFAULT_DISTANCE_METERS = 5000.0

DEFAULT_TIMEOUT_SECONDS = 30.0
# Providers reject departures in the past
DEPARTURE_LEAD = _dt.timedelta(minutes=5)
USER_AGENT = "transit-midpoint/1.0"

_ISO_DURATION = re.compile(
    r"^P(?:(?P<days>\d+(?:\.\d+)?)D)?"
    r"(?:T(?:(?P<hours>\d+(?:\.\d+)?)H)?(?:(?P<minutes>\d+(?:\.\d+)?)M)?(?:(?P<seconds>\d+(?:\.\d+)?)S)?)?$"
)


# --- Sanitizing helpers ---

def finite_number(value: Any) -> Optional[float]:
    """Return value as a float if it is a finite number, else None."""
    if isinstance(value, bool) or value is None:
        return None
    if isinstance(value, (int, float)):
        number = float(value)
    elif isinstance(value, str):
        try:
            number = float(value.strip())
        except ValueError:
            return None
    else:
        return None
    return number if math.isfinite(number) else None


def sanitize_duration(value: Any) -> float:
    number = finite_number(value)
    if number is None or number < 0:
        logger.debug("Unusable duration %r, using default %.0fs", value, DEFAULT_DURATION_SECONDS)
        return DEFAULT_DURATION_SECONDS
    return number


def sanitize_distance(value: Any) -> float:
    number = finite_number(value)
    if number is None or number < 0:
        logger.debug("Unusable distance %r, using default %.0fm", value, DEFAULT_DISTANCE_METERS)
        return DEFAULT_DISTANCE_METERS
    return number


def non_negative(value: Any) -> Optional[float]:
    number = finite_number(value)
    return number if number is not None and number >= 0 else None


def safe_coordinate(location: Any) -> Optional[Coordinate]:
    """Coordinate from a {'lat', 'lng'} mapping, or None if anything is off."""
    if not isinstance(location, dict):
        return None
    lat = finite_number(location.get("lat"))
    lng = finite_number(location.get("lng", location.get("lon")))
    if lat is None or lng is None:
        return None
    try:
        return Coordinate(lat, lng)
    except InvalidInput:
        return None


def parse_iso8601_duration(text: Any) -> Optional[float]:
    """Seconds in an ISO-8601 duration such as 'PT25M30S', or None."""
    if not isinstance(text, str):
        return None
    match = _ISO_DURATION.match(text.strip())
    if not match or text.strip() in ("P", "PT"):
        return None
    parts = {k: float(v) for k, v in match.groupdict().items() if v is not None}
    return (parts.get("days", 0.0) * 86400 + parts.get("hours", 0.0) * 3600
            + parts.get("minutes", 0.0) * 60 + parts.get("seconds", 0.0))


def count_transfers(segments: Iterable[RouteSegment]) -> int:
    """Transit boardings minus the first one."""
    transit = sum(1 for seg in segments if seg.is_transit)
    return max(0, transit - 1)


def default_departure_time(now: Optional[_dt.datetime] = None) -> _dt.datetime:
    now = now or _dt.datetime.now(_dt.timezone.utc)
    return now + DEPARTURE_LEAD


# --- Adapter contract ---

@dataclass(frozen=True)
class RouteRequest:
    origin: Coordinate
    destination: Coordinate
    mode: TransportMode = TransportMode.TRAIN
    departure_time: Optional[_dt.datetime] = None
    alternatives: bool = False


class RoutingProvider(ABC):
    """Base class for every routing provider adapter.

    Subclasses describe the wire protocol (build_params / parse_payload); the
    base class owns HTTP, status-code mapping and the disabled-on-auth-failure
    state.
    """

    provider_id: str = ""
    display_name: str = ""
    base_url: str = ""
    supported_modes = frozenset(TransportMode)

    def __init__(self, api_key: str, session: Optional[requests.Session] = None,
                 timeout: float = DEFAULT_TIMEOUT_SECONDS, concurrent_parties: bool = True,
                 executor: Optional[concurrent.futures.Executor] = None):
        if not api_key or api_key == PLACEHOLDER_API_KEY:
            raise ValueError(f"Valid {self.display_name or self.provider_id} API key is required")
        self.api_key = api_key
        self.session = session or requests.Session()
        self.timeout = timeout
        self.concurrent_parties = concurrent_parties
        self.executor = executor or concurrent.futures.ThreadPoolExecutor(max_workers=10)
        self.disabled_reason: Optional[str] = None

    def cleanup(self):
        """Clean up resources"""
        self.executor.shutdown(wait=True)
        self.session.close()

    @property
    def disabled(self) -> bool:
        return self.disabled_reason is not None

    def mark_disabled(self, reason: str) -> None:
        if not self.disabled:
            logger.error("%s disabled for the rest of this process: %s", self.provider_id, reason)
        self.disabled_reason = reason

    def supports(self, mode: TransportMode) -> bool:
        return mode in self.supported_modes

    @property
    def headers(self) -> Dict[str, str]:
        return {"Accept": "application/json", "User-Agent": USER_AGENT}

    @abstractmethod
    def build_params(self, request: RouteRequest) -> Dict[str, Any]:
        """Query parameters for one routing request."""

    @abstractmethod
    def parse_payload(self, payload: Dict[str, Any]) -> RouteResponse:
        """Decoded JSON body -> canonical RouteResponse. May raise ProviderError."""

    def fetch(self, request: RouteRequest) -> RouteResponse:
        """Perform one HTTP request and normalize the answer."""
        if self.disabled:
            raise AuthError(self.disabled_reason or "provider disabled", self.provider_id)
        if not self.supports(request.mode):
            raise NoRoute(f"{self.provider_id} does not support mode {request.mode.value}", self.provider_id)

        params = self.build_params(request)
        logger.info("%s call (%s): %s -> %s", self.provider_id, request.mode.value,
                    request.origin, request.destination)
        try:
            response = self.session.get(self.base_url, params=params, headers=self.headers,
                                        timeout=self.timeout)
        except requests.exceptions.Timeout as e:
            raise NetworkError(f"timed out after {self.timeout}s: {e}", self.provider_id)
        except requests.exceptions.RequestException as e:
            raise NetworkError(str(e), self.provider_id)

        status_code = response.status_code
        if status_code in (401, 403):
            self.mark_disabled(f"HTTP {status_code}")
            raise AuthError(f"HTTP {status_code}", self.provider_id)
        if status_code == 429:
            raise RateLimited("HTTP 429", self.provider_id)
        if not 200 <= status_code < 300:
            raise NetworkError(f"HTTP {status_code}", self.provider_id)

        try:
            payload = response.json()
        except ValueError as e:
            raise ParseError(f"invalid JSON body: {e}", self.provider_id)
        if not isinstance(payload, dict):
            raise ParseError(f"unexpected JSON body type {type(payload).__name__}", self.provider_id)

        try:
            parsed = self.parse_payload(payload)
        except AuthError as e:
            self.mark_disabled(str(e))
            raise
        logger.info("%s: %d route(s) found (status=%s)", self.provider_id, len(parsed.routes),
                    parsed.status.value)
        return parsed

    def get_route(self, origin: Coordinate, destination: Coordinate,
                  mode: TransportMode = TransportMode.TRAIN,
                  departure_time: Optional[_dt.datetime] = None) -> RouteMetrics:
        """Metrics of the provider's preferred itinerary between two points."""
        request = RouteRequest(origin, destination, mode, departure_time or default_departure_time())
        response = self.fetch(request)
        if response.status != RouteStatus.OK or not response.routes:
            raise NoRoute(f"no {mode.value} route {origin} -> {destination}", self.provider_id)
        return response.routes[0].metrics

    async def get_route_async(self, origin: Coordinate, destination: Coordinate,
                              mode: TransportMode = TransportMode.TRAIN,
                              departure_time: Optional[_dt.datetime] = None) -> RouteMetrics:
        """Async wrapper for get_route"""
        loop = asyncio.get_event_loop()
        return await loop.run_in_executor(
            self.executor, functools.partial(self.get_route, origin, destination, mode, departure_time))
