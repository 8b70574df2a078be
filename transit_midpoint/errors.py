"""
Error taxonomy for the meeting-point engine.

InvalidInput is the only error a caller of the resolver ever sees. Everything
else is a ProviderError raised by the routing layer and recovered inside the
resolver by skipping a candidate.
"""

from typing import Optional


class InvalidInput(ValueError):
    """Input coordinates (or other caller-supplied values) are unusable."""

    user_message = "could not resolve - check input locations"


class ProviderError(Exception):
    """Base class for failures talking to an external routing provider."""

    kind = "provider_error"

    def __init__(self, message: str = "", provider_id: Optional[str] = None):
        super().__init__(message or self.kind)
        self.provider_id = provider_id


class NetworkError(ProviderError):
    """Transport failure, timeout or unexpected HTTP status."""

    kind = "network_error"


class AuthError(ProviderError):
    """Rejected credential. Fatal for the provider for the rest of the process."""

    kind = "auth_error"


class RateLimited(ProviderError):
    """Provider signalled throttling (HTTP 429 or an over-quota status)."""

    kind = "rate_limited"


class NoRoute(ProviderError):
    """Provider answered but has no itinerary between the two points."""

    kind = "no_route"


class BudgetExceeded(ProviderError):
    """Monthly budget for the provider does not allow another request."""

    kind = "budget_exceeded"


class ParseError(ProviderError):
    """Response body could not be decoded into the canonical schema."""

    kind = "parse_error"
