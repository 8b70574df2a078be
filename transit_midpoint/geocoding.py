"""
Address geocoding through the Google Maps client, so the HTTP API can accept
street addresses as well as coordinates.
"""

import asyncio
import concurrent.futures
import logging
from typing import Dict, Optional

import googlemaps
from googlemaps.exceptions import ApiError, Timeout, TransportError

from .models import Coordinate
from .settings import PLACEHOLDER_API_KEY

logger = logging.getLogger(__name__)


class GoogleGeocoder:
    """Thin wrapper around googlemaps.Client.geocode"""

    def __init__(self, api_key: str, client: Optional[googlemaps.Client] = None):
        if not api_key or api_key == PLACEHOLDER_API_KEY:
            raise ValueError("Valid Google Maps API key is required")
        self.client = client or googlemaps.Client(key=api_key)
        self.executor = concurrent.futures.ThreadPoolExecutor(max_workers=4)

    def cleanup(self):
        """Clean up resources"""
        self.executor.shutdown(wait=True)

    def geocode_address(self, address: str) -> Optional[Dict]:
        """
        Geocode an address using Google Maps Geocoding API
        Returns formatted address and coordinates
        """
        try:
            result = self.client.geocode(address)
        except (ApiError, Timeout, TransportError) as e:
            logger.error("Geocoding error for %r: %s", address, e)
            return None
        if not result:
            return None
        location = result[0]
        try:
            coordinate = Coordinate(location['geometry']['location']['lat'],
                                    location['geometry']['location']['lng'])
        except (KeyError, TypeError, ValueError) as e:
            logger.warning("Unusable geocoding result for %r: %s", address, e)
            return None
        return {
            'formatted_address': location.get('formatted_address', address),
            'lat': coordinate.lat,
            'lng': coordinate.lng,
        }

    async def geocode_address_async(self, address: str) -> Optional[Dict]:
        """Async wrapper for geocode_address"""
        loop = asyncio.get_event_loop()
        return await loop.run_in_executor(self.executor, self.geocode_address, address)
