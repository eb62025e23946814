"""
Approximate location from the device's public IP.

Endpoints are tried in order with a per-endpoint timeout. When every endpoint
fails a representative city is used, and the fixed centroid when even that is
unavailable, so a driver session always has some location.
"""
import httpx
import random
from typing import List, Optional, Sequence, Tuple
from config import settings
import logging

logger = logging.getLogger(__name__)

Coordinate = Tuple[float, float]


def parse_coordinates(data: dict) -> Optional[Coordinate]:
    """latitude/longitude fields, or ipinfo's "loc": "lat,lng" """
    lat = data.get("latitude")
    lng = data.get("longitude")
    if lat in (None, "", "Not found") or lng in (None, "", "Not found"):
        loc = data.get("loc")
        if not loc or "," not in str(loc):
            return None
        lat, lng = str(loc).split(",", 1)
    try:
        return float(lat), float(lng)
    except (TypeError, ValueError):
        return None


class IPGeolocationService:
    def __init__(
        self,
        endpoints: Optional[List[str]] = None,
        timeout: Optional[float] = None,
        fallback_cities: Optional[Sequence[Coordinate]] = None,
        default_centroid: Optional[Coordinate] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None
    ):
        self.endpoints = endpoints if endpoints is not None else list(settings.ip_geolocation_endpoints)
        self.timeout = timeout if timeout is not None else settings.ip_geolocation_timeout_seconds
        self.fallback_cities = list(fallback_cities) if fallback_cities is not None else list(settings.fallback_cities)
        self.default_centroid = default_centroid or tuple(settings.default_centroid)
        self._transport = transport

    async def lookup(self) -> Optional[Coordinate]:
        """First coordinate any endpoint returns, or None"""
        async with httpx.AsyncClient(timeout=self.timeout, transport=self._transport) as client:
            for endpoint in self.endpoints:
                try:
                    response = await client.get(endpoint)
                except httpx.HTTPError as e:
                    logger.warning(f"Failed to get location from {endpoint}: {e}")
                    continue

                if response.status_code != 200:
                    logger.warning(f"{endpoint} returned status {response.status_code}")
                    continue

                try:
                    coordinates = parse_coordinates(response.json())
                except ValueError:
                    coordinates = None
                if coordinates:
                    return coordinates
        return None

    def fallback_location(self) -> Coordinate:
        if self.fallback_cities:
            city = random.choice(self.fallback_cities)
            logger.info(f"Using default fallback location: {city}")
            return tuple(city)
        return self.default_centroid

    async def get_approximate_location(self) -> Coordinate:
        """Never raises: degrades to a fallback city, then to the centroid"""
        try:
            coordinates = await self.lookup()
        except Exception as e:
            logger.warning(f"IP location lookup failed: {e}")
            coordinates = None
        if coordinates:
            return coordinates

        try:
            return self.fallback_location()
        except Exception as e:
            logger.warning(f"Fallback city unavailable: {e}")
            return self.default_centroid
