"""
Distance utilities: haversine great-circle distance and a route estimate
that asks OSRM for road distance and falls back to a straight line
"""
import math
import httpx
from typing import Optional, Tuple
from config import settings
import logging

logger = logging.getLogger(__name__)

EARTH_RADIUS_M = 6371000.0

# OSRM underestimates road distance and travel time on Indian roads
DISTANCE_CORRECTION_FACTOR = 1.10
DURATION_CORRECTION_FACTOR = 1.25

def haversine_meters(lat1: float, lon1: float, lat2: float, lon2: float) -> float:
    """
    Great-circle distance between two points in meters.

    Args:
        lat1, lon1: First point coordinates (in degrees)
        lat2, lon2: Second point coordinates (in degrees)
    """
    phi1 = math.radians(lat1)
    phi2 = math.radians(lat2)
    dphi = math.radians(lat2 - lat1)
    dlambda = math.radians(lon2 - lon1)

    a = math.sin(dphi / 2) ** 2 + math.cos(phi1) * math.cos(phi2) * math.sin(dlambda / 2) ** 2
    c = 2 * math.atan2(math.sqrt(a), math.sqrt(1 - a))

    return EARTH_RADIUS_M * c

def haversine_distance(lat1: float, lon1: float, lat2: float, lon2: float) -> float:
    """Great-circle distance in kilometers"""
    return haversine_meters(lat1, lon1, lat2, lon2) / 1000

def get_road_distance(
    lat1: float,
    lon1: float,
    lat2: float,
    lon2: float,
    timeout: float = 5.0,
    client: Optional[httpx.Client] = None
) -> Tuple[Optional[float], Optional[int]]:
    """
    Road distance (km) and duration (minutes) from OSRM.
    Returns (None, None) when the routing service is unavailable.
    """
    url = f"{settings.osrm_base_url}/route/v1/driving/{lon1},{lat1};{lon2},{lat2}"
    params = {"overview": "false", "annotations": "false"}

    try:
        if client is None:
            with httpx.Client(timeout=timeout) as own_client:
                response = own_client.get(url, params=params)
        else:
            response = client.get(url, params=params)
    except httpx.TimeoutException:
        logger.warning("OSRM request timed out")
        return None, None
    except httpx.HTTPError as e:
        logger.error(f"OSRM request error: {str(e)}")
        return None, None

    if response.status_code != 200:
        logger.warning(f"OSRM request failed with status {response.status_code}")
        return None, None

    data = response.json()
    if data.get("code") != "Ok" or not data.get("routes"):
        logger.warning(f"OSRM returned no routes: {data.get('code')}")
        return None, None

    route = data["routes"][0]
    distance_km = (route.get("distance", 0) / 1000) * DISTANCE_CORRECTION_FACTOR
    duration_minutes = int((route.get("duration", 0) / 60) * DURATION_CORRECTION_FACTOR)
    if duration_minutes == 0 and distance_km > 0.1:
        duration_minutes = 1

    logger.debug(f"OSRM route (corrected): {distance_km:.2f} km, {duration_minutes} min")
    return distance_km, duration_minutes

def calculate_eta(distance_km: float, avg_speed_kmh: float = 40.0) -> int:
    """ETA in minutes at an average road speed"""
    return int((distance_km / avg_speed_kmh) * 60)

def estimate_route(
    pickup_lat: float,
    pickup_lng: float,
    destination_lat: float,
    destination_lng: float,
    use_road_distance: bool = True,
    client: Optional[httpx.Client] = None
) -> Tuple[float, int, bool]:
    """
    Distance (km), ETA (minutes) and whether road distance was used.
    Falls back to straight-line distance when routing fails.
    """
    if use_road_distance:
        road_distance, road_eta = get_road_distance(
            pickup_lat, pickup_lng,
            destination_lat, destination_lng,
            client=client
        )
        if road_distance is not None and road_eta is not None:
            return road_distance, road_eta, True

    straight_distance = haversine_distance(pickup_lat, pickup_lng, destination_lat, destination_lng)
    return straight_distance, calculate_eta(straight_distance), False

def format_eta(eta_minutes: int) -> str:
    if eta_minutes < 60:
        return f"{eta_minutes} min"
    hours = eta_minutes // 60
    minutes = eta_minutes % 60
    if minutes == 0:
        return f"{hours} hr"
    return f"{hours} hr {minutes} min"
