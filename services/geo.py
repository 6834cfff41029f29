"""
Geographic helpers for the single-kitchen delivery zone.

The kitchen delivers within a radius around its own location. Distances use
the Haversine formula; marker animation uses straight-line interpolation,
which is accurate enough over the few metres between GPS samples.
"""

import math

from config import DELIVERY_RADIUS_KM, KITCHEN_LAT, KITCHEN_LNG
from .errors import ValidationError


def haversine_distance(lat1: float, lon1: float, lat2: float, lon2: float) -> float:
    """Calculate distance between two points in kilometers using Haversine formula."""
    R = 6371  # Earth's radius in km

    lat1_rad = math.radians(lat1)
    lat2_rad = math.radians(lat2)
    delta_lat = math.radians(lat2 - lat1)
    delta_lon = math.radians(lon2 - lon1)

    a = (math.sin(delta_lat / 2) ** 2 +
         math.cos(lat1_rad) * math.cos(lat2_rad) *
         math.sin(delta_lon / 2) ** 2)
    c = 2 * math.atan2(math.sqrt(a), math.sqrt(1 - a))

    return R * c


def validate_coordinates(lat: float, lng: float) -> tuple[float, float]:
    if lat is None or lng is None:
        raise ValidationError("Latitude and longitude are both required")
    lat, lng = float(lat), float(lng)
    if math.isnan(lat) or math.isnan(lng):
        raise ValidationError("Coordinates must be numbers")
    if not -90 <= lat <= 90 or not -180 <= lng <= 180:
        raise ValidationError(f"Coordinates out of range: ({lat}, {lng})")
    return lat, lng


def distance_from_kitchen(lat: float, lng: float) -> float:
    return haversine_distance(KITCHEN_LAT, KITCHEN_LNG, lat, lng)


def within_delivery_zone(lat: float, lng: float, radius_km: float = DELIVERY_RADIUS_KM) -> bool:
    return distance_from_kitchen(lat, lng) <= radius_km


def interpolate(start: tuple[float, float], end: tuple[float, float], fraction: float) -> tuple[float, float]:
    """Point `fraction` of the way from start to end (clamped to [0, 1])."""
    fraction = min(1.0, max(0.0, fraction))
    return (
        start[0] + (end[0] - start[0]) * fraction,
        start[1] + (end[1] - start[1]) * fraction,
    )
