"""
Great-circle helpers shared by the filter, scorer and store index.
"""

import math
from typing import Final

# Mean Earth radius
EARTH_RADIUS_KM: Final[float] = 6371.0

KM_PER_DEGREE_LAT: Final[float] = 111.32


def haversine_km(lat1: float, lon1: float, lat2: float, lon2: float) -> float:
    """
    Calculate distance between two points in kilometres using Haversine formula.

    Args:
        lat1, lon1: First point coordinates (degrees)
        lat2, lon2: Second point coordinates (degrees)

    Returns:
        Distance in kilometres
    """
    lat1_rad = math.radians(lat1)
    lat2_rad = math.radians(lat2)
    dlat = math.radians(lat2 - lat1)
    dlon = math.radians(lon2 - lon1)

    a = (
        math.sin(dlat / 2) ** 2
        + math.cos(lat1_rad) * math.cos(lat2_rad) * math.sin(dlon / 2) ** 2
    )
    c = 2 * math.atan2(math.sqrt(a), math.sqrt(1 - a))

    return EARTH_RADIUS_KM * c


def haversine_m(lat1: float, lon1: float, lat2: float, lon2: float) -> float:
    """Haversine distance in metres."""
    return haversine_km(lat1, lon1, lat2, lon2) * 1000.0


def bounding_box(latitude: float, longitude: float, radius_km: float) -> tuple[float, float, float, float]:
    """
    Lat/lng box enclosing a circle, as (min_lat, max_lat, min_lng, max_lng).

    Slightly generous near the poles; callers still apply the exact
    haversine test. Longitudes are not wrapped, so near the antimeridian
    min_lng may fall below -180 or max_lng rise above 180.
    """
    dlat = radius_km / KM_PER_DEGREE_LAT
    cos_lat = max(math.cos(math.radians(latitude)), 1e-6)
    dlng = min(radius_km / (KM_PER_DEGREE_LAT * cos_lat), 180.0)
    return (
        max(latitude - dlat, -90.0),
        min(latitude + dlat, 90.0),
        longitude - dlng,
        longitude + dlng,
    )
