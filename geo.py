"""
Great-circle distance helpers for field check-ins.

Haversine on a spherical Earth (mean radius 6,371 km).  Good to well under
a meter at check-in scale, which is all the geofence needs.
"""

import math
from dataclasses import dataclass
from typing import Optional

EARTH_RADIUS_M = 6371000


@dataclass(frozen=True)
class GeoPoint:
    """A WGS84 coordinate pair, optionally with the GPS fix accuracy (meters)."""
    lat: float
    lng: float
    accuracy: Optional[float] = None


def haversine_m(lat1: float, lng1: float, lat2: float, lng2: float) -> float:
    """Haversine distance between two points, returned in meters."""
    lat1_r, lng1_r = math.radians(lat1), math.radians(lng1)
    lat2_r, lng2_r = math.radians(lat2), math.radians(lng2)

    dlat = lat2_r - lat1_r
    dlng = lng2_r - lng1_r

    a = (math.sin(dlat / 2) ** 2
         + math.cos(lat1_r) * math.cos(lat2_r) * math.sin(dlng / 2) ** 2)
    c = 2 * math.asin(min(1.0, math.sqrt(a)))

    return EARTH_RADIUS_M * c


def distance_between(a: GeoPoint, b: GeoPoint) -> float:
    return haversine_m(a.lat, a.lng, b.lat, b.lng)


def round_meters(distance_m: float) -> int:
    """Round to the nearest whole meter, halves away from zero.

    Uses floor(x + 0.5) rather than round() so 64.5 m reads as 65 m, not
    64 m (banker's rounding).
    """
    return int(math.floor(distance_m + 0.5))
