"""
Geofenced check-in validation.

A visit can only be marked COMPLETED live if the volunteer's reported GPS
position is within a configured radius of the family's stored home
coordinates.  Families that were never geolocated are let through with a
caveat: the check-in is recorded as unverified rather than refused.

Distances are rounded to whole meters before the comparison, so the
number shown in an error message is exactly the number that was judged.
"""

import logging
import math
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Dict, Optional

from errors import MissingLocation, TooFar, ValidationError
from geo import GeoPoint, distance_between, round_meters
from records import CheckInLocation

logger = logging.getLogger(__name__)

NO_COORDINATES_CAVEAT = (
    "This family has no stored location; presence accepted without "
    "distance verification."
)


@dataclass(frozen=True)
class ProximityCheck:
    """Outcome of an accepted proximity check."""
    radius_m: int
    distance_m: Optional[int]     # None when the family has no coordinates
    caveat: Optional[str] = None

    @property
    def geofence_skipped(self) -> bool:
        return self.distance_m is None


def validate_proximity(actor_location: GeoPoint,
                       family_coordinates: Optional[GeoPoint],
                       radius_m: int) -> ProximityCheck:
    """Accept or reject a check-in position.

    Raises TooFar(distance_m, radius_m) when the rounded distance exceeds
    radius_m.  A radius of exactly the distance is accepted.
    """
    if family_coordinates is None:
        logger.warning("Geofence skipped: target family has no coordinates")
        return ProximityCheck(radius_m=radius_m, distance_m=None,
                              caveat=NO_COORDINATES_CAVEAT)

    distance_m = round_meters(distance_between(actor_location, family_coordinates))
    if distance_m > radius_m:
        raise TooFar(distance_m, radius_m)
    return ProximityCheck(radius_m=radius_m, distance_m=distance_m)


def _is_number(value: Any) -> bool:
    return (isinstance(value, (int, float)) and not isinstance(value, bool)
            and math.isfinite(value))


def parse_location(payload: Optional[Dict[str, Any]], field: str = "location",
                   required: bool = True) -> Optional[GeoPoint]:
    """Parse a ``{lat, lng, accuracy?}`` object from a request body.

    Missing or non-numeric lat/lng raises MissingLocation when required,
    otherwise returns None.  Out-of-range coordinates are a ValidationError
    either way: they are a client bug, not an absent fix.
    """
    if not isinstance(payload, dict) or not (
        _is_number(payload.get("lat")) and _is_number(payload.get("lng"))
    ):
        if required:
            raise MissingLocation()
        return None

    lat, lng = float(payload["lat"]), float(payload["lng"])
    if not -90.0 <= lat <= 90.0:
        raise ValidationError(f"{field}.lat", "must be between -90 and 90")
    if not -180.0 <= lng <= 180.0:
        raise ValidationError(f"{field}.lng", "must be between -180 and 180")

    accuracy = payload.get("accuracy")
    return GeoPoint(lat=lat, lng=lng,
                    accuracy=float(accuracy) if _is_number(accuracy) else None)


def build_check_in(location: GeoPoint, check: ProximityCheck,
                   recorded_at: datetime) -> CheckInLocation:
    return CheckInLocation(
        lat=location.lat,
        lng=location.lng,
        accuracy=location.accuracy,
        recorded_at=recorded_at,
        distance_m=check.distance_m,
        geofence_skipped=check.geofence_skipped,
    )
