"""
Error taxonomy for the visit core.

Each error carries the HTTP status it maps to; app.py turns any
VisitError into a JSON body with ``success: false``.  Nothing here is
retried server-side.
"""

from typing import Any, Dict, Optional


class VisitError(Exception):
    status_code = 500

    def __init__(self, message: str, status_code: Optional[int] = None):
        super().__init__(message)
        self.message = message
        if status_code is not None:
            self.status_code = status_code

    def to_dict(self) -> Dict[str, Any]:
        return {"success": False, "error": self.message}


class NotFound(VisitError):
    status_code = 404


class ValidationError(VisitError):
    status_code = 400

    def __init__(self, field: str, message: str):
        super().__init__(f"{field}: {message}")
        self.field = field

    def to_dict(self) -> Dict[str, Any]:
        data = super().to_dict()
        data["field"] = self.field
        return data


class Unauthorized(VisitError):
    status_code = 401


class Forbidden(VisitError):
    status_code = 403


class AlreadyCompleted(VisitError):
    status_code = 400

    def __init__(self, message: str = "This visit has already been validated."):
        super().__init__(message)


class MissingLocation(VisitError):
    status_code = 400

    def __init__(self, message: str = "A GPS location is required to validate presence."):
        super().__init__(message)


class TooFar(VisitError):
    """Volunteer is outside the geofence. Both numbers are whole meters."""
    status_code = 400

    def __init__(self, distance_m: int, radius_m: int):
        super().__init__(
            f"Too far from the family's home: {distance_m} m "
            f"(must be within {radius_m} m)."
        )
        self.distance_m = distance_m
        self.radius_m = radius_m

    def to_dict(self) -> Dict[str, Any]:
        data = super().to_dict()
        data["distanceMeters"] = self.distance_m
        data["radiusMeters"] = self.radius_m
        return data
