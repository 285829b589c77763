"""
Policy configuration for visit verification and neglect alerts.

Owns every numeric constant that decides whether a check-in is accepted
or a family is flagged.  Frozen dataclasses keep the values typed and
visible in one place; environment variables override the defaults at
startup.

Geofence radii are set per entry point.  The field product shipped two
different values (500 m when validating from the visit list, 100 m on the
dedicated check-in screen) and nobody has confirmed which one is intended,
so both are kept as named settings instead of being merged.
"""

import os
from dataclasses import dataclass


# =============================================================================
# Dataclasses
# =============================================================================

@dataclass(frozen=True)
class GeofenceConfig:
    """Maximum distance (meters) between volunteer and family per entry point."""
    validate_radius_m: int = 500   # PATCH /visits/<id>/validate (visit list flow)
    checkin_radius_m: int = 100    # POST /visits/<id>/check-in (check-in screen)
    create_radius_m: int = 500     # POST /visits with status COMPLETED + location

    def radius_for(self, entry_point: str) -> int:
        try:
            return {
                "validate": self.validate_radius_m,
                "checkin": self.checkin_radius_m,
                "create": self.create_radius_m,
            }[entry_point]
        except KeyError:
            raise ValueError(f"Unknown check-in entry point: {entry_point!r}") from None


@dataclass(frozen=True)
class NeglectConfig:
    """Thresholds for the alerts view."""
    forgotten_after_days: int = 30
    recent_reports_limit: int = 3


# =============================================================================
# Loading
# =============================================================================

def _env_int(name: str, default: int) -> int:
    raw = os.environ.get(name, "").strip()
    if not raw:
        return default
    try:
        value = int(raw)
    except ValueError:
        raise ValueError(f"{name} must be an integer, got {raw!r}") from None
    if value < 0:
        raise ValueError(f"{name} must be >= 0, got {value}")
    return value


def load_geofence_config() -> GeofenceConfig:
    defaults = GeofenceConfig()
    return GeofenceConfig(
        validate_radius_m=_env_int("GEOFENCE_RADIUS_VALIDATE_M", defaults.validate_radius_m),
        checkin_radius_m=_env_int("GEOFENCE_RADIUS_CHECKIN_M", defaults.checkin_radius_m),
        create_radius_m=_env_int("GEOFENCE_RADIUS_CREATE_M", defaults.create_radius_m),
    )


def load_neglect_config() -> NeglectConfig:
    defaults = NeglectConfig()
    return NeglectConfig(
        forgotten_after_days=_env_int("FORGOTTEN_AFTER_DAYS", defaults.forgotten_after_days),
        recent_reports_limit=_env_int("RECENT_REPORTS_LIMIT", defaults.recent_reports_limit),
    )


GEOFENCE = load_geofence_config()
NEGLECT = load_neglect_config()
