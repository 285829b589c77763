"""Unit tests for checkin.py: geofence validation and location parsing."""

from datetime import datetime, timezone

import pytest

from checkin import (
    NO_COORDINATES_CAVEAT, ProximityCheck, build_check_in, parse_location,
    validate_proximity,
)
from errors import MissingLocation, TooFar, ValidationError
from geo import GeoPoint, haversine_m, round_meters

VOLUNTEER = GeoPoint(36.8065, 10.1815)
FAMILY_NEAR = GeoPoint(36.8070, 10.1820)
# Due north along the meridian: distance is exactly R * dlat, ~800.003 m
FAMILY_800M = GeoPoint(36.8065 + 0.0071946, 10.1815)


class TestValidateProximity:
    def test_nearby_family_accepted_at_100m(self):
        check = validate_proximity(VOLUNTEER, FAMILY_NEAR, radius_m=100)
        assert check.distance_m == round_meters(haversine_m(36.8065, 10.1815, 36.8070, 10.1820))
        assert check.distance_m <= 100
        assert check.geofence_skipped is False
        assert check.caveat is None

    def test_800m_rejected_at_500m(self):
        with pytest.raises(TooFar) as exc:
            validate_proximity(VOLUNTEER, FAMILY_800M, radius_m=500)
        assert exc.value.distance_m == 800
        assert exc.value.radius_m == 500
        assert "800 m" in exc.value.message

    def test_distance_equal_to_radius_is_accepted(self):
        check = validate_proximity(VOLUNTEER, FAMILY_800M, radius_m=800)
        assert check.distance_m == 800

    def test_same_family_different_policies(self):
        # 800 m passes a 1 km radius and fails a 100 m one
        assert validate_proximity(VOLUNTEER, FAMILY_800M, radius_m=1000).distance_m == 800
        with pytest.raises(TooFar):
            validate_proximity(VOLUNTEER, FAMILY_800M, radius_m=100)

    def test_family_without_coordinates_skips_geofence(self):
        check = validate_proximity(VOLUNTEER, None, radius_m=100)
        assert check.geofence_skipped is True
        assert check.distance_m is None
        assert check.caveat == NO_COORDINATES_CAVEAT

    def test_too_far_payload(self):
        err = TooFar(812, 500)
        body = err.to_dict()
        assert body["success"] is False
        assert body["distanceMeters"] == 812
        assert body["radiusMeters"] == 500
        assert err.status_code == 400


class TestParseLocation:
    def test_valid_location(self):
        loc = parse_location({"lat": 36.8, "lng": 10.18, "accuracy": 8})
        assert loc == GeoPoint(36.8, 10.18, accuracy=8.0)

    def test_accuracy_optional(self):
        loc = parse_location({"lat": 36.8, "lng": 10.18})
        assert loc.accuracy is None

    def test_missing_location_required(self):
        with pytest.raises(MissingLocation):
            parse_location(None)

    def test_string_coordinates_are_missing(self):
        with pytest.raises(MissingLocation):
            parse_location({"lat": "36.8", "lng": "10.18"})

    def test_boolean_is_not_a_coordinate(self):
        with pytest.raises(MissingLocation):
            parse_location({"lat": True, "lng": 10.18})

    def test_missing_location_optional(self):
        assert parse_location({}, required=False) is None

    def test_out_of_range_latitude(self):
        with pytest.raises(ValidationError) as exc:
            parse_location({"lat": 91, "lng": 0})
        assert exc.value.field == "location.lat"

    def test_out_of_range_longitude(self):
        with pytest.raises(ValidationError) as exc:
            parse_location({"lat": 0, "lng": -181}, field="checkInLocation", required=False)
        assert exc.value.field == "checkInLocation.lng"


class TestBuildCheckIn:
    def test_records_distance(self):
        at = datetime(2026, 3, 15, 12, 0, tzinfo=timezone.utc)
        ci = build_check_in(GeoPoint(1.0, 2.0, 5.0), ProximityCheck(radius_m=100, distance_m=42), at)
        assert (ci.lat, ci.lng, ci.accuracy) == (1.0, 2.0, 5.0)
        assert ci.distance_m == 42
        assert ci.geofence_skipped is False
        assert ci.recorded_at == at

    def test_records_skipped_geofence(self):
        at = datetime(2026, 3, 15, 12, 0, tzinfo=timezone.utc)
        ci = build_check_in(GeoPoint(1.0, 2.0), ProximityCheck(radius_m=100, distance_m=None), at)
        assert ci.geofence_skipped is True
        assert ci.distance_m is None
