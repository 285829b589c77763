"""Tests for visit_config.py: radii per entry point and env overrides."""

import pytest

from visit_config import (
    GeofenceConfig, NeglectConfig, load_geofence_config, load_neglect_config,
)


class TestGeofenceConfig:
    def test_defaults_per_entry_point(self):
        cfg = GeofenceConfig()
        assert cfg.radius_for("validate") == 500
        assert cfg.radius_for("checkin") == 100
        assert cfg.radius_for("create") == 500

    def test_unknown_entry_point(self):
        with pytest.raises(ValueError):
            GeofenceConfig().radius_for("teleport")

    def test_env_overrides(self, monkeypatch):
        monkeypatch.setenv("GEOFENCE_RADIUS_CHECKIN_M", "150")
        monkeypatch.setenv("GEOFENCE_RADIUS_VALIDATE_M", " ")
        cfg = load_geofence_config()
        assert cfg.checkin_radius_m == 150
        assert cfg.validate_radius_m == 500

    def test_env_must_be_integer(self, monkeypatch):
        monkeypatch.setenv("GEOFENCE_RADIUS_CREATE_M", "half a km")
        with pytest.raises(ValueError, match="GEOFENCE_RADIUS_CREATE_M"):
            load_geofence_config()

    def test_env_must_not_be_negative(self, monkeypatch):
        monkeypatch.setenv("GEOFENCE_RADIUS_CREATE_M", "-1")
        with pytest.raises(ValueError):
            load_geofence_config()


class TestNeglectConfig:
    def test_defaults(self):
        assert NeglectConfig() == NeglectConfig(forgotten_after_days=30, recent_reports_limit=3)

    def test_env_overrides(self, monkeypatch):
        monkeypatch.setenv("FORGOTTEN_AFTER_DAYS", "45")
        assert load_neglect_config().forgotten_after_days == 45
