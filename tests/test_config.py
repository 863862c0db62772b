from dataclasses import FrozenInstanceError

import pytest

from coverage_map.analytics.config import (
    DEFAULT_CENTER_POS,
    Config,
    LocationConfig,
    StorageConfig,
    reload_config,
)

ENV_KEYS = (
    "CENTER_POS",
    "MAX_DISTANCE_MILES",
    "INITIAL_ZOOM_LEVEL",
    "COVERAGE_DB_PATH",
    "COVERAGE_API_LOW_CONFIDENCE",
)


@pytest.fixture(autouse=True)
def clean_env(monkeypatch):
    for key in ENV_KEYS:
        monkeypatch.delenv(key, raising=False)
    yield
    monkeypatch.undo()
    reload_config()


def test_defaults():
    config = LocationConfig()
    assert config.center_pos == DEFAULT_CENTER_POS
    assert config.MAX_DISTANCE_MILES == 0.0
    assert config.INITIAL_ZOOM == 10
    assert StorageConfig().DB_PATH == "/var/lib/coverage_map/coverage.db"


def test_environment_overrides(monkeypatch):
    monkeypatch.setenv("CENTER_POS", "47.6062,-122.3321")
    monkeypatch.setenv("MAX_DISTANCE_MILES", "25")
    monkeypatch.setenv("INITIAL_ZOOM_LEVEL", "12")

    config = LocationConfig()
    assert config.center_pos == (47.6062, -122.3321)
    assert config.MAX_DISTANCE_MILES == 25.0
    assert config.INITIAL_ZOOM == 12


def test_invalid_values_fall_back_to_defaults(monkeypatch):
    monkeypatch.setenv("CENTER_POS", "somewhere")
    monkeypatch.setenv("MAX_DISTANCE_MILES", "far")
    monkeypatch.setenv("INITIAL_ZOOM_LEVEL", "1.5")

    config = LocationConfig()
    assert config.center_pos == DEFAULT_CENTER_POS
    assert config.MAX_DISTANCE_MILES == 0.0
    assert config.INITIAL_ZOOM == 10


def test_reload_config(monkeypatch):
    version = Config.get_version()
    monkeypatch.setenv("MAX_DISTANCE_MILES", "40")
    monkeypatch.setenv("COVERAGE_API_LOW_CONFIDENCE", "0.3")

    reload_config()

    assert Config.get_version() == version + 1
    assert Config.LOCATION.MAX_DISTANCE_MILES == 40.0
    assert Config.API.LOW_CONFIDENCE_THRESHOLD == 0.3
    assert Config.to_dict()["location"]["MAX_DISTANCE_MILES"] == 40.0


def test_config_is_frozen():
    with pytest.raises(FrozenInstanceError):
        Config.LOCATION.MAX_DISTANCE_MILES = 5
