import pytest

from coverage_map.analytics.config import LocationConfig
from coverage_map.analytics.errors import GeohashError, InvalidLocationError
from coverage_map.analytics.geo_utils import (
    calculate_distance,
    coverage_key,
    coverage_key_for,
    get_source_distance_evidence,
    has_valid_coordinates,
    haversine_miles,
    is_valid_location,
    parse_location,
    pos_from_hash,
    sample_key,
)


def test_distance_same_point_is_zero():
    assert calculate_distance(37.3, -121.8, 37.3, -121.8) == 0


def test_distance_san_francisco_to_los_angeles():
    meters = calculate_distance(37.7749, -122.4194, 34.0522, -118.2437)
    assert meters == pytest.approx(559_000, rel=0.01)


def test_haversine_miles_matches_meters():
    miles = haversine_miles((37.7749, -122.4194), (34.0522, -118.2437))
    meters = calculate_distance(37.7749, -122.4194, 34.0522, -118.2437)
    assert miles == pytest.approx(meters / 1609.344, rel=0.001)


@pytest.mark.parametrize("distance,expected", [
    (0, 1.0),
    (499.9, 1.0),
    (500, 0.8),
    (1999, 0.8),
    (2000, 0.5),
    (4999, 0.5),
    (5000, 0.3),
    (9999, 0.3),
    (10000, 0.1),
    (250_000, 0.1),
])
def test_source_distance_evidence_bands(distance, expected):
    assert get_source_distance_evidence(distance) == expected


def test_has_valid_coordinates():
    assert not has_valid_coordinates(None, -121.8)
    assert not has_valid_coordinates(37.3, None)
    assert not has_valid_coordinates(0, 0)
    assert has_valid_coordinates(0, 12.5)
    assert has_valid_coordinates(37.3, -121.8)


def test_geohash_precision():
    assert len(sample_key(37.3382, -121.8863)) == 8
    assert len(coverage_key(37.3382, -121.8863)) == 6
    assert coverage_key_for(sample_key(37.3382, -121.8863)) == coverage_key(37.3382, -121.8863)


def test_geohash_known_value():
    assert coverage_key(42.6, -5.6).startswith("ezs42")


def test_pos_from_hash_decodes_cell_center():
    lat, lon = pos_from_hash(sample_key(37.3382, -121.8863))
    assert lat == pytest.approx(37.3382, abs=0.001)
    assert lon == pytest.approx(-121.8863, abs=0.001)


def test_pos_from_hash_accepts_uppercase():
    assert pos_from_hash("EZS42") == pos_from_hash("ezs42")


@pytest.mark.parametrize("bad", ["", None, "ab!c", "9q9i", "a"])
def test_pos_from_hash_rejects_invalid(bad):
    with pytest.raises(GeohashError):
        pos_from_hash(bad)


def test_is_valid_location_bounds(location_config):
    assert not is_valid_location(91, 0, location_config)
    assert not is_valid_location(0, -181, location_config)


def test_is_valid_location_max_distance(location_config):
    assert is_valid_location(37.3382, -121.8863, location_config)
    assert is_valid_location(37.5, -122.0, location_config)
    assert not is_valid_location(40.7128, -74.0060, location_config)


def test_is_valid_location_without_limit():
    unlimited = LocationConfig(CENTER_LAT=37.3382, CENTER_LON=-121.8863, MAX_DISTANCE_MILES=0.0)
    assert is_valid_location(40.7128, -74.0060, unlimited)


def test_parse_location(location_config):
    assert parse_location("37.34", "-121.89", location_config) == (37.34, -121.89)
    assert parse_location(37.34, -121.89, location_config) == (37.34, -121.89)


@pytest.mark.parametrize("lat,lon", [
    ("abc", "-121.89"),
    (None, "-121.89"),
    ("nan", "-121.89"),
    ("40.7128", "-74.0060"),
])
def test_parse_location_rejects(location_config, lat, lon):
    with pytest.raises(InvalidLocationError):
        parse_location(lat, lon, location_config)


def test_invalid_location_is_value_error():
    assert issubclass(InvalidLocationError, ValueError)
