import pytest

from coverage_map.analytics.config import LocationConfig
from coverage_map.analytics.db import CoverageDB
from coverage_map.analytics.geo_utils import sample_key
from coverage_map.analytics.models import RepeaterObservation, Sample
from coverage_map.analytics.store import init_schema

# Fixed "now" for scoring tests (epoch seconds)
NOW = 1_700_000_000.0

CENTER = (37.3382, -121.8863)


def make_repeater(prefix, lat, lon, hours_ago=1.0, pubkey=None, name=None):
    last_seen = NOW - hours_ago * 3600 if hours_ago is not None else 0.0
    return RepeaterObservation(
        prefix=prefix,
        latitude=lat,
        longitude=lon,
        last_seen=last_seen,
        name=name,
        pubkey=pubkey,
    )


def make_sample(lat, lon, path, time_ms=NOW * 1000, **kwargs):
    return Sample(geohash=sample_key(lat, lon), path=list(path), time=time_ms, **kwargs)


@pytest.fixture
def location_config():
    return LocationConfig(
        CENTER_LAT=CENTER[0],
        CENTER_LON=CENTER[1],
        MAX_DISTANCE_MILES=50.0,
        INITIAL_ZOOM=10,
    )


@pytest.fixture
def db(tmp_path):
    coverage_db = CoverageDB(tmp_path / "coverage.db")
    init_schema(coverage_db)
    return coverage_db
