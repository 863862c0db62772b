"""
Geographic Utilities - Distance, geohash and location validity
==============================================================

Shared geographic functions for coverage aggregation and prefix
disambiguation. Provides Haversine distance, geohash keys for samples
and coverage tiles, source-distance evidence bands and service-area
checks.

Geohash Precision
-----------------
    8 characters: individual sample location ("sample key")
    6 characters: coverage tile aggregation key ("coverage key")

Source Evidence Bands
---------------------
Distance between a position-1 candidate and the sample that heard it,
tuned for short LoRa last-hop links:

    < 500m  = 1.0
    < 2km   = 0.8
    < 5km   = 0.5
    < 10km  = 0.3
    beyond  = 0.1

Public Functions
----------------
    calculate_distance(lat1, lon1, lat2, lon2)
        Haversine distance in meters between two coordinates.

    get_source_distance_evidence(distance_meters)
        Convert distance to a 0.1-1.0 evidence value.

    sample_key(lat, lon) / coverage_key(lat, lon)
        Geohash keys at sample and tile precision.

    pos_from_hash(geohash)
        Decode a geohash to (lat, lon), raising GeohashError.

    is_valid_location(lat, lon, location_config)
        Bounds check plus optional max-distance-from-center check.
"""

import math
from typing import Optional, Tuple

import pygeohash as pgh

from .config import LocationConfig
from .errors import GeohashError, InvalidLocationError

# ═══════════════════════════════════════════════════════════════════════════════
# Constants
# ═══════════════════════════════════════════════════════════════════════════════

SAMPLE_PRECISION = 8
COVERAGE_PRECISION = 6

# Distance thresholds in meters for source-geographic evidence
SOURCE_EVIDENCE_BANDS = (
    (500, 1.0),
    (2000, 0.8),
    (5000, 0.5),
    (10000, 0.3),
)
SOURCE_EVIDENCE_BEYOND = 0.1

# Earth's radius
EARTH_RADIUS_M = 6371000
EARTH_RADIUS_MILES = 3958.8

GEOHASH_ALPHABET = frozenset("0123456789bcdefghjkmnpqrstuvwxyz")


# ═══════════════════════════════════════════════════════════════════════════════
# Distance
# ═══════════════════════════════════════════════════════════════════════════════

def calculate_distance(
    lat1: float,
    lon1: float,
    lat2: float,
    lon2: float,
) -> float:
    """
    Calculate distance between two coordinates using Haversine formula.

    Args:
        lat1: Latitude of first point (degrees)
        lon1: Longitude of first point (degrees)
        lat2: Latitude of second point (degrees)
        lon2: Longitude of second point (degrees)

    Returns:
        Distance in meters
    """
    d_lat = math.radians(lat2 - lat1)
    d_lon = math.radians(lon2 - lon1)

    a = (
        math.sin(d_lat / 2) ** 2 +
        math.cos(math.radians(lat1)) *
        math.cos(math.radians(lat2)) *
        math.sin(d_lon / 2) ** 2
    )
    c = 2 * math.atan2(math.sqrt(a), math.sqrt(1 - a))

    return EARTH_RADIUS_M * c


def haversine_miles(a: Tuple[float, float], b: Tuple[float, float]) -> float:
    """Haversine distance between two (lat, lon) points, in miles."""
    lat1, lon1 = a
    lat2, lon2 = b

    d_lat = math.radians(lat2 - lat1)
    d_lon = math.radians(lon2 - lon1)

    h = (
        math.sin(d_lat / 2) ** 2 +
        math.cos(math.radians(lat1)) * math.cos(math.radians(lat2)) *
        math.sin(d_lon / 2) ** 2
    )
    return 2 * EARTH_RADIUS_MILES * math.asin(math.sqrt(h))


def get_source_distance_evidence(distance_meters: float) -> float:
    """
    Evidence that a position-1 candidate was the forwarder heard at a sample.

    Args:
        distance_meters: Candidate-to-sample distance

    Returns:
        Evidence score from 0.1 to 1.0
    """
    for threshold, evidence in SOURCE_EVIDENCE_BANDS:
        if distance_meters < threshold:
            return evidence
    return SOURCE_EVIDENCE_BEYOND


def has_valid_coordinates(lat: Optional[float], lon: Optional[float]) -> bool:
    """
    Check if coordinates are valid (non-zero or intentionally set).

    Filters out unset/default coordinates which are often (0, 0).
    """
    if lat is None or lon is None:
        return False
    return lat != 0 or lon != 0


# ═══════════════════════════════════════════════════════════════════════════════
# Geohash
# ═══════════════════════════════════════════════════════════════════════════════

def sample_key(lat: float, lon: float) -> str:
    """Geohash key for an individual sample (precision 8)."""
    return pgh.encode(lat, lon, precision=SAMPLE_PRECISION)


def coverage_key(lat: float, lon: float) -> str:
    """Geohash key for a coverage tile (precision 6)."""
    return pgh.encode(lat, lon, precision=COVERAGE_PRECISION)


def coverage_key_for(geohash: str) -> str:
    """Coverage tile key containing a finer geohash."""
    return geohash[:COVERAGE_PRECISION]


def is_valid_geohash(geohash: Optional[str]) -> bool:
    if not geohash or not isinstance(geohash, str):
        return False
    return all(c in GEOHASH_ALPHABET for c in geohash.lower())


def pos_from_hash(geohash: str) -> Tuple[float, float]:
    """
    Decode a geohash to the (lat, lon) of its cell center.

    Raises:
        GeohashError: If the geohash is empty or not valid base32
    """
    if not is_valid_geohash(geohash):
        raise GeohashError(f"Invalid geohash: {geohash!r}")

    try:
        lat, lon = pgh.decode(geohash.lower())
    except (KeyError, ValueError) as e:
        raise GeohashError(f"Invalid geohash: {geohash!r}") from e

    return float(lat), float(lon)


# ═══════════════════════════════════════════════════════════════════════════════
# Service Area
# ═══════════════════════════════════════════════════════════════════════════════

def is_valid_location(lat: float, lon: float, location_config: LocationConfig) -> bool:
    """
    Check that a point is on the globe and inside the service area.

    Args:
        lat: Latitude (degrees)
        lon: Longitude (degrees)
        location_config: Center and max distance; a max distance of 0 or
            less disables the distance check
    """
    if lat < -90 or lat > 90 or lon < -180 or lon > 180:
        return False

    if location_config.MAX_DISTANCE_MILES <= 0:
        return True

    return haversine_miles(location_config.center_pos, (lat, lon)) < location_config.MAX_DISTANCE_MILES


def parse_location(lat_raw, lon_raw, location_config: LocationConfig) -> Tuple[float, float]:
    """
    Parse and validate a latitude/longitude pair from request input.

    Full precision is preserved.

    Raises:
        InvalidLocationError: If either value is not a number or the point
            is outside the service area
    """
    try:
        lat = float(lat_raw)
        lon = float(lon_raw)
    except (TypeError, ValueError):
        raise InvalidLocationError(f"Invalid location {[lat_raw, lon_raw]}")

    if math.isnan(lat) or math.isnan(lon):
        raise InvalidLocationError(f"Invalid location {[lat_raw, lon_raw]}")

    if not is_valid_location(lat, lon, location_config):
        raise InvalidLocationError(f"{[lat, lon]} exceeds max distance")

    return lat, lon
