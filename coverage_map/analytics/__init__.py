"""
Analytics Module for the Coverage Map
=====================================

Turns raw wardrive and MQTT samples into the coverage map: which
geohash tiles were heard, lost or observed, and which repeaters carried
the pings.

Architecture Overview
---------------------
Every map request reads a snapshot of samples and repeaters from SQLite,
builds a fresh prefix lookup and aggregates against it. Nothing is
cached between requests, so a new repeater advert or sample is visible
on the next refresh.

Components
----------
    disambiguation:
        Resolves 2-character hash prefix collisions using position
        consistency, co-occurrence, geographic proximity to the sample
        and repeater recency.

    coverage:
        Folds samples into 6-character geohash tiles, formats stored
        coverage rows and computes the wardrive driver leaderboard.

    geo_utils / path_utils:
        Haversine distance, geohash keys, service-area checks and
        forwarding path normalization.

    models / store / db:
        Record types, SQLite tables with merge-on-write upserts and the
        WAL connection manager.

Database Tables
---------------
Created by store.init_schema():

    - samples: One row per 8-char geohash, merged on re-report
    - repeaters: One row per (id, lat, lon)
    - coverage: Consolidated 6-char tiles
    - drivers: Per-driver hit/miss tallies per 6-char tile

Usage Example
-------------
    from coverage_map.analytics import (
        CoverageDB, build_prefix_lookup, disambiguate_path,
        get_all_samples, get_all_repeaters,
    )

    db = CoverageDB("/var/lib/coverage_map/coverage.db")
    lookup = build_prefix_lookup(get_all_samples(db), get_all_repeaters(db))
    disambiguate_path(lookup, ["a1", "b2"])
"""

from .disambiguation import (
    DisambiguationCandidate,
    DisambiguationResult,
    DisambiguationStats,
    PrefixLookup,
    Resolution,
    build_prefix_lookup,
    resolve_prefix,
    disambiguate_path,
    get_candidates,
    has_collision,
)
from .coverage import (
    SampleTile,
    DriverStats,
    DriverFilter,
    aggregate_samples,
    format_coverage,
    compute_driver_stats,
    build_nodes_payload,
)
from .models import (
    RepeaterObservation,
    Sample,
    CoverageRow,
    DriverTile,
    merge_sample,
)
from .geo_utils import (
    calculate_distance,
    get_source_distance_evidence,
    has_valid_coordinates,
    sample_key,
    coverage_key,
    pos_from_hash,
    is_valid_location,
    parse_location,
)
from .path_utils import (
    ParsedPath,
    parse_path,
    get_hash_prefix,
    get_position_from_index,
)
from .db import (
    CoverageDB,
    CoverageDBError,
    DBConnectionError,
    QueryError,
    DBConnection,
    with_connection,
)
from .store import (
    init_schema,
    get_all_samples,
    get_sample,
    upsert_sample,
    get_all_repeaters,
    upsert_repeater,
    get_all_coverage,
    upsert_coverage,
    record_driver_miss,
    record_driver_hit,
    get_driver_coverage,
    get_driver_stats,
)
from .utils import (
    validate_prefix,
    normalize_prefix,
    normalize_pubkey,
    truncate_time,
)
from .errors import (
    ErrorCode,
    CoverageError,
    InvalidLocationError,
    GeohashError,
    api_success,
    api_error,
    api_error_from_exception,
    missing_param,
    not_found,
)
from .config import Config, LocationConfig, reload_config
from .validation import (
    ValidationError,
    validate_positive_int,
    validate_optional_int,
    validate_optional_float,
    validate_bool,
    validate_string_choice,
    validate_prefix_param,
    validate_path,
)

__all__ = [
    # Disambiguation
    "DisambiguationCandidate",
    "DisambiguationResult",
    "DisambiguationStats",
    "PrefixLookup",
    "Resolution",
    "build_prefix_lookup",
    "resolve_prefix",
    "disambiguate_path",
    "get_candidates",
    "has_collision",
    # Coverage
    "SampleTile",
    "DriverStats",
    "DriverFilter",
    "aggregate_samples",
    "format_coverage",
    "compute_driver_stats",
    "build_nodes_payload",
    # Models
    "RepeaterObservation",
    "Sample",
    "CoverageRow",
    "DriverTile",
    "merge_sample",
    # Geo
    "calculate_distance",
    "get_source_distance_evidence",
    "has_valid_coordinates",
    "sample_key",
    "coverage_key",
    "pos_from_hash",
    "is_valid_location",
    "parse_location",
    # Paths
    "ParsedPath",
    "parse_path",
    "get_hash_prefix",
    "get_position_from_index",
    # Database
    "CoverageDB",
    "CoverageDBError",
    "DBConnectionError",
    "QueryError",
    "DBConnection",
    "with_connection",
    # Store
    "init_schema",
    "get_all_samples",
    "get_sample",
    "upsert_sample",
    "get_all_repeaters",
    "upsert_repeater",
    "get_all_coverage",
    "upsert_coverage",
    "record_driver_miss",
    "record_driver_hit",
    "get_driver_coverage",
    "get_driver_stats",
    # Utils
    "validate_prefix",
    "normalize_prefix",
    "normalize_pubkey",
    "truncate_time",
    # Errors
    "ErrorCode",
    "CoverageError",
    "InvalidLocationError",
    "GeohashError",
    "api_success",
    "api_error",
    "api_error_from_exception",
    "missing_param",
    "not_found",
    # Config
    "Config",
    "LocationConfig",
    "reload_config",
    # Validation
    "ValidationError",
    "validate_positive_int",
    "validate_optional_int",
    "validate_optional_float",
    "validate_bool",
    "validate_string_choice",
    "validate_prefix_param",
    "validate_path",
]
