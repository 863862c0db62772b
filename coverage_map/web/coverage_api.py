"""
Coverage API - CherryPy endpoints for the coverage map
======================================================

Provides REST endpoints for:
    - Map nodes (coverage tiles, sample tiles, repeaters, driver stats)
    - Raw samples by geohash prefix
    - Sample and repeater ingestion
    - Per-driver hit/miss tallies by tile
    - Frontend configuration
    - Prefix disambiguation statistics and single-prefix resolution

CherryPy's default dispatcher maps punctuation in the URL to underscores,
so the frontend's ``/get-nodes`` reaches ``get_nodes``.

Response Formats
----------------
get_nodes, get_samples and config return the bare shapes the map frontend
reads. Every other endpoint uses the standard envelope:

    {"success": True, "data": {...}}

    {
        "success": False,
        "error": {
            "code": "INVALID_PARAMETER",
            "message": "...",
            "httpStatus": 400,
            "details": {...}
        }
    }
"""

import logging
from typing import Optional

import cherrypy

from coverage_map.analytics.config import Config, LocationConfig
from coverage_map.analytics.coverage import (
    DRIVER_SORT_FIELDS,
    SORT_ORDERS,
    DriverFilter,
    build_nodes_payload,
)
from coverage_map.analytics.db import CoverageDB, CoverageDBError
from coverage_map.analytics.disambiguation import build_prefix_lookup
from coverage_map.analytics.errors import (
    ErrorCode,
    InvalidLocationError,
    api_error_from_exception,
    api_success,
    missing_param,
    not_found,
)
from coverage_map.analytics.geo_utils import coverage_key, parse_location, sample_key
from coverage_map.analytics.models import RepeaterObservation, Sample
from coverage_map.analytics.store import (
    get_all_coverage,
    get_all_repeaters,
    get_all_samples,
    get_driver_coverage,
    get_driver_stats,
    record_driver_hit,
    record_driver_miss,
    upsert_repeater,
    upsert_sample,
)
from coverage_map.analytics.utils import now_ms
from coverage_map.analytics.validation import (
    ValidationError,
    validate_bool,
    validate_optional_float,
    validate_optional_int,
    validate_optional_string,
    validate_path,
    validate_positive_int,
    validate_prefix_param,
    validate_string_choice,
)

logger = logging.getLogger("CoverageAPI")


class CoverageAPI:
    """
    CherryPy-mounted API for the coverage map.

    Mount at / for URLs like:
        GET  /get-nodes
        GET  /get-samples?p=9q9
        POST /put-sample
        GET  /resolve?prefix=A1

    Every aggregation request reads a fresh snapshot from the store and
    builds its own prefix lookup; nothing is cached between requests.
    """

    def __init__(
        self,
        db: CoverageDB,
        location_config: Optional[LocationConfig] = None,
        local_hash: Optional[str] = None,
    ):
        """
        Args:
            db: Storage connection manager
            location_config: Validity region (defaults to Config.LOCATION)
            local_hash: Observer's own hash, trimmed from the end of paths
        """
        self.db = db
        self.location_config = location_config
        self.local_hash = local_hash

    @property
    def location(self) -> LocationConfig:
        return self.location_config or Config.LOCATION

    def _require_post(self):
        if cherrypy.request.method != "POST":
            cherrypy.response.headers['Allow'] = 'POST'
            raise cherrypy.HTTPError(405, "Method not allowed. This endpoint requires POST.")

    def _read_body(self) -> dict:
        data = getattr(cherrypy.request, "json", None)
        if not isinstance(data, dict):
            raise ValidationError("body", "must be a JSON object", data)
        return data

    def _build_lookup(self, conn):
        return build_prefix_lookup(
            get_all_samples(conn),
            get_all_repeaters(conn),
            local_hash=self.local_hash,
        )

    # ═══════════════════════════════════════════════════════════════════════════
    # Map Data
    # ═══════════════════════════════════════════════════════════════════════════

    @cherrypy.expose
    @cherrypy.tools.json_out()
    def get_nodes(self, **params):
        """
        GET /get-nodes

        Full map payload: stored coverage, sample tiles, repeaters and the
        driver leaderboard, all resolved through one prefix lookup.

        Query params (driver leaderboard):
            minCount, maxCount, minHeard, maxHeard, minLost, maxLost
            minPercent, maxPercent
            sortBy: count | heard | lost | percent (default: count)
            sortOrder: asc | desc (default: desc)
        """
        try:
            driver_filter = DriverFilter(
                min_count=validate_optional_int(params.get("minCount"), "minCount"),
                max_count=validate_optional_int(params.get("maxCount"), "maxCount"),
                min_heard=validate_optional_int(params.get("minHeard"), "minHeard"),
                max_heard=validate_optional_int(params.get("maxHeard"), "maxHeard"),
                min_lost=validate_optional_int(params.get("minLost"), "minLost"),
                max_lost=validate_optional_int(params.get("maxLost"), "maxLost"),
                min_percent=validate_optional_float(params.get("minPercent"), "minPercent"),
                max_percent=validate_optional_float(params.get("maxPercent"), "maxPercent"),
                sort_by=validate_string_choice(
                    params.get("sortBy"), "sortBy", DRIVER_SORT_FIELDS, default="count"
                ),
                sort_order=validate_string_choice(
                    params.get("sortOrder"), "sortOrder", SORT_ORDERS, default="desc"
                ),
            )

            with self.db.connection() as conn:
                coverage_rows = get_all_coverage(conn)
                samples = get_all_samples(conn)
                repeaters = get_all_repeaters(conn)

            return build_nodes_payload(
                coverage_rows,
                samples,
                repeaters,
                driver_filter=driver_filter,
                local_hash=self.local_hash,
            )

        except ValidationError as e:
            return e.to_response()
        except CoverageDBError as e:
            logger.error(f"Storage error building nodes: {e}")
            return api_error_from_exception(e, ErrorCode.DATABASE_ERROR)
        except Exception as e:
            logger.error(f"Error building nodes: {e}", exc_info=True)
            return api_error_from_exception(e)

    @cherrypy.expose
    @cherrypy.tools.json_out()
    def get_samples(self, p=None):
        """
        GET /get-samples?p=<geohash prefix>

        Raw samples in both the {name, metadata} envelope and flat form.
        """
        try:
            with self.db.connection() as conn:
                samples = get_all_samples(conn, prefix=p or None)

            keys = []
            for sample in samples:
                item = sample.to_dict()
                # Flat copy for older clients
                item.update({"hash": sample.geohash, **item["metadata"]})
                keys.append(item)

            return {"keys": keys}

        except CoverageDBError as e:
            logger.error(f"Storage error reading samples: {e}")
            return api_error_from_exception(e, ErrorCode.DATABASE_ERROR)
        except Exception as e:
            logger.error(f"Error reading samples: {e}", exc_info=True)
            return api_error_from_exception(e)

    @cherrypy.expose
    @cherrypy.tools.json_out()
    def get_repeaters(self):
        """GET /get-repeaters"""
        try:
            with self.db.connection() as conn:
                repeaters = get_all_repeaters(conn)
            return api_success([r.to_dict() for r in repeaters], count=len(repeaters))

        except CoverageDBError as e:
            logger.error(f"Storage error reading repeaters: {e}")
            return api_error_from_exception(e, ErrorCode.DATABASE_ERROR)
        except Exception as e:
            logger.error(f"Error reading repeaters: {e}", exc_info=True)
            return api_error_from_exception(e)

    # ═══════════════════════════════════════════════════════════════════════════
    # Ingestion
    # ═══════════════════════════════════════════════════════════════════════════

    @cherrypy.expose
    @cherrypy.tools.json_out()
    @cherrypy.tools.json_in()
    def put_sample(self):
        """
        POST /put-sample

        Body:
            lat, lon: Required coordinates
            path: List of 2-char hop prefixes (optional)
            snr, rssi: Optional signal values
            observed: Optional flag, inferred from path when missing
            time: Epoch ms (defaults to now)
            drivers: Wardrive app label (optional)

        The sample is keyed by its 8-char geohash and merged into any
        stored sample for the same key.
        """
        try:
            self._require_post()
            data = self._read_body()

            if data.get("lat") is None or data.get("lon") is None:
                return missing_param("lat" if data.get("lat") is None else "lon")

            lat, lon = parse_location(data["lat"], data["lon"], self.location)
            path = validate_path(data.get("path"))

            sample = Sample(
                geohash=sample_key(lat, lon),
                path=path,
                time=validate_positive_int(data.get("time"), "time", default=now_ms()),
                snr=validate_optional_float(data.get("snr"), "snr"),
                rssi=validate_optional_float(data.get("rssi"), "rssi"),
                observed=validate_bool(data.get("observed"), "observed"),
                drivers=validate_optional_string(data.get("drivers"), "drivers"),
            )

            with self.db.connection() as conn:
                stored = upsert_sample(conn, sample)

            logger.debug(f"Stored sample {stored.geohash} ({len(stored.path)} hops)")
            return api_success(stored.to_dict())

        except cherrypy.HTTPError:
            raise
        except ValidationError as e:
            return e.to_response()
        except InvalidLocationError as e:
            logger.info(f"Rejected sample: {e}")
            return api_error_from_exception(e)
        except CoverageDBError as e:
            logger.error(f"Storage error saving sample: {e}")
            return api_error_from_exception(e, ErrorCode.DATABASE_ERROR)
        except Exception as e:
            logger.error(f"Error saving sample: {e}", exc_info=True)
            return api_error_from_exception(e)

    @cherrypy.expose
    @cherrypy.tools.json_out()
    @cherrypy.tools.json_in()
    def put_repeater(self):
        """
        POST /put-repeater

        Body:
            id: 2-char hex prefix (required)
            lat, lon: Required coordinates
            name, pubkey, elev: Optional
        """
        try:
            self._require_post()
            data = self._read_body()

            if not data.get("id"):
                return missing_param("id")
            if data.get("lat") is None or data.get("lon") is None:
                return missing_param("lat" if data.get("lat") is None else "lon")

            prefix = validate_prefix_param(data["id"], "id")
            lat, lon = parse_location(data["lat"], data["lon"], self.location)

            repeater = RepeaterObservation(
                prefix=prefix,
                latitude=lat,
                longitude=lon,
                last_seen=now_ms() / 1000,
                name=validate_optional_string(data.get("name"), "name"),
                pubkey=validate_optional_string(data.get("pubkey"), "pubkey"),
                elevation=validate_optional_float(data.get("elev"), "elev"),
            )

            with self.db.connection() as conn:
                upsert_repeater(conn, repeater)

            logger.info(f"Stored repeater {prefix} at ({lat:.5f}, {lon:.5f})")
            return api_success(repeater.to_dict())

        except cherrypy.HTTPError:
            raise
        except ValidationError as e:
            return e.to_response()
        except InvalidLocationError as e:
            logger.info(f"Rejected repeater: {e}")
            return api_error_from_exception(e)
        except CoverageDBError as e:
            logger.error(f"Storage error saving repeater: {e}")
            return api_error_from_exception(e, ErrorCode.DATABASE_ERROR)
        except Exception as e:
            logger.error(f"Error saving repeater: {e}", exc_info=True)
            return api_error_from_exception(e)

    # ═══════════════════════════════════════════════════════════════════════════
    # Drivers
    # ═══════════════════════════════════════════════════════════════════════════

    def _update_driver(self, record, outcome: str):
        """Shared body for the driver ping endpoints: name, lat, lon -> 6-char tile."""
        try:
            self._require_post()
            data = self._read_body()

            name = validate_optional_string(data.get("name"), "name")
            if not name:
                return missing_param("name")
            if data.get("lat") is None or data.get("lon") is None:
                return missing_param("lat" if data.get("lat") is None else "lon")

            lat, lon = parse_location(data["lat"], data["lon"], self.location)
            tile = coverage_key(lat, lon)

            with self.db.connection() as conn:
                record(conn, name, tile)

            logger.debug(f"Driver {name}: {outcome} in {tile}")
            return api_success({"name": name, "geohash": tile})

        except cherrypy.HTTPError:
            raise
        except ValidationError as e:
            return e.to_response()
        except InvalidLocationError as e:
            logger.info(f"Rejected driver {outcome}: {e}")
            return api_error_from_exception(e)
        except CoverageDBError as e:
            logger.error(f"Storage error recording driver {outcome}: {e}")
            return api_error_from_exception(e, ErrorCode.DATABASE_ERROR)
        except Exception as e:
            logger.error(f"Error recording driver {outcome}: {e}", exc_info=True)
            return api_error_from_exception(e)

    @cherrypy.expose
    @cherrypy.tools.json_out()
    @cherrypy.tools.json_in()
    def update_driver_miss(self):
        """
        POST /update-driver-miss

        Body: name, lat, lon. Sent by the wardrive app with every ping.
        """
        return self._update_driver(record_driver_miss, "miss")

    @cherrypy.expose
    @cherrypy.tools.json_out()
    @cherrypy.tools.json_in()
    def update_driver_hit(self):
        """
        POST /update-driver-hit

        Body: name, lat, lon. Sent when a ping is heard; turns one miss in
        the tile into a hit.
        """
        return self._update_driver(record_driver_hit, "hit")

    @cherrypy.expose
    @cherrypy.tools.json_out()
    def get_driver_stats(self, name=None):
        """GET /get-driver-stats?name=<driver>"""
        try:
            name = validate_optional_string(name, "name")
            if not name:
                return missing_param("name")

            with self.db.connection() as conn:
                stats = get_driver_stats(conn, name)
            return api_success(stats)

        except ValidationError as e:
            return e.to_response()
        except CoverageDBError as e:
            logger.error(f"Storage error reading driver stats: {e}")
            return api_error_from_exception(e, ErrorCode.DATABASE_ERROR)
        except Exception as e:
            logger.error(f"Error reading driver stats: {e}", exc_info=True)
            return api_error_from_exception(e)

    @cherrypy.expose
    @cherrypy.tools.json_out()
    def get_driver_coverage(self, name=None):
        """GET /get-driver-coverage?name=<driver> - per-tile tallies ordered by geohash."""
        try:
            name = validate_optional_string(name, "name")
            if not name:
                return missing_param("name")

            with self.db.connection() as conn:
                tiles = get_driver_coverage(conn, name)
            return api_success([t.to_dict() for t in tiles], count=len(tiles))

        except ValidationError as e:
            return e.to_response()
        except CoverageDBError as e:
            logger.error(f"Storage error reading driver coverage: {e}")
            return api_error_from_exception(e, ErrorCode.DATABASE_ERROR)
        except Exception as e:
            logger.error(f"Error reading driver coverage: {e}", exc_info=True)
            return api_error_from_exception(e)

    # ═══════════════════════════════════════════════════════════════════════════
    # Configuration
    # ═══════════════════════════════════════════════════════════════════════════

    @cherrypy.expose
    @cherrypy.tools.json_out()
    def config(self):
        """GET /config - map centre, distance limit and initial zoom."""
        location = self.location
        return {
            "centerPos": list(location.center_pos),
            "maxDistanceMiles": location.MAX_DISTANCE_MILES,
            "initialZoom": location.INITIAL_ZOOM,
        }

    # ═══════════════════════════════════════════════════════════════════════════
    # Disambiguation
    # ═══════════════════════════════════════════════════════════════════════════

    @cherrypy.expose
    @cherrypy.tools.json_out()
    def disambiguation(self):
        """
        GET /disambiguation

        Prefix collision statistics for the current snapshot.
        """
        try:
            with self.db.connection() as conn:
                lookup = self._build_lookup(conn)

            return api_success(lookup.get_stats().to_dict())

        except CoverageDBError as e:
            logger.error(f"Storage error building disambiguation stats: {e}")
            return api_error_from_exception(e, ErrorCode.DATABASE_ERROR)
        except Exception as e:
            logger.error(f"Error building disambiguation stats: {e}", exc_info=True)
            return api_error_from_exception(e)

    @cherrypy.expose
    @cherrypy.tools.json_out()
    def resolve(self, prefix=None):
        """
        GET /resolve?prefix=XX

        Best identity, confidence and the scored candidate list for one
        prefix.
        """
        try:
            if not prefix:
                return missing_param("prefix")
            prefix = validate_prefix_param(prefix)

            with self.db.connection() as conn:
                lookup = self._build_lookup(conn)

            result = lookup.get(prefix)
            if result is None:
                return not_found("Prefix", prefix)

            return api_success({
                **lookup.resolve(prefix).to_dict(),
                "result": result.to_dict(),
            })

        except ValidationError as e:
            return e.to_response()
        except CoverageDBError as e:
            logger.error(f"Storage error resolving {prefix}: {e}")
            return api_error_from_exception(e, ErrorCode.DATABASE_ERROR)
        except Exception as e:
            logger.error(f"Error resolving {prefix}: {e}", exc_info=True)
            return api_error_from_exception(e)

    @cherrypy.expose
    def default(self, *args, **kwargs):
        """Handle unmatched routes."""
        if cherrypy.request.method == "OPTIONS":
            return ""
        raise cherrypy.HTTPError(404, "Coverage endpoint not found")
