"""
Coverage Aggregation - Samples and coverage tiles for the map
=============================================================

Folds raw per-ping samples into 6-character geohash tiles using
disambiguated repeater identities, formats stored coverage rows, and
computes per-driver statistics for the wardrive leaderboard.

Key Concepts
------------
    Heard:
        A sample whose (resolved) path is non-empty - at least one
        repeater forwarded the ping.

    Lost:
        total - heard.

    Observed:
        The sample's explicit observed flag, or heard when the flag is
        missing.

    Driver:
        Samples reported by the wardrive app carry a ``drivers`` label.
        MQTT-scraped samples never do, so only labelled samples count
        toward driver statistics.

Order Independence
------------------
Every per-tile field is a sum, a max, or a set union, so the result is
identical for any permutation of the input samples. Tiles are returned
sorted by id and repeater sets are emitted sorted.

Public Functions
----------------
    aggregate_samples(samples, lookup)
        Build SampleTile aggregates keyed by 6-char geohash.

    format_coverage(rows, lookup)
        Format stored coverage rows, disambiguating hit repeaters.

    compute_driver_stats(samples, lookup, filters)
        Per-driver count/heard/lost with filtering and sorting.

    build_nodes_payload(coverage_rows, samples, repeaters, ...)
        Complete get-nodes response built from ONE prefix lookup.
"""

import logging
from dataclasses import dataclass, field
from typing import Dict, Iterable, List, Optional, Set

from .disambiguation import PrefixLookup, build_prefix_lookup, disambiguate_path
from .geo_utils import coverage_key_for
from .models import CoverageRow, RepeaterObservation, Sample
from .utils import truncate_time

logger = logging.getLogger("Analytics.Coverage")

DRIVER_SORT_FIELDS = ("count", "heard", "lost", "percent")
SORT_ORDERS = ("asc", "desc")


def _max_defined(current: Optional[float], value: Optional[float]) -> Optional[float]:
    if value is None:
        return current
    if current is None:
        return value
    return max(current, value)


# ═══════════════════════════════════════════════════════════════════════════════
# Sample Tiles
# ═══════════════════════════════════════════════════════════════════════════════

@dataclass
class SampleTile:
    """Aggregate of all samples inside one 6-char geohash tile."""
    id: str
    total: int = 0
    heard: int = 0
    observed: int = 0
    last_time: float = 0.0
    snr: Optional[float] = None
    rssi: Optional[float] = None
    repeaters: Set[str] = field(default_factory=set)

    @property
    def lost(self) -> int:
        return self.total - self.heard

    def add(self, sample: Sample, resolved_path: List[str]) -> None:
        heard = len(resolved_path) > 0
        observed = heard if sample.observed is None else bool(sample.observed)

        self.total += 1
        if heard:
            self.heard += 1
        if observed:
            self.observed += 1
        if sample.time > self.last_time:
            self.last_time = sample.time

        self.snr = _max_defined(self.snr, sample.snr)
        self.rssi = _max_defined(self.rssi, sample.rssi)

        for repeater_id in resolved_path:
            self.repeaters.add(str(repeater_id).lower())

    def to_dict(self) -> dict:
        item = {
            "id": self.id,
            "time": truncate_time(self.last_time),
            "obs": 1 if self.observed > 0 else 0,
            "heard": self.heard,
            "lost": self.lost,
        }
        if self.repeaters:
            item["path"] = sorted(self.repeaters)
        if self.snr is not None:
            item["snr"] = self.snr
        if self.rssi is not None:
            item["rssi"] = self.rssi
        return item


def aggregate_samples(samples: Iterable, lookup: PrefixLookup) -> List[SampleTile]:
    """
    Aggregate samples into coverage tiles by 6-character geohash.

    Args:
        samples: Sample records (or dicts accepted by Sample.coerce)
        lookup: Prefix lookup used to resolve every path

    Returns:
        SampleTile list sorted by tile id
    """
    tiles: Dict[str, SampleTile] = {}

    for raw in samples:
        sample = Sample.coerce(raw)
        tile_id = coverage_key_for(sample.geohash)
        if not tile_id:
            logger.debug("Skipping sample without geohash")
            continue

        tile = tiles.get(tile_id)
        if tile is None:
            tile = tiles[tile_id] = SampleTile(id=tile_id)

        tile.add(sample, disambiguate_path(lookup, sample.path))

    return [tiles[key] for key in sorted(tiles)]


# ═══════════════════════════════════════════════════════════════════════════════
# Stored Coverage Rows
# ═══════════════════════════════════════════════════════════════════════════════

def format_coverage_row(row: CoverageRow, lookup: PrefixLookup) -> dict:
    last_heard = row.last_heard or 0
    last_observed = row.last_observed or last_heard
    updated = last_observed or last_heard

    if row.observed is not None:
        obs = row.observed
    else:
        obs = row.heard or 0

    item = {
        "id": row.hash,
        "obs": obs,
        "rcv": row.heard or 0,
        "lost": row.lost or 0,
        "ut": truncate_time(updated),
        "lht": truncate_time(last_heard),
        "lot": truncate_time(last_observed),
    }

    if row.hit_repeaters:
        item["rptr"] = disambiguate_path(lookup, row.hit_repeaters)
    if row.snr is not None:
        item["snr"] = row.snr
    if row.rssi is not None:
        item["rssi"] = row.rssi

    return item


def format_coverage(rows: Iterable, lookup: PrefixLookup) -> List[dict]:
    """Format stored coverage rows for the map, resolving hit repeaters."""
    return [format_coverage_row(CoverageRow.coerce(row), lookup) for row in rows]


# ═══════════════════════════════════════════════════════════════════════════════
# Driver Statistics
# ═══════════════════════════════════════════════════════════════════════════════

@dataclass
class DriverStats:
    name: str
    count: int = 0
    heard: int = 0
    lost: int = 0

    @property
    def heard_percent(self) -> float:
        if self.count <= 0:
            return 0.0
        return round(self.heard / self.count * 100, 1)

    def to_dict(self) -> dict:
        return {
            "name": self.name,
            "count": self.count,
            "heard": self.heard,
            "lost": self.lost,
            "heardPercent": self.heard_percent,
        }


@dataclass
class DriverFilter:
    """Optional bounds and ordering for the driver leaderboard."""
    min_count: Optional[int] = None
    max_count: Optional[int] = None
    min_heard: Optional[int] = None
    max_heard: Optional[int] = None
    min_lost: Optional[int] = None
    max_lost: Optional[int] = None
    min_percent: Optional[float] = None
    max_percent: Optional[float] = None
    sort_by: str = "count"
    sort_order: str = "desc"

    def accepts(self, stats: DriverStats) -> bool:
        checks = (
            (self.min_count, self.max_count, stats.count),
            (self.min_heard, self.max_heard, stats.heard),
            (self.min_lost, self.max_lost, stats.lost),
            (self.min_percent, self.max_percent, stats.heard_percent),
        )
        for low, high, value in checks:
            if low is not None and value < low:
                return False
            if high is not None and value > high:
                return False
        return True

    def sort_key(self, stats: DriverStats):
        if self.sort_by == "heard":
            return stats.heard
        if self.sort_by == "lost":
            return stats.lost
        if self.sort_by == "percent":
            return stats.heard_percent
        return stats.count


def compute_driver_stats(
    samples: Iterable,
    lookup: PrefixLookup,
    filters: Optional[DriverFilter] = None,
) -> List[DriverStats]:
    """
    Count heard/lost samples per wardrive driver.

    Only samples carrying a drivers label are counted.
    """
    filters = filters or DriverFilter()
    by_driver: Dict[str, DriverStats] = {}

    for raw in samples:
        sample = Sample.coerce(raw)
        if not sample.drivers:
            continue

        stats = by_driver.get(sample.drivers)
        if stats is None:
            stats = by_driver[sample.drivers] = DriverStats(name=sample.drivers)

        stats.count += 1
        if disambiguate_path(lookup, sample.path):
            stats.heard += 1
        else:
            stats.lost += 1

    selected = [s for s in by_driver.values() if filters.accepts(s)]
    # Name first so equal keys come out in a fixed order
    selected.sort(key=lambda s: s.name)
    selected.sort(key=filters.sort_key, reverse=filters.sort_order != "asc")
    return selected


# ═══════════════════════════════════════════════════════════════════════════════
# get-nodes Payload
# ═══════════════════════════════════════════════════════════════════════════════

def build_nodes_payload(
    coverage_rows: Iterable,
    samples: Iterable,
    repeaters: Iterable,
    driver_filter: Optional[DriverFilter] = None,
    local_hash: Optional[str] = None,
    now: Optional[float] = None,
) -> dict:
    """
    Build the full map payload.

    A single prefix lookup is built for the request and shared by the
    coverage, sample and driver sections.
    """
    sample_list = [Sample.coerce(s) for s in samples]
    repeater_list = [RepeaterObservation.coerce(r) for r in repeaters]

    lookup = build_prefix_lookup(sample_list, repeater_list, local_hash=local_hash, now=now)

    tiles = aggregate_samples(sample_list, lookup)
    drivers = compute_driver_stats(sample_list, lookup, driver_filter)

    logger.debug(
        f"Nodes payload: {len(tiles)} sample tiles, "
        f"{len(repeater_list)} repeaters, {len(drivers)} drivers"
    )

    return {
        "coverage": format_coverage(coverage_rows, lookup),
        "samples": [tile.to_dict() for tile in tiles],
        "repeaters": [
            {**r.to_dict(), "time": truncate_time(r.last_seen * 1000)}
            for r in repeater_list
        ],
        "drivers": [d.to_dict() for d in drivers],
    }
