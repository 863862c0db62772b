"""
Coverage Store - SQLite tables for samples, repeaters and coverage
==================================================================

Bulk reads feeding the per-request prefix lookup, plus merge-on-write
upserts for incoming reports.

Database Schema
---------------
    samples:
        - geohash: 8-char sample key (primary key)
        - time: Latest report time (epoch ms)
        - path: JSON list of hop prefixes (union of all reports)
        - observed: Nullable flag (OR of all reports)
        - snr, rssi: Best values seen
        - drivers: Wardrive app label, NULL for MQTT reports

    repeaters:
        - id, lat, lon: Identity (primary key)
        - name, elev, pubkey
        - time: Last advert time (epoch ms)

    coverage:
        - hash: 6-char tile key (primary key)
        - heard, lost, observed: Counters
        - last_heard, last_observed: epoch ms
        - hit_repeaters: JSON list of hop prefixes
        - snr, rssi

    drivers:
        - name, geohash: Driver label and 6-char tile (primary key)
        - hit, miss: Pings heard / not yet heard from that tile

Merge Rules
-----------
A sample reported again for the same geohash keeps the latest time, the
max snr/rssi, the OR of observed flags and the union of paths. Drivers
are only overwritten by a report that carries one.

Public Functions
----------------
    init_schema(conn)
    get_all_samples(conn, prefix=None) / get_sample(conn, geohash)
    upsert_sample(conn, sample)
    get_all_repeaters(conn) / upsert_repeater(conn, repeater)
    get_all_coverage(conn) / upsert_coverage(conn, row)
    record_driver_miss(conn, name, tile) / record_driver_hit(conn, name, tile)
    get_driver_coverage(conn, name) / get_driver_stats(conn, name)
"""

import json
import logging
import sqlite3
from typing import List, Optional

from .db import with_connection
from .models import CoverageRow, DriverTile, RepeaterObservation, Sample, merge_sample
from .utils import defined_or, merge_paths

logger = logging.getLogger("Analytics.Store")

SCHEMA = """
CREATE TABLE IF NOT EXISTS samples (
    geohash TEXT PRIMARY KEY,
    time INTEGER NOT NULL,
    path TEXT NOT NULL DEFAULT '[]',
    observed INTEGER,
    snr REAL,
    rssi REAL,
    drivers TEXT,
    updated_at TEXT DEFAULT CURRENT_TIMESTAMP
);

CREATE TABLE IF NOT EXISTS repeaters (
    id TEXT NOT NULL,
    lat REAL NOT NULL,
    lon REAL NOT NULL,
    name TEXT,
    elev REAL,
    time INTEGER NOT NULL,
    pubkey TEXT,
    updated_at TEXT DEFAULT CURRENT_TIMESTAMP,
    PRIMARY KEY (id, lat, lon)
);

CREATE INDEX IF NOT EXISTS idx_repeaters_pubkey ON repeaters (pubkey);

CREATE TABLE IF NOT EXISTS coverage (
    hash TEXT PRIMARY KEY,
    heard INTEGER NOT NULL DEFAULT 0,
    lost INTEGER NOT NULL DEFAULT 0,
    observed INTEGER,
    last_heard INTEGER NOT NULL DEFAULT 0,
    last_observed INTEGER NOT NULL DEFAULT 0,
    hit_repeaters TEXT NOT NULL DEFAULT '[]',
    snr REAL,
    rssi REAL,
    updated_at TEXT DEFAULT CURRENT_TIMESTAMP
);

CREATE TABLE IF NOT EXISTS drivers (
    name TEXT NOT NULL,
    geohash TEXT NOT NULL,
    hit INTEGER NOT NULL DEFAULT 0,
    miss INTEGER NOT NULL DEFAULT 0,
    created_at TEXT DEFAULT CURRENT_TIMESTAMP,
    updated_at TEXT DEFAULT CURRENT_TIMESTAMP,
    PRIMARY KEY (name, geohash)
);

CREATE INDEX IF NOT EXISTS idx_drivers_geohash ON drivers (geohash);
"""


def _bool_to_db(value: Optional[bool]) -> Optional[int]:
    return None if value is None else int(bool(value))


@with_connection
def init_schema(conn: sqlite3.Connection) -> None:
    """Create tables if they don't exist."""
    conn.executescript(SCHEMA)
    logger.debug("Coverage schema ready")


# ═══════════════════════════════════════════════════════════════════════════════
# Samples
# ═══════════════════════════════════════════════════════════════════════════════

@with_connection
def get_all_samples(conn: sqlite3.Connection, prefix: Optional[str] = None) -> List[Sample]:
    """
    Bulk-read samples, optionally limited to a geohash prefix.
    """
    if prefix:
        cursor = conn.execute(
            "SELECT * FROM samples WHERE geohash LIKE ? ORDER BY geohash",
            (f"{prefix}%",),
        )
    else:
        cursor = conn.execute("SELECT * FROM samples ORDER BY geohash")

    return [Sample.coerce(dict(row)) for row in cursor.fetchall()]


@with_connection
def get_sample(conn: sqlite3.Connection, geohash: str) -> Optional[Sample]:
    row = conn.execute("SELECT * FROM samples WHERE geohash = ?", (geohash,)).fetchone()
    return Sample.coerce(dict(row)) if row else None


@with_connection
def upsert_sample(conn: sqlite3.Connection, sample: Sample) -> Sample:
    """
    Insert a sample or merge it into the stored row for its geohash.

    Returns:
        The sample as stored
    """
    row = conn.execute("SELECT * FROM samples WHERE geohash = ?", (sample.geohash,)).fetchone()
    stored = merge_sample(Sample.coerce(dict(row)), sample) if row else sample

    conn.execute(
        """
        INSERT INTO samples (geohash, time, path, observed, snr, rssi, drivers)
        VALUES (?, ?, ?, ?, ?, ?, ?)
        ON CONFLICT (geohash) DO UPDATE SET
            time = excluded.time,
            path = excluded.path,
            observed = excluded.observed,
            snr = excluded.snr,
            rssi = excluded.rssi,
            drivers = excluded.drivers,
            updated_at = CURRENT_TIMESTAMP
        """,
        (
            stored.geohash,
            int(stored.time),
            json.dumps(stored.path),
            _bool_to_db(stored.observed),
            stored.snr,
            stored.rssi,
            stored.drivers,
        ),
    )
    return stored


# ═══════════════════════════════════════════════════════════════════════════════
# Repeaters
# ═══════════════════════════════════════════════════════════════════════════════

@with_connection
def get_all_repeaters(conn: sqlite3.Connection) -> List[RepeaterObservation]:
    """Bulk-read every repeater observation, newest first per id."""
    cursor = conn.execute(
        "SELECT id, lat, lon, name, elev, time, pubkey FROM repeaters ORDER BY id, time DESC"
    )
    return [RepeaterObservation.coerce(dict(row)) for row in cursor.fetchall()]


@with_connection
def upsert_repeater(conn: sqlite3.Connection, repeater: RepeaterObservation) -> None:
    """
    Insert or refresh a repeater keyed by (id, lat, lon).

    Elevation and pubkey are kept when the new report omits them.
    """
    conn.execute(
        """
        INSERT INTO repeaters (id, lat, lon, name, elev, time, pubkey)
        VALUES (?, ?, ?, ?, ?, ?, ?)
        ON CONFLICT (id, lat, lon) DO UPDATE SET
            name = excluded.name,
            elev = COALESCE(excluded.elev, repeaters.elev),
            time = excluded.time,
            pubkey = COALESCE(excluded.pubkey, repeaters.pubkey),
            updated_at = CURRENT_TIMESTAMP
        """,
        (
            repeater.prefix.lower(),
            repeater.latitude,
            repeater.longitude,
            repeater.name,
            repeater.elevation,
            int(repeater.last_seen * 1000),
            repeater.pubkey.lower() if repeater.pubkey else None,
        ),
    )


# ═══════════════════════════════════════════════════════════════════════════════
# Coverage
# ═══════════════════════════════════════════════════════════════════════════════

@with_connection
def get_all_coverage(conn: sqlite3.Connection) -> List[CoverageRow]:
    cursor = conn.execute("SELECT * FROM coverage ORDER BY hash")
    return [CoverageRow.coerce(dict(row)) for row in cursor.fetchall()]


@with_connection
def upsert_coverage(conn: sqlite3.Connection, row: CoverageRow) -> CoverageRow:
    """
    Add a consolidated batch to a coverage tile.

    Counters are summed, timestamps and signal values take the max and
    hit repeaters are unioned.
    """
    existing = conn.execute("SELECT * FROM coverage WHERE hash = ?", (row.hash,)).fetchone()

    if existing:
        current = CoverageRow.coerce(dict(existing))
        row = CoverageRow(
            hash=row.hash,
            heard=current.heard + row.heard,
            lost=current.lost + row.lost,
            observed=defined_or(lambda a, b: a + b, current.observed, row.observed),
            last_heard=max(current.last_heard, row.last_heard),
            last_observed=max(current.last_observed, row.last_observed),
            hit_repeaters=sorted(merge_paths(current.hit_repeaters, row.hit_repeaters)),
            snr=defined_or(max, current.snr, row.snr),
            rssi=defined_or(max, current.rssi, row.rssi),
        )

    conn.execute(
        """
        INSERT OR REPLACE INTO coverage
            (hash, heard, lost, observed, last_heard, last_observed, hit_repeaters, snr, rssi)
        VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?)
        """,
        (
            row.hash,
            row.heard,
            row.lost,
            row.observed,
            int(row.last_heard),
            int(row.last_observed),
            json.dumps(row.hit_repeaters),
            row.snr,
            row.rssi,
        ),
    )
    return row


# ═══════════════════════════════════════════════════════════════════════════════
# Drivers
# ═══════════════════════════════════════════════════════════════════════════════

@with_connection
def record_driver_miss(conn: sqlite3.Connection, name: str, tile: str) -> None:
    """Count a ping sent by a driver from a tile; it stays a miss until heard."""
    conn.execute(
        """
        INSERT INTO drivers (name, geohash, miss) VALUES (?, ?, 1)
        ON CONFLICT (name, geohash) DO UPDATE SET
            miss = drivers.miss + 1,
            updated_at = CURRENT_TIMESTAMP
        """,
        (name, tile),
    )


@with_connection
def record_driver_hit(conn: sqlite3.Connection, name: str, tile: str) -> None:
    """
    Turn one of the driver's misses in a tile into a hit.

    A hit with no outstanding miss still counts; miss never goes below 0.
    """
    conn.execute(
        """
        INSERT INTO drivers (name, geohash, hit, miss) VALUES (?, ?, 1, 0)
        ON CONFLICT (name, geohash) DO UPDATE SET
            hit = drivers.hit + 1,
            miss = MAX(0, drivers.miss - 1),
            updated_at = CURRENT_TIMESTAMP
        """,
        (name, tile),
    )


@with_connection
def get_driver_coverage(conn: sqlite3.Connection, name: str) -> List[DriverTile]:
    cursor = conn.execute(
        """
        SELECT name, geohash, hit, miss, created_at, updated_at
        FROM drivers WHERE name = ? ORDER BY geohash
        """,
        (name,),
    )
    return [DriverTile.coerce(dict(row)) for row in cursor.fetchall()]


@with_connection
def get_driver_stats(conn: sqlite3.Connection, name: str) -> dict:
    """Hit, miss and tile totals for one driver (zeros for an unknown driver)."""
    row = conn.execute(
        """
        SELECT COALESCE(SUM(hit), 0), COALESCE(SUM(miss), 0), COUNT(*)
        FROM drivers WHERE name = ?
        """,
        (name,),
    ).fetchone()
    return {
        "name": name,
        "totalHits": row[0],
        "totalMisses": row[1],
        "totalTiles": row[2],
    }
