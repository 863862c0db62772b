"""
Record Types - Repeaters, samples and stored coverage rows
==========================================================

Plain dataclasses for the rows the storage layer hands to the analytics
code. Each record has a coerce() classmethod that accepts the record
itself, a flat dict (API body or sqlite3.Row converted with dict()), or
the frontend's ``{"name": ..., "metadata": {...}}`` envelope.

Timestamps
----------
    RepeaterObservation.last_seen: epoch SECONDS (0 = unknown)
    Sample.time / CoverageRow.*:  epoch MILLISECONDS

Stored repeater rows carry ``time`` in milliseconds; coerce() converts
it. A flat ``last_seen`` key is taken as seconds.
"""

import json
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

from .utils import defined_or, logical_or, merge_paths


def _unwrap(raw: Dict[str, Any]) -> Dict[str, Any]:
    """Flatten the {"name": key, "metadata": {...}} envelope."""
    metadata = raw.get("metadata")
    if isinstance(metadata, dict):
        flat = dict(metadata)
        flat.setdefault("name_key", raw.get("name"))
        return flat
    return dict(raw)


def _optional_float(value) -> Optional[float]:
    if value is None or value == "":
        return None
    try:
        return float(value)
    except (TypeError, ValueError):
        return None


def _decode_path(value) -> List[str]:
    if not value:
        return []
    if isinstance(value, str):
        try:
            value = json.loads(value)
        except (json.JSONDecodeError, ValueError):
            return []
    if not isinstance(value, (list, tuple)):
        return []
    return [str(hop) for hop in value]


@dataclass
class RepeaterObservation:
    """A repeater seen at a location. Identity is (prefix, lat, lon)."""
    prefix: str
    latitude: Optional[float]
    longitude: Optional[float]
    last_seen: float = 0.0
    name: Optional[str] = None
    pubkey: Optional[str] = None
    elevation: Optional[float] = None

    @property
    def canonical_id(self) -> str:
        """Map-wide repeater id: the upper-case 2-character prefix."""
        return (self.prefix or "").upper()

    @property
    def key(self) -> str:
        return f"{self.prefix}|{self.latitude}|{self.longitude}"

    @classmethod
    def coerce(cls, raw) -> "RepeaterObservation":
        if isinstance(raw, cls):
            return raw

        data = _unwrap(dict(raw))

        if data.get("last_seen") is not None:
            last_seen = float(data.get("last_seen") or 0)
        elif data.get("time"):
            last_seen = float(data["time"]) / 1000  # ms -> s
        else:
            last_seen = 0.0

        prefix = data.get("prefix") or data.get("id") or ""

        return cls(
            prefix=str(prefix).strip().upper(),
            latitude=_optional_float(data.get("latitude", data.get("lat"))),
            longitude=_optional_float(data.get("longitude", data.get("lon"))),
            last_seen=last_seen,
            name=data.get("name"),
            pubkey=data.get("pubkey"),
            elevation=_optional_float(data.get("elevation", data.get("elev"))),
        )

    def to_dict(self) -> dict:
        return {
            "time": int(self.last_seen * 1000),
            "id": self.prefix,
            "name": self.name,
            "lat": self.latitude,
            "lon": self.longitude,
            "elev": round(self.elevation or 0),
        }


@dataclass
class Sample:
    """Observation of a ping at an 8-character geohash."""
    geohash: str
    path: List[str] = field(default_factory=list)
    time: float = 0.0
    snr: Optional[float] = None
    rssi: Optional[float] = None
    observed: Optional[bool] = None
    drivers: Optional[str] = None

    @property
    def is_observed(self) -> bool:
        """Explicit observed flag, or inferred from a non-empty path."""
        if self.observed is None:
            return len(self.path) > 0
        return bool(self.observed)

    @classmethod
    def coerce(cls, raw) -> "Sample":
        if isinstance(raw, cls):
            return raw

        data = _unwrap(dict(raw))
        geohash = data.get("geohash") or data.get("hash") or data.get("name_key") or ""
        observed = data.get("observed")

        return cls(
            geohash=str(geohash),
            path=_decode_path(data.get("path")),
            time=float(data.get("time") or 0),
            snr=_optional_float(data.get("snr")),
            rssi=_optional_float(data.get("rssi")),
            observed=None if observed is None else bool(observed),
            drivers=data.get("drivers") or None,
        )

    def to_dict(self) -> dict:
        return {
            "name": self.geohash,
            "metadata": {
                "time": self.time,
                "path": list(self.path),
                "rssi": self.rssi,
                "snr": self.snr,
                "observed": self.is_observed,
            },
        }


@dataclass
class CoverageRow:
    """Stored coverage tile as written by the consolidation job."""
    hash: str
    heard: int = 0
    lost: int = 0
    observed: Optional[int] = None
    last_heard: float = 0.0
    last_observed: float = 0.0
    hit_repeaters: List[str] = field(default_factory=list)
    snr: Optional[float] = None
    rssi: Optional[float] = None

    @classmethod
    def coerce(cls, raw) -> "CoverageRow":
        if isinstance(raw, cls):
            return raw

        data = dict(raw)
        observed = data.get("observed")
        return cls(
            hash=str(data.get("hash") or data.get("geohash") or ""),
            heard=int(data.get("heard") or 0),
            lost=int(data.get("lost") or 0),
            observed=None if observed is None else int(observed),
            last_heard=float(data.get("last_heard") or data.get("lastHeard") or 0),
            last_observed=float(data.get("last_observed") or data.get("lastObserved") or 0),
            hit_repeaters=_decode_path(data.get("hit_repeaters", data.get("hitRepeaters"))),
            snr=_optional_float(data.get("snr")),
            rssi=_optional_float(data.get("rssi")),
        )


@dataclass
class DriverTile:
    """Per-driver ping tally for one 6-character tile."""
    name: str
    geohash: str
    hit: int = 0
    miss: int = 0
    created_at: Optional[str] = None
    updated_at: Optional[str] = None

    @classmethod
    def coerce(cls, raw) -> "DriverTile":
        if isinstance(raw, cls):
            return raw

        data = dict(raw)
        return cls(
            name=str(data.get("name") or ""),
            geohash=str(data.get("geohash") or ""),
            hit=int(data.get("hit") or 0),
            miss=int(data.get("miss") or 0),
            created_at=data.get("created_at"),
            updated_at=data.get("updated_at"),
        )

    def to_dict(self) -> dict:
        return {
            "name": self.name,
            "geohash": self.geohash,
            "hit": self.hit,
            "miss": self.miss,
            "createdAt": self.created_at,
            "updatedAt": self.updated_at,
        }


def merge_sample(existing: Sample, incoming: Sample) -> Sample:
    """
    Merge a re-reported sample into the stored one for the same geohash.

    Latest time, max snr/rssi, OR of observed flags, union of paths.
    Drivers from the incoming report win when present (wardrive reports
    always carry them, MQTT reports never do).
    """
    return Sample(
        geohash=incoming.geohash,
        path=merge_paths(incoming.path, existing.path),
        time=max(incoming.time, existing.time),
        snr=defined_or(max, incoming.snr, existing.snr),
        rssi=defined_or(max, incoming.rssi, existing.rssi),
        observed=defined_or(logical_or, incoming.observed, existing.observed),
        drivers=incoming.drivers or existing.drivers,
    )
