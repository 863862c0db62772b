"""
Disambiguation - Prefix collision resolution (4-Factor System)
==============================================================

Resolves 2-character hash prefix collisions in sample forwarding paths
using a 4-factor weighted score per candidate repeater.

The Problem
-----------
MeshCore paths carry only a 1-byte (2 hex char) identifier per hop.
With hundreds of repeaters and only 256 possible prefixes, collisions
are inevitable:

    - Repeater "Hilltop"   at (37.30, -121.80) -> prefix "A1"
    - Repeater "Downtown"  at (40.00, -122.00) -> prefix "A1"

When a sample's path contains "A1", which repeater forwarded it?

4-Factor Scoring System
-----------------------
    1. Position Consistency (15%):
       How consistently does the prefix appear at one hop position, and
       how often does it appear at all relative to the busiest prefix?

    2. Co-occurrence Frequency (15%):
       How many neighbouring hops have been seen next to the prefix,
       relative to the most connected prefix?

    3. Geographic Scoring (40%):
       Flat default of 0.2. Position-1 (last hop) appearances of a
       colliding prefix add source-geographic evidence: the distance
       from each candidate to the sample that heard it.

    4. Recency Scoring (30%):
       Exponential decay on the repeater's last-seen time:
       score = e^(-hours/12). Candidates not seen in 14 days are
       dropped entirely.

Source-Geographic Boost
-----------------------
After the weighted sum, candidates with source-geographic evidence get
an additive boost:

    avg_evidence * min(evidence_count / 50, 1) * 0.3

The combined score is therefore not bounded by 1.0. Only confidence
is clamped.

Confidence
----------
    - Exactly one candidate: 1.0
    - Otherwise: (best - second) / best, clamped to [0, 1]
    - +0.2 (capped at 1.0) when the best candidate has more than twice
      the appearances of the runner-up

Public Functions
----------------
    build_prefix_lookup(samples, repeaters, local_hash, now)
        Build the lookup table from a snapshot of samples and repeaters.

    resolve_prefix(lookup, prefix)
        Resolve a prefix to (hash, confidence).

    disambiguate_path(lookup, path)
        Rewrite a path of prefixes into resolved identities.

Public Classes
--------------
    PrefixLookup:
        Lookup table with per-prefix results.

    DisambiguationCandidate:
        Candidate with all scoring components.

    DisambiguationResult:
        Per-prefix resolution with confidence.

    DisambiguationStats:
        Overall collision statistics.

See Also
--------
    - path_utils.py: Effective path and position numbering
    - geo_utils.py: Haversine distance, geohash decoding, evidence bands
    - coverage.py: Consumes disambiguate_path() while aggregating tiles
"""

import logging
import math
import time
from collections import defaultdict
from dataclasses import dataclass, field
from typing import Dict, Iterable, List, NamedTuple, Optional

from .config import Config
from .errors import GeohashError
from .geo_utils import (
    calculate_distance,
    get_source_distance_evidence,
    has_valid_coordinates,
    pos_from_hash,
)
from .models import RepeaterObservation, Sample
from .path_utils import get_position_from_index, parse_path
from .utils import normalize_prefix, normalize_pubkey

logger = logging.getLogger("Analytics.Disambiguation")

# ═══════════════════════════════════════════════════════════════════════════════
# Constants
# ═══════════════════════════════════════════════════════════════════════════════

# Score weights (must sum to 1.0)
SCORE_WEIGHTS = {
    "position": 0.15,
    "cooccurrence": 0.15,
    "geographic": 0.40,
    "recency": 0.30,
}

# Maximum hop positions to track
MAX_POSITIONS = 5

# Maximum age for candidates (hours)
MAX_CANDIDATE_AGE_HOURS = 336  # 14 days

# Recency decay constant (hours)
RECENCY_DECAY_HOURS = 12

DEFAULT_GEOGRAPHIC_SCORE = 0.2
UNKNOWN_RECENCY_SCORE = 0.1

# Position score = consistency * 0.6 + frequency * 0.4
POSITION_CONSISTENCY_WEIGHT = 0.6
POSITION_FREQUENCY_WEIGHT = 0.4

# Source-geographic boost saturates after this many observations
SRC_GEO_SATURATION_COUNT = 50
SRC_GEO_BOOST_WEIGHT = 0.3

# Confidence bonus when best has > 2x the runner-up's appearances
APPEARANCE_DOMINANCE_RATIO = 2
APPEARANCE_DOMINANCE_BOOST = 0.2


# ═══════════════════════════════════════════════════════════════════════════════
# Helper Functions
# ═══════════════════════════════════════════════════════════════════════════════

def calculate_recency_score(last_seen_timestamp: Optional[float], now: Optional[float] = None) -> float:
    """
    Calculate recency score using exponential decay.

    score = e^(-hours/12)

    Args:
        last_seen_timestamp: Unix timestamp (seconds) when repeater was last seen
        now: Current timestamp (defaults to time.time())

    Returns:
        Score from 0.0 to 1.0
    """
    if not last_seen_timestamp or last_seen_timestamp <= 0:
        return UNKNOWN_RECENCY_SCORE

    now = now or time.time()
    hours_ago = (now - last_seen_timestamp) / 3600

    if hours_ago < 0:
        return 1.0  # Future timestamp (clock skew) - assume recent

    return math.exp(-hours_ago / RECENCY_DECAY_HOURS)


def is_candidate_too_old(last_seen_timestamp: Optional[float], now: Optional[float] = None) -> bool:
    """
    Check if a candidate is too old to be considered.

    Unknown last-seen times are never filtered.
    """
    if not last_seen_timestamp or last_seen_timestamp <= 0:
        return False

    now = now or time.time()
    hours_ago = (now - last_seen_timestamp) / 3600

    return hours_ago > MAX_CANDIDATE_AGE_HOURS


# ═══════════════════════════════════════════════════════════════════════════════
# Data Classes
# ═══════════════════════════════════════════════════════════════════════════════

@dataclass
class DisambiguationCandidate:
    """Statistics for a single repeater matching a prefix."""
    hash: str
    prefix: str
    name: Optional[str] = None
    pubkey: Optional[str] = None

    # Position scoring
    position_counts: List[int] = field(default_factory=lambda: [0] * MAX_POSITIONS)
    total_appearances: int = 0
    typical_position: int = 0
    position_consistency: float = 0.0

    # Co-occurrence scoring
    adjacent_prefix_counts: Dict[str, int] = field(default_factory=dict)
    total_adjacent_observations: int = 0

    # Geographic data
    latitude: Optional[float] = None
    longitude: Optional[float] = None

    # Source-geographic evidence
    src_geo_evidence_score: float = 0.0
    src_geo_evidence_count: int = 0

    # Recency
    last_seen_timestamp: float = 0.0
    recency_score: float = UNKNOWN_RECENCY_SCORE

    # Combined scores
    position_score: float = 0.0
    cooccurrence_score: float = 0.0
    geographic_score: float = DEFAULT_GEOGRAPHIC_SCORE
    src_geo_boost: float = 0.0
    combined_score: float = 0.0

    def record_appearance(self, position: int) -> None:
        self.position_counts[min(position - 1, MAX_POSITIONS - 1)] += 1
        self.total_appearances += 1

    def record_adjacent(self, neighbor_prefix: str) -> None:
        self.adjacent_prefix_counts[neighbor_prefix] = \
            self.adjacent_prefix_counts.get(neighbor_prefix, 0) + 1
        self.total_adjacent_observations += 1

    def record_source_distance(self, distance_meters: float) -> None:
        self.src_geo_evidence_score += get_source_distance_evidence(distance_meters)
        self.src_geo_evidence_count += 1

    def compute_scores(self, max_appearances: int, max_adjacent_obs: int) -> None:
        """Fill in component and combined scores from accumulated counts."""
        if self.total_appearances > 0:
            # Typical position = mode, earliest bucket wins ties
            max_count = 0
            typical_pos = 1
            for i in range(MAX_POSITIONS):
                if self.position_counts[i] > max_count:
                    max_count = self.position_counts[i]
                    typical_pos = i + 1

            self.typical_position = typical_pos
            self.position_consistency = max_count / self.total_appearances

            frequency_score = self.total_appearances / max_appearances
            self.position_score = (
                self.position_consistency * POSITION_CONSISTENCY_WEIGHT +
                frequency_score * POSITION_FREQUENCY_WEIGHT
            )

        if self.total_adjacent_observations > 0:
            self.cooccurrence_score = self.total_adjacent_observations / max_adjacent_obs

        self.combined_score = (
            self.position_score * SCORE_WEIGHTS["position"] +
            self.cooccurrence_score * SCORE_WEIGHTS["cooccurrence"] +
            self.geographic_score * SCORE_WEIGHTS["geographic"] +
            self.recency_score * SCORE_WEIGHTS["recency"]
        )

        # Additive correction layered on top of the weighted sum
        if self.src_geo_evidence_count > 0:
            avg_evidence = self.src_geo_evidence_score / self.src_geo_evidence_count
            observation_weight = min(self.src_geo_evidence_count / SRC_GEO_SATURATION_COUNT, 1)
            self.src_geo_boost = avg_evidence * observation_weight * SRC_GEO_BOOST_WEIGHT
            self.combined_score += self.src_geo_boost

    def to_dict(self) -> dict:
        return {
            "hash": self.hash,
            "prefix": self.prefix,
            "name": self.name,
            "pubkey": self.pubkey,
            "latitude": self.latitude,
            "longitude": self.longitude,
            "positionCounts": list(self.position_counts),
            "totalAppearances": self.total_appearances,
            "typicalPosition": self.typical_position,
            "positionConsistency": round(self.position_consistency, 3),
            "positionScore": round(self.position_score, 3),
            "cooccurrenceScore": round(self.cooccurrence_score, 3),
            "geographicScore": round(self.geographic_score, 3),
            "srcGeoEvidenceCount": self.src_geo_evidence_count,
            "recencyScore": round(self.recency_score, 3),
            "combinedScore": round(self.combined_score, 3),
            "lastSeenTimestamp": self.last_seen_timestamp,
        }


@dataclass
class DisambiguationResult:
    """Result of disambiguating a single prefix."""
    prefix: str
    candidates: List[DisambiguationCandidate]
    best_match: Optional[str]
    confidence: float
    is_unambiguous: bool

    @property
    def best_candidate(self) -> Optional[DisambiguationCandidate]:
        return self.candidates[0] if self.candidates else None

    def to_dict(self) -> dict:
        return {
            "prefix": self.prefix,
            "candidates": [c.to_dict() for c in self.candidates],
            "bestMatch": self.best_match,
            "confidence": round(self.confidence, 3),
            "isUnambiguous": self.is_unambiguous,
        }


@dataclass
class DisambiguationStats:
    """Overall disambiguation statistics."""
    total_prefixes: int = 0
    unambiguous_prefixes: int = 0
    collision_prefixes: int = 0
    collision_rate: float = 0.0
    avg_confidence: float = 0.0
    low_confidence_prefixes: List[str] = field(default_factory=list)
    high_collision_prefixes: List[dict] = field(default_factory=list)
    total_candidates: int = 0

    def to_dict(self) -> dict:
        return {
            "totalPrefixes": self.total_prefixes,
            "unambiguousPrefixes": self.unambiguous_prefixes,
            "collisionPrefixes": self.collision_prefixes,
            "collisionRate": round(self.collision_rate, 1),
            "avgConfidence": round(self.avg_confidence, 3),
            "lowConfidencePrefixes": self.low_confidence_prefixes,
            "highCollisionPrefixes": self.high_collision_prefixes,
            "totalCandidates": self.total_candidates,
        }


class Resolution(NamedTuple):
    """Resolved identity for a prefix."""
    hash: Optional[str]
    confidence: float

    def to_dict(self) -> dict:
        return {"hash": self.hash, "confidence": round(self.confidence, 3)}


UNRESOLVED = Resolution(None, 0.0)


# ═══════════════════════════════════════════════════════════════════════════════
# PrefixLookup Class
# ═══════════════════════════════════════════════════════════════════════════════

class PrefixLookup:
    """
    Prefix disambiguation lookup table.

    Holds the per-prefix results of one build. Built fresh for every
    aggregation request and never persisted.
    """

    def __init__(self):
        self.results: Dict[str, DisambiguationResult] = {}

    def __len__(self) -> int:
        return len(self.results)

    def __contains__(self, prefix: str) -> bool:
        return prefix.upper() in self.results

    def get(self, prefix: str) -> Optional[DisambiguationResult]:
        """Get disambiguation result for a prefix."""
        return self.results.get(prefix.upper())

    def resolve(self, prefix: str) -> Resolution:
        """
        Resolve a prefix to a repeater identity.

        Returns:
            Resolution(hash, confidence); (None, 0.0) for unknown prefixes
        """
        result = self.results.get(prefix.upper())

        if not result or not result.candidates:
            return UNRESOLVED

        return Resolution(result.best_match, result.confidence)

    def get_stats(self, low_confidence_threshold: Optional[float] = None) -> DisambiguationStats:
        """Get overall disambiguation statistics."""
        if low_confidence_threshold is None:
            low_confidence_threshold = Config.API.LOW_CONFIDENCE_THRESHOLD

        total = len(self.results)
        unambiguous = sum(1 for r in self.results.values() if r.is_unambiguous)
        collisions = total - unambiguous

        confidences = [r.confidence for r in self.results.values()]
        avg_conf = sum(confidences) / len(confidences) if confidences else 0

        low_conf = sorted(
            r.prefix for r in self.results.values()
            if r.confidence < low_confidence_threshold and not r.is_unambiguous
        )

        high_collision = [
            {
                "prefix": r.prefix,
                "candidateCount": len(r.candidates),
                "candidateHashes": [c.hash for c in r.candidates],
            }
            for r in self.results.values()
            if len(r.candidates) >= 3
        ]
        high_collision.sort(key=lambda x: x["candidateCount"], reverse=True)

        return DisambiguationStats(
            total_prefixes=total,
            unambiguous_prefixes=unambiguous,
            collision_prefixes=collisions,
            collision_rate=(collisions / total * 100) if total > 0 else 0,
            avg_confidence=avg_conf,
            low_confidence_prefixes=low_conf[:10],
            high_collision_prefixes=high_collision[:5],
            total_candidates=sum(len(r.candidates) for r in self.results.values()),
        )


# ═══════════════════════════════════════════════════════════════════════════════
# Main Build Function
# ═══════════════════════════════════════════════════════════════════════════════

def _compute_confidence(candidates: List[DisambiguationCandidate]) -> float:
    """Confidence for a score-sorted candidate list."""
    if not candidates:
        return 0.0
    if len(candidates) == 1:
        return 1.0

    best = candidates[0].combined_score
    second = candidates[1].combined_score

    confidence = 0.0
    if best > 0:
        confidence = max(0.0, min(1.0, (best - second) / best))

    if candidates[0].total_appearances > candidates[1].total_appearances * APPEARANCE_DOMINANCE_RATIO:
        confidence = min(1.0, confidence + APPEARANCE_DOMINANCE_BOOST)

    return confidence


def build_prefix_lookup(
    samples: Iterable,
    repeaters: Iterable,
    local_hash: Optional[str] = None,
    now: Optional[float] = None,
) -> PrefixLookup:
    """
    Build prefix lookup table from a snapshot of samples and repeaters.

    Args:
        samples: Sample records (or dicts accepted by Sample.coerce)
        repeaters: RepeaterObservation records (or dicts)
        local_hash: Observer's own hash; only used to trim a trailing
            self-hop from paths
        now: Current unix time in seconds (defaults to time.time())

    Returns:
        Populated PrefixLookup with all scoring computed
    """
    lookup = PrefixLookup()
    now = now or time.time()

    # ─── Step 1: Build prefix -> candidates mapping ──────────────────────────────
    prefix_to_candidates: Dict[str, List[DisambiguationCandidate]] = defaultdict(list)
    dropped_stale = 0

    for raw in repeaters:
        repeater = RepeaterObservation.coerce(raw)
        prefix = normalize_prefix(repeater.prefix)
        if not prefix:
            continue

        if is_candidate_too_old(repeater.last_seen, now):
            dropped_stale += 1
            continue

        prefix_to_candidates[prefix].append(DisambiguationCandidate(
            hash=repeater.canonical_id,
            prefix=prefix,
            name=repeater.name,
            pubkey=normalize_pubkey(repeater.pubkey),
            latitude=repeater.latitude,
            longitude=repeater.longitude,
            last_seen_timestamp=repeater.last_seen,
            recency_score=calculate_recency_score(repeater.last_seen, now),
        ))

    # ─── Step 2: Analyze sample paths for position and co-occurrence data ────────
    skipped_geohash = 0

    for raw in samples:
        sample = Sample.coerce(raw)
        if not sample.path:
            continue

        parsed = parse_path(sample.path, local_hash)
        if not parsed or parsed.effective_length == 0:
            continue

        try:
            src_lat, src_lon = pos_from_hash(sample.geohash)
        except GeohashError:
            skipped_geohash += 1
            logger.debug(f"Skipping sample with undecodable geohash {sample.geohash!r}")
            continue

        effective_path = parsed.effective
        path_length = parsed.effective_length

        for i, prefix in enumerate(effective_path):
            candidates = prefix_to_candidates.get(prefix)
            if not candidates:
                continue

            # Position: 1 = last element (direct forwarder), 2 = second-to-last, etc.
            position = get_position_from_index(i, path_length)
            is_collision = len(candidates) > 1

            for candidate in candidates:
                candidate.record_appearance(position)

                # Source-geographic correlation, last hop of a colliding prefix only
                if (position == 1 and is_collision and
                        has_valid_coordinates(candidate.latitude, candidate.longitude)):
                    candidate.record_source_distance(calculate_distance(
                        src_lat, src_lon,
                        candidate.latitude, candidate.longitude,
                    ))

                if i > 0:
                    candidate.record_adjacent(effective_path[i - 1])
                if i < path_length - 1:
                    candidate.record_adjacent(effective_path[i + 1])

    # ─── Step 3: Find max values for normalization ───────────────────────────────
    max_appearances = 1
    max_adjacent_obs = 1

    for candidates in prefix_to_candidates.values():
        for c in candidates:
            max_appearances = max(max_appearances, c.total_appearances)
            max_adjacent_obs = max(max_adjacent_obs, c.total_adjacent_observations)

    # ─── Step 4: Calculate scores for each candidate ─────────────────────────────
    for candidates in prefix_to_candidates.values():
        for candidate in candidates:
            candidate.compute_scores(max_appearances, max_adjacent_obs)

    # ─── Step 5: Build disambiguation results ────────────────────────────────────
    for prefix, candidates in prefix_to_candidates.items():
        # Stable sort keeps input order for equal scores
        candidates.sort(key=lambda c: c.combined_score, reverse=True)

        lookup.results[prefix] = DisambiguationResult(
            prefix=prefix,
            candidates=candidates,
            best_match=candidates[0].hash if candidates else None,
            confidence=_compute_confidence(candidates),
            is_unambiguous=len(candidates) == 1,
        )

    if skipped_geohash:
        logger.info(f"Skipped {skipped_geohash} samples with invalid geohash")

    logger.debug(
        f"Built prefix lookup: {len(lookup.results)} prefixes, "
        f"{sum(len(c) for c in prefix_to_candidates.values())} candidates, "
        f"{dropped_stale} stale repeaters dropped"
    )

    return lookup


# ═══════════════════════════════════════════════════════════════════════════════
# Public Interface
# ═══════════════════════════════════════════════════════════════════════════════

def resolve_prefix(lookup: PrefixLookup, prefix: str) -> Resolution:
    """
    Resolve a prefix to a repeater identity using the lookup table.

    Returns:
        Resolution(hash, confidence), or (None, 0.0) if the prefix is unknown
    """
    return lookup.resolve(prefix)


def disambiguate_path(lookup: PrefixLookup, path: Optional[List[str]]) -> Optional[List[str]]:
    """
    Rewrite a path of prefixes into resolved identities.

    Unresolved hops keep their original prefix, so the output always has
    the same length as the input.
    """
    if path is None:
        return None

    resolved_path = []
    for prefix in path:
        resolved = lookup.resolve(str(prefix))
        resolved_path.append(resolved.hash or prefix)
    return resolved_path


def get_candidates(lookup: PrefixLookup, prefix: str) -> List[DisambiguationCandidate]:
    """Get all candidates for a prefix."""
    result = lookup.get(prefix)
    return result.candidates if result else []


def has_collision(lookup: PrefixLookup, prefix: str) -> bool:
    """Check if a prefix has collisions (multiple candidates)."""
    result = lookup.get(prefix)
    return result is not None and len(result.candidates) > 1
