import math

import pytest

from conftest import CENTER, NOW, make_repeater, make_sample
from coverage_map.analytics.disambiguation import (
    UNRESOLVED,
    DisambiguationCandidate,
    _compute_confidence,
    build_prefix_lookup,
    calculate_recency_score,
    disambiguate_path,
    get_candidates,
    has_collision,
    is_candidate_too_old,
    resolve_prefix,
)
from coverage_map.analytics.geo_utils import sample_key
from coverage_map.analytics.models import Sample

# ~95 km north of the center
FAR = (38.2, -121.8863)


def build(samples, repeaters, **kwargs):
    return build_prefix_lookup(samples, repeaters, now=NOW, **kwargs)


# ═══════════════════════════════════════════════════════════════════════════════
# Recency and age filter
# ═══════════════════════════════════════════════════════════════════════════════

def test_recency_unknown_last_seen():
    assert calculate_recency_score(0, NOW) == 0.1
    assert calculate_recency_score(None, NOW) == 0.1


def test_recency_future_timestamp_is_fresh():
    assert calculate_recency_score(NOW + 3600, NOW) == 1.0


def test_recency_decay():
    assert calculate_recency_score(NOW, NOW) == pytest.approx(1.0)
    assert calculate_recency_score(NOW - 12 * 3600, NOW) == pytest.approx(math.exp(-1))


def test_age_filter():
    assert not is_candidate_too_old(0, NOW)
    assert not is_candidate_too_old(NOW - 335 * 3600, NOW)
    assert is_candidate_too_old(NOW - 337 * 3600, NOW)


def test_stale_repeater_is_dropped():
    lookup = build([], [make_repeater("A1", *CENTER, hours_ago=400)])
    assert "A1" not in lookup
    assert resolve_prefix(lookup, "A1") == UNRESOLVED


def test_unknown_last_seen_is_kept():
    lookup = build([], [make_repeater("A1", *CENTER, hours_ago=None)])
    candidate = get_candidates(lookup, "A1")[0]
    assert candidate.recency_score == 0.1


# ═══════════════════════════════════════════════════════════════════════════════
# Lookup building
# ═══════════════════════════════════════════════════════════════════════════════

def test_single_candidate_is_unambiguous():
    lookup = build([], [make_repeater("a1", *CENTER, pubkey="abcdef01")])
    result = lookup.get("A1")
    assert result.is_unambiguous
    assert result.confidence == 1.0
    assert result.best_match == "A1"
    assert result.best_candidate.pubkey == "ABCDEF01"


def test_candidate_hash_is_canonical_prefix():
    lookup = build([], [make_repeater("a1", *CENTER, pubkey="abcdef01")])
    assert resolve_prefix(lookup, "A1").hash == "A1"


@pytest.mark.parametrize("prefix", ["", "A", "ABC", "G1", "0xA1"])
def test_invalid_prefixes_are_excluded(prefix):
    lookup = build([], [make_repeater(prefix, *CENTER)])
    assert len(lookup) == 0


def test_unknown_prefix_resolves_to_nothing():
    lookup = build([], [make_repeater("A1", *CENTER)])
    assert resolve_prefix(lookup, "FF") == (None, 0.0)


def test_resolution_is_case_insensitive():
    lookup = build([], [make_repeater("A1", *CENTER, pubkey="aa11")])
    assert resolve_prefix(lookup, "a1") == resolve_prefix(lookup, "A1")


def test_geographic_evidence_requires_collision():
    samples = [make_sample(*CENTER, ["a1"])]
    lookup = build(samples, [make_repeater("A1", *CENTER)])

    candidate = get_candidates(lookup, "A1")[0]
    assert candidate.src_geo_evidence_count == 0
    assert candidate.geographic_score == 0.2
    assert candidate.src_geo_boost == 0.0


def test_geographic_evidence_with_collision():
    samples = [make_sample(*CENTER, ["a1"])]
    repeaters = [
        make_repeater("A1", *CENTER, pubkey="aa11"),
        make_repeater("A1", *FAR, pubkey="bb22"),
    ]
    lookup = build(samples, repeaters)

    by_pubkey = {c.pubkey: c for c in get_candidates(lookup, "A1")}
    assert by_pubkey["AA11"].src_geo_evidence_count == 1
    assert by_pubkey["AA11"].src_geo_evidence_score == 1.0
    assert by_pubkey["BB22"].src_geo_evidence_count == 1
    assert by_pubkey["BB22"].src_geo_evidence_score == 0.1


def test_geographic_evidence_only_at_last_hop():
    samples = [make_sample(*CENTER, ["a1", "b2"])]
    repeaters = [
        make_repeater("A1", *CENTER, pubkey="aa11"),
        make_repeater("A1", *FAR, pubkey="bb22"),
    ]
    lookup = build(samples, repeaters)

    for candidate in get_candidates(lookup, "A1"):
        assert candidate.src_geo_evidence_count == 0
        assert candidate.position_counts[1] == 1


def test_candidates_without_coordinates_get_no_evidence():
    samples = [make_sample(*CENTER, ["a1"])]
    repeaters = [
        make_repeater("A1", 0, 0, pubkey="aa11"),
        make_repeater("A1", None, None, pubkey="bb22"),
    ]
    lookup = build(samples, repeaters)

    for candidate in get_candidates(lookup, "A1"):
        assert candidate.src_geo_evidence_count == 0
        assert candidate.total_appearances == 1


def test_nearby_recent_repeater_wins():
    samples = [make_sample(*CENTER, ["a1"]) for _ in range(11)]
    repeaters = [
        make_repeater("A1", *FAR, hours_ago=100, pubkey="bb22", name="Far"),
        make_repeater("A1", *CENTER, hours_ago=1, pubkey="aa11", name="Near"),
    ]
    lookup = build(samples, repeaters)

    result = lookup.get("A1")
    assert result.best_match == "A1"
    assert result.best_candidate.name == "Near"
    assert result.confidence > 0.5
    assert result.candidates[0].combined_score == pytest.approx(0.572, abs=0.005)
    assert not result.is_unambiguous


def test_stale_distant_candidate_stays_but_loses():
    # 300h is inside the 14-day window, so both candidates are scored
    samples = [make_sample(37.301, -121.801, ["A1"]) for _ in range(11)]
    repeaters = [
        make_repeater("A1", 37.30, -121.80, hours_ago=1, pubkey="aa11", name="Near"),
        make_repeater("A1", 40.00, -122.00, hours_ago=300, pubkey="bb22", name="Distant"),
    ]
    result = build(samples, repeaters).get("A1")

    assert [c.name for c in result.candidates] == ["Near", "Distant"]
    assert result.best_candidate.pubkey == "AA11"
    assert result.confidence > 0.5
    assert result.candidates[1].recency_score < 1e-9


def test_single_sample_still_prefers_nearby_repeater():
    samples = [make_sample(*CENTER, ["a1"])]
    repeaters = [
        make_repeater("A1", *CENTER, hours_ago=1, pubkey="aa11"),
        make_repeater("A1", *FAR, hours_ago=100, pubkey="bb22"),
    ]
    lookup = build(samples, repeaters)
    resolution = resolve_prefix(lookup, "a1")
    assert resolution.hash == "A1"
    assert lookup.get("A1").best_candidate.pubkey == "AA11"
    assert resolution.confidence > 0.5


def test_result_does_not_depend_on_repeater_order():
    samples = [make_sample(*CENTER, ["a1"])]
    repeaters = [
        make_repeater("A1", *CENTER, hours_ago=1, pubkey="aa11"),
        make_repeater("A1", *FAR, hours_ago=100, pubkey="bb22"),
    ]
    forward = build(samples, repeaters).get("A1")
    backward = build(samples, list(reversed(repeaters))).get("A1")
    assert forward.best_candidate.pubkey == backward.best_candidate.pubkey == "AA11"
    assert forward.confidence == backward.confidence


def test_equal_scores_keep_input_order():
    repeaters = [
        make_repeater("A1", *CENTER, pubkey="aa11"),
        make_repeater("A1", *FAR, pubkey="bb22"),
    ]
    result = build([], repeaters).get("A1")
    assert [c.pubkey for c in result.candidates] == ["AA11", "BB22"]
    assert result.best_match == "A1"
    assert result.confidence == 0.0


def test_self_hop_is_not_counted():
    samples = [make_sample(*CENTER, ["a1", "19"])]
    repeaters = [make_repeater("A1", *CENTER), make_repeater("19", *CENTER)]

    trimmed = build(samples, repeaters, local_hash="0x19")
    assert get_candidates(trimmed, "19")[0].total_appearances == 0
    assert get_candidates(trimmed, "A1")[0].typical_position == 1

    untrimmed = build(samples, repeaters)
    assert get_candidates(untrimmed, "19")[0].total_appearances == 1
    assert get_candidates(untrimmed, "A1")[0].typical_position == 2


def test_undecodable_geohash_skips_sample():
    samples = [Sample(geohash="!!!", path=["a1"], time=NOW * 1000)]
    lookup = build(samples, [make_repeater("A1", *CENTER)])
    assert get_candidates(lookup, "A1")[0].total_appearances == 0


def test_cooccurrence_counts_neighbours():
    samples = [make_sample(*CENTER, ["a1", "b2", "c3"])]
    repeaters = [make_repeater(p, *CENTER) for p in ("A1", "B2", "C3")]
    lookup = build(samples, repeaters)

    middle = get_candidates(lookup, "B2")[0]
    edge = get_candidates(lookup, "A1")[0]
    assert middle.total_adjacent_observations == 2
    assert middle.adjacent_prefix_counts == {"A1": 1, "C3": 1}
    assert middle.cooccurrence_score == 1.0
    assert edge.cooccurrence_score == 0.5


def test_deep_positions_share_last_bucket():
    samples = [make_sample(*CENTER, ["a1", "02", "03", "04", "05", "06", "07"])]
    lookup = build(samples, [make_repeater("A1", *CENTER)])
    candidate = get_candidates(lookup, "A1")[0]
    assert candidate.position_counts == [0, 0, 0, 0, 1]
    assert candidate.typical_position == 5


def test_accepts_stored_rows():
    samples = [{
        "name": sample_key(*CENTER),
        "metadata": {"path": ["a1"], "time": NOW * 1000},
    }]
    repeaters = [{
        "id": "a1",
        "lat": CENTER[0],
        "lon": CENTER[1],
        "time": (NOW - 3600) * 1000,
        "pubkey": "aa11",
    }]
    lookup = build(samples, repeaters)
    candidate = get_candidates(lookup, "A1")[0]
    assert candidate.hash == "A1"
    assert candidate.pubkey == "AA11"
    assert candidate.total_appearances == 1
    assert candidate.last_seen_timestamp == pytest.approx(NOW - 3600)


# ═══════════════════════════════════════════════════════════════════════════════
# Confidence
# ═══════════════════════════════════════════════════════════════════════════════

def _candidate(score, appearances):
    return DisambiguationCandidate(
        hash=f"H{score}", prefix="A1",
        combined_score=score, total_appearances=appearances,
    )


def test_confidence_from_score_gap():
    confidence = _compute_confidence([_candidate(0.5, 3), _candidate(0.4, 3)])
    assert confidence == pytest.approx(0.2)


def test_confidence_appearance_bonus():
    confidence = _compute_confidence([_candidate(0.5, 10), _candidate(0.4, 3)])
    assert confidence == pytest.approx(0.4)


def test_confidence_is_clamped():
    assert _compute_confidence([_candidate(1.0, 10), _candidate(0.0, 1)]) == 1.0
    assert _compute_confidence([_candidate(0.0, 1), _candidate(0.0, 1)]) == 0.0
    assert _compute_confidence([]) == 0.0


# ═══════════════════════════════════════════════════════════════════════════════
# Path disambiguation and stats
# ═══════════════════════════════════════════════════════════════════════════════

def test_disambiguate_path_preserves_length():
    lookup = build([], [make_repeater("A1", *CENTER, pubkey="aa11")])
    assert disambiguate_path(lookup, ["a1", "ff"]) == ["A1", "ff"]
    assert disambiguate_path(lookup, []) == []
    assert disambiguate_path(lookup, None) is None


def test_disambiguate_path_is_idempotent_for_prefix_identities():
    lookup = build([], [make_repeater("A1", *CENTER), make_repeater("B2", *CENTER)])
    once = disambiguate_path(lookup, ["a1", "b2", "c3"])
    assert disambiguate_path(lookup, once) == once


def test_has_collision():
    repeaters = [
        make_repeater("A1", *CENTER, pubkey="aa11"),
        make_repeater("A1", *FAR, pubkey="bb22"),
        make_repeater("B2", *CENTER),
    ]
    lookup = build([], repeaters)
    assert has_collision(lookup, "a1")
    assert not has_collision(lookup, "B2")
    assert not has_collision(lookup, "FF")
    assert get_candidates(lookup, "FF") == []


def test_stats():
    repeaters = [
        make_repeater("A1", *CENTER, pubkey="aa11"),
        make_repeater("A1", *FAR, pubkey="aa12"),
        make_repeater("B2", *CENTER),
        make_repeater("C3", *CENTER, pubkey="cc01"),
        make_repeater("C3", *CENTER, pubkey="cc02"),
        make_repeater("C3", *FAR, pubkey="cc03"),
    ]
    stats = build([], repeaters).get_stats(low_confidence_threshold=0.5)

    assert stats.total_prefixes == 3
    assert stats.unambiguous_prefixes == 1
    assert stats.collision_prefixes == 2
    assert stats.collision_rate == pytest.approx(200 / 3)
    assert stats.total_candidates == 6
    assert stats.low_confidence_prefixes == ["A1", "C3"]
    assert [h["prefix"] for h in stats.high_collision_prefixes] == ["C3"]

    data = stats.to_dict()
    assert data["collisionRate"] == 66.7
    assert data["highCollisionPrefixes"][0]["candidateHashes"] == ["C3", "C3", "C3"]


def test_result_to_dict():
    lookup = build([], [make_repeater("A1", *CENTER, pubkey="aa11", name="Hilltop")])
    data = lookup.get("A1").to_dict()
    assert data["bestMatch"] == "A1"
    assert data["candidates"][0]["pubkey"] == "AA11"
    assert data["isUnambiguous"] is True
    assert data["candidates"][0]["name"] == "Hilltop"
