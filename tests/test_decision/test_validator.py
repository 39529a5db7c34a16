"""
Test selection validation and conflict detection
"""

import pytest

from placement_engine.common.models import (
    ClusterPlacement,
    ConflictType,
    PolicyEffect,
    PolicyEvaluation,
    PolicyResult,
    Severity,
    VerdictOutcome
)
from placement_engine.decision.validator import Validator


def _placement(cluster, replicas=1, score=50.0):
    return ClusterPlacement(
        cluster=cluster,
        replicas=replicas,
        scheduler_score=score,
        policy_score=score,
        final_score=score
    )


def _by_name(*candidates):
    return {c.name: c for c in candidates}


def _types(result):
    return [c.type for c in result.conflicts]


def test_valid_selection_passes(make_request, make_candidate):
    candidates = _by_name(make_candidate("c1"), make_candidate("c2"))
    result = Validator().validate(
        make_request(replicas=4), [_placement("c1", 2), _placement("c2", 2)], candidates, {}
    )

    print("\n✅ Valid selection:", result.conflicts)
    assert result.passed
    assert result.conflicts == []


def test_empty_selection_is_structural(make_request, make_candidate):
    result = Validator().validate(make_request(), [], _by_name(make_candidate("c1")), {})

    assert not result.passed
    assert _types(result) == [ConflictType.STRUCTURAL]
    assert result.offending_clusters() == []


def test_unknown_and_duplicate_clusters(make_request, make_candidate):
    candidates = _by_name(make_candidate("c1"))
    placements = [_placement("c1"), _placement("c1"), _placement("ghost")]

    result = Validator().validate(make_request(replicas=3), placements, candidates, {})

    descriptions = [c.description for c in result.fatal]
    assert "ghost is not in the candidate set" in descriptions
    assert "c1 selected 2 times" in descriptions
    assert set(result.offending_clusters()) == {"c1", "ghost"}


def test_scores_out_of_range(make_request, make_candidate):
    result = Validator().validate(
        make_request(), [_placement("c1", score=120.0)], _by_name(make_candidate("c1")), {}
    )
    assert not result.passed
    assert all(c.type == ConflictType.STRUCTURAL for c in result.conflicts)


def test_resource_overcommit(make_request, make_candidate):
    """16 cores fit four 4-core replicas, not five"""
    candidates = _by_name(make_candidate("c1", cpu=16))
    request = make_request(cpu=4, replicas=5)

    result = Validator(overcommit_factor=1.0).validate(request, [_placement("c1", 5)], candidates, {})
    assert not result.passed
    assert _types(result) == [ConflictType.RESOURCE_OVERCOMMIT]
    assert "only 4 fit" in result.conflicts[0].description

    relaxed = Validator(overcommit_factor=1.5).validate(request, [_placement("c1", 5)], candidates, {})
    assert relaxed.passed


def test_full_cluster_cannot_fit_one_replica(make_request, make_candidate):
    candidates = _by_name(make_candidate("full", utilization=1.0))
    result = Validator().validate(make_request(), [_placement("full", 1)], candidates, {})
    assert "cannot fit a single replica" in result.conflicts[0].description


def test_policy_violation_recomputed_from_results(make_request, make_candidate):
    failing = PolicyResult("needs-ssd", "1", 0, PolicyEffect.REQUIRE, 100.0, VerdictOutcome(False))
    # Stored verdict omitted on purpose: the validator must recompute it
    evaluations = {"c1": PolicyEvaluation(cluster="c1", results=(failing,))}

    result = Validator().validate(
        make_request(), [_placement("c1")], _by_name(make_candidate("c1")), evaluations
    )

    assert not result.passed
    assert result.conflicts[0].type == ConflictType.POLICY_VIOLATION
    assert result.conflicts[0].source == "needs-ssd"


def test_policy_contradiction_is_advisory(make_request, make_candidate):
    results = (
        PolicyResult("allow-edge", "1", 5, PolicyEffect.ALLOW, 100.0, VerdictOutcome(True)),
        PolicyResult("deny-edge", "1", 5, PolicyEffect.DENY, 100.0, VerdictOutcome(True)),
    )
    evaluations = {"c1": PolicyEvaluation(cluster="c1", results=results)}

    result = Validator().validate(
        make_request(), [_placement("c1")], _by_name(make_candidate("c1")), evaluations
    )

    contradiction = next(c for c in result.conflicts if c.type == ConflictType.POLICY_CONTRADICTION)
    assert contradiction.severity == Severity.ADVISORY
    assert contradiction.resolution == "resolved to exclude"
    assert ConflictType.POLICY_VIOLATION in _types(result)


def test_affinity_and_anti_affinity(make_request, make_candidate):
    candidates = _by_name(
        make_candidate("with-db", workloads=("db",)),
        make_candidate("with-cache", workloads=("cache",)),
    )
    request = make_request(
        replicas=2,
        colocate_with=("db",),
        separate_from=({"workload": "cache", "required": False},)
    )

    result = Validator().validate(
        request, [_placement("with-db"), _placement("with-cache")], candidates, {}
    )

    by_type = {c.type: c for c in result.conflicts}
    assert by_type[ConflictType.AFFINITY_VIOLATION].severity == Severity.FATAL
    assert by_type[ConflictType.AFFINITY_VIOLATION].clusters == ("with-cache",)
    assert by_type[ConflictType.ANTI_AFFINITY_VIOLATION].severity == Severity.ADVISORY
    assert result.offending_clusters() == ["with-cache"]


def test_forced_cluster_conflicts_are_resolved(make_request, make_candidate):
    failing = PolicyResult("gate", "1", 0, PolicyEffect.REQUIRE, 100.0, VerdictOutcome(False))
    evaluations = {"c1": PolicyEvaluation(cluster="c1", results=(failing,))}

    result = Validator().validate(
        make_request(), [_placement("c1")], _by_name(make_candidate("c1")), evaluations,
        forced={"c1": "ovr-7"}
    )

    assert result.passed
    assert result.conflicts[0].fatal
    assert result.conflicts[0].resolution == "kept: forced by override ovr-7"


def test_invalid_overcommit_factor():
    with pytest.raises(ValueError):
        Validator(overcommit_factor=0)


if __name__ == "__main__":
    pytest.main([__file__, "-v"])
