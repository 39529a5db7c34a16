"""
Test policy evaluation and verdict aggregation
"""

from concurrent.futures import ThreadPoolExecutor

import pytest

from placement_engine.common.models import (
    ErrorOutcome,
    PolicyEffect,
    PolicyResult,
    ScoreOutcome,
    Verdict,
    VerdictOutcome
)
from placement_engine.policy import CompiledPolicyCache, PolicyEvaluator, aggregate


@pytest.fixture
def evaluator():
    executor = ThreadPoolExecutor(max_workers=2)
    yield PolicyEvaluator(cache=CompiledPolicyCache(), executor=executor)
    executor.shutdown(wait=True)


def _result(policy_id, effect, outcome, priority=0, weight=100.0):
    return PolicyResult(
        policy_id=policy_id,
        version="1",
        priority=priority,
        effect=PolicyEffect(effect),
        weight=weight,
        outcome=outcome
    )


def test_require_policy_excludes_failing_candidates(evaluator, make_request, make_candidate, make_policy):
    candidates = [
        make_candidate("gpu", labels={"accelerator": "gpu"}),
        make_candidate("cpu"),
    ]
    policy = make_policy("needs-gpu", "has_label('accelerator', 'gpu')")

    evaluations = evaluator.evaluate(make_request(), candidates, [policy])

    print("\n✅ Policy verdicts:")
    for name, ev in evaluations.items():
        print(f"   {name}: verdict={ev.verdict}, deciding={ev.deciding_policies}")

    assert not evaluations["gpu"].excluded
    assert evaluations["gpu"].verdict is None
    assert evaluations["cpu"].excluded
    assert evaluations["cpu"].deciding_policies == ("needs-gpu",)


def test_deny_policy(evaluator, make_request, make_candidate, make_policy):
    candidates = [make_candidate("hot", utilization=0.95), make_candidate("cool", utilization=0.2)]
    policy = make_policy("no-hot", "utilization() > 0.9", effect="deny")

    evaluations = evaluator.evaluate(make_request(), candidates, [policy])
    assert evaluations["hot"].excluded
    assert not evaluations["cool"].excluded


def test_higher_priority_allow_beats_lower_require(evaluator, make_request, make_candidate, make_policy):
    candidate = make_candidate("edge", labels={"pinned": "true"})
    policies = [
        make_policy("needs-ssd", "has_label('disk', 'ssd')", priority=10),
        make_policy("pinned-ok", "has_label('pinned', 'true')", effect="allow", priority=20),
    ]

    ev = evaluator.evaluate(make_request(), [candidate], policies)["edge"]
    assert ev.verdict == Verdict.INCLUDE
    assert ev.deciding_policies == ("pinned-ok",)
    assert not ev.contradiction


def test_equal_priority_contradiction_excludes():
    results = [
        _result("a", "require", VerdictOutcome(False), priority=5),
        _result("b", "allow", VerdictOutcome(True), priority=5),
    ]
    ev = aggregate("c1", results)
    assert ev.verdict == Verdict.EXCLUDE
    assert ev.deciding_policies == ("a",)
    assert set(ev.contradicting_policies) == {"a", "b"}
    assert ev.contradiction


def test_score_policies_sum_and_cap():
    results = [
        _result("bool-score", "score", VerdictOutcome(True), weight=40),
        _result("num-score", "score", ScoreOutcome(50.0), weight=60),
        _result("big", "score", ScoreOutcome(100.0), weight=100),
        _result("off", "score", VerdictOutcome(False), weight=100),
    ]
    ev = aggregate("c1", results)
    assert ev.score == 100.0
    assert ev.verdict is None

    ev = aggregate("c1", results[:2])
    assert ev.score == pytest.approx(70.0)


def test_compile_error_is_neutral(evaluator, make_request, make_candidate, make_policy):
    policies = [
        make_policy("broken", "cluster.ready and"),
        make_policy("weight", "True", effect="score", weight=30),
    ]
    ev = evaluator.evaluate(make_request(), [make_candidate("c1")], policies)["c1"]

    assert ev.verdict is None
    assert ev.score == pytest.approx(30.0)
    assert len(ev.errors) == 1
    assert ev.errors[0].policy_id == "broken"
    assert ev.errors[0].cluster == "c1"
    assert "syntax error" in ev.errors[0].message


def test_runtime_error_is_neutral(evaluator, make_request, make_candidate, make_policy):
    policy = make_policy("missing-label", "cluster.labels['zone'] == 'a'")
    ev = evaluator.evaluate(make_request(), [make_candidate("c1")], [policy])["c1"]

    assert not ev.excluded
    assert ev.errors[0].policy_id == "missing-label"
    assert isinstance(ev.results[0].outcome, ErrorOutcome)


def test_hard_policy_returning_number_is_an_error(evaluator, make_request, make_candidate, make_policy):
    policy = make_policy("numeric-require", "utilization() * 100")
    ev = evaluator.evaluate(make_request(), [make_candidate("c1")], [policy])["c1"]
    assert not ev.excluded
    assert "must return a boolean" in ev.errors[0].message


def test_none_result_means_no_opinion(evaluator, make_request, make_candidate, make_policy):
    policy = make_policy("maybe", "None if cluster.ready else False")
    ev = evaluator.evaluate(make_request(), [make_candidate("c1")], [policy])["c1"]
    assert ev.results == ()
    assert ev.errors == ()


def test_policy_scope_filters_by_namespace_and_selector(make_request, make_policy):
    policies = [
        make_policy("prod-only", "True", namespaces=("production",)),
        make_policy("gpu-only", "True", workload_selector={"accelerator": "gpu"}),
        make_policy("everyone", "True", priority=5),
    ]

    plain = PolicyEvaluator.applicable(make_request(), policies)
    assert [p.id for p in plain] == ["everyone"]

    gpu_prod = PolicyEvaluator.applicable(
        make_request(namespace="production", labels={"accelerator": "gpu"}), policies
    )
    assert [p.id for p in gpu_prod] == ["everyone", "gpu-only", "prod-only"]


def test_no_applicable_policies_gives_empty_evaluations(evaluator, make_request, make_candidate):
    evaluations = evaluator.evaluate(make_request(), [make_candidate("a"), make_candidate("b")], [])
    assert set(evaluations) == {"a", "b"}
    assert all(ev.verdict is None and ev.score == 0.0 for ev in evaluations.values())


def test_compiled_expressions_are_cached(evaluator, make_request, make_candidate, make_policy):
    policy = make_policy("ready", "cluster.ready")
    candidates = [make_candidate(f"c{i}") for i in range(5)]

    evaluator.evaluate(make_request(), candidates, [policy])
    evaluator.evaluate(make_request(), candidates, [policy])

    stats = evaluator.cache.stats
    assert stats.misses == 1
    assert stats.hits == 9


def test_validate_expression(evaluator):
    assert evaluator.validate_expression("cluster.ready") == []
    assert evaluator.validate_expression("exec('x')")


if __name__ == "__main__":
    pytest.main([__file__, "-v"])
