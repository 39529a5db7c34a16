"""
Test the restricted policy expression language
"""

import pytest

from placement_engine.common.errors import PolicyCompileError, PolicyEvaluationError
from placement_engine.policy.expression import compile_expression, validate_expression
from placement_engine.policy.functions import (
    FUNCTION_NAMES,
    build_functions,
    cluster_view,
    in_workspace_tree,
    workload_view
)


def _evaluate(source, candidate, request):
    compiled = compile_expression(source, FUNCTION_NAMES)
    variables = {'cluster': cluster_view(candidate), 'workload': workload_view(request)}
    return compiled.evaluate(variables, build_functions(candidate, request))


@pytest.fixture
def gpu_cluster(make_candidate):
    return make_candidate(
        "gpu-1",
        utilization=0.25,
        labels={"accelerator": "gpu", "tier": "prod"},
        region="eu-west",
        zone="eu-west-1a",
        workspace="root:prod"
    )


def test_boolean_expressions(gpu_cluster, make_request):
    request = make_request(labels={"app": "trainer"})

    assert _evaluate("cluster.labels['accelerator'] == 'gpu'", gpu_cluster, request) is True
    assert _evaluate("cluster.ready and cluster.region == 'eu-west'", gpu_cluster, request) is True
    assert _evaluate("not has_label('spot')", gpu_cluster, request) is True
    assert _evaluate("cluster.zone in ['eu-west-1a', 'eu-west-1b']", gpu_cluster, request) is True
    assert _evaluate("workload.labels['app'] != 'web'", gpu_cluster, request) is True
    print("\n✅ Boolean expressions evaluated")


def test_numeric_expressions(gpu_cluster, make_request):
    request = make_request()

    assert _evaluate("(1 - utilization()) * 100", gpu_cluster, request) == pytest.approx(75.0)
    assert _evaluate("cluster.available['cpu']", gpu_cluster, request) == pytest.approx(12.0)
    assert _evaluate("50 if has_label('tier', 'prod') else 0", gpu_cluster, request) == 50


def test_builtin_functions(gpu_cluster, make_request):
    request = make_request(namespace="production", labels={"team": "ml"})

    assert _evaluate("label('tier')", gpu_cluster, request) == "prod"
    assert _evaluate("label('missing', 'none')", gpu_cluster, request) == "none"
    assert _evaluate("in_namespace('staging', 'production')", gpu_cluster, request) is True
    assert _evaluate("has_capacity('cpu', '500m')", gpu_cluster, request) is True
    assert _evaluate("has_capacity('memory', '64Gi')", gpu_cluster, request) is False
    assert _evaluate("utilization('cpu') == 0.25", gpu_cluster, request) is True
    assert _evaluate("matches_selector({'accelerator': 'gpu'})", gpu_cluster, request) is True
    assert _evaluate(
        "matches_selector({'matchExpressions': "
        "[{'key': 'tier', 'operator': 'In', 'values': ['dev']}]})",
        gpu_cluster, request
    ) is False
    assert _evaluate("distance('eu-west/eu-west-1a')", gpu_cluster, request) == 0
    assert _evaluate("distance('us-east')", gpu_cluster, request) == 2


def test_in_workspace_matches_subtree(gpu_cluster, make_request):
    from placement_engine.common.models import WorkloadReference, WorkloadRequest

    request = WorkloadRequest(workload=WorkloadReference(name="api", workspace="root:prod:payments"))
    assert _evaluate("in_workspace('root:prod')", gpu_cluster, request) is True
    assert _evaluate("in_workspace('root:dev')", gpu_cluster, request) is False

    assert in_workspace_tree("root:prod", "root:prod")
    assert not in_workspace_tree("root:production", "root:prod")


@pytest.mark.parametrize("source,fragment", [
    ("__import__('os').system('ls')", "unknown name"),
    ("cluster.__class__", "private attribute"),
    ("open('/etc/passwd')", "unknown name"),
    ("[c for c in cluster.workloads]", "forbidden construct"),
    ("lambda: True", "forbidden construct"),
    ("2 ** 1000000", "forbidden construct"),
    ("cluster.name.upper()", "call to non built-in function"),
])
def test_forbidden_constructs_rejected(source, fragment):
    """Nothing outside the whitelist compiles"""
    problems = validate_expression(source, FUNCTION_NAMES)
    assert problems, f"{source!r} should not compile"
    assert any(fragment in p for p in problems), problems

    with pytest.raises(PolicyCompileError):
        compile_expression(source, FUNCTION_NAMES)


def test_syntax_error_reported():
    problems = validate_expression("cluster.ready and", FUNCTION_NAMES)
    assert len(problems) == 1
    assert problems[0].startswith("syntax error")


def test_empty_and_oversized_expressions_rejected():
    assert validate_expression("   ", FUNCTION_NAMES) == ["expression is empty"]
    problems = validate_expression("1 + " * 50 + "1", FUNCTION_NAMES, max_length=20)
    assert "too long" in problems[0]
    problems = validate_expression("1 + " * 50 + "1", FUNCTION_NAMES, max_nodes=10)
    assert "too complex" in problems[0]


def test_valid_expression_has_no_problems():
    assert validate_expression("has_label('gpu') and utilization() < 0.8", FUNCTION_NAMES) == []


@pytest.mark.parametrize("source", [
    "cluster.labels['missing'] == 'x'",
    "cluster.nonexistent",
    "1 / 0",
    "cluster.name - 1",
    "has_capacity('gpus', 1)",
    "cluster.workloads[0]",
])
def test_runtime_errors_are_wrapped(source, gpu_cluster, make_request):
    with pytest.raises(PolicyEvaluationError):
        _evaluate(source, gpu_cluster, make_request())


def test_context_is_read_only(gpu_cluster, make_request):
    """The cluster view cannot be mutated from Python either"""
    view = cluster_view(gpu_cluster)
    with pytest.raises(TypeError):
        view['ready'] = False
    with pytest.raises(TypeError):
        view['labels']['tier'] = 'dev'


if __name__ == "__main__":
    pytest.main([__file__, "-v"])
