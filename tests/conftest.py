"""
Shared fixtures: builders for candidates, requests, policies and overrides
"""

from datetime import datetime, timedelta, timezone
from itertools import count

import pytest

from placement_engine.common.models import (
    Candidate,
    Location,
    Override,
    PlacementPolicy,
    Resources,
    WorkloadReference,
    WorkloadRequest
)

NOW = datetime(2024, 6, 1, 12, 0, 0, tzinfo=timezone.utc)


def build_candidate(
    name,
    utilization=0.0,
    cpu=16.0,
    memory=64.0,
    labels=None,
    region="eu-west",
    zone="",
    workspace="root",
    ready=True,
    workloads=()
):
    """Cluster whose cpu and memory are both `utilization` allocated"""
    return Candidate(
        name=name,
        capacity=Resources(cpu=cpu, memory=memory),
        allocated=Resources(cpu=cpu * utilization, memory=memory * utilization),
        labels=labels or {},
        location=Location(region=region, zone=zone),
        workspace=workspace,
        ready=ready,
        workloads=frozenset(workloads)
    )


def build_request(
    name="web",
    namespace="default",
    cpu=1.0,
    memory=1.0,
    replicas=1,
    max_clusters=1,
    **kwargs
):
    return WorkloadRequest(
        workload=WorkloadReference(name=name, namespace=namespace),
        resources=Resources(cpu=cpu, memory=memory),
        replicas=replicas,
        max_clusters=max_clusters,
        **kwargs
    )


def build_policy(policy_id, expression, effect="require", priority=0, version="1", **kwargs):
    return PlacementPolicy(
        id=policy_id,
        expression=expression,
        effect=effect,
        priority=priority,
        version=version,
        **kwargs
    )


_override_ids = count(1)


def build_override(type_, clusters, priority=0, created_at=None, override_id=None, **kwargs):
    return Override(
        id=override_id or f"ovr-{next(_override_ids)}",
        type=type_,
        clusters=tuple(clusters),
        priority=priority,
        created_at=created_at or NOW - timedelta(hours=1),
        **kwargs
    )


@pytest.fixture
def now():
    return NOW


@pytest.fixture
def make_candidate():
    return build_candidate


@pytest.fixture
def make_request():
    return build_request


@pytest.fixture
def make_policy():
    return build_policy


@pytest.fixture
def make_override():
    return build_override
