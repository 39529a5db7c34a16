"""
Built-in functions and read-only context for policy expressions
"""

from types import MappingProxyType
from typing import Any, Callable, Dict, Mapping, Optional

from ..common.errors import PolicyEvaluationError
from ..common.models import RESOURCE_NAMES, Candidate, Location, WorkloadRequest
from ..scheduler.location import DEFAULT_DISTANCE, LocationDistance
from ..utils.quantity import parse_cpu, parse_memory
from ..utils.selectors import matches_selector, validate_selector

FUNCTION_NAMES = frozenset({
    'label',
    'has_label',
    'in_namespace',
    'in_workspace',
    'has_capacity',
    'utilization',
    'matches_selector',
    'distance',
})

WORKSPACE_SEPARATOR = ':'


def _frozen(data: Mapping[str, Any]) -> Mapping[str, Any]:
    return MappingProxyType(dict(data))


def _resources_view(resources) -> Mapping[str, float]:
    return _frozen(resources.as_dict())


def cluster_view(candidate: Candidate) -> Mapping[str, Any]:
    """Read-only mapping exposed to expressions as `cluster`"""
    return _frozen({
        'name': candidate.name,
        'labels': _frozen(candidate.labels),
        'region': candidate.location.region,
        'zone': candidate.location.zone,
        'workspace': candidate.workspace,
        'ready': candidate.ready,
        'utilization': candidate.utilization,
        'capacity': _resources_view(candidate.capacity),
        'allocated': _resources_view(candidate.allocated),
        'available': _resources_view(candidate.available),
        'workloads': tuple(sorted(candidate.workloads)),
    })


def workload_view(request: WorkloadRequest) -> Mapping[str, Any]:
    """Read-only mapping exposed to expressions as `workload`"""
    ref = request.workload
    return _frozen({
        'name': ref.name,
        'namespace': ref.namespace,
        'kind': ref.kind,
        'workspace': ref.workspace,
        'key': ref.key,
        'labels': _frozen(request.labels),
        'replicas': request.replicas,
        'resources': _resources_view(request.resources),
    })


def in_workspace_tree(workspace: str, path: str) -> bool:
    """True if workspace is path or one of its descendants (root:org:team)"""
    return workspace == path or workspace.startswith(path + WORKSPACE_SEPARATOR)


def _parse_amount(resource: str, amount: Any) -> float:
    if resource == 'cpu':
        return parse_cpu(amount)
    return parse_memory(amount)


def build_functions(
    candidate: Candidate,
    request: WorkloadRequest,
    distance: Optional[LocationDistance] = None
) -> Dict[str, Callable[..., Any]]:
    """
    Bind the built-in functions to one (candidate, workload) pair

    Every function is side-effect free and only reads the candidate and
    request snapshot it closes over.
    """
    distance = distance or DEFAULT_DISTANCE

    def label(key, default=None):
        return candidate.labels.get(key, default)

    def has_label(key, value=None):
        if key not in candidate.labels:
            return False
        return value is None or candidate.labels[key] == str(value)

    def in_namespace(*names):
        return request.workload.namespace in names

    def in_workspace(path):
        return in_workspace_tree(request.workload.workspace, str(path))

    def has_capacity(resource, amount):
        if resource not in RESOURCE_NAMES:
            raise PolicyEvaluationError(f"unknown resource '{resource}'")
        return candidate.available.get(resource) >= _parse_amount(resource, amount)

    def utilization(resource=None):
        if resource is None:
            return candidate.utilization
        if resource not in RESOURCE_NAMES:
            raise PolicyEvaluationError(f"unknown resource '{resource}'")
        return candidate.resource_utilization(resource)

    def selector_match(selector):
        try:
            validate_selector(selector)
        except ValueError as e:
            raise PolicyEvaluationError(str(e)) from e
        return matches_selector(selector, candidate.labels)

    def location_distance(location):
        return distance(Location.parse(location), candidate.location)

    return {
        'label': label,
        'has_label': has_label,
        'in_namespace': in_namespace,
        'in_workspace': in_workspace,
        'has_capacity': has_capacity,
        'utilization': utilization,
        'matches_selector': selector_match,
        'distance': location_distance,
    }
