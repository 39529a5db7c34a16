"""
Prometheus instruments for the placement engine

Registered once on the default registry; the hosting process decides
whether and where to expose them (e.g. prometheus_client.start_http_server).
"""

from prometheus_client import Counter, Histogram

decisions_total = Counter(
    'placement_decisions_total',
    'Placement evaluations by outcome',
    ['outcome', 'scheduler', 'combiner']
)

decision_duration = Histogram(
    'placement_decision_duration_seconds',
    'End-to-end decide() latency',
    ['scheduler', 'combiner'],
    buckets=(0.001, 0.005, 0.01, 0.025, 0.05, 0.1, 0.25, 0.5, 1.0, 2.5, 5.0)
)

policy_errors_total = Counter(
    'placement_policy_errors_total',
    'Policy expressions that failed to compile or evaluate',
    ['policy']
)

policy_cache_hits_total = Counter(
    'placement_policy_cache_hits_total',
    'Compiled policy cache hits'
)

policy_cache_misses_total = Counter(
    'placement_policy_cache_misses_total',
    'Compiled policy cache misses'
)

overrides_total = Counter(
    'placement_overrides_total',
    'Overrides considered, by type and whether they were applied',
    ['type', 'result']
)

conflicts_total = Counter(
    'placement_conflicts_total',
    'Conflicts detected, by type and severity',
    ['type', 'severity']
)

persistence_failures_total = Counter(
    'placement_persistence_failures_total',
    'Decision history writes that failed or timed out'
)

validation_retries_total = Counter(
    'placement_validation_retries_total',
    'Re-derivations caused by fatal conflicts'
)
