"""
Decision stages: combination, replica distribution, validation,
overrides and history
"""

from .combiner import (
    CombinationAlgorithm,
    CombinationResult,
    RankedCandidate,
    WeightedBlend,
    PolicyPrimary,
    SchedulerPrimary,
    Consensus,
    COMBINERS,
    create_combiner
)
from .distribution import Allocation, ClusterShare, ReplicaDistributor
from .overrides import OverrideManager, OverrideOutcome
from .recorder import DecisionRecorder, HistoryStats
from .validator import Validator

__all__ = [
    'CombinationAlgorithm',
    'CombinationResult',
    'RankedCandidate',
    'WeightedBlend',
    'PolicyPrimary',
    'SchedulerPrimary',
    'Consensus',
    'COMBINERS',
    'create_combiner',
    'Allocation',
    'ClusterShare',
    'ReplicaDistributor',
    'OverrideManager',
    'OverrideOutcome',
    'DecisionRecorder',
    'HistoryStats',
    'Validator'
]
