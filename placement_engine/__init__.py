"""
Placement Decision Engine

Decides which cluster(s) should host a workload, with what confidence
and why: pluggable scheduling, sandboxed placement policies, conflict
validation, operator overrides and an auditable decision history.
"""

from .common import *  # noqa: F401,F403
from .common import __all__ as _common_all
from .config import EngineConfig
from .engine import PlacementEngine
from .interfaces import CandidateSupplier, OverrideStore, PolicyStore, RecorderStorage
from .memory import (
    InMemoryOverrideStore,
    InMemoryPolicyStore,
    InMemoryRecorderStorage,
    StaticCandidateSupplier
)

__version__ = "0.1.0"

__all__ = list(_common_all) + [
    'EngineConfig',
    'PlacementEngine',
    'CandidateSupplier',
    'OverrideStore',
    'PolicyStore',
    'RecorderStorage',
    'InMemoryOverrideStore',
    'InMemoryPolicyStore',
    'InMemoryRecorderStorage',
    'StaticCandidateSupplier'
]
