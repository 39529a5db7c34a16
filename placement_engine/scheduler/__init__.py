"""
Scheduler: pluggable candidate scoring algorithms
"""

from .algorithms import SchedulingAlgorithm, RoundRobin, LeastLoaded, RandomScore
from .location import LocationAware, LocationDistance
from .scheduler import Scheduler, create_algorithm, ALGORITHMS

__all__ = [
    'SchedulingAlgorithm',
    'RoundRobin',
    'LeastLoaded',
    'RandomScore',
    'LocationAware',
    'LocationDistance',
    'Scheduler',
    'create_algorithm',
    'ALGORITHMS'
]
