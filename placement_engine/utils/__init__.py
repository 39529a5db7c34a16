"""
Placement engine utilities
Logging, configuration loading, quantities and label selectors
"""

from .logger import get_logger, setup_logging
from .quantity import parse_cpu, parse_memory
from .selectors import matches_selector, validate_selector

__all__ = [
    'get_logger',
    'setup_logging',
    'parse_cpu',
    'parse_memory',
    'matches_selector',
    'validate_selector'
]
