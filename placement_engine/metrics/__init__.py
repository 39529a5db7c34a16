"""
Engine metrics
"""

from . import prometheus_metrics

__all__ = ['prometheus_metrics']
