"""
Policy evaluation: sandboxed expressions, compiled cache, YAML store
"""

from .cache import CompiledPolicyCache, ReadWriteLock
from .evaluator import PolicyEvaluator, aggregate
from .expression import CompiledExpression, compile_expression, validate_expression
from .functions import FUNCTION_NAMES, build_functions
from .loader import YamlPolicyStore, parse_policies

__all__ = [
    'CompiledPolicyCache',
    'ReadWriteLock',
    'PolicyEvaluator',
    'aggregate',
    'CompiledExpression',
    'compile_expression',
    'validate_expression',
    'FUNCTION_NAMES',
    'build_functions',
    'YamlPolicyStore',
    'parse_policies'
]
