"""
Restricted policy expression language

Expressions use Python syntax, are parsed with `ast` in eval mode and are
interpreted by a whitelist walker. Nothing is ever handed to eval/exec and
attribute access only works on the read-only context mappings, so an
expression cannot reach Python objects, perform I/O or mutate state.
"""

import ast
import operator
from numbers import Number
from typing import Any, Callable, Collection, Dict, List, Mapping, Optional, Sequence

from ..common.errors import PolicyCompileError, PolicyEvaluationError

MAX_EXPRESSION_LENGTH = 4096
MAX_NODES = 512
MAX_COLLECTION_LENGTH = 1024

VARIABLES = frozenset({'cluster', 'workload'})

_BOOL_OPS = (ast.And, ast.Or)

_COMPARE_OPS: Dict[type, Callable[[Any, Any], bool]] = {
    ast.Eq: operator.eq,
    ast.NotEq: operator.ne,
    ast.Lt: operator.lt,
    ast.LtE: operator.le,
    ast.Gt: operator.gt,
    ast.GtE: operator.ge,
    ast.In: lambda a, b: a in b,
    ast.NotIn: lambda a, b: a not in b,
    ast.Is: operator.is_,
    ast.IsNot: operator.is_not,
}

_BIN_OPS: Dict[type, Callable[[Any, Any], Any]] = {
    ast.Add: operator.add,
    ast.Sub: operator.sub,
    ast.Mult: operator.mul,
    ast.Div: operator.truediv,
    ast.FloorDiv: operator.floordiv,
    ast.Mod: operator.mod,
}

_UNARY_OPS: Dict[type, Callable[[Any], Any]] = {
    ast.Not: operator.not_,
    ast.USub: operator.neg,
    ast.UAdd: operator.pos,
}

_ALLOWED_NODES = (
    ast.Expression, ast.BoolOp, ast.Compare, ast.BinOp, ast.UnaryOp, ast.IfExp,
    ast.Constant, ast.List, ast.Tuple, ast.Dict, ast.Subscript, ast.Attribute,
    ast.Name, ast.Call, ast.keyword, ast.Load,
) + _BOOL_OPS + tuple(_COMPARE_OPS) + tuple(_BIN_OPS) + tuple(_UNARY_OPS)


def _describe(node: ast.AST) -> str:
    line = getattr(node, 'col_offset', None)
    where = f" at column {line}" if line is not None else ""
    return f"{type(node).__name__}{where}"


def _check(tree: ast.Expression, functions: Collection[str], max_nodes: int) -> List[str]:
    """Collect every problem in a parsed expression"""
    problems = []
    nodes = list(ast.walk(tree))
    if len(nodes) > max_nodes:
        problems.append(f"expression too complex: {len(nodes)} nodes (max {max_nodes})")

    for node in nodes:
        if not isinstance(node, _ALLOWED_NODES):
            problems.append(f"forbidden construct {_describe(node)}")
            continue

        if isinstance(node, ast.Name):
            if node.id not in VARIABLES and node.id not in functions:
                problems.append(f"unknown name '{node.id}'")
        elif isinstance(node, ast.Attribute):
            if node.attr.startswith('_'):
                problems.append(f"private attribute '{node.attr}' is not allowed")
        elif isinstance(node, ast.Call):
            if not isinstance(node.func, ast.Name) or node.func.id not in functions:
                problems.append(f"call to non built-in function {_describe(node.func)}")
            for kw in node.keywords:
                if kw.arg is None:
                    problems.append("keyword unpacking (**) is not allowed")
        elif isinstance(node, ast.Constant):
            if not isinstance(node.value, (str, int, float, bool, type(None))):
                problems.append(f"unsupported literal {node.value!r}")
    return problems


def _parse(source: str, max_length: int) -> ast.Expression:
    if not isinstance(source, str) or not source.strip():
        raise PolicyCompileError("expression is empty")
    if len(source) > max_length:
        raise PolicyCompileError(
            f"expression too long: {len(source)} characters (max {max_length})"
        )
    try:
        return ast.parse(source.strip(), mode='eval')
    except SyntaxError as e:
        raise PolicyCompileError(f"syntax error: {e.msg} (column {e.offset})") from None


def validate_expression(
    source: str,
    functions: Collection[str],
    max_length: int = MAX_EXPRESSION_LENGTH,
    max_nodes: int = MAX_NODES
) -> List[str]:
    """
    Check an expression without evaluating it

    Returns:
        List of problems, empty if the expression compiles
    """
    try:
        tree = _parse(source, max_length)
    except PolicyCompileError as e:
        return [e.message]
    return _check(tree, functions, max_nodes)


class CompiledExpression:
    """A parsed, whitelisted expression ready to evaluate"""

    def __init__(self, source: str, tree: ast.Expression):
        self.source = source
        self._tree = tree

    def evaluate(
        self,
        variables: Mapping[str, Any],
        functions: Mapping[str, Callable[..., Any]]
    ) -> Any:
        """
        Evaluate against a context

        Raises:
            PolicyEvaluationError: any runtime failure (missing key,
                type mismatch, division by zero, ...)
        """
        try:
            return _Interpreter(variables, functions).visit(self._tree.body)
        except PolicyEvaluationError:
            raise
        except (ArithmeticError, LookupError, TypeError, ValueError) as e:
            raise PolicyEvaluationError(f"{type(e).__name__}: {e}") from e
        except RecursionError:
            raise PolicyEvaluationError("expression nested too deeply") from None

    def __repr__(self):
        return f"CompiledExpression({self.source!r})"


def compile_expression(
    source: str,
    functions: Collection[str],
    max_length: int = MAX_EXPRESSION_LENGTH,
    max_nodes: int = MAX_NODES
) -> CompiledExpression:
    """
    Parse and whitelist-check an expression

    Raises:
        PolicyCompileError: with every problem found
    """
    tree = _parse(source, max_length)
    problems = _check(tree, functions, max_nodes)
    if problems:
        raise PolicyCompileError("; ".join(problems))
    return CompiledExpression(source, tree)


def _is_number(value: Any) -> bool:
    return isinstance(value, Number)


class _Interpreter:
    """Walks an already-checked tree"""

    def __init__(self, variables: Mapping[str, Any], functions: Mapping[str, Callable[..., Any]]):
        self.variables = variables
        self.functions = functions

    def visit(self, node: ast.AST) -> Any:
        method = getattr(self, f"visit_{type(node).__name__}", None)
        if method is None:
            raise PolicyEvaluationError(f"unsupported construct {_describe(node)}")
        return method(node)

    def visit_Constant(self, node):
        return node.value

    def visit_Name(self, node):
        if node.id in self.variables:
            return self.variables[node.id]
        raise PolicyEvaluationError(f"'{node.id}' is not a variable")

    def visit_BoolOp(self, node):
        if isinstance(node.op, ast.And):
            result = True
            for value in node.values:
                result = self.visit(value)
                if not result:
                    return result
            return result
        result = False
        for value in node.values:
            result = self.visit(value)
            if result:
                return result
        return result

    def visit_Compare(self, node):
        left = self.visit(node.left)
        for op, comparator in zip(node.ops, node.comparators):
            right = self.visit(comparator)
            if not _COMPARE_OPS[type(op)](left, right):
                return False
            left = right
        return True

    def visit_BinOp(self, node):
        left = self.visit(node.left)
        right = self.visit(node.right)
        op_type = type(node.op)
        if _is_number(left) and _is_number(right):
            return _BIN_OPS[op_type](left, right)
        if op_type is ast.Add and isinstance(left, str) and isinstance(right, str):
            return left + right
        raise PolicyEvaluationError(
            f"unsupported operands for {op_type.__name__}: "
            f"{type(left).__name__} and {type(right).__name__}"
        )

    def visit_UnaryOp(self, node):
        operand = self.visit(node.operand)
        if not isinstance(node.op, ast.Not) and not _is_number(operand):
            raise PolicyEvaluationError(f"unary minus/plus on {type(operand).__name__}")
        return _UNARY_OPS[type(node.op)](operand)

    def visit_IfExp(self, node):
        return self.visit(node.body) if self.visit(node.test) else self.visit(node.orelse)

    def _sequence(self, elements: Sequence[ast.AST]) -> tuple:
        if len(elements) > MAX_COLLECTION_LENGTH:
            raise PolicyEvaluationError("literal collection too large")
        return tuple(self.visit(e) for e in elements)

    def visit_List(self, node):
        return self._sequence(node.elts)

    def visit_Tuple(self, node):
        return self._sequence(node.elts)

    def visit_Dict(self, node):
        if any(k is None for k in node.keys):
            raise PolicyEvaluationError("dict unpacking is not allowed")
        keys = self._sequence(node.keys)
        values = self._sequence(node.values)
        return dict(zip(keys, values))

    def visit_Subscript(self, node):
        container = self.visit(node.value)
        key = self.visit(node.slice)
        if isinstance(container, Mapping):
            if key not in container:
                raise PolicyEvaluationError(f"key {key!r} not found")
            return container[key]
        if isinstance(container, (tuple, list, str)):
            if not isinstance(key, int) or isinstance(key, bool):
                raise PolicyEvaluationError("sequence index must be an integer")
            return container[key]
        raise PolicyEvaluationError(f"{type(container).__name__} is not subscriptable")

    def visit_Attribute(self, node):
        container = self.visit(node.value)
        if not isinstance(container, Mapping):
            raise PolicyEvaluationError(
                f"attribute '{node.attr}' on {type(container).__name__} is not allowed"
            )
        if node.attr not in container:
            raise PolicyEvaluationError(f"unknown field '{node.attr}'")
        return container[node.attr]

    def visit_Call(self, node):
        name = node.func.id
        func = self.functions.get(name)
        if func is None:
            raise PolicyEvaluationError(f"function '{name}' is not available")
        args = [self.visit(a) for a in node.args]
        kwargs = {kw.arg: self.visit(kw.value) for kw in node.keywords}
        return func(*args, **kwargs)
