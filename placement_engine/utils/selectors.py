"""
Label selector matching

Two selector shapes are accepted:
- flat {"key": "value"} (all pairs must match)
- {"matchLabels": {...}, "matchExpressions": [{"key", "operator", "values"}]}
  with operators In, NotIn, Exists, DoesNotExist
"""

from typing import Any, Dict, Mapping, Optional

_OPERATORS = ("In", "NotIn", "Exists", "DoesNotExist")


def _is_structured(selector: Mapping[str, Any]) -> bool:
    return "matchLabels" in selector or "matchExpressions" in selector


def validate_selector(selector: Optional[Mapping[str, Any]]) -> None:
    """Raise ValueError if the selector is malformed"""
    if not selector:
        return
    if not isinstance(selector, Mapping):
        raise ValueError(f"Selector must be a mapping, got {type(selector).__name__}")
    if not _is_structured(selector):
        return

    for expr in selector.get("matchExpressions", []) or []:
        operator = expr.get("operator")
        if operator not in _OPERATORS:
            raise ValueError(f"Unsupported selector operator: {operator!r}")
        if "key" not in expr:
            raise ValueError("Selector expression is missing 'key'")
        if operator in ("In", "NotIn") and not expr.get("values"):
            raise ValueError(f"Operator {operator} requires non-empty 'values'")


def matches_selector(
    selector: Optional[Mapping[str, Any]],
    labels: Optional[Mapping[str, str]]
) -> bool:
    """
    Check whether labels satisfy a selector

    An empty or None selector matches everything.

    Args:
        selector: Flat or structured label selector
        labels: Labels to test

    Returns:
        True if every requirement holds
    """
    if not selector:
        return True
    labels = labels or {}

    if not _is_structured(selector):
        return all(labels.get(k) == str(v) for k, v in selector.items())

    match_labels: Dict[str, Any] = selector.get("matchLabels") or {}
    for key, value in match_labels.items():
        if labels.get(key) != str(value):
            return False

    for expr in selector.get("matchExpressions") or []:
        key = expr["key"]
        operator = expr["operator"]
        values = [str(v) for v in expr.get("values") or []]

        if operator == "In":
            if labels.get(key) not in values:
                return False
        elif operator == "NotIn":
            if key in labels and labels[key] in values:
                return False
        elif operator == "Exists":
            if key not in labels:
                return False
        elif operator == "DoesNotExist":
            if key in labels:
                return False
        else:
            raise ValueError(f"Unsupported selector operator: {operator!r}")

    return True
