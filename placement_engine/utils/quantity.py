"""
Resource quantity parsing
Accepts plain numbers or Kubernetes-style quantity strings
"""

from typing import Union

# Memory/storage suffixes, expressed in GB (binary suffixes are GiB based)
_MEMORY_SUFFIXES = {
    'Ki': 1.0 / (1024 ** 2),
    'Mi': 1.0 / 1024,
    'Gi': 1.0,
    'Ti': 1024.0,
    'K': 1e-6,
    'M': 1e-3,
    'G': 1.0,
    'T': 1e3,
}

Quantity = Union[int, float, str]


def parse_cpu(value: Quantity) -> float:
    """
    Parse a CPU quantity into cores

    Args:
        value: 2, 0.5, "2", "500m"

    Returns:
        Cores as float
    """
    if isinstance(value, bool):
        raise ValueError(f"Invalid CPU quantity: {value!r}")
    if isinstance(value, (int, float)):
        return float(value)

    text = str(value).strip()
    if not text:
        raise ValueError("Empty CPU quantity")
    if text.endswith('m'):
        return float(text[:-1]) / 1000.0
    return float(text)


def parse_memory(value: Quantity) -> float:
    """
    Parse a memory/storage quantity into GB

    Args:
        value: 8, "8", "512Mi", "2Gi", "1T"

    Returns:
        GB as float (plain numbers are taken as GB already)
    """
    if isinstance(value, bool):
        raise ValueError(f"Invalid memory quantity: {value!r}")
    if isinstance(value, (int, float)):
        return float(value)

    text = str(value).strip()
    if not text:
        raise ValueError("Empty memory quantity")

    # Two-letter suffixes first so "Mi" is not read as "M"
    for suffix in sorted(_MEMORY_SUFFIXES, key=len, reverse=True):
        if text.endswith(suffix):
            return float(text[:-len(suffix)]) * _MEMORY_SUFFIXES[suffix]
    return float(text)
