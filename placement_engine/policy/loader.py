"""
YAML-backed policy store
"""

import threading
from pathlib import Path
from typing import Dict, List, Union

import yaml

from ..common.models import PlacementPolicy
from ..interfaces import PolicyStore
from ..utils.logger import get_logger

logger = get_logger("PolicyLoader")


def parse_policies(data: Dict) -> List[PlacementPolicy]:
    """
    Build policies from a loaded YAML document

    Accepts either a list under `policies:` or a mapping id -> definition
    """
    policies_data = (data or {}).get('policies', [])

    if isinstance(policies_data, dict):
        items = []
        for policy_id, policy_data in policies_data.items():
            policy_data = dict(policy_data)
            policy_data.setdefault('id', policy_id)
            items.append(policy_data)
    else:
        items = list(policies_data)

    policies = [PlacementPolicy.from_dict(item) for item in items]

    seen = set()
    for policy in policies:
        if policy.cache_key in seen:
            raise ValueError(f"Duplicate policy {policy.id} v{policy.version}")
        seen.add(policy.cache_key)
    return policies


class YamlPolicyStore(PolicyStore):
    """
    Loads versioned placement policies from a YAML file

    get_policies(scope) returns policies whose namespace list is empty or
    contains scope. reload() re-reads the file; bumping a policy's version
    in the file is enough for evaluators to recompile it.
    """

    def __init__(self, path: Union[str, Path]):
        self.path = Path(path)
        self._lock = threading.Lock()
        self._policies: List[PlacementPolicy] = []
        self.reload()

    def reload(self) -> List[PlacementPolicy]:
        if not self.path.exists():
            raise FileNotFoundError(f"Policy file not found: {self.path}")

        with open(self.path, 'r', encoding='utf-8') as f:
            data = yaml.safe_load(f) or {}

        policies = parse_policies(data)
        with self._lock:
            self._policies = policies

        logger.info(f"Loaded {len(policies)} placement policies from {self.path}")
        return policies

    def get_policies(self, scope: str) -> List[PlacementPolicy]:
        with self._lock:
            return [p for p in self._policies if not p.namespaces or scope in p.namespaces]
