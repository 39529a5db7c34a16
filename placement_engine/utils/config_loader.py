"""
Configuration loader for the placement engine
Loads YAML configuration files with validation
"""

import yaml
from pathlib import Path
from typing import Dict, Any, Optional
from dataclasses import dataclass, field

from ..config import EngineConfig
from ..engine import PlacementEngine
from ..interfaces import CandidateSupplier, OverrideStore, RecorderStorage
from ..memory import InMemoryPolicyStore
from ..decision.combiner import create_combiner, WeightedBlend
from ..policy.loader import YamlPolicyStore
from ..scheduler.location import LocationDistance
from ..scheduler.scheduler import create_algorithm
from .logger import get_logger, setup_logging

logger = get_logger("ConfigLoader")


@dataclass
class AlgorithmConfig:
    """Algorithm name plus constructor parameters"""
    algorithm: str
    params: Dict[str, Any] = field(default_factory=dict)


@dataclass
class BlendWeightsConfig:
    """Default weights of the weighted-blend combiner"""
    scheduler: float
    policy: float

    def __post_init__(self):
        total = self.scheduler + self.policy
        if abs(total - 1.0) > 1e-6:
            raise ValueError(f"Weights must sum to 1.0, got {total}")


@dataclass
class HistoryConfig:
    """Decision history settings"""
    depth: int = 10
    retention_seconds: Optional[float] = None


@dataclass
class PolicyCacheConfig:
    """Compiled policy cache settings"""
    size: int = 256
    ttl_seconds: Optional[float] = None


@dataclass
class LoggingConfig:
    """Logging settings"""
    level: str = "INFO"
    log_dir: Optional[str] = None


class ConfigLoader:
    """
    Loads and manages placement engine configuration files

    engine.yaml is required; policies.yaml (or whatever `policies_file`
    names) is optional and backs a YamlPolicyStore.
    """

    def __init__(self, config_dir: str = "config"):
        """
        Initialize ConfigLoader

        Args:
            config_dir: Directory containing YAML config files
        """
        self.config_dir = Path(config_dir)

        if not self.config_dir.exists():
            raise FileNotFoundError(f"Config directory not found: {config_dir}")

        logger.info(f"Loading configuration from: {self.config_dir}")

        self.engine_raw = self._load_yaml("engine.yaml")

        # Parse into structured objects
        self._parse_configs()

        logger.info(f"Configured scheduler={self.scheduler.algorithm}, "
                    f"combiner={self.combiner.algorithm}")

    def _load_yaml(self, filename: str) -> Dict[str, Any]:
        """Load a YAML file"""
        filepath = self.config_dir / filename

        if not filepath.exists():
            raise FileNotFoundError(f"Config file not found: {filepath}")

        with open(filepath, 'r', encoding='utf-8') as f:
            data = yaml.safe_load(f) or {}

        logger.debug(f"Loaded {filename}")
        return data

    def _parse_configs(self):
        """Parse raw YAML data into structured config objects"""
        engine = self.engine_raw.get('engine', {}) or {}

        # Algorithms
        scheduler_data = engine.get('scheduler', {}) or {}
        self.scheduler = AlgorithmConfig(
            algorithm=scheduler_data.get('algorithm', 'least-loaded'),
            params=dict(scheduler_data.get('params') or {})
        )

        combiner_data = engine.get('combiner', {}) or {}
        self.combiner = AlgorithmConfig(
            algorithm=combiner_data.get('algorithm', 'weighted-blend'),
            params=dict(combiner_data.get('params') or {})
        )

        # Weighted-blend default weights
        weights_data = combiner_data.get('weights')
        self.weights: Optional[BlendWeightsConfig] = None
        if weights_data:
            self.weights = BlendWeightsConfig(
                scheduler=weights_data.get('scheduler', 0.5),
                policy=weights_data.get('policy', 0.5)
            )

        history_data = engine.get('history', {}) or {}
        self.history = HistoryConfig(
            depth=history_data.get('depth', 10),
            retention_seconds=history_data.get('retention_seconds')
        )

        cache_data = engine.get('policy_cache', {}) or {}
        self.policy_cache = PolicyCacheConfig(
            size=cache_data.get('size', 256),
            ttl_seconds=cache_data.get('ttl_seconds')
        )

        overrides_data = engine.get('overrides', {}) or {}
        self.prefer_factor = overrides_data.get('prefer_factor', 1.2)
        self.avoid_factor = overrides_data.get('avoid_factor', 0.8)

        self.location_distance = LocationDistance.from_dict(engine.get('location_distance'))

        self.overcommit_factor = engine.get('overcommit_factor', 1.0)
        self.max_retries = engine.get('max_retries', 3)
        self.persistence_timeout_seconds = engine.get('persistence_timeout_seconds', 2.0)
        self.default_timeout_seconds = engine.get('default_timeout_seconds', 30.0)
        self.max_workers = engine.get('max_workers', 8)
        self.io_workers = engine.get('io_workers', 16)

        logging_data = self.engine_raw.get('logging', {}) or {}
        self.logging = LoggingConfig(
            level=logging_data.get('level', 'INFO'),
            log_dir=logging_data.get('log_dir')
        )

        self.policies_file = self.engine_raw.get('policies_file', 'policies.yaml')

    def build_engine_config(self) -> EngineConfig:
        """Instantiate the configured algorithms and build an EngineConfig"""
        scheduler_params = dict(self.scheduler.params)
        if self.scheduler.algorithm == 'location-aware':
            scheduler_params.setdefault('distance', self.engine_raw.get('engine', {}).get('location_distance'))

        combiner_params = dict(self.combiner.params)
        if self.weights is not None and self.combiner.algorithm == WeightedBlend.name:
            combiner_params.setdefault('scheduler_weight', self.weights.scheduler)
            combiner_params.setdefault('policy_weight', self.weights.policy)

        return EngineConfig(
            scheduler=create_algorithm(self.scheduler.algorithm, scheduler_params),
            combiner=create_combiner(self.combiner.algorithm, combiner_params),
            overcommit_factor=self.overcommit_factor,
            max_retries=self.max_retries,
            history_depth=self.history.depth,
            history_retention_seconds=self.history.retention_seconds,
            cache_size=self.policy_cache.size,
            cache_ttl_seconds=self.policy_cache.ttl_seconds,
            persistence_timeout_seconds=self.persistence_timeout_seconds,
            default_timeout_seconds=self.default_timeout_seconds,
            max_workers=self.max_workers,
            io_workers=self.io_workers,
            prefer_factor=self.prefer_factor,
            avoid_factor=self.avoid_factor,
            distance=self.location_distance
        )

    def policy_store(self) -> Optional[YamlPolicyStore]:
        """YamlPolicyStore over the configured policies file, if present"""
        path = self.config_dir / self.policies_file
        if not path.exists():
            logger.warning(f"⚠️  No policy file at {path}")
            return None
        return YamlPolicyStore(path)

    def setup_logging(self, component_name: str = "PlacementEngine"):
        """Install log sinks with the configured level and directory"""
        return setup_logging(component_name, self.logging.log_dir, self.logging.level)

    def build_engine(
        self,
        candidate_supplier: CandidateSupplier,
        override_store: OverrideStore,
        recorder_storage: Optional[RecorderStorage] = None
    ) -> PlacementEngine:
        """
        Build a PlacementEngine from this configuration

        Policies come from the configured policies file, or an empty
        in-memory store when there is none.
        """
        return PlacementEngine(
            config=self.build_engine_config(),
            candidate_supplier=candidate_supplier,
            policy_store=self.policy_store() or InMemoryPolicyStore(),
            override_store=override_store,
            recorder_storage=recorder_storage
        )

    def reload(self):
        """Reload all configuration files"""
        logger.info("Reloading configuration...")
        self.__init__(config_dir=str(self.config_dir))
