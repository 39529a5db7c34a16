"""
Location distance and the location-aware scheduling algorithm
"""

from typing import Any, Dict, List, Mapping, Optional, Sequence, Tuple

from ..common.models import Candidate, Location, WorkloadRequest, clamp_score
from ..utils.logger import get_logger
from .algorithms import SchedulingAlgorithm

logger = get_logger("LocationAware")

NEUTRAL_SCORE = 50.0


class LocationDistance:
    """
    Topological distance between two locations

    Same zone (or a region-only preference inside that region) is 0,
    same region is 1, anything else is 2. Region pairs can be given an
    explicit distance through `region_distances`, e.g.
    {"eu-west": {"eu-central": 1.5}}; the table is symmetric.
    """

    def __init__(
        self,
        same_zone: float = 0.0,
        same_region: float = 1.0,
        other_region: float = 2.0,
        region_distances: Optional[Mapping[str, Mapping[str, float]]] = None
    ):
        if not 0 <= same_zone <= same_region <= other_region:
            raise ValueError(
                "Distances must satisfy 0 <= same_zone <= same_region <= other_region"
            )
        self.same_zone = same_zone
        self.same_region = same_region
        self.other_region = other_region

        self._regions: Dict[Tuple[str, str], float] = {}
        for source, targets in (region_distances or {}).items():
            for target, value in targets.items():
                if value < 0:
                    raise ValueError(f"Negative distance {source}->{target}: {value}")
                self._regions[(source, target)] = float(value)
                self._regions.setdefault((target, source), float(value))

    def __call__(self, preferred: Location, actual: Location) -> float:
        if preferred.region != actual.region:
            return self._regions.get((preferred.region, actual.region), self.other_region)
        if not preferred.zone or preferred.zone == actual.zone:
            return self.same_zone
        return self.same_region

    @classmethod
    def from_dict(cls, data: Optional[Mapping[str, Any]]) -> "LocationDistance":
        data = data or {}
        return cls(
            same_zone=float(data.get('same_zone', 0.0)),
            same_region=float(data.get('same_region', 1.0)),
            other_region=float(data.get('other_region', 2.0)),
            region_distances=data.get('regions')
        )


DEFAULT_DISTANCE = LocationDistance()


class LocationAware(SchedulingAlgorithm):
    """
    Boost candidates close to the request's location preferences

    For every preference (in order) the candidate earns
    100 - decay_per_unit * distance - rank_penalty * rank,
    and keeps the best of those. Requests without preferences score every
    candidate at a neutral 50.
    """

    name = "location-aware"

    def __init__(
        self,
        decay_per_unit: float = 25.0,
        rank_penalty: float = 5.0,
        distance: Optional[LocationDistance] = None
    ):
        if decay_per_unit < 0 or rank_penalty < 0:
            raise ValueError("decay_per_unit and rank_penalty must be >= 0")
        self.decay_per_unit = decay_per_unit
        self.rank_penalty = rank_penalty
        self.distance = distance or DEFAULT_DISTANCE

    def prepare(self, request: WorkloadRequest, candidates: Sequence[Candidate]) -> List[Location]:
        return [Location.parse(p) for p in request.location_preferences]

    def score_candidate(
        self,
        request: WorkloadRequest,
        candidate: Candidate,
        context: List[Location]
    ) -> Tuple[float, str]:
        if not context:
            return NEUTRAL_SCORE, "no location preference"

        best_score = None
        best_pref = None
        best_distance = None
        for rank, preferred in enumerate(context):
            d = self.distance(preferred, candidate.location)
            score = 100.0 - self.decay_per_unit * d - self.rank_penalty * rank
            if best_score is None or score > best_score:
                best_score, best_pref, best_distance = score, preferred, d

        score = clamp_score(best_score)
        return score, (f"location {candidate.location} is {best_distance:g} from "
                       f"preferred {best_pref}")

    @classmethod
    def from_params(cls, params: Mapping[str, Any]) -> "LocationAware":
        return cls(
            decay_per_unit=float(params.get('decay_per_unit', 25.0)),
            rank_penalty=float(params.get('rank_penalty', 5.0)),
            distance=LocationDistance.from_dict(params.get('distance'))
        )
