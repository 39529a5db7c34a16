"""
Replica distribution
Proportional allocation of replicas across the selected clusters
"""

from dataclasses import dataclass
from typing import List, Sequence, Tuple

from ..utils.logger import get_logger

logger = get_logger("ReplicaDistributor")


@dataclass(frozen=True)
class ClusterShare:
    """A selected cluster competing for replicas"""
    cluster: str
    score: float
    capacity: int  # Max replicas this cluster can take under the overcommit factor

    def __repr__(self):
        return f"Share({self.cluster}, score={self.score:.2f}, cap={self.capacity})"


@dataclass(frozen=True)
class Allocation:
    """Replicas given to one cluster"""
    cluster: str
    replicas: int
    quota: float  # Fraction of the requested replicas

    def __repr__(self):
        return f"Allocation({self.cluster}, replicas={self.replicas}, quota={self.quota:.2%})"


class ReplicaDistributor:
    """
    Distributes replicas proportionally to score

    Shares are visited in the given order (the ranking order). Each gets
    round(total * score / sum(scores)), at least 1 while replicas remain
    and it has capacity, never more than its capacity; the last share
    takes the remainder. A second pass hands whatever is still unplaced
    to shares with spare capacity, in order.
    """

    def allocate(self, shares: Sequence[ClusterShare], total_replicas: int) -> Tuple[List[Allocation], int]:
        """
        Args:
            shares: Selected clusters in ranking order
            total_replicas: Replicas to place

        Returns:
            (one Allocation per share, replicas left unplaced)
        """
        if not shares or total_replicas <= 0:
            return [Allocation(s.cluster, 0, 0.0) for s in shares], max(0, total_replicas)

        logger.debug(f"Allocating {total_replicas} replicas among {len(shares)} clusters")

        total_score = sum(max(0.0, s.score) for s in shares)
        if total_score <= 0:
            # All scores zero: split evenly
            weights = [1.0] * len(shares)
            total_score = float(len(shares))
        else:
            weights = [max(0.0, s.score) for s in shares]

        given = [0] * len(shares)
        remaining = total_replicas

        # Proportional pass
        for i, share in enumerate(shares):
            if i == len(shares) - 1:
                wanted = remaining
            else:
                wanted = int(round(total_replicas * weights[i] / total_score))
                # At least 1 if there is capacity
                if wanted == 0 and remaining > 0 and share.capacity > 0:
                    wanted = 1

            wanted = min(wanted, share.capacity, remaining)
            given[i] = max(0, wanted)
            remaining -= given[i]

        # Spill-over pass
        for i, share in enumerate(shares):
            if remaining == 0:
                break
            spare = share.capacity - given[i]
            if spare > 0:
                extra = min(spare, remaining)
                given[i] += extra
                remaining -= extra

        allocations = [
            Allocation(cluster=s.cluster, replicas=n, quota=n / total_replicas)
            for s, n in zip(shares, given)
        ]

        for alloc in allocations:
            logger.debug(f"  {alloc}")
        if remaining:
            logger.warning(f"⚠️  Could not place {remaining} of {total_replicas} replicas")

        return allocations, remaining

    @staticmethod
    def jain_index(allocations: Sequence[Allocation]) -> float:
        """
        Jain's fairness index over the clusters that received replicas

        J(X) = (sum x_i)^2 / (N * sum x_i^2), in [1/N, 1], 1 = perfectly even
        """
        quotas = [a.quota for a in allocations if a.replicas > 0]
        if not quotas:
            return 0.0

        n = len(quotas)
        sum_q = sum(quotas)
        sum_q_squared = sum(q ** 2 for q in quotas)
        if sum_q_squared == 0:
            return 0.0
        return (sum_q ** 2) / (n * sum_q_squared)
