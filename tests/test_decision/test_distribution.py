"""
Test replica distribution across selected clusters
"""

from placement_engine.decision.distribution import (
    ReplicaDistributor,
    ClusterShare,
    Allocation
)


def test_proportional_allocation():
    """Test score-proportional allocation"""

    distributor = ReplicaDistributor()

    # Selected clusters in ranking order
    shares = [
        ClusterShare(cluster="cluster1", score=85.0, capacity=10),
        ClusterShare(cluster="cluster2", score=70.0, capacity=8),
        ClusterShare(cluster="cluster3", score=45.0, capacity=5),
    ]

    demand = 15

    allocations, unplaced = distributor.allocate(shares, demand)

    print("\n✅ Proportional allocation test:")
    print(f"   Demand: {demand} replicas")
    print(f"   Unplaced: {unplaced}")

    for alloc in allocations:
        print(f"   {alloc}")

    # Verify
    assert unplaced == 0, "Should satisfy demand"
    assert [a.cluster for a in allocations] == ["cluster1", "cluster2", "cluster3"]

    # 15 * 85/200 -> 6, 15 * 70/200 -> 5, last takes the remaining 4
    assert [a.replicas for a in allocations] == [6, 5, 4]

    # Test quotas
    assert abs(allocations[0].quota - 6/15) < 1e-6
    assert abs(sum(a.quota for a in allocations) - 1.0) < 1e-6


def test_insufficient_capacity():
    """Test allocation with insufficient capacity"""

    distributor = ReplicaDistributor()

    shares = [
        ClusterShare(cluster="cluster1", score=85.0, capacity=5),
        ClusterShare(cluster="cluster2", score=70.0, capacity=3),
    ]

    demand = 20  # More than total capacity (8)

    allocations, unplaced = distributor.allocate(shares, demand)

    print("\n⚠️  Insufficient capacity test:")
    print(f"   Demand: {demand}, Total capacity: 8")
    print(f"   Unplaced: {unplaced}")

    assert unplaced == 12, "Should report what could not be placed"

    # Should still allocate what's possible
    total_allocated = sum(a.replicas for a in allocations)
    assert total_allocated == 8, "Should allocate all available"


def test_spill_over_to_spare_capacity():
    """Replicas a full cluster cannot take go to earlier clusters with room"""

    distributor = ReplicaDistributor()

    shares = [
        ClusterShare(cluster="big", score=10.0, capacity=10),
        ClusterShare(cluster="small", score=90.0, capacity=2),
    ]

    allocations, unplaced = distributor.allocate(shares, 10)

    assert unplaced == 0
    assert {a.cluster: a.replicas for a in allocations} == {"big": 8, "small": 2}


def test_every_share_gets_one_while_replicas_remain():
    distributor = ReplicaDistributor()

    shares = [
        ClusterShare(cluster="a", score=90.0, capacity=20),
        ClusterShare(cluster="b", score=5.0, capacity=20),
        ClusterShare(cluster="c", score=5.0, capacity=20),
    ]

    allocations, unplaced = distributor.allocate(shares, 10)

    assert unplaced == 0
    assert [a.replicas for a in allocations] == [9, 1, 0]


def test_zero_scores_split_evenly():
    distributor = ReplicaDistributor()

    shares = [ClusterShare(cluster=f"c{i}", score=0.0, capacity=10) for i in range(3)]
    allocations, unplaced = distributor.allocate(shares, 6)

    assert unplaced == 0
    assert [a.replicas for a in allocations] == [2, 2, 2]


def test_no_shares():
    allocations, unplaced = ReplicaDistributor().allocate([], 3)
    assert allocations == []
    assert unplaced == 3


def test_jain_fairness():
    """Test Jain fairness index computation"""

    # Perfect fairness: equal quotas
    allocations_fair = [
        Allocation("c1", replicas=5, quota=0.333),
        Allocation("c2", replicas=5, quota=0.333),
        Allocation("c3", replicas=5, quota=0.334),
    ]

    jain_fair = ReplicaDistributor.jain_index(allocations_fair)

    # Unfair: one cluster gets most
    allocations_unfair = [
        Allocation("c1", replicas=14, quota=0.70),
        Allocation("c2", replicas=4, quota=0.20),
        Allocation("c3", replicas=2, quota=0.10),
    ]

    jain_unfair = ReplicaDistributor.jain_index(allocations_unfair)

    print("\n✅ Jain fairness test:")
    print(f"   Fair allocation: {jain_fair:.3f}")
    print(f"   Unfair allocation: {jain_unfair:.3f}")

    assert jain_fair > jain_unfair, "Fair should have higher Jain index"
    assert jain_fair > 0.99, "Equal quotas should give ~1.0"
    assert ReplicaDistributor.jain_index([Allocation("c1", replicas=0, quota=0.0)]) == 0.0


if __name__ == "__main__":
    test_proportional_allocation()
    test_insufficient_capacity()
    test_spill_over_to_spare_capacity()
    test_every_share_gets_one_while_replicas_remain()
    test_zero_scores_split_evenly()
    test_no_shares()
    test_jain_fairness()
    print("\n✅ All replica distribution tests passed!")
