"""
Test scheduling algorithms and the Scheduler fan-out
"""

import pytest

from placement_engine.common.deadline import Deadline
from placement_engine.common.errors import EvaluationCancelled, NoCandidatesError
from placement_engine.scheduler import (
    LeastLoaded,
    RandomScore,
    RoundRobin,
    Scheduler,
    SchedulingAlgorithm,
    create_algorithm
)


def _scores(scored):
    return {s.name: s.score for s in scored}


def test_least_loaded_prefers_lower_utilization(make_request, make_candidate):
    """30% utilized cluster must outrank the 70% one"""
    scheduler = Scheduler(LeastLoaded())
    candidates = [make_candidate("busy", utilization=0.7), make_candidate("idle", utilization=0.3)]

    scored = scheduler.score(make_request(), candidates)
    scores = _scores(scored)

    print("\n✅ Least-loaded scores:")
    for s in scored:
        print(f"   {s}")

    assert scores["idle"] == pytest.approx(70.0)
    assert scores["busy"] == pytest.approx(30.0)
    assert scores["idle"] > scores["busy"]
    assert all(s.algorithm == "least-loaded" for s in scored)
    scheduler.close()


def test_least_loaded_uses_busiest_resource(make_request, make_candidate):
    """Utilization is the max fraction across resources"""
    from placement_engine.common.models import Candidate, Resources

    candidate = Candidate(
        name="c1",
        capacity=Resources(cpu=10, memory=100),
        allocated=Resources(cpu=2, memory=80)
    )
    scored = Scheduler(LeastLoaded()).score(make_request(), [candidate])
    assert scored[0].score == pytest.approx(20.0)


def test_scheduler_output_is_sorted_by_name(make_request, make_candidate):
    candidates = [make_candidate(n) for n in ("c3", "c1", "c2")]
    scored = Scheduler(LeastLoaded()).score(make_request(), candidates)
    assert [s.name for s in scored] == ["c1", "c2", "c3"]


def test_empty_candidate_set_raises_no_candidates(make_request):
    with pytest.raises(NoCandidatesError):
        Scheduler(LeastLoaded()).score(make_request(), [])


def test_round_robin_rotates_per_workload_class(make_request, make_candidate):
    """Each evaluation moves the top slot to the next cluster"""
    rr = RoundRobin()
    scheduler = Scheduler(rr)
    candidates = [make_candidate(n) for n in ("c1", "c2", "c3")]
    request = make_request(workload_class="web-tier")

    winners = []
    for _ in range(6):
        scored = scheduler.score(request, candidates)
        winners.append(max(scored, key=lambda s: s.score).name)

    assert winners == ["c1", "c2", "c3", "c1", "c2", "c3"]
    assert rr.cursor("web-tier") == 6


def test_round_robin_cursors_are_independent(make_request, make_candidate):
    rr = RoundRobin()
    scheduler = Scheduler(rr)
    candidates = [make_candidate(n) for n in ("c1", "c2")]

    scheduler.score(make_request(workload_class="a"), candidates)
    scheduler.score(make_request(workload_class="a"), candidates)
    scored_b = scheduler.score(make_request(workload_class="b"), candidates)

    assert rr.cursor("a") == 2
    assert rr.cursor("b") == 1
    assert max(scored_b, key=lambda s: s.score).name == "c1"


def test_round_robin_scores_are_evenly_spaced(make_request, make_candidate):
    scored = Scheduler(RoundRobin()).score(
        make_request(), [make_candidate(n) for n in ("a", "b", "c", "d")]
    )
    assert sorted(_scores(scored).values(), reverse=True) == [100.0, 75.0, 50.0, 25.0]


def test_random_is_reproducible_with_seed(make_request, make_candidate):
    candidates = [make_candidate(n) for n in ("c1", "c2", "c3")]
    scheduler = Scheduler(RandomScore())

    first = _scores(scheduler.score(make_request(seed=7), candidates))
    second = _scores(scheduler.score(make_request(seed=7), list(reversed(candidates))))
    other = _scores(scheduler.score(make_request(seed=8), candidates))

    assert first == second, "Same seed must give the same scores regardless of order"
    assert first != other
    assert all(0.0 <= v <= 100.0 for v in first.values())


def test_random_without_seed_is_stable_per_workload(make_request, make_candidate):
    candidates = [make_candidate(n) for n in ("c1", "c2", "c3")]
    scheduler = Scheduler(RandomScore())

    a = _scores(scheduler.score(make_request(name="api"), candidates))
    b = _scores(scheduler.score(make_request(name="api"), candidates))
    assert a == b


class _Exploding(SchedulingAlgorithm):
    name = "exploding"

    def score_candidate(self, request, candidate, context):
        if candidate.name == "bad":
            raise RuntimeError("boom")
        return 42.0, "fine"


def test_scoring_error_degrades_to_zero(make_request, make_candidate):
    scored = Scheduler(_Exploding()).score(
        make_request(), [make_candidate("bad"), make_candidate("good")]
    )
    scores = _scores(scored)
    assert scores == {"bad": 0.0, "good": 42.0}
    assert "boom" in next(s.reason for s in scored if s.name == "bad")


def test_cancelled_deadline_stops_scoring(make_request, make_candidate):
    deadline = Deadline(10)
    deadline.cancel("operator abort")
    with pytest.raises(EvaluationCancelled):
        Scheduler(LeastLoaded()).score(make_request(), [make_candidate("c1")], deadline)


def test_create_algorithm_by_name():
    assert isinstance(create_algorithm("least-loaded"), LeastLoaded)
    assert isinstance(create_algorithm("random", {"seed": 3}), RandomScore)
    with pytest.raises(ValueError):
        create_algorithm("fastest")


if __name__ == "__main__":
    pytest.main([__file__, "-v"])
