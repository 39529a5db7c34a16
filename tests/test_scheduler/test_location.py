"""
Test location-aware scoring and the distance table
"""

import pytest

from placement_engine.common.models import Location
from placement_engine.scheduler import LocationAware, LocationDistance, Scheduler


def test_distance_levels():
    distance = LocationDistance()
    assert distance(Location("eu-west", "a"), Location("eu-west", "a")) == 0
    assert distance(Location("eu-west"), Location("eu-west", "b")) == 0
    assert distance(Location("eu-west", "a"), Location("eu-west", "b")) == 1
    assert distance(Location("eu-west"), Location("us-east")) == 2


def test_region_table_is_symmetric():
    distance = LocationDistance(region_distances={"eu-west": {"eu-central": 1.5}})
    assert distance(Location("eu-west"), Location("eu-central")) == 1.5
    assert distance(Location("eu-central"), Location("eu-west")) == 1.5
    assert distance(Location("eu-west"), Location("ap-south")) == 2


def test_invalid_distance_order_rejected():
    with pytest.raises(ValueError):
        LocationDistance(same_zone=2, same_region=1)


def test_location_preferences_decay_linearly(make_request, make_candidate):
    candidates = [
        make_candidate("local", region="eu-west", zone="eu-west-1a"),
        make_candidate("same-region", region="eu-west", zone="eu-west-1b"),
        make_candidate("far", region="us-east"),
    ]
    request = make_request(location_preferences=("eu-west/eu-west-1a",))

    scored = Scheduler(LocationAware(decay_per_unit=25)).score(request, candidates)
    scores = {s.name: s.score for s in scored}

    print("\n✅ Location-aware scores:", scores)
    assert scores == {"local": 100.0, "same-region": 75.0, "far": 50.0}


def test_second_preference_is_penalized(make_request, make_candidate):
    candidates = [
        make_candidate("eu", region="eu-west"),
        make_candidate("us", region="us-east"),
    ]
    request = make_request(location_preferences=("us-east", "eu-west"))

    scores = {s.name: s.score for s in
              Scheduler(LocationAware(rank_penalty=5)).score(request, candidates)}
    assert scores["us"] == 100.0
    assert scores["eu"] == 95.0


def test_no_preferences_is_neutral(make_request, make_candidate):
    scored = Scheduler(LocationAware()).score(
        make_request(), [make_candidate("a"), make_candidate("b", region="us-east")]
    )
    assert {s.score for s in scored} == {50.0}


def test_from_params_builds_distance():
    algo = LocationAware.from_params({
        "decay_per_unit": 10,
        "distance": {"other_region": 5}
    })
    assert algo.decay_per_unit == 10
    assert algo.distance(Location("a"), Location("b")) == 5


if __name__ == "__main__":
    pytest.main([__file__, "-v"])
