from __future__ import annotations

import math
import random

import pytest

from pyconverge.detection.pairwise import best_pair_convergence
from pyconverge.geo import offset
from pyconverge.magnetism import FunctionMagnetism
from pyconverge.models.agent import Agent
from pyconverge.models.candidate import CandidateType
from pyconverge.models.point import GeoPoint


def _agent(agent_id: str, lat: float, lng: float, vx: float = 0.0, vy: float = 0.0, confidence: float = 0.9) -> Agent:
    return Agent(id=agent_id, lat=lat, lng=lng, vx=vx, vy=vy, confidence=confidence)


class _LabelledMagnetism:
    def __init__(self, factor: float, label: str | None) -> None:
        self._factor = factor
        self._label = label

    def factor(self, point: GeoPoint) -> float:
        return self._factor

    def label(self, point: GeoPoint) -> str | None:
        return self._label


class _BrokenMagnetism:
    def factor(self, point: GeoPoint) -> float:
        raise RuntimeError("venue lookup unavailable")

    def label(self, point: GeoPoint) -> str | None:
        raise RuntimeError("venue lookup unavailable")


def test_head_on_pair_meets_in_the_middle(head_on_pair: list[Agent]) -> None:
    a, b = head_on_pair

    candidate = best_pair_convergence(a, b)

    assert candidate is not None
    assert candidate.type == CandidateType.PAIR
    assert candidate.participants == ("a", "b")
    assert candidate.id == "pair:a:b"
    assert candidate.time_to_meet == pytest.approx(20.0)
    assert candidate.confidence == 0.9
    assert candidate.probability == pytest.approx(0.9 * math.exp(-20.0 / 120.0))
    assert candidate.meeting_point.lat == pytest.approx(34.0, abs=1e-7)
    assert candidate.meeting_point.lng == pytest.approx(-118.49, abs=1e-7)
    assert candidate.meeting_point.label is None


def test_street_crossing_scenario_is_found_with_lower_floor() -> None:
    a = _agent("A", 34.000, -118.490, vx=1.0)
    b = _agent("B", 34.000, -118.487, vx=-1.0)

    candidate = best_pair_convergence(a, b, probability_floor=0.25)

    assert candidate is not None
    assert candidate.time_to_meet == pytest.approx(138.0, abs=10.0)
    assert candidate.confidence == 0.9
    assert candidate.probability == pytest.approx(0.9 * math.exp(-candidate.time_to_meet / 120.0))


def test_far_future_meeting_falls_below_default_floor() -> None:
    a = _agent("A", 34.000, -118.490, vx=1.0)
    b = _agent("B", 34.000, -118.487, vx=-1.0)

    # 0.9 * exp(-140 / 120) is about 0.28.
    assert best_pair_convergence(a, b) is None


def test_identical_velocities_never_converge() -> None:
    a = _agent("a", 34.0, -118.49, vx=1.5, vy=0.5)
    b = _agent("b", 34.0001, -118.4901, vx=1.5, vy=0.5)

    assert best_pair_convergence(a, b) is None


def test_agents_ten_km_apart_are_rejected() -> None:
    lat, lng = offset((34.0, -118.49), 10_000.0, 0.0)
    a = _agent("a", 34.0, -118.49, vx=2.0)
    b = _agent("b", lat, lng, vx=-2.0)

    assert best_pair_convergence(a, b) is None


def test_same_agent_is_not_a_pair(head_on_pair: list[Agent]) -> None:
    a, _ = head_on_pair
    assert best_pair_convergence(a, a) is None


def test_pair_is_symmetric_up_to_participant_order(head_on_pair: list[Agent]) -> None:
    a, b = head_on_pair

    ab = best_pair_convergence(a, b)
    ba = best_pair_convergence(b, a)

    assert ab is not None and ba is not None
    assert ab.probability == pytest.approx(ba.probability)
    assert ab.time_to_meet == ba.time_to_meet
    assert ab.meeting_point.lat == pytest.approx(ba.meeting_point.lat)
    assert ab.meeting_point.lng == pytest.approx(ba.meeting_point.lng)
    assert ab.canonical_participants == ba.canonical_participants
    assert ab.id == ba.id == "pair:a:b"


def test_confidence_is_minimum_of_agents(head_on_pair: list[Agent]) -> None:
    a, b = head_on_pair
    b = b.model_copy(update={"confidence": 0.7})

    candidate = best_pair_convergence(a, b)

    assert candidate is not None
    assert candidate.confidence == 0.7
    assert candidate.probability == pytest.approx(0.7 * math.exp(-20.0 / 120.0))


def test_magnetism_scales_probability_and_labels_meeting_point(head_on_pair: list[Agent]) -> None:
    a, b = head_on_pair

    candidate = best_pair_convergence(a, b, magnetism=_LabelledMagnetism(1.2, "Blue Bottle"))

    assert candidate is not None
    assert candidate.probability == pytest.approx(0.9 * math.exp(-20.0 / 120.0) * 1.2)
    assert candidate.meeting_point.label == "Blue Bottle"


def test_magnetism_cannot_push_probability_above_one(head_on_pair: list[Agent]) -> None:
    a, b = head_on_pair

    candidate = best_pair_convergence(a, b, magnetism=FunctionMagnetism(lambda _point: 5.0))

    assert candidate is not None
    assert candidate.probability == 1.0


def test_failing_magnetism_falls_back_to_neutral(head_on_pair: list[Agent]) -> None:
    a, b = head_on_pair

    candidate = best_pair_convergence(a, b, magnetism=_BrokenMagnetism())

    assert candidate is not None
    assert candidate.probability == pytest.approx(0.9 * math.exp(-20.0 / 120.0))
    assert candidate.meeting_point.label is None


def test_random_agents_stay_within_bounds() -> None:
    rng = random.Random(7)
    origin = (34.0, -118.49)
    agents = []
    for i in range(40):
        lat, lng = offset(origin, rng.uniform(-150, 150), rng.uniform(-150, 150))
        agents.append(
            _agent(
                f"r{i}",
                lat,
                lng,
                vx=rng.uniform(-3, 3),
                vy=rng.uniform(-3, 3),
                confidence=rng.uniform(0, 1),
            )
        )

    found = 0
    for i, a in enumerate(agents):
        for b in agents[i + 1 :]:
            candidate = best_pair_convergence(a, b, probability_floor=0.0)
            if candidate is None:
                continue
            found += 1
            assert 0.0 <= candidate.probability <= 1.0
            assert 0.0 <= candidate.time_to_meet <= 180.0
            assert candidate.confidence == min(a.confidence, b.confidence)

    assert found > 0
