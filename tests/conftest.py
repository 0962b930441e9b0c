from __future__ import annotations

import pytest

from pyconverge.geo import offset
from pyconverge.models.agent import Agent

ORIGIN = (34.0, -118.49)


class FakeClock:
    """Manually advanced monotonic clock."""

    def __init__(self, start: float = 1_000.0) -> None:
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


def _walker(agent_id: str, east_m: float, north_m: float, vx: float, vy: float) -> Agent:
    lat, lng = offset(ORIGIN, east_m, north_m)
    return Agent(id=agent_id, lat=lat, lng=lng, vx=vx, vy=vy, confidence=0.9)


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def head_on_pair() -> list[Agent]:
    """Two agents 40 m apart walking toward each other at 1 m/s; they meet at ORIGIN after 20 s."""
    return [
        _walker("a", -20.0, 0.0, 1.0, 0.0),
        _walker("b", 20.0, 0.0, -1.0, 0.0),
    ]


@pytest.fixture
def converging_trio(head_on_pair: list[Agent]) -> list[Agent]:
    """Three agents 20 m from ORIGIN, each walking to it at 1 m/s."""
    return [*head_on_pair, _walker("c", 0.0, -20.0, 0.0, 1.0)]
