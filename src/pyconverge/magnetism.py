"""Venue magnetism strategies.

A magnetism strategy scales the probability of a predicted meeting
depending on where it happens: near a popular venue people are more
likely to actually stop and meet. Strategies return a factor roughly in
``[0.7, 1.3]``; :class:`NeutralMagnetism` (always ``1.0``) is the default.
"""

from __future__ import annotations

import math
from collections.abc import Callable, Iterable, Mapping
from datetime import datetime
from typing import Protocol

from pyconverge._constants import MAGNETISM_MAX_FACTOR, MAGNETISM_MIN_FACTOR
from pyconverge.geo import haversine
from pyconverge.models.point import GeoPoint
from pyconverge.models.venue import Venue

# Venue type weights per part of the day.
TIME_OF_DAY_PATTERNS: dict[str, dict[str, float]] = {
    "morning": {"coffee": 1.8, "cafe": 1.6, "transit": 1.4, "breakfast": 1.7, "gym": 1.3},
    "lunch": {"restaurant": 2.1, "food": 1.9, "park": 1.4, "cafe": 1.5, "coworking": 1.3},
    "evening": {"bar": 1.6, "restaurant": 1.7, "entertainment": 1.8, "park": 1.3, "shopping": 1.2},
    "night": {"bar": 2.2, "club": 2.0, "entertainment": 1.7, "late_night": 1.8, "casino": 1.5},
}


class Magnetism(Protocol):
    """Strategy interface for venue magnetism."""

    def factor(self, point: GeoPoint) -> float:
        """Probability multiplier for a meeting at *point*."""
        ...

    def label(self, point: GeoPoint) -> str | None:
        """Venue label to annotate a meeting at *point* with, if any."""
        ...


class NeutralMagnetism:
    """No venue influence: factor ``1.0`` everywhere, never labels."""

    def factor(self, point: GeoPoint) -> float:
        return 1.0

    def label(self, point: GeoPoint) -> str | None:
        return None


class FunctionMagnetism:
    """Adapt a plain ``(point) -> float`` callable to the strategy interface."""

    def __init__(self, fn: Callable[[GeoPoint], float]) -> None:
        self._fn = fn

    def factor(self, point: GeoPoint) -> float:
        return float(self._fn(point))

    def label(self, point: GeoPoint) -> str | None:
        return None


def time_of_day(now: datetime) -> str:
    hour = now.hour
    if hour < 11:
        return "morning"
    if hour < 15:
        return "lunch"
    if hour < 19:
        return "evening"
    return "night"


def popularity_weight(popularity: float) -> float:
    if popularity >= 80:
        return 1.5
    if popularity >= 50:
        return 1.2
    return 1.0


class VenueMagnetism:
    """Boost (or dampen) meetings near known venues.

    The nearest venue within *radius_m* contributes a raw weight of
    ``popularity_weight * type_weight`` where the type weight depends on
    the local time of day. The effect fades with distance::

        factor = 1 + (raw - 1) * exp(-distance / decay_m)

    and is clamped to ``[min_factor, max_factor]``. Type weights below
    ``1.0`` in custom *patterns* dampen probability instead.
    """

    def __init__(
        self,
        venues: Iterable[Venue],
        *,
        radius_m: float = 75.0,
        decay_m: float = 30.0,
        label_radius_m: float = 50.0,
        min_factor: float = MAGNETISM_MIN_FACTOR,
        max_factor: float = MAGNETISM_MAX_FACTOR,
        patterns: Mapping[str, Mapping[str, float]] | None = None,
        clock: Callable[[], datetime] = datetime.now,
    ) -> None:
        self._venues = list(venues)
        self._radius_m = radius_m
        self._decay_m = decay_m
        self._label_radius_m = label_radius_m
        self._min_factor = min_factor
        self._max_factor = max_factor
        self._patterns = patterns if patterns is not None else TIME_OF_DAY_PATTERNS
        self._clock = clock

    @property
    def venues(self) -> list[Venue]:
        return list(self._venues)

    def nearest(self, point: GeoPoint) -> tuple[Venue, float] | None:
        """Return the nearest venue and its distance in meters."""
        best: tuple[Venue, float] | None = None
        for venue in self._venues:
            distance = haversine(point.as_tuple(), (venue.lat, venue.lng))
            if best is None or distance < best[1]:
                best = (venue, distance)
        return best

    def factor(self, point: GeoPoint) -> float:
        found = self.nearest(point)
        if found is None:
            return 1.0
        venue, distance = found
        if distance >= self._radius_m:
            return 1.0

        type_weights = self._patterns.get(time_of_day(self._clock()), {})
        raw = popularity_weight(venue.popularity) * type_weights.get(venue.type, 1.0)
        boosted = 1.0 + (raw - 1.0) * math.exp(-distance / self._decay_m)
        return min(self._max_factor, max(self._min_factor, boosted))

    def label(self, point: GeoPoint) -> str | None:
        found = self.nearest(point)
        if found is None:
            return None
        venue, distance = found
        return venue.name if distance < self._label_radius_m else None
