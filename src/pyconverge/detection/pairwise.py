"""Pairwise convergence detector.

For two agents the projected separation is sampled at evenly spaced
instants across the horizon; the closest sample decides whether, where
and when they meet. Discrete sampling keeps the math simple and
numerically stable; nine samples over a three-minute horizon resolve the
meeting time to roughly ten seconds.
"""

from __future__ import annotations

import logging
import math
from dataclasses import dataclass
from typing import Any

from pyconverge import _constants as c
from pyconverge.config import EngineConfig
from pyconverge.geo import Coordinate, haversine, midpoint, project
from pyconverge.magnetism import Magnetism, NeutralMagnetism
from pyconverge.models.agent import Agent
from pyconverge.models.candidate import CandidateType, ConvergenceCandidate
from pyconverge.models.point import GeoPoint

_logger = logging.getLogger(__name__)

_NEUTRAL = NeutralMagnetism()


@dataclass(slots=True)
class _Sample:
    t: float
    dist: float
    meeting_point: Coordinate


def _is_valid_coordinate(point: Coordinate) -> bool:
    lat, lng = point
    return math.isfinite(lat) and math.isfinite(lng) and -90.0 <= lat <= 90.0 and -180.0 <= lng <= 180.0


def _closest_sample(a: Agent, b: Agent, horizon_sec: float, sample_count: int) -> _Sample | None:
    best: _Sample | None = None
    for s in range(1, sample_count + 1):
        t = horizon_sec * s / sample_count
        pa = project(a, t)
        pb = project(b, t)
        dist = haversine(pa, pb)
        if not math.isfinite(dist):
            continue
        if best is None or dist < best.dist:
            best = _Sample(t=t, dist=dist, meeting_point=midpoint(pa, pb))
    return best


def magnetism_factor(magnetism: Magnetism, point: GeoPoint) -> float:
    """Evaluate *magnetism* at *point*, falling back to neutral on failure."""
    try:
        value = float(magnetism.factor(point))
    except Exception:
        _logger.warning("Magnetism strategy failed at %s; using neutral factor", point, exc_info=True)
        return 1.0
    if not math.isfinite(value):
        _logger.warning("Magnetism strategy returned %r at %s; using neutral factor", value, point)
        return 1.0
    return value


def magnetism_label(magnetism: Magnetism, point: GeoPoint) -> str | None:
    try:
        return magnetism.label(point)
    except Exception:
        _logger.debug("Magnetism label lookup failed at %s", point, exc_info=True)
        return None


def pair_options(config: EngineConfig) -> dict[str, Any]:
    """Keyword arguments for :func:`best_pair_convergence` taken from *config*."""
    return {
        "horizon_sec": config.horizon_sec,
        "approach_min_speed": config.approach_min_speed,
        "meet_max_dist_m": config.meet_max_dist_m,
        "probability_floor": config.probability_floor,
        "time_decay_sec": config.time_decay_sec,
        "sample_count": config.sample_count,
    }


def best_pair_convergence(
    a: Agent,
    b: Agent,
    *,
    horizon_sec: float = c.DEFAULT_HORIZON_SEC,
    approach_min_speed: float = c.DEFAULT_APPROACH_MIN_SPEED,
    meet_max_dist_m: float = c.DEFAULT_MEET_MAX_DIST_M,
    magnetism: Magnetism = _NEUTRAL,
    probability_floor: float = c.DEFAULT_PROBABILITY_FLOOR,
    time_decay_sec: float = c.DEFAULT_TIME_DECAY_SEC,
    sample_count: int = c.DEFAULT_SAMPLE_COUNT,
) -> ConvergenceCandidate | None:
    """Predict whether agents *a* and *b* meet within the horizon.

    Returns ``None`` when the agents are not meaningfully approaching
    each other, never come within *meet_max_dist_m* at any sampled
    instant, or the resulting probability is below *probability_floor*.
    """
    if a.id == b.id:
        return None

    rel_speed = math.hypot(b.vx - a.vx, b.vy - a.vy)
    if rel_speed < approach_min_speed:
        return None

    best = _closest_sample(a, b, horizon_sec, sample_count)
    if best is None or best.dist > meet_max_dist_m:
        return None
    if not _is_valid_coordinate(best.meeting_point):
        _logger.debug("Skipping pair %s/%s: meeting point %s out of range", a.id, b.id, best.meeting_point)
        return None

    point = GeoPoint(lat=best.meeting_point[0], lng=best.meeting_point[1])
    base_conf = min(a.confidence, b.confidence)
    time_factor = math.exp(-best.t / time_decay_sec)
    mag = magnetism_factor(magnetism, point)
    probability = min(1.0, max(0.0, base_conf * time_factor * mag))
    if probability < probability_floor:
        return None

    label = magnetism_label(magnetism, point)
    if label:
        point = point.model_copy(update={"label": label})

    return ConvergenceCandidate(
        id="pair:" + ":".join(sorted((a.id, b.id))),
        participants=(a.id, b.id),
        probability=probability,
        time_to_meet=best.t,
        meeting_point=point,
        type=CandidateType.PAIR,
        confidence=base_conf,
    )
