"""Group clustering of pairwise convergence candidates.

Pair candidates that meet at nearly the same place and time are merged
into a single multi-participant group candidate. Clustering is greedy and
O(n²) in the number of agents; the upstream telemetry source is expected
to bound the working set to nearby agents (tens to low hundreds). Larger
populations should be partitioned into spatial cells first.
"""

from __future__ import annotations

import logging
import statistics
from collections.abc import Iterable, Sequence

from pyconverge import _constants as c
from pyconverge.config import EngineConfig
from pyconverge.detection.pairwise import best_pair_convergence, magnetism_label, pair_options
from pyconverge.geo import centroid, haversine
from pyconverge.magnetism import Magnetism, NeutralMagnetism
from pyconverge.models.agent import Agent
from pyconverge.models.candidate import CandidateType, ConvergenceCandidate
from pyconverge.models.point import GeoPoint

_logger = logging.getLogger(__name__)

_NEUTRAL = NeutralMagnetism()


def pair_convergences(
    agents: Sequence[Agent],
    *,
    magnetism: Magnetism = _NEUTRAL,
    config: EngineConfig | None = None,
) -> list[ConvergenceCandidate]:
    """Run :func:`best_pair_convergence` over every unordered agent pair."""
    options = pair_options(config or EngineConfig())
    pairs: list[ConvergenceCandidate] = []
    for i, a in enumerate(agents):
        for b in agents[i + 1 :]:
            candidate = best_pair_convergence(a, b, magnetism=magnetism, **options)
            if candidate is not None:
                pairs.append(candidate)
    return pairs


def _is_close(p: ConvergenceCandidate, q: ConvergenceCandidate, time_window_s: float, distance_m: float) -> bool:
    if abs(q.time_to_meet - p.time_to_meet) >= time_window_s:
        return False
    return haversine(q.meeting_point.as_tuple(), p.meeting_point.as_tuple()) < distance_m


def _build_group(
    cluster: Sequence[ConvergenceCandidate],
    participants: list[str],
    group_bonus: float,
    magnetism: Magnetism,
) -> ConvergenceCandidate:
    lat, lng = centroid(q.meeting_point.as_tuple() for q in cluster)
    point = GeoPoint(lat=lat, lng=lng)
    label = magnetism_label(magnetism, point)
    if label:
        point = point.model_copy(update={"label": label})

    return ConvergenceCandidate(
        id="group:" + ",".join(participants),
        participants=tuple(participants),
        probability=min(1.0, statistics.fmean(q.probability for q in cluster) * group_bonus),
        time_to_meet=statistics.fmean(q.time_to_meet for q in cluster),
        meeting_point=point,
        type=CandidateType.GROUP,
        confidence=min(q.confidence for q in cluster),
    )


def cluster_pair_candidates(
    pairs: Iterable[ConvergenceCandidate],
    *,
    time_window_s: float = c.DEFAULT_CLUSTER_TIME_WINDOW_S,
    distance_m: float = c.DEFAULT_CLUSTER_DISTANCE_M,
    group_bonus: float = c.DEFAULT_GROUP_BONUS,
    magnetism: Magnetism = _NEUTRAL,
) -> list[ConvergenceCandidate]:
    """Merge pair candidates close in time and space into group candidates.

    Every pair seeds a cluster of all pairs within *time_window_s* and
    *distance_m* of it. Clusters spanning at least three distinct agents
    become groups; groups produced by several seeds are reported once.

    Fewer than three pair candidates overall yields no groups at all,
    even if a cluster could otherwise have formed.
    """
    pair_list = [p for p in pairs if p.type == CandidateType.PAIR]
    if len(pair_list) < c.MIN_GROUP_SIZE:
        return []

    groups: dict[str, ConvergenceCandidate] = {}
    for seed in pair_list:
        cluster = [q for q in pair_list if _is_close(seed, q, time_window_s, distance_m)]
        participants = sorted({agent_id for q in cluster for agent_id in q.participants})
        if len(participants) < c.MIN_GROUP_SIZE:
            continue
        group = _build_group(cluster, participants, group_bonus, magnetism)
        groups.setdefault(group.id, group)

    if groups:
        _logger.debug("Clustered %d pair candidates into %d groups", len(pair_list), len(groups))
    return list(groups.values())


def group_convergences(
    agents: Sequence[Agent],
    *,
    magnetism: Magnetism = _NEUTRAL,
    config: EngineConfig | None = None,
) -> list[ConvergenceCandidate]:
    """Detect group convergences among *agents*."""
    config = config or EngineConfig()
    pairs = pair_convergences(agents, magnetism=magnetism, config=config)
    return cluster_pair_candidates(
        pairs,
        time_window_s=config.cluster_time_window_s,
        distance_m=config.cluster_distance_m,
        group_bonus=config.group_bonus,
        magnetism=magnetism,
    )
