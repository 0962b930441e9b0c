"""Ordering of candidates before emission."""

from __future__ import annotations

import functools
from collections.abc import Iterable

from pyconverge.models.candidate import ConvergenceCandidate

# Differences below these margins are treated as ties.
_PROBABILITY_MARGIN = 0.1
_TIME_MARGIN_S = 30.0


def _compare(a: ConvergenceCandidate, b: ConvergenceCandidate) -> int:
    prob_diff = b.probability - a.probability
    if abs(prob_diff) > _PROBABILITY_MARGIN:
        return 1 if prob_diff > 0 else -1

    time_diff = a.time_to_meet - b.time_to_meet
    if abs(time_diff) > _TIME_MARGIN_S:
        return 1 if time_diff > 0 else -1

    return len(b.participants) - len(a.participants)


def rank_candidates(
    candidates: Iterable[ConvergenceCandidate],
    limit: int | None = None,
) -> list[ConvergenceCandidate]:
    """Order candidates most-relevant first, optionally keeping the top *limit*.

    Clearly more probable candidates come first; among similar
    probabilities sooner meetings win, then larger groups.
    """
    ranked = sorted(candidates, key=functools.cmp_to_key(_compare))
    if limit is not None:
        return ranked[:limit]
    return ranked
