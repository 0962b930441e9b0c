"""Pairwise and group convergence detection."""

from pyconverge.detection.group import cluster_pair_candidates, group_convergences, pair_convergences
from pyconverge.detection.pairwise import best_pair_convergence
from pyconverge.detection.ranking import rank_candidates

__all__ = [
    "best_pair_convergence",
    "cluster_pair_candidates",
    "group_convergences",
    "pair_convergences",
    "rank_candidates",
]
