"""Records exchanged by the convergence engine."""

from pyconverge.models._base import ConvergeBaseModel
from pyconverge.models.agent import Agent
from pyconverge.models.candidate import CandidateType, ConvergenceCandidate, display_ttl
from pyconverge.models.point import GeoPoint
from pyconverge.models.venue import Venue

__all__ = [
    "Agent",
    "CandidateType",
    "ConvergeBaseModel",
    "ConvergenceCandidate",
    "GeoPoint",
    "Venue",
    "display_ttl",
]
