"""pyconverge - Real-time multi-agent convergence prediction engine."""

from importlib.metadata import PackageNotFoundError, version

try:
    __version__ = version("pyconverge")
except PackageNotFoundError:
    __version__ = "0+local"

from pyconverge.config import EngineConfig, MqttSettings
from pyconverge.detection import (
    best_pair_convergence,
    cluster_pair_candidates,
    group_convergences,
    pair_convergences,
    rank_candidates,
)
from pyconverge.engine import ConvergenceEngine, EngineState, PassReport
from pyconverge.exceptions import (
    ConfigurationError,
    ConvergenceError,
    DetectionTimeout,
    InvalidAgentState,
    PublishError,
    SuppressionStoreError,
)
from pyconverge.geo import haversine, project
from pyconverge.magnetism import FunctionMagnetism, Magnetism, NeutralMagnetism, VenueMagnetism
from pyconverge.models import Agent, CandidateType, ConvergenceCandidate, GeoPoint, Venue
from pyconverge.sinks import CallbackSink, CandidateSink, MqttCandidateSink, WebhookSink
from pyconverge.state import AgentStore
from pyconverge.suppression import InMemoryTtlCache, SuppressionCache, TtlCache, build_key

__all__ = [
    "__version__",
    "Agent",
    "AgentStore",
    "CallbackSink",
    "CandidateSink",
    "CandidateType",
    "ConfigurationError",
    "ConvergenceCandidate",
    "ConvergenceEngine",
    "ConvergenceError",
    "DetectionTimeout",
    "EngineConfig",
    "EngineState",
    "FunctionMagnetism",
    "GeoPoint",
    "InMemoryTtlCache",
    "InvalidAgentState",
    "Magnetism",
    "MqttCandidateSink",
    "MqttSettings",
    "NeutralMagnetism",
    "PassReport",
    "PublishError",
    "SuppressionCache",
    "SuppressionStoreError",
    "TtlCache",
    "Venue",
    "VenueMagnetism",
    "WebhookSink",
    "best_pair_convergence",
    "build_key",
    "cluster_pair_candidates",
    "group_convergences",
    "haversine",
    "pair_convergences",
    "project",
    "rank_candidates",
]
