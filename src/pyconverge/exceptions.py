"""Custom exception hierarchy for pyconverge."""

from __future__ import annotations


class ConvergenceError(Exception):
    """Base exception for all pyconverge errors."""


class ConfigurationError(ConvergenceError):
    """Invalid engine tunables.

    Raised when an :class:`~pyconverge.config.EngineConfig` is constructed
    and is fatal: the scheduler must not be started with a bad config.
    """


class InvalidAgentState(ConvergenceError):
    """Agent telemetry carries non-finite or out-of-range fields.

    The offending update is dropped; the store keeps the last valid
    snapshot for the agent (if any).
    """

    def __init__(self, message: str, *, agent_id: str | None = None) -> None:
        self.agent_id = agent_id
        super().__init__(message)


class DetectionTimeout(ConvergenceError):
    """A detection pass exceeded its latency budget (advisory, non-fatal)."""

    def __init__(self, elapsed: float, budget: float) -> None:
        self.elapsed = elapsed
        self.budget = budget
        super().__init__(f"Detection pass took {elapsed:.3f}s (budget {budget:.3f}s)")


class SuppressionStoreError(ConvergenceError):
    """The suppression TTL cache backend failed a read or write.

    Always handled by failing open: the candidate is treated as not suppressed.
    """


class PublishError(ConvergenceError):
    """Delivering a candidate event to a downstream sink failed."""

    def __init__(self, message: str, *, sink: str = "", status_code: int | None = None) -> None:
        self.sink = sink
        self.status_code = status_code
        super().__init__(message)
