"""In-memory agent state store."""

from __future__ import annotations

import logging
import math
import time
from collections.abc import Callable

from pyconverge.exceptions import InvalidAgentState
from pyconverge.models.agent import Agent

_logger = logging.getLogger(__name__)


def _validate(agent: Agent) -> None:
    """Reject snapshots with non-finite or out-of-range numeric fields.

    Pydantic already enforces this for validated agents; this guards
    agents built with ``model_construct`` or copied with updates.
    """
    for name in ("lat", "lng", "vx", "vy", "confidence"):
        value = getattr(agent, name, None)
        if not isinstance(value, (int, float)) or not math.isfinite(value):
            raise InvalidAgentState(f"agent {agent.id!r}: {name}={value!r} is not finite", agent_id=agent.id)
    if not -90.0 <= agent.lat <= 90.0:
        raise InvalidAgentState(f"agent {agent.id!r}: lat={agent.lat} out of range", agent_id=agent.id)
    if not -180.0 <= agent.lng <= 180.0:
        raise InvalidAgentState(f"agent {agent.id!r}: lng={agent.lng} out of range", agent_id=agent.id)
    if not 0.0 <= agent.confidence <= 1.0:
        raise InvalidAgentState(
            f"agent {agent.id!r}: confidence={agent.confidence} out of range",
            agent_id=agent.id,
        )


class AgentStore:
    """Latest snapshot per agent id.

    The store performs no interpretation beyond validation: ``upsert``
    replaces the snapshot wholesale. Each upsert is stamped with *clock*
    so callers can age out agents whose telemetry stopped.
    """

    def __init__(self, *, clock: Callable[[], float] = time.monotonic) -> None:
        self._clock = clock
        self._agents: dict[str, Agent] = {}
        self._updated_at: dict[str, float] = {}

    def __len__(self) -> int:
        return len(self._agents)

    def __contains__(self, agent_id: object) -> bool:
        return agent_id in self._agents

    def upsert(self, agent: Agent) -> None:
        """Replace the stored snapshot for ``agent.id``.

        Raises
        ------
        InvalidAgentState
            If a numeric field is non-finite or out of range; the
            previously stored snapshot (if any) is kept.
        """
        _validate(agent)
        self._agents[agent.id] = agent
        self._updated_at[agent.id] = self._clock()

    def get(self, agent_id: str) -> Agent | None:
        return self._agents.get(agent_id)

    def all(self) -> list[Agent]:
        """Current snapshots, in insertion order."""
        return list(self._agents.values())

    def remove(self, agent_id: str) -> bool:
        """Evict an agent; returns whether it was present."""
        self._updated_at.pop(agent_id, None)
        return self._agents.pop(agent_id, None) is not None

    def age(self, agent_id: str) -> float | None:
        """Seconds since the agent was last upserted."""
        updated_at = self._updated_at.get(agent_id)
        if updated_at is None:
            return None
        return self._clock() - updated_at

    def evict_stale(self, max_age_s: float) -> list[str]:
        """Remove agents not updated within *max_age_s* seconds."""
        now = self._clock()
        stale = [agent_id for agent_id, ts in self._updated_at.items() if now - ts > max_age_s]
        for agent_id in stale:
            self.remove(agent_id)
        if stale:
            _logger.debug("Evicted %d stale agents: %s", len(stale), stale)
        return stale
