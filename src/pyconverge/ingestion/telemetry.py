"""Telemetry payload normalization.

Upstream telemetry arrives as loosely typed JSON objects::

    {"id": "a1", "lat": 34.0, "lng": -118.49, "vx": 1.0, "vy": 0.0, "confidence": 0.9}

This module is the only place such payloads are turned into
:class:`~pyconverge.models.agent.Agent` snapshots.
"""

from __future__ import annotations

import logging
from collections.abc import Mapping
from typing import Any

from pydantic import ValidationError

from pyconverge.exceptions import InvalidAgentState
from pyconverge.geo import estimate_velocity
from pyconverge.models.agent import Agent

_logger = logging.getLogger(__name__)


def _has_velocity(payload: Mapping[str, Any]) -> bool:
    return payload.get("vx") is not None and payload.get("vy") is not None


def _validate(data: Mapping[str, Any]) -> Agent:
    try:
        return Agent.model_validate(data)
    except ValidationError as exc:
        agent_id = data.get("id")
        errors = "; ".join(f"{'.'.join(str(p) for p in err['loc'])}: {err['msg']}" for err in exc.errors())
        raise InvalidAgentState(
            f"invalid telemetry for agent {agent_id!r}: {errors}",
            agent_id=str(agent_id) if agent_id is not None else None,
        ) from exc


def agent_from_payload(payload: Mapping[str, Any], previous: Agent | None = None) -> Agent:
    """Build an agent snapshot from a telemetry payload.

    When the payload carries no velocity, it is estimated from the
    *previous* snapshot if both fixes are timestamped far enough apart;
    otherwise the agent is treated as stationary.

    Raises
    ------
    InvalidAgentState
        If the payload is missing fields or carries non-finite or
        out-of-range values.
    """
    if not isinstance(payload, Mapping):
        raise InvalidAgentState(f"telemetry payload must be an object, got {type(payload).__name__}")

    data = {key: value for key, value in payload.items() if key not in ("vx", "vy") or value is not None}
    agent = _validate(data)
    if _has_velocity(payload):
        return agent

    if previous is None or previous.timestamp is None or agent.timestamp is None:
        return agent
    velocity = estimate_velocity(
        (previous.lat, previous.lng),
        previous.timestamp,
        (agent.lat, agent.lng),
        agent.timestamp,
    )
    if velocity is None:
        _logger.debug("Agent %s: fixes too close together to estimate velocity", agent.id)
        return agent
    vx, vy = velocity
    return _validate({**agent.model_dump(), "vx": vx, "vy": vy})


def iter_payloads(message: Any) -> list[Mapping[str, Any]]:
    """Split a decoded telemetry message into per-agent payloads.

    Accepts a single object, a list of objects, or ``{"agents": [...]}``.
    Non-object entries are dropped.
    """
    if isinstance(message, Mapping):
        nested = message.get("agents")
        items: list[Any] = nested if isinstance(nested, list) else [message]
    elif isinstance(message, list):
        items = message
    else:
        _logger.debug("Ignoring telemetry message of type %s", type(message).__name__)
        return []

    payloads = [item for item in items if isinstance(item, Mapping)]
    if len(payloads) != len(items):
        _logger.debug("Dropped %d non-object telemetry entries", len(items) - len(payloads))
    return payloads
