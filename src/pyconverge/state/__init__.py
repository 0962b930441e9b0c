"""State/store layer.

Holds the latest kinematic snapshot per agent. Detection passes read a
consistent snapshot list from here; only the ingestion boundary and the
engine write to it.
"""

from pyconverge.state.store import AgentStore

__all__ = ["AgentStore"]
