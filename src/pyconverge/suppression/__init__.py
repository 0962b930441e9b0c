"""Suppression layer.

Keeps the engine from re-announcing the same predicted encounter on
every tick: emitted candidates are recorded under a canonical,
quantized key for a TTL that scales with their time-to-meet.
"""

from pyconverge.suppression.cache import InMemoryTtlCache, TtlCache
from pyconverge.suppression.suppressor import SuppressionCache, build_key

__all__ = ["InMemoryTtlCache", "SuppressionCache", "TtlCache", "build_key"]
