"""Suppression keys, TTL policy and the fail-open suppression filter."""

from __future__ import annotations

import logging
import math

from pyconverge import _constants as c
from pyconverge.config import EngineConfig
from pyconverge.exceptions import SuppressionStoreError
from pyconverge.geo import meters_per_deg_lng
from pyconverge.models.candidate import ConvergenceCandidate, display_ttl
from pyconverge.suppression.cache import InMemoryTtlCache, TtlCache

_logger = logging.getLogger(__name__)


def build_key(
    candidate: ConvergenceCandidate,
    *,
    now: float = 0.0,
    grid_m: float = c.DEFAULT_SUPPRESSION_GRID_M,
    time_bucket_s: float = c.DEFAULT_SUPPRESSION_TIME_BUCKET_S,
) -> str:
    """Canonical suppression key for *candidate*.

    Participants are sorted, the meeting point is snapped to a grid of
    roughly *grid_m* meters and the predicted meeting time
    (``now + time_to_meet``) to *time_bucket_s* buckets, so predictions
    that only differ by tick-to-tick jitter collapse onto the same key.
    A steady approach keeps its key while ``time_to_meet`` shrinks.
    """
    participants = ",".join(candidate.canonical_participants)
    lat = candidate.meeting_point.lat
    lat_bucket = math.floor(lat * c.METERS_PER_DEG_LAT / grid_m)
    # Longitude cells are sized at the snapped latitude so jitter in lat cannot move them.
    snapped_lat = lat_bucket * grid_m / c.METERS_PER_DEG_LAT
    lng_bucket = math.floor(candidate.meeting_point.lng * meters_per_deg_lng(snapped_lat) / grid_m)
    time_bucket = math.floor((now + candidate.time_to_meet) / time_bucket_s)
    return f"{candidate.type.value}|{participants}|{lat_bucket}:{lng_bucket}|{time_bucket}"


class SuppressionCache:
    """Deduplicates emitted candidates within a cool-down window.

    Backend failures never block detection: a failed lookup counts as
    "not suppressed" and a failed write is logged and ignored.
    """

    def __init__(
        self,
        backend: TtlCache | None = None,
        *,
        grid_m: float = c.DEFAULT_SUPPRESSION_GRID_M,
        time_bucket_s: float = c.DEFAULT_SUPPRESSION_TIME_BUCKET_S,
        ttl_padding_s: float = c.DEFAULT_TTL_PADDING_S,
        ttl_min_s: float = c.DEFAULT_TTL_MIN_S,
        ttl_max_s: float = c.DEFAULT_TTL_MAX_S,
    ) -> None:
        self._backend: TtlCache = backend if backend is not None else InMemoryTtlCache()
        self._grid_m = grid_m
        self._time_bucket_s = time_bucket_s
        self._ttl_padding_s = ttl_padding_s
        self._ttl_min_s = ttl_min_s
        self._ttl_max_s = ttl_max_s

    @classmethod
    def from_config(cls, config: EngineConfig, backend: TtlCache | None = None) -> SuppressionCache:
        return cls(
            backend,
            grid_m=config.suppression_grid_m,
            time_bucket_s=config.suppression_time_bucket_s,
            ttl_padding_s=config.ttl_padding_s,
            ttl_min_s=config.ttl_min_s,
            ttl_max_s=config.ttl_max_s,
        )

    @property
    def backend(self) -> TtlCache:
        return self._backend

    def build_key(self, candidate: ConvergenceCandidate, now: float = 0.0) -> str:
        """Suppression key of *candidate* as predicted at clock time *now*."""
        return build_key(candidate, now=now, grid_m=self._grid_m, time_bucket_s=self._time_bucket_s)

    def ttl_for(self, candidate: ConvergenceCandidate) -> float:
        """Suppression window for *candidate*.

        Imminent encounters become re-alertable sooner after they resolve
        than far-future ones.
        """
        return display_ttl(
            candidate.time_to_meet,
            padding=self._ttl_padding_s,
            minimum=self._ttl_min_s,
            maximum=self._ttl_max_s,
        )

    def should_suppress(self, key: str) -> bool:
        try:
            return self._backend.get(key) is not None
        except Exception as exc:
            err = SuppressionStoreError(f"suppression lookup failed for {key!r}: {exc}")
            _logger.warning("%s; treating as not suppressed", err)
            _logger.debug("Suppression backend traceback", exc_info=True)
            return False

    def record(self, key: str, ttl: float) -> None:
        try:
            self._backend.set_with_ttl(key, ttl)
        except Exception as exc:
            err = SuppressionStoreError(f"suppression write failed for {key!r}: {exc}")
            _logger.warning("%s; candidate may be re-emitted", err)
            _logger.debug("Suppression backend traceback", exc_info=True)

    def prune(self) -> int:
        try:
            removed = self._backend.prune()
        except Exception:
            _logger.warning("Suppression prune failed", exc_info=True)
            return 0
        if removed:
            _logger.debug("Pruned %d expired suppression entries", removed)
        return removed
