"""Numeric constants shared by the projection and detection modules."""

from __future__ import annotations

#: Mean earth radius used by the great-circle distance, in meters.
EARTH_RADIUS_M: float = 6_371_000.0

#: Meters per degree of longitude at the equator (scaled by cos(lat)).
METERS_PER_DEG_LNG_EQUATOR: float = 111_320.0

#: Meters per degree of latitude (treated as constant).
METERS_PER_DEG_LAT: float = 110_540.0

#: Number of future instants sampled across the prediction horizon.
DEFAULT_SAMPLE_COUNT: int = 9

DEFAULT_HORIZON_SEC: float = 180.0
DEFAULT_APPROACH_MIN_SPEED: float = 0.1
DEFAULT_MEET_MAX_DIST_M: float = 50.0
DEFAULT_PROBABILITY_FLOOR: float = 0.5
DEFAULT_TIME_DECAY_SEC: float = 120.0

DEFAULT_CLUSTER_TIME_WINDOW_S: float = 30.0
DEFAULT_CLUSTER_DISTANCE_M: float = 30.0
DEFAULT_GROUP_BONUS: float = 1.1
MIN_GROUP_SIZE: int = 3

DEFAULT_SUPPRESSION_GRID_M: float = 25.0
DEFAULT_SUPPRESSION_TIME_BUCKET_S: float = 30.0
DEFAULT_TTL_PADDING_S: float = 15.0
DEFAULT_TTL_MIN_S: float = 15.0
DEFAULT_TTL_MAX_S: float = 180.0

#: Minimum spacing between two fixes before a velocity is derived from them.
MIN_VELOCITY_FIX_INTERVAL_S: float = 5.0

#: Typical range returned by venue magnetism strategies.
MAGNETISM_MIN_FACTOR: float = 0.7
MAGNETISM_MAX_FACTOR: float = 1.3

#: Agents reporting a faster speed (vehicles, GPS glitches) are left out of detection.
DEFAULT_MAX_AGENT_SPEED_MPS: float = 15.0
