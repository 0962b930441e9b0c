"""Geodesic helpers: forward projection of motion and great-circle distance.

Projection uses a local flat-earth approximation: a constant number of
meters per degree of latitude and a latitude-dependent number of meters
per degree of longitude. It is accurate for the short horizons (a few
minutes) and short distances (about a kilometer) the engine works with.
It is not meant for long-range or polar projection.
"""

from __future__ import annotations

import math
from collections.abc import Iterable

from pyconverge._constants import (
    EARTH_RADIUS_M,
    METERS_PER_DEG_LAT,
    METERS_PER_DEG_LNG_EQUATOR,
    MIN_VELOCITY_FIX_INTERVAL_S,
)
from pyconverge.models.agent import Agent

Coordinate = tuple[float, float]
"""``(lat, lng)`` in degrees."""


def meters_per_deg_lng(lat: float) -> float:
    """Meters spanned by one degree of longitude at latitude *lat*."""
    return METERS_PER_DEG_LNG_EQUATOR * math.cos(lat * math.pi / 180.0)


def project(agent: Agent, t_seconds: float) -> Coordinate:
    """Project *agent* forward by *t_seconds* along its current velocity."""
    if t_seconds == 0:
        return (agent.lat, agent.lng)
    d_lng = (agent.vx * t_seconds) / meters_per_deg_lng(agent.lat)
    d_lat = (agent.vy * t_seconds) / METERS_PER_DEG_LAT
    return (agent.lat + d_lat, agent.lng + d_lng)


def haversine(a: Coordinate, b: Coordinate) -> float:
    """Great-circle distance between two ``(lat, lng)`` points, in meters."""
    lat1, lng1 = a
    lat2, lng2 = b
    phi1 = math.radians(lat1)
    phi2 = math.radians(lat2)
    d_phi = math.radians(lat2 - lat1)
    d_lambda = math.radians(lng2 - lng1)

    h = math.sin(d_phi / 2) ** 2 + math.cos(phi1) * math.cos(phi2) * math.sin(d_lambda / 2) ** 2
    return 2 * EARTH_RADIUS_M * math.atan2(math.sqrt(h), math.sqrt(1 - h))


def _unwrap_lng(lng: float, reference: float) -> float:
    """Shift *lng* by 360° so it lies within 180° of *reference*."""
    if lng - reference > 180.0:
        return lng - 360.0
    if lng - reference < -180.0:
        return lng + 360.0
    return lng


def _wrap_lng(lng: float) -> float:
    if lng > 180.0:
        return lng - 360.0
    if lng < -180.0:
        return lng + 360.0
    return lng


def midpoint(a: Coordinate, b: Coordinate) -> Coordinate:
    """Midpoint of *a* and *b*; pairs straddling the antimeridian meet near ±180°."""
    return ((a[0] + b[0]) / 2, _wrap_lng((a[1] + _unwrap_lng(b[1], a[1])) / 2))


def centroid(points: Iterable[Coordinate]) -> Coordinate:
    """Arithmetic mean of *points* (valid for the short spans used here).

    Longitudes are unwrapped around the first point before averaging.
    """
    pts = list(points)
    if not pts:
        raise ValueError("centroid of an empty point set")
    reference = pts[0][1]
    return (
        sum(p[0] for p in pts) / len(pts),
        _wrap_lng(sum(_unwrap_lng(p[1], reference) for p in pts) / len(pts)),
    )


def offset(origin: Coordinate, east_m: float, north_m: float) -> Coordinate:
    """Move *origin* by a local east/north displacement in meters."""
    lat, lng = origin
    return (lat + north_m / METERS_PER_DEG_LAT, lng + east_m / meters_per_deg_lng(lat))


def estimate_velocity(
    previous: Coordinate,
    previous_ts: float,
    current: Coordinate,
    current_ts: float,
    *,
    min_interval_s: float = MIN_VELOCITY_FIX_INTERVAL_S,
) -> tuple[float, float] | None:
    """Estimate ``(vx, vy)`` in m/s from two timestamped fixes.

    Returns ``None`` when the fixes are closer than *min_interval_s*
    apart (or out of order), since the estimate would be dominated by
    position noise.
    """
    dt = current_ts - previous_ts
    if dt < min_interval_s:
        return None
    avg_lat = (previous[0] + current[0]) / 2
    dx = (current[1] - previous[1]) * meters_per_deg_lng(avg_lat)
    dy = (current[0] - previous[0]) * METERS_PER_DEG_LAT
    return (dx / dt, dy / dt)
