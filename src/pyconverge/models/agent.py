"""Agent kinematic snapshot model."""

from __future__ import annotations

from typing import Any

from pydantic import AliasChoices, Field, field_validator

from pyconverge.models._base import ConvergeBaseModel
from pyconverge.models.point import GeoPoint


class Agent(ConvergeBaseModel):
    """Latest kinematic snapshot of a moving agent.

    Parameters
    ----------
    id : str
        Opaque unique identifier.
    lat, lng : float
        Current position in degrees.
    vx, vy : float
        Velocity in meters/second in the local east/north frame.
    confidence : float
        Caller-supplied telemetry reliability in ``[0, 1]``.
    timestamp : float or None
        Epoch seconds of the fix, when the upstream source provides one.
    """

    id: str = Field(..., min_length=1)
    lat: float = Field(..., ge=-90.0, le=90.0, validation_alias=AliasChoices("lat", "latitude"))
    lng: float = Field(..., ge=-180.0, le=180.0, validation_alias=AliasChoices("lng", "lon", "longitude"))
    vx: float = 0.0
    vy: float = 0.0
    confidence: float = Field(..., ge=0.0, le=1.0)
    timestamp: float | None = Field(default=None, validation_alias=AliasChoices("timestamp", "ts", "t"))

    @field_validator("id", mode="before")
    @classmethod
    def _normalize_id(cls, value: Any) -> Any:
        if isinstance(value, (int, str)):
            return str(value).strip()
        return value

    @property
    def position(self) -> GeoPoint:
        return GeoPoint(lat=self.lat, lng=self.lng)

    @property
    def velocity(self) -> tuple[float, float]:
        return (self.vx, self.vy)
