"""Venue (point of interest) model used by venue magnetism."""

from __future__ import annotations

from pydantic import AliasChoices, Field

from pyconverge.models._base import ConvergeBaseModel
from pyconverge.models.point import GeoPoint


class Venue(ConvergeBaseModel):
    """A known point of interest that can attract converging agents."""

    id: str
    name: str
    lat: float = Field(..., ge=-90.0, le=90.0, validation_alias=AliasChoices("lat", "latitude"))
    lng: float = Field(..., ge=-180.0, le=180.0, validation_alias=AliasChoices("lng", "lon", "longitude"))
    type: str = ""
    popularity: float = Field(default=0.0, ge=0.0, le=100.0)

    @property
    def position(self) -> GeoPoint:
        return GeoPoint(lat=self.lat, lng=self.lng, label=self.name)
