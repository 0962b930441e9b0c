"""Geographic point model."""

from __future__ import annotations

from pydantic import AliasChoices, Field

from pyconverge.models._base import ConvergeBaseModel


class GeoPoint(ConvergeBaseModel):
    """A WGS84 position, optionally annotated with a venue label.

    Parameters
    ----------
    lat : float
        Latitude in degrees.
    lng : float
        Longitude in degrees.
    label : str or None
        Name of the venue the point is attributed to, if any.
    """

    lat: float = Field(..., ge=-90.0, le=90.0, validation_alias=AliasChoices("lat", "latitude"))
    lng: float = Field(..., ge=-180.0, le=180.0, validation_alias=AliasChoices("lng", "lon", "longitude"))
    label: str | None = None

    def as_tuple(self) -> tuple[float, float]:
        return (self.lat, self.lng)
