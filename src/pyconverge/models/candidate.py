"""Convergence candidate model and the event shape it is published as."""

from __future__ import annotations

from enum import StrEnum
from typing import Any

from pydantic import Field, field_validator, model_validator

from pyconverge._constants import DEFAULT_TTL_MAX_S, DEFAULT_TTL_MIN_S, DEFAULT_TTL_PADDING_S, MIN_GROUP_SIZE
from pyconverge.models._base import ConvergeBaseModel
from pyconverge.models.point import GeoPoint


class CandidateType(StrEnum):
    PAIR = "pair"
    GROUP = "group"


def display_ttl(
    time_to_meet: float,
    *,
    padding: float = DEFAULT_TTL_PADDING_S,
    minimum: float = DEFAULT_TTL_MIN_S,
    maximum: float = DEFAULT_TTL_MAX_S,
) -> float:
    """Seconds a candidate stays valid: ``clamp(time_to_meet + padding, minimum, maximum)``."""
    return min(maximum, max(minimum, time_to_meet + padding))


class ConvergenceCandidate(ConvergeBaseModel):
    """A predicted future meeting between two or more agents.

    Candidates are computed fresh on every detection pass and never
    mutated; they are either suppressed or emitted.

    Parameters
    ----------
    id : str
        Deterministic identifier derived from the participants.
    participants : tuple of str
        Agent ids, de-duplicated (first occurrence order kept).
    probability : float
        Probability of the meeting in ``[0, 1]``.
    time_to_meet : float
        Seconds until the predicted meeting.
    meeting_point : GeoPoint
        Predicted meeting location, optionally labelled with a venue.
    type : CandidateType
        ``pair`` or ``group``; groups have at least three participants.
    confidence : float
        Minimum confidence of the contributing agents.
    """

    id: str = Field(..., min_length=1)
    participants: tuple[str, ...]
    probability: float = Field(..., ge=0.0, le=1.0)
    time_to_meet: float = Field(..., ge=0.0)
    meeting_point: GeoPoint
    type: CandidateType
    confidence: float = Field(..., ge=0.0, le=1.0)

    @field_validator("participants", mode="before")
    @classmethod
    def _dedupe_participants(cls, value: Any) -> Any:
        if isinstance(value, (list, tuple, set, frozenset)):
            return tuple(dict.fromkeys(str(v) for v in value))
        return value

    @model_validator(mode="after")
    def _check_group_size(self) -> ConvergenceCandidate:
        if len(self.participants) < 2:
            raise ValueError("a convergence candidate needs at least two distinct participants")
        if self.type == CandidateType.GROUP and len(self.participants) < MIN_GROUP_SIZE:
            raise ValueError(f"group candidates need at least {MIN_GROUP_SIZE} participants")
        return self

    @property
    def canonical_participants(self) -> tuple[str, ...]:
        """Participants in sorted order, independent of detection order."""
        return tuple(sorted(self.participants))

    @property
    def display_ttl(self) -> float:
        """Seconds consumers should keep displaying this candidate."""
        return display_ttl(self.time_to_meet)

    def to_event(self) -> dict[str, Any]:
        """Return the JSON-ready event published to downstream consumers."""
        event: dict[str, Any] = {
            "id": self.id,
            "participants": list(self.participants),
            "probability": self.probability,
            "timeToMeet": self.time_to_meet,
            "meetingPoint": {"lat": self.meeting_point.lat, "lng": self.meeting_point.lng},
            "type": self.type.value,
            "confidence": self.confidence,
            "validFor": self.display_ttl,
        }
        if self.meeting_point.label:
            event["venue"] = self.meeting_point.label
        return event
