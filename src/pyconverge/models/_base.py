"""Base model for pyconverge records.

Every record inherits from :class:`ConvergeBaseModel` which provides:

* ``frozen=True`` so records are never mutated once constructed.
* ``allow_inf_nan=False`` so non-finite floats are rejected at the
  boundary instead of poisoning downstream arithmetic.
* ``alias_generator=to_camel`` so records serialise to the camelCase
  event shape consumers expect, while still accepting snake_case names.
"""

from __future__ import annotations

from pydantic import BaseModel, ConfigDict
from pydantic.alias_generators import to_camel


class ConvergeBaseModel(BaseModel):
    """Base for immutable, validated pyconverge records."""

    model_config = ConfigDict(
        frozen=True,
        extra="ignore",
        populate_by_name=True,
        alias_generator=to_camel,
        allow_inf_nan=False,
    )
