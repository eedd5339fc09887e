"""Finalization Pydantic schemas — organizer selections, snapshot, result."""

from datetime import datetime
from typing import Any, Dict, List, Optional

from pydantic import ConfigDict, Field, field_validator
from pydantic.alias_generators import to_camel

from app.schemas.event import CamelModel, is_iso_datetime


class FinalizationSelections(CamelModel):
    date: Optional[str] = None
    place: Optional[str] = None
    custom_fields: Dict[str, Any] = Field(default_factory=dict)

    @field_validator("date")
    @classmethod
    def date_is_iso(cls, v: Optional[str]) -> Optional[str]:
        if not v:
            return v
        if not is_iso_datetime(v):
            raise ValueError("Date must be a valid ISO date string")
        return v

    @field_validator("place")
    @classmethod
    def place_not_blank(cls, v: Optional[str]) -> Optional[str]:
        if v is not None and not v.strip():
            raise ValueError("Place cannot be empty if provided")
        return v


class CustomFieldSelection(CamelModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, frozen=True)

    field_id: str
    field_type: str
    field_title: str
    selection: Any = None
    voters: List[int] = Field(default_factory=list)


class FinalizedEvent(CamelModel):
    """Immutable record of the confirmed outcome."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, frozen=True)

    finalized_date: Optional[str] = None
    finalized_place: Optional[str] = None
    custom_field_selections: Dict[str, CustomFieldSelection] = Field(default_factory=dict)
    finalized_at: datetime
    finalized_by: int


class FinalizeResult(CamelModel):
    success: bool
    message: str
    warnings: List[str] = Field(default_factory=list)
    snapshot: Optional[FinalizedEvent] = None
