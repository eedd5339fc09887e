"""EventResponse Pydantic schemas — participant submissions and response views."""

from datetime import datetime
from typing import Any, Dict, List, Optional

from pydantic import Field

from app.schemas.event import CamelModel, EventOut, VotingCategory


class FieldResponse(CamelModel):
    field_id: str
    type: str
    response: Any = None


class VotingOptionMirror(CamelModel):
    option_name: str = Field(min_length=1)
    votes: List[int] = Field(default_factory=list)


class VotingCategoryMirror(CamelModel):
    category_name: str = Field(min_length=1)
    options: List[VotingOptionMirror] = Field(default_factory=list)


class EventResponseSubmit(CamelModel):
    """What a participant's client sends for one submission."""

    event_id: Optional[int] = None
    selected_dates: List[str] = Field(default_factory=list)
    selected_places: List[str] = Field(default_factory=list)
    suggested_dates: List[str] = Field(default_factory=list)
    suggested_places: List[str] = Field(default_factory=list)
    custom_fields: Dict[str, Any] = Field(default_factory=dict)
    voting_categories: List[VotingCategoryMirror] = Field(default_factory=list)
    suggested_options: Dict[str, List[str]] = Field(default_factory=dict)


class EventResponseOut(CamelModel):
    id: int
    event_id: int
    user_id: int
    user_email: str
    field_responses: List[FieldResponse] = Field(default_factory=list)
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    model_config = {"from_attributes": True}


class SubmitResult(CamelModel):
    response: EventResponseOut
    voting_categories: List[VotingCategory]


# ── Organizer view ──

class Voter(CamelModel):
    user_id: int
    email: Optional[str] = None


class OptionSummary(CamelModel):
    option_name: str
    added_by: Optional[int] = None
    is_original: bool = True
    vote_count: int = 0
    voters: List[Voter] = Field(default_factory=list)


class CategorySummary(CamelModel):
    category_name: str
    options: List[OptionSummary] = Field(default_factory=list)


class EventResponsesOut(CamelModel):
    event: EventOut
    responses: List[EventResponseOut]
    categories: List[CategorySummary]


# ── Participant views ──

class MyResponseOut(CamelModel):
    response: Optional[EventResponseOut] = None
    selections: Dict[str, List[str]] = Field(default_factory=dict)


class OtherResponseOut(CamelModel):
    user_email: str
    field_responses: List[FieldResponse] = Field(default_factory=list)
