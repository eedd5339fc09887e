"""Event Pydantic schemas — voting categories, custom-field variants, create/output."""

from datetime import datetime
from typing import Annotated, Dict, List, Literal, Optional, Union

from pydantic import BaseModel, ConfigDict, Field, field_validator
from pydantic.alias_generators import to_camel


class CamelModel(BaseModel):
    """Wire format is camelCase; Python attributes stay snake_case."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


# ═══════════════════════════════════════════════════════════════
#  Voting state
# ═══════════════════════════════════════════════════════════════

def is_iso_datetime(value: str) -> bool:
    """True for ISO 8601 strings, including a trailing ``Z``."""
    try:
        datetime.fromisoformat(value.strip().replace("Z", "+00:00"))
    except ValueError:
        return False
    return True


DATE_CATEGORY = "date"
PLACE_CATEGORY = "place"
BUILTIN_CATEGORIES = (DATE_CATEGORY, PLACE_CATEGORY)


class VotingOption(CamelModel):
    option_name: str
    votes: List[int] = Field(default_factory=list)
    added_by: Optional[int] = None

    @property
    def is_original(self) -> bool:
        return self.added_by is None

    def has_vote(self, user_id: int) -> bool:
        return user_id in self.votes

    def add_vote(self, user_id: int) -> None:
        if user_id not in self.votes:
            self.votes.append(user_id)

    def remove_vote(self, user_id: int) -> None:
        self.votes = [v for v in self.votes if v != user_id]


class VotingCategory(CamelModel):
    category_name: str
    options: List[VotingOption] = Field(default_factory=list)

    def find_option(self, option_name: str) -> Optional[VotingOption]:
        return next((o for o in self.options if o.option_name == option_name), None)

    @property
    def option_names(self) -> List[str]:
        return [o.option_name for o in self.options]


# ═══════════════════════════════════════════════════════════════
#  Date / place configuration
# ═══════════════════════════════════════════════════════════════

class EventDatesConfig(CamelModel):
    max_dates: int = Field(default=0, ge=0)
    max_votes: int = Field(default=1, ge=1)
    allow_user_add: bool = False


class EventPlacesConfig(CamelModel):
    max_places: int = Field(default=0, ge=0)
    max_votes: int = Field(default=1, ge=1)
    allow_user_add: bool = False


class EventDatesIn(EventDatesConfig):
    dates: List[str] = Field(default_factory=list)

    @field_validator("dates")
    @classmethod
    def dates_are_iso(cls, v: List[str]) -> List[str]:
        for value in v:
            if value.strip() and not is_iso_datetime(value):
                raise ValueError(f"Date \"{value}\" must be a valid ISO date string")
        return v


class EventPlacesIn(EventPlacesConfig):
    places: List[str] = Field(default_factory=list)


# ═══════════════════════════════════════════════════════════════
#  Custom fields (tagged by ``type``)
# ═══════════════════════════════════════════════════════════════

class FieldOption(CamelModel):
    id: int
    label: str
    checked: Optional[bool] = None


class _FieldBase(CamelModel):
    id: Optional[int] = None
    title: str = Field(min_length=1)
    placeholder: str = ""
    required: bool = False
    readonly: bool = False


class TextField(_FieldBase):
    type: Literal["text"] = "text"
    value: Optional[str] = None


class ListField(_FieldBase):
    type: Literal["list"] = "list"
    values: List[str] = Field(default_factory=list)
    max_entries: int = 0
    allow_user_add: bool = True


class RadioField(_FieldBase):
    type: Literal["radio"] = "radio"
    options: List[FieldOption] = Field(default_factory=list)
    max_options: int = 0
    allow_user_add_options: bool = False
    selected_option: Optional[int] = None


class CheckboxField(_FieldBase):
    type: Literal["checkbox"] = "checkbox"
    options: List[FieldOption] = Field(default_factory=list)
    max_options: int = 0
    allow_user_add_options: bool = False


CustomField = Annotated[
    Union[TextField, ListField, RadioField, CheckboxField],
    Field(discriminator="type"),
]

# radio/checkbox answers live in voting categories; text/list in EventResponse
VOTING_FIELD_TYPES = ("radio", "checkbox")
RESPONSE_FIELD_TYPES = ("text", "list")


# ═══════════════════════════════════════════════════════════════
#  Requests
# ═══════════════════════════════════════════════════════════════

class EventCreate(CamelModel):
    name: str = Field(min_length=1)
    description: str = Field(min_length=1)
    event_dates: EventDatesIn = Field(default_factory=EventDatesIn)
    event_places: EventPlacesIn = Field(default_factory=EventPlacesIn)
    custom_fields: Dict[str, CustomField] = Field(default_factory=dict)
    closes_by: Optional[datetime] = None


class OptionRemoval(CamelModel):
    """Organizer removes one option from a category, list field or text field."""

    kind: Literal["category", "list", "text"]
    target: str
    option: Optional[str] = None


# ═══════════════════════════════════════════════════════════════
#  Output
# ═══════════════════════════════════════════════════════════════

class EventDatesOut(EventDatesConfig):
    dates: List[str] = Field(default_factory=list)


class EventPlacesOut(EventPlacesConfig):
    places: List[str] = Field(default_factory=list)


class EventOut(CamelModel):
    id: int
    event_uuid: str
    name: str
    description: str
    status: str
    created_by: int
    created_at: Optional[datetime] = None
    closes_by: Optional[datetime] = None
    event_dates: EventDatesOut
    event_places: EventPlacesOut
    custom_fields: Dict[str, CustomField] = Field(default_factory=dict)
    voting_categories: List[VotingCategory] = Field(default_factory=list)
    finalized_event: Optional[dict] = None

    @classmethod
    def from_event(cls, event) -> "EventOut":
        """Build the output shape, re-deriving date/place lists from the categories."""
        date_cat = event.get_category(DATE_CATEGORY)
        place_cat = event.get_category(PLACE_CATEGORY)
        finalized = event.finalized_event
        return cls(
            id=event.id,
            event_uuid=event.event_uuid,
            name=event.name,
            description=event.description,
            status=getattr(event.status, "value", event.status),
            created_by=event.created_by,
            created_at=event.created_at,
            closes_by=event.closes_by,
            event_dates=EventDatesOut(
                **event.event_dates.model_dump(),
                dates=date_cat.option_names if date_cat else [],
            ),
            event_places=EventPlacesOut(
                **event.event_places.model_dump(),
                places=place_cat.option_names if place_cat else [],
            ),
            custom_fields=event.custom_fields,
            voting_categories=event.voting_categories,
            finalized_event=finalized.model_dump(by_alias=True, mode="json") if finalized else None,
        )


class EventSummaryOut(CamelModel):
    id: int
    event_uuid: str
    name: str
    status: str
    created_at: Optional[datetime] = None
    closes_by: Optional[datetime] = None
