"""Event model — metadata, lifecycle status, and the document-shaped voting state."""

import enum
import json
import uuid
from datetime import datetime
from typing import Dict, List, Optional

from pydantic import TypeAdapter
from sqlalchemy import DateTime, Enum, ForeignKey, String, Text, func
from sqlalchemy.orm import Mapped, mapped_column

from app.database import Base
from app.schemas.event import (
    CustomField,
    EventDatesConfig,
    EventPlacesConfig,
    VotingCategory,
)
from app.schemas.finalize import FinalizedEvent

_categories_adapter = TypeAdapter(List[VotingCategory])
_fields_adapter = TypeAdapter(Dict[str, CustomField])


class EventStatus(str, enum.Enum):
    OPEN = "open"
    CLOSED = "closed"
    FINALIZED = "finalized"


def _new_share_token() -> str:
    return uuid.uuid4().hex


class Event(Base):
    __tablename__ = "events"

    # ── Identity ──
    id: Mapped[int] = mapped_column(primary_key=True, index=True)
    event_uuid: Mapped[str] = mapped_column(
        String(32), unique=True, index=True, nullable=False, default=_new_share_token
    )
    name: Mapped[str] = mapped_column(String(300), nullable=False)
    description: Mapped[str] = mapped_column(Text, nullable=False)
    created_by: Mapped[int] = mapped_column(
        ForeignKey("users.id"), nullable=False, index=True
    )

    # ── Lifecycle ──
    status: Mapped[EventStatus] = mapped_column(
        Enum(EventStatus), default=EventStatus.OPEN, nullable=False, index=True
    )
    closes_by: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True))

    # ── JSON documents (stored as Text for SQLite compat) ──
    event_dates_json: Mapped[str] = mapped_column(Text, default="{}")
    event_places_json: Mapped[str] = mapped_column(Text, default="{}")
    custom_fields_json: Mapped[str] = mapped_column(Text, default="{}")
    voting_categories_json: Mapped[str] = mapped_column(Text, default="[]")
    finalized_event_json: Mapped[Optional[str]] = mapped_column(Text)

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now()
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), onupdate=func.now()
    )

    # ── JSON helpers ──
    # Each getter returns a fresh copy; assign back through the setter to persist.
    @property
    def event_dates(self) -> EventDatesConfig:
        return EventDatesConfig.model_validate(json.loads(self.event_dates_json or "{}"))

    @event_dates.setter
    def event_dates(self, value: EventDatesConfig) -> None:
        self.event_dates_json = value.model_dump_json(by_alias=True)

    @property
    def event_places(self) -> EventPlacesConfig:
        return EventPlacesConfig.model_validate(json.loads(self.event_places_json or "{}"))

    @event_places.setter
    def event_places(self, value: EventPlacesConfig) -> None:
        self.event_places_json = value.model_dump_json(by_alias=True)

    @property
    def custom_fields(self) -> Dict[str, CustomField]:
        return _fields_adapter.validate_json(self.custom_fields_json or "{}")

    @custom_fields.setter
    def custom_fields(self, value: Dict[str, CustomField]) -> None:
        self.custom_fields_json = _fields_adapter.dump_json(value, by_alias=True).decode()

    @property
    def voting_categories(self) -> List[VotingCategory]:
        return _categories_adapter.validate_json(self.voting_categories_json or "[]")

    @voting_categories.setter
    def voting_categories(self, value: List[VotingCategory]) -> None:
        self.voting_categories_json = _categories_adapter.dump_json(value, by_alias=True).decode()

    @property
    def finalized_event(self) -> Optional[FinalizedEvent]:
        if not self.finalized_event_json:
            return None
        return FinalizedEvent.model_validate_json(self.finalized_event_json)

    @finalized_event.setter
    def finalized_event(self, value: Optional[FinalizedEvent]) -> None:
        if self.finalized_event_json:
            raise ValueError("A finalized snapshot cannot be replaced")
        self.finalized_event_json = value.model_dump_json(by_alias=True) if value else None

    def get_category(self, name: str) -> Optional[VotingCategory]:
        return next((c for c in self.voting_categories if c.category_name == name), None)

    @property
    def status_value(self) -> str:
        return getattr(self.status, "value", self.status)
