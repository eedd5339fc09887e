"""EventResponse model — one participant's non-voting field answers for one event."""

import json
from datetime import datetime
from typing import List

from sqlalchemy import DateTime, ForeignKey, String, Text, UniqueConstraint, func
from sqlalchemy.orm import Mapped, mapped_column

from app.database import Base
from app.schemas.response import FieldResponse


class EventResponse(Base):
    __tablename__ = "event_responses"
    __table_args__ = (
        UniqueConstraint("event_id", "user_id", name="uq_event_responses_event_user"),
    )

    id: Mapped[int] = mapped_column(primary_key=True, index=True)
    event_id: Mapped[int] = mapped_column(
        ForeignKey("events.id", ondelete="CASCADE"), nullable=False, index=True
    )
    user_id: Mapped[int] = mapped_column(
        ForeignKey("users.id", ondelete="CASCADE"), nullable=False
    )
    user_email: Mapped[str] = mapped_column(String(255), nullable=False)

    # text/list answers only; radio/checkbox/date/place votes live on the event
    field_responses_json: Mapped[str] = mapped_column(Text, default="[]")

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now()
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), onupdate=func.now()
    )

    # ── JSON helpers ──
    @property
    def field_responses(self) -> List[FieldResponse]:
        try:
            raw = json.loads(self.field_responses_json or "[]")
        except (json.JSONDecodeError, TypeError):
            return []
        return [FieldResponse.model_validate(r) for r in raw]

    @field_responses.setter
    def field_responses(self, value: List[FieldResponse]) -> None:
        self.field_responses_json = json.dumps(
            [r.model_dump(by_alias=True, mode="json") for r in value]
        )
