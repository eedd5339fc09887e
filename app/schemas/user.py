"""User Pydantic schemas — registration and profile output."""

from datetime import datetime
from typing import Optional

from pydantic import BaseModel, EmailStr, Field


class UserCreate(BaseModel):
    """Fields submitted when a participant or organizer signs up."""
    email: EmailStr
    full_name: str = Field(min_length=1, max_length=200)


class UserOut(BaseModel):
    """Public user representation returned by the API."""
    id: int
    email: str
    full_name: str
    created_at: Optional[datetime] = None

    model_config = {"from_attributes": True}
