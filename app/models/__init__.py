"""
Gatherly – SQLAlchemy ORM models package.

Imports all model classes so the app can discover them
through a single ``from app.models import *`` import.
"""

from app.models.user import User                        # noqa: F401
from app.models.event import Event, EventStatus         # noqa: F401
from app.models.event_response import EventResponse     # noqa: F401
