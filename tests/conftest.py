# tests/conftest.py

from typing import List, Optional, Tuple

import pytest
from httpx import ASGITransport, AsyncClient
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine

from app.database import Base, get_db
from app.main import app
from app.models.event import Event, EventStatus
from app.models.user import User
from app.routers.events import get_mailer
from app.schemas.event import EventCreate
from app.services.events import build_initial_categories


# --- Per-test SQLite database ---
@pytest.fixture
async def engine(tmp_path):
    engine = create_async_engine(f"sqlite+aiosqlite:///{tmp_path / 'test.db'}")
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield engine
    await engine.dispose()


@pytest.fixture
def session_factory(engine):
    return async_sessionmaker(bind=engine, class_=AsyncSession, expire_on_commit=False)


@pytest.fixture
async def db(session_factory):
    async with session_factory() as session:
        yield session


@pytest.fixture
def make_user(db):
    async def _make(email: str, full_name: str = "Test User") -> User:
        user = User(email=email, full_name=full_name)
        db.add(user)
        await db.commit()
        await db.refresh(user)
        return user

    return _make


# --- In-memory events for the pure engines ---
@pytest.fixture
def build_event():
    """Build an unsaved Event from an EventCreate-shaped dict."""

    def _build(payload: dict, event_id: int = 1, organizer_id: int = 100,
               status: EventStatus = EventStatus.OPEN) -> Event:
        data = EventCreate.model_validate({"name": "Dinner", "description": "Team dinner", **payload})
        event = Event(
            id=event_id,
            event_uuid="share-token",
            name=data.name,
            description=data.description,
            created_by=organizer_id,
            status=status,
        )
        event.event_dates = data.event_dates
        event.event_places = data.event_places
        event.custom_fields = data.custom_fields
        event.voting_categories = build_initial_categories(data)
        return event

    return _build


# --- Mailer that records instead of sending ---
class RecordingMailer:
    def __init__(self):
        self.sent: List[Tuple[str, str, str]] = []

    async def send(self, recipient_email: str, subject: str, html_body: str) -> bool:
        self.sent.append((recipient_email, subject, html_body))
        return True

    async def close(self) -> None:
        pass


@pytest.fixture
def mailer():
    return RecordingMailer()


# --- HTTP client with the database and mailer swapped ---
@pytest.fixture
async def client(session_factory, mailer):
    async def override_get_db():
        async with session_factory() as session:
            try:
                yield session
                await session.commit()
            except Exception:
                await session.rollback()
                raise

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_mailer] = lambda: mailer

    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as c:
        yield c

    app.dependency_overrides.clear()


@pytest.fixture
def signup(client):
    """Register a user over the API and return (user_id, auth headers)."""

    async def _signup(email: str, full_name: Optional[str] = None):
        resp = await client.post("/users", json={"email": email, "full_name": full_name or email.split("@")[0]})
        assert resp.status_code == 201, resp.text
        user_id = resp.json()["id"]
        login = await client.get(f"/auth/dev-login/{user_id}")
        assert login.status_code == 200, login.text
        # authenticate per request through the header, not the shared cookie jar
        client.cookies.clear()
        return user_id, {"Authorization": f"Bearer {login.json()['accessToken']}"}

    return _signup
