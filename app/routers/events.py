"""
Events router — creation, participant submissions, lifecycle, finalization.

Endpoints:
    POST   /events                          → create (caller becomes organizer)
    GET    /events/mine                     → organizer's events
    GET    /events/share/{event_uuid}       → public event by share token
    GET    /events/{id}                     → event by id (organizer only)
    POST   /events/{id}/responses           → submit / resubmit a response
    GET    /events/{id}/responses           → organizer view of all responses
    GET    /events/{id}/responses/me        → caller's response + selections
    GET    /events/{id}/responses/others    → other participants' answers
    PATCH  /events/{id}/close | /reopen     → status transitions
    POST   /events/{id}/finalize            → lock the outcome, notify respondents
    POST   /events/{id}/finalize/preview    → validate without committing
    GET    /events/{id}/finalized           → the finalized snapshot
    DELETE /events/{id}/options             → remove one option
"""

from typing import List

from fastapi import APIRouter, BackgroundTasks, Depends, Request, status
from sqlalchemy.ext.asyncio import AsyncSession

from app.database import get_db
from app.models.event import EventStatus
from app.models.user import User
from app.routers.auth import require_user
from app.schemas.event import EventCreate, EventOut, EventSummaryOut, OptionRemoval
from app.schemas.finalize import FinalizationSelections, FinalizedEvent, FinalizeResult
from app.schemas.response import (
    EventResponseOut,
    EventResponsesOut,
    EventResponseSubmit,
    MyResponseOut,
    OtherResponseOut,
    SubmitResult,
)
from app.services import events as event_service
from app.services.notifications import Mailer, notify_event_finalized

router = APIRouter(prefix="/events", tags=["events"])


def get_mailer(request: Request) -> Mailer:
    """The application's mailer, created on first use."""
    mailer = getattr(request.app.state, "mailer", None)
    if mailer is None:
        mailer = Mailer()
        request.app.state.mailer = mailer
    return mailer


# ═══════════════════════════════════════════════════════════════
#  Events
# ═══════════════════════════════════════════════════════════════

@router.post("", response_model=EventOut, status_code=status.HTTP_201_CREATED)
async def create_event(
    data: EventCreate,
    current_user: User = Depends(require_user),
    db: AsyncSession = Depends(get_db),
):
    event = await event_service.create_event(db, data, current_user.id)
    return EventOut.from_event(event)


@router.get("/mine", response_model=List[EventSummaryOut])
async def list_my_events(
    current_user: User = Depends(require_user),
    db: AsyncSession = Depends(get_db),
):
    events = await event_service.list_events_for_organizer(db, current_user.id)
    return [
        EventSummaryOut(
            id=e.id,
            event_uuid=e.event_uuid,
            name=e.name,
            status=e.status_value,
            created_at=e.created_at,
            closes_by=e.closes_by,
        )
        for e in events
    ]


@router.get("/share/{event_uuid}", response_model=EventOut)
async def get_shared_event(event_uuid: str, db: AsyncSession = Depends(get_db)):
    """Public view of an event through its share link."""
    event = await event_service.get_event_by_uuid(db, event_uuid)
    return EventOut.from_event(event)


@router.get("/{event_id}", response_model=EventOut)
async def get_event(
    event_id: int,
    current_user: User = Depends(require_user),
    db: AsyncSession = Depends(get_db),
):
    """Organizer's view by id; participants use the share link."""
    event = await event_service.get_organized_event(db, event_id, current_user.id)
    return EventOut.from_event(event)


# ═══════════════════════════════════════════════════════════════
#  Responses
# ═══════════════════════════════════════════════════════════════

@router.post("/{event_id}/responses", response_model=SubmitResult)
async def submit_response(
    event_id: int,
    submission: EventResponseSubmit,
    current_user: User = Depends(require_user),
    db: AsyncSession = Depends(get_db),
):
    """Record the caller's votes and answers; resubmitting replaces earlier picks."""
    event, response = await event_service.submit_response(db, event_id, current_user.id, submission)
    return SubmitResult(
        response=EventResponseOut.model_validate(response),
        voting_categories=event.voting_categories,
    )


@router.get("/{event_id}/responses", response_model=EventResponsesOut)
async def list_responses(
    event_id: int,
    current_user: User = Depends(require_user),
    db: AsyncSession = Depends(get_db),
):
    event, responses, categories = await event_service.get_event_responses(
        db, event_id, current_user.id
    )
    return EventResponsesOut(
        event=EventOut.from_event(event),
        responses=[EventResponseOut.model_validate(r) for r in responses],
        categories=categories,
    )


@router.get("/{event_id}/responses/me", response_model=MyResponseOut)
async def my_response(
    event_id: int,
    current_user: User = Depends(require_user),
    db: AsyncSession = Depends(get_db),
):
    response, selections = await event_service.get_user_response(db, event_id, current_user.id)
    return MyResponseOut(
        response=EventResponseOut.model_validate(response) if response else None,
        selections=selections,
    )


@router.get("/{event_id}/responses/others", response_model=List[OtherResponseOut])
async def other_responses(
    event_id: int,
    current_user: User = Depends(require_user),
    db: AsyncSession = Depends(get_db),
):
    responses = await event_service.get_other_responses(db, event_id, current_user.id)
    return [
        OtherResponseOut(user_email=r.user_email, field_responses=r.field_responses)
        for r in responses
    ]


# ═══════════════════════════════════════════════════════════════
#  Lifecycle
# ═══════════════════════════════════════════════════════════════

@router.patch("/{event_id}/close", response_model=EventOut)
async def close_event(
    event_id: int,
    current_user: User = Depends(require_user),
    db: AsyncSession = Depends(get_db),
):
    event = await event_service.set_event_status(db, event_id, current_user.id, EventStatus.CLOSED)
    return EventOut.from_event(event)


@router.patch("/{event_id}/reopen", response_model=EventOut)
async def reopen_event(
    event_id: int,
    current_user: User = Depends(require_user),
    db: AsyncSession = Depends(get_db),
):
    event = await event_service.set_event_status(db, event_id, current_user.id, EventStatus.OPEN)
    return EventOut.from_event(event)


@router.post("/{event_id}/finalize", response_model=FinalizeResult)
async def finalize_event(
    event_id: int,
    selections: FinalizationSelections,
    background_tasks: BackgroundTasks,
    current_user: User = Depends(require_user),
    db: AsyncSession = Depends(get_db),
    mailer: Mailer = Depends(get_mailer),
):
    """Lock the outcome; respondents are emailed after the response is sent."""
    event, result, recipients = await event_service.finalize_event(
        db, event_id, current_user.id, selections
    )
    if recipients:
        background_tasks.add_task(
            notify_event_finalized,
            mailer,
            event.name,
            event.event_uuid,
            result.snapshot,
            recipients,
        )
    return result


@router.post("/{event_id}/finalize/preview", response_model=FinalizeResult)
async def preview_finalization(
    event_id: int,
    selections: FinalizationSelections,
    current_user: User = Depends(require_user),
    db: AsyncSession = Depends(get_db),
):
    return await event_service.preview_finalization(db, event_id, current_user.id, selections)


@router.get("/{event_id}/finalized", response_model=FinalizedEvent)
async def get_finalized(
    event_id: int,
    current_user: User = Depends(require_user),
    db: AsyncSession = Depends(get_db),
):
    return await event_service.get_finalized(db, event_id)


@router.delete("/{event_id}/options", response_model=EventOut)
async def remove_option(
    event_id: int,
    removal: OptionRemoval,
    current_user: User = Depends(require_user),
    db: AsyncSession = Depends(get_db),
):
    event = await event_service.remove_option(db, event_id, current_user.id, removal)
    return EventOut.from_event(event)
