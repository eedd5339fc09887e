"""
Event service — loads and saves events around the voting and finalization
engines, and owns the status guards those engines leave to their caller.
"""

import logging
from datetime import datetime, timezone
from typing import Dict, List, Optional, Set, Tuple

from sqlalchemy import select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from app.errors import (
    BadRequestError,
    EventStateError,
    FinalizationError,
    ForbiddenError,
    NotFoundError,
)
from app.models.event import Event, EventStatus
from app.models.event_response import EventResponse
from app.models.user import User
from app.schemas.event import (
    BUILTIN_CATEGORIES,
    DATE_CATEGORY,
    PLACE_CATEGORY,
    VOTING_FIELD_TYPES,
    CheckboxField,
    CustomField,
    EventCreate,
    EventDatesConfig,
    EventPlacesConfig,
    ListField,
    OptionRemoval,
    RadioField,
    TextField,
    VotingCategory,
    VotingOption,
    is_iso_datetime,
)
from app.schemas.finalize import FinalizationSelections, FinalizedEvent, FinalizeResult
from app.schemas.response import (
    CategorySummary,
    EventResponseSubmit,
    OptionSummary,
    Voter,
)
from app.services import finalization, voting

logger = logging.getLogger(__name__)


# ═══════════════════════════════════════════════════════════════
#  Lookups & guards
# ═══════════════════════════════════════════════════════════════

async def get_event(db: AsyncSession, event_id: int) -> Event:
    result = await db.execute(select(Event).where(Event.id == event_id))
    event = result.scalar_one_or_none()
    if not event:
        raise NotFoundError("Event not found")
    return event


async def get_event_by_uuid(db: AsyncSession, event_uuid: str) -> Event:
    result = await db.execute(select(Event).where(Event.event_uuid == event_uuid))
    event = result.scalar_one_or_none()
    if not event:
        raise NotFoundError("Event not found")
    return event


async def get_user(db: AsyncSession, user_id: int) -> User:
    result = await db.execute(select(User).where(User.id == user_id))
    user = result.scalar_one_or_none()
    if not user:
        raise NotFoundError("User not found")
    return user


async def get_organized_event(db: AsyncSession, event_id: int, user_id: int) -> Event:
    event = await get_event(db, event_id)
    ensure_organizer(event, user_id)
    return event


def ensure_organizer(event: Event, user_id: int) -> None:
    if event.created_by != user_id:
        raise ForbiddenError()


def ensure_not_finalized(event: Event) -> None:
    if event.status_value == EventStatus.FINALIZED.value:
        raise EventStateError("Event is finalized and can no longer be changed")


async def _responses_for(db: AsyncSession, event_id: int) -> List[EventResponse]:
    result = await db.execute(
        select(EventResponse)
        .where(EventResponse.event_id == event_id)
        .order_by(EventResponse.created_at.asc(), EventResponse.id.asc())
    )
    return list(result.scalars().all())


# ═══════════════════════════════════════════════════════════════
#  Creation
# ═══════════════════════════════════════════════════════════════

def _labels(field) -> List[str]:
    return [o.label for o in field.options]


def validate_custom_field(field: CustomField) -> None:
    """Per-type definition rules checked when an event is created."""
    title = field.title
    if isinstance(field, TextField):
        if field.readonly and not (field.value or "").strip():
            raise BadRequestError(f'Read-only text field "{title}" must have a value')

    elif isinstance(field, RadioField):
        if len(field.options) < 2:
            raise BadRequestError(f'Radio field "{title}" must have at least 2 options')
        if field.readonly and field.selected_option is None:
            raise BadRequestError(f'Read-only radio field "{title}" must have a selected option')

    elif isinstance(field, CheckboxField):
        if len(field.options) < 1:
            raise BadRequestError(f'Checkbox field "{title}" must have at least 1 option')

    elif isinstance(field, ListField):
        values = field.values
        if field.readonly:
            if field.allow_user_add:
                raise BadRequestError(f'Read-only list field "{title}" cannot allow users to add entries')
            if field.max_entries > 0 and len(values) != field.max_entries:
                raise BadRequestError(
                    f'Read-only list field "{title}" must have exactly {field.max_entries} entries, '
                    f"but has {len(values)}"
                )
            if any(not v.strip() for v in values):
                raise BadRequestError(f'All entries in read-only list field "{title}" must have values')
        elif not field.allow_user_add:
            raise BadRequestError(f'List field "{title}" must allow users to add entries')
        if field.max_entries > 0 and len(values) > field.max_entries:
            raise BadRequestError(
                f'Number of entries in list field "{title}" ({len(values)}) '
                f"exceeds maximum allowed ({field.max_entries})"
            )

    if isinstance(field, (RadioField, CheckboxField)):
        for index, label in enumerate(_labels(field), start=1):
            if not label.strip():
                raise BadRequestError(f'Option {index} in field "{title}" must have a label')


def build_initial_categories(data: EventCreate) -> List[VotingCategory]:
    """date, place, then one category per radio/checkbox field, named by its title."""
    categories = [
        VotingCategory(
            category_name=DATE_CATEGORY,
            options=[VotingOption(option_name=d) for d in voting.clean_values(data.event_dates.dates)],
        ),
        VotingCategory(
            category_name=PLACE_CATEGORY,
            options=[VotingOption(option_name=p) for p in voting.clean_values(data.event_places.places)],
        ),
    ]
    for field in data.custom_fields.values():
        if field.type in VOTING_FIELD_TYPES:
            categories.append(
                VotingCategory(
                    category_name=field.title,
                    options=[VotingOption(option_name=label) for label in voting.clean_values(_labels(field))],
                )
            )
    return categories


def _as_utc(value: datetime) -> datetime:
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


async def create_event(db: AsyncSession, data: EventCreate, organizer_id: int) -> Event:
    await get_user(db, organizer_id)

    dates, places = data.event_dates, data.event_places
    if dates.max_dates and len(dates.dates) > dates.max_dates:
        raise BadRequestError(f"At most {dates.max_dates} dates may be proposed")
    if places.max_places and len(places.places) > places.max_places:
        raise BadRequestError(f"At most {places.max_places} places may be proposed")

    titles: Set[str] = set()
    for field in data.custom_fields.values():
        validate_custom_field(field)
        if field.type in VOTING_FIELD_TYPES:
            if field.title in BUILTIN_CATEGORIES or field.title in titles:
                raise BadRequestError(f'Voting field title "{field.title}" must be unique')
            titles.add(field.title)

    closes_by = None
    if data.closes_by is not None:
        closes_by = _as_utc(data.closes_by)
        if closes_by <= datetime.now(timezone.utc):
            raise BadRequestError("Closing date must be a valid future date")

    event = Event(
        name=data.name.strip(),
        description=data.description,
        created_by=organizer_id,
        status=EventStatus.OPEN,
        closes_by=closes_by,
    )
    event.event_dates = EventDatesConfig(**dates.model_dump(exclude={"dates"}))
    event.event_places = EventPlacesConfig(**places.model_dump(exclude={"places"}))
    event.custom_fields = data.custom_fields
    event.voting_categories = build_initial_categories(data)

    db.add(event)
    await db.commit()
    await db.refresh(event)
    logger.info(f"Event {event.id} created by user {organizer_id}")
    return event


async def list_events_for_organizer(db: AsyncSession, user_id: int) -> List[Event]:
    result = await db.execute(
        select(Event).where(Event.created_by == user_id).order_by(Event.created_at.desc())
    )
    return list(result.scalars().all())


# ═══════════════════════════════════════════════════════════════
#  Submissions
# ═══════════════════════════════════════════════════════════════

def validate_submission(event: Event, user_id: int, submission: EventResponseSubmit) -> None:
    """Caps and permissions a submission must satisfy before it is merged."""
    dates, places = event.event_dates, event.event_places

    if voting.clean_values(submission.suggested_dates) and not dates.allow_user_add:
        raise BadRequestError("New dates cannot be added for this event")
    for value in voting.clean_values(submission.suggested_dates):
        if not is_iso_datetime(value):
            raise BadRequestError(f"Suggested date \"{value}\" must be a valid ISO date string")
    if voting.clean_values(submission.suggested_places) and not places.allow_user_add:
        raise BadRequestError("New places cannot be added for this event")
    if len(voting.clean_values(submission.selected_dates)) > dates.max_votes:
        raise BadRequestError(f"You can only vote for {dates.max_votes} dates")
    if len(voting.clean_values(submission.selected_places)) > places.max_votes:
        raise BadRequestError(f"You can only vote for {places.max_votes} places")

    fields = event.custom_fields
    by_title = {f.title: f for f in fields.values() if f.type in VOTING_FIELD_TYPES}
    categories = {c.category_name: c for c in event.voting_categories}
    mirrors = {m.category_name: m for m in submission.voting_categories}
    for name in list(mirrors) + list(submission.suggested_options):
        field = by_title.get(name)
        if field is None:
            continue
        mirror = mirrors.get(name)
        existing = categories.get(name)
        known = set(existing.option_names) if existing else set()

        added = [o.option_name for o in mirror.options] if mirror else []
        added += submission.suggested_options.get(name, [])
        if any(a not in known for a in voting.clean_values(added)) and not field.allow_user_add_options:
            raise BadRequestError(f'New options cannot be added to "{field.title}"')

        if mirror is None:
            continue
        picked = voting.clean_values([o.option_name for o in mirror.options if user_id in o.votes])
        limit = 1 if isinstance(field, RadioField) else field.max_options
        if limit and len(picked) > limit:
            raise BadRequestError(f'You can only pick {limit} option(s) for "{field.title}"')

    for field_id, field in fields.items():
        if field.required and not field.readonly and field.type in ("text", "list"):
            if finalization.is_empty(submission.custom_fields.get(field_id)):
                raise BadRequestError(f'Field "{field.title}" is required')


async def submit_response(
    db: AsyncSession, event_id: int, user_id: int, submission: EventResponseSubmit
) -> Tuple[Event, EventResponse]:
    """Merge one participant's submission and upsert their response in one commit."""
    event = await get_event(db, event_id)
    user = await get_user(db, user_id)

    if submission.event_id is not None and submission.event_id != event.id:
        raise BadRequestError("Submission does not belong to this event")
    if event.status_value != EventStatus.OPEN.value:
        raise EventStateError(f"Event is {event.status_value}; responses are not accepted")
    validate_submission(event, user.id, submission)

    result = await db.execute(
        select(EventResponse).where(
            EventResponse.event_id == event.id,
            EventResponse.user_id == user.id,
        )
    )
    existing = result.scalar_one_or_none()

    event, response = voting.merge_response(event, user.id, user.email, submission, existing)
    if existing is None:
        db.add(response)

    try:
        await db.commit()
    except IntegrityError:
        # a concurrent first submission by the same user won the unique constraint
        await db.rollback()
        raise EventStateError("Stale state, please retry", error_code="STALE_STATE")

    await db.refresh(event)
    await db.refresh(response)
    return event, response


# ═══════════════════════════════════════════════════════════════
#  Response views
# ═══════════════════════════════════════════════════════════════

async def _emails_for(db: AsyncSession, user_ids: Set[int]) -> Dict[int, str]:
    if not user_ids:
        return {}
    result = await db.execute(select(User.id, User.email).where(User.id.in_(user_ids)))
    return {uid: email for uid, email in result.all()}


def summarize_categories(
    categories: List[VotingCategory], emails: Dict[int, str]
) -> List[CategorySummary]:
    summaries = []
    for c in categories:
        counts = voting.tally(c)
        summaries.append(
            CategorySummary(
                category_name=c.category_name,
                options=[
                    OptionSummary(
                        option_name=o.option_name,
                        added_by=o.added_by,
                        is_original=o.is_original,
                        vote_count=counts[o.option_name],
                        voters=[Voter(user_id=v, email=emails.get(v)) for v in o.votes],
                    )
                    for o in c.options
                ],
            )
        )
    return summaries


async def get_event_responses(
    db: AsyncSession, event_id: int, organizer_id: int
) -> Tuple[Event, List[EventResponse], List[CategorySummary]]:
    event = await get_event(db, event_id)
    ensure_organizer(event, organizer_id)
    responses = await _responses_for(db, event.id)

    categories = event.voting_categories
    voter_ids = {v for c in categories for o in c.options for v in o.votes}
    emails = await _emails_for(db, voter_ids)
    return event, responses, summarize_categories(categories, emails)


async def get_user_response(
    db: AsyncSession, event_id: int, user_id: int
) -> Tuple[Optional[EventResponse], Dict[str, List[str]]]:
    event = await get_event(db, event_id)
    result = await db.execute(
        select(EventResponse).where(
            EventResponse.event_id == event.id,
            EventResponse.user_id == user_id,
        )
    )
    return result.scalar_one_or_none(), voting.user_selections(event.voting_categories, user_id)


async def get_other_responses(db: AsyncSession, event_id: int, user_id: int) -> List[EventResponse]:
    """Everyone else's answers; visible to the organizer and to users who have responded."""
    event = await get_event(db, event_id)
    responses = await _responses_for(db, event.id)
    if event.created_by != user_id and not any(r.user_id == user_id for r in responses):
        raise ForbiddenError("Only participants can view other responses")
    return [r for r in responses if r.user_id != user_id]


# ═══════════════════════════════════════════════════════════════
#  Status transitions
# ═══════════════════════════════════════════════════════════════

async def set_event_status(
    db: AsyncSession, event_id: int, user_id: int, new_status: EventStatus
) -> Event:
    """open <-> closed only; finalization goes through ``finalize_event``."""
    if new_status == EventStatus.FINALIZED:
        raise BadRequestError("Use finalization to finalize an event")

    event = await get_event(db, event_id)
    ensure_organizer(event, user_id)
    ensure_not_finalized(event)

    if event.status_value != new_status.value:
        event.status = new_status
        await db.commit()
        await db.refresh(event)
        logger.info(f"Event {event.id} is now {new_status.value}")
    return event


async def close_expired_events(db: AsyncSession, now: Optional[datetime] = None) -> int:
    """Close every open event whose ``closes_by`` has passed."""
    now = now or datetime.now(timezone.utc)
    result = await db.execute(
        update(Event)
        .where(
            Event.status == EventStatus.OPEN,
            Event.closes_by.is_not(None),
            Event.closes_by < now,
        )
        .values(status=EventStatus.CLOSED)
        .execution_options(synchronize_session=False)
    )
    await db.commit()
    closed = result.rowcount or 0
    if closed:
        logger.info(f"Auto-closed {closed} expired event(s)")
    return closed


# ═══════════════════════════════════════════════════════════════
#  Finalization
# ═══════════════════════════════════════════════════════════════

def _list_entries(responses: List[EventResponse]) -> Dict[str, List[str]]:
    entries: Dict[str, List[str]] = {}
    for response in responses:
        for fr in response.field_responses:
            if fr.type == "list" and isinstance(fr.response, list):
                entries.setdefault(fr.field_id, []).extend(fr.response)
    return entries


async def preview_finalization(
    db: AsyncSession, event_id: int, user_id: int, selections: FinalizationSelections
) -> FinalizeResult:
    event = await get_event(db, event_id)
    ensure_organizer(event, user_id)
    responses = await _responses_for(db, event.id)
    return finalization.validate_finalization(event, selections, _list_entries(responses))


async def finalize_event(
    db: AsyncSession, event_id: int, user_id: int, selections: FinalizationSelections
) -> Tuple[Event, FinalizeResult, List[str]]:
    """Lock the event. Returns the event, the engine result and respondent emails."""
    event = await get_event(db, event_id)
    ensure_organizer(event, user_id)
    if event.status_value == EventStatus.FINALIZED.value:
        raise EventStateError("Event is already finalized")

    responses = await _responses_for(db, event.id)
    result = finalization.finalize(event, selections, user_id, _list_entries(responses))
    if not result.success:
        raise FinalizationError(result.message)

    await db.commit()
    await db.refresh(event)
    return event, result, [r.user_email for r in responses]


async def get_finalized(db: AsyncSession, event_id: int) -> FinalizedEvent:
    event = await get_event(db, event_id)
    snapshot = event.finalized_event
    if snapshot is None:
        raise NotFoundError("Event has not been finalized")
    return snapshot


# ═══════════════════════════════════════════════════════════════
#  Option removal
# ═══════════════════════════════════════════════════════════════

def _remove_category_option(event: Event, category_name: str, option_name: str) -> None:
    categories = event.voting_categories
    category = next((c for c in categories if c.category_name == category_name), None)
    if category is None:
        raise NotFoundError(f'Category "{category_name}" not found')
    if category.find_option(option_name) is None:
        raise NotFoundError(f'Option "{option_name}" not found in "{category_name}"')
    if len(category.options) <= 1:
        raise BadRequestError("Cannot delete the last remaining option")

    category.options = [o for o in category.options if o.option_name != option_name]
    event.voting_categories = categories

    # keep the backing radio/checkbox field's option list in step
    fields = event.custom_fields
    for field in fields.values():
        if field.type in VOTING_FIELD_TYPES and field.title == category_name:
            field.options = [o for o in field.options if o.label != option_name]
    event.custom_fields = fields


def _remove_list_value(event: Event, field_id: str, value: str) -> None:
    fields = event.custom_fields
    field = fields.get(field_id)
    if not isinstance(field, ListField):
        raise NotFoundError(f"List field {field_id} not found")
    if value not in field.values:
        raise NotFoundError(f'Entry "{value}" not found in "{field.title}"')
    if len(field.values) <= 1:
        raise BadRequestError("Cannot delete the last remaining option")
    field.values = [v for v in field.values if v != value]
    event.custom_fields = fields


def _clear_text_value(event: Event, field_id: str) -> None:
    fields = event.custom_fields
    field = fields.get(field_id)
    if not isinstance(field, TextField):
        raise NotFoundError(f"Text field {field_id} not found")
    if field.readonly:
        raise BadRequestError(f'Read-only text field "{field.title}" must keep its value')
    field.value = None
    event.custom_fields = fields


async def remove_option(
    db: AsyncSession, event_id: int, user_id: int, removal: OptionRemoval
) -> Event:
    event = await get_event(db, event_id)
    ensure_organizer(event, user_id)
    ensure_not_finalized(event)

    if removal.kind != "text" and not removal.option:
        raise BadRequestError("An option to remove is required")

    if removal.kind == "category":
        _remove_category_option(event, removal.target, removal.option)
    elif removal.kind == "list":
        _remove_list_value(event, removal.target, removal.option)
    else:
        _clear_text_value(event, removal.target)

    await db.commit()
    await db.refresh(event)
    logger.info(f"Removed {removal.kind} option {removal.option!r} from {removal.target!r} on event {event.id}")
    return event
