"""
Voting merge engine.

Reconciles one participant's submission into an event's shared voting state
and builds the participant's non-voting field-response record.

Every category follows the same remove-then-add rule: the user is retracted
from all options of the category before their new picks are applied, so a
resubmission replaces the previous choice instead of accumulating onto it.
The engine does not check event status or vote caps; callers do that first.
"""

import logging
from typing import Any, Dict, Iterable, List, Optional, Tuple

from app.errors import BadRequestError
from app.models.event import Event
from app.models.event_response import EventResponse
from app.schemas.event import (
    BUILTIN_CATEGORIES,
    DATE_CATEGORY,
    PLACE_CATEGORY,
    RESPONSE_FIELD_TYPES,
    VOTING_FIELD_TYPES,
    CustomField,
    VotingCategory,
    VotingOption,
)
from app.schemas.response import EventResponseSubmit, FieldResponse, VotingCategoryMirror

logger = logging.getLogger(__name__)


def clean_values(values: Iterable[str]) -> List[str]:
    """Strip, drop blanks and duplicates, keep first-seen order."""
    seen: List[str] = []
    for v in values or []:
        if not isinstance(v, str):
            continue
        v = v.strip()
        if v and v not in seen:
            seen.append(v)
    return seen


def _find(categories: List[VotingCategory], name: str) -> Optional[VotingCategory]:
    return next((c for c in categories if c.category_name == name), None)


def _retract(category: VotingCategory, user_id: int) -> None:
    for option in category.options:
        option.remove_vote(user_id)


# ═══════════════════════════════════════════════════════════════
#  date / place
# ═══════════════════════════════════════════════════════════════

def merge_builtin_category(
    categories: List[VotingCategory],
    name: str,
    user_id: int,
    selected: List[str],
    suggested: List[str],
    allow_user_add: bool,
) -> List[VotingCategory]:
    """Apply a user's date or place picks (and suggestions) to ``categories`` in place."""
    selected = clean_values(selected)
    suggested = clean_values(suggested)

    category = _find(categories, name)
    if category is None:
        if not selected and not suggested:
            return categories
        category = VotingCategory(category_name=name)
        categories.append(category)

    _retract(category, user_id)

    if allow_user_add:
        for value in suggested:
            if category.find_option(value) is None:
                category.options.append(
                    VotingOption(
                        option_name=value,
                        added_by=user_id,
                        votes=[user_id] if value in selected else [],
                    )
                )

    for value in selected:
        option = category.find_option(value)
        if option is not None:
            option.add_vote(user_id)

    return categories


# ═══════════════════════════════════════════════════════════════
#  radio / checkbox categories
# ═══════════════════════════════════════════════════════════════

def voting_field_titles(fields: Dict[str, CustomField]) -> List[str]:
    return [f.title for f in fields.values() if f.type in VOTING_FIELD_TYPES]


def check_category_references(
    submission: EventResponseSubmit, fields: Dict[str, CustomField]
) -> None:
    """Reject submissions naming categories no radio/checkbox field backs."""
    known = set(voting_field_titles(fields))
    names = [m.category_name for m in submission.voting_categories]
    names += list(submission.suggested_options.keys())
    for name in names:
        if name in BUILTIN_CATEGORIES:
            continue
        if name not in known:
            raise BadRequestError(f'Unknown voting category "{name}"')


def merge_field_categories(
    categories: List[VotingCategory],
    user_id: int,
    mirrors: List[VotingCategoryMirror],
    suggested_options: Optional[Dict[str, List[str]]] = None,
) -> List[VotingCategory]:
    """Apply the user's radio/checkbox votes from the client's category mirrors."""
    suggested_options = suggested_options or {}
    mirrored = {m.category_name: m for m in mirrors if m.category_name not in BUILTIN_CATEGORIES}

    names = list(mirrored.keys())
    names += [n for n in suggested_options if n not in mirrored and n not in BUILTIN_CATEGORIES]

    for name in names:
        category = _find(categories, name)
        if category is None:
            category = VotingCategory(category_name=name)
            categories.append(category)

        mirror = mirrored.get(name)
        new_names = [o.option_name for o in mirror.options] if mirror else []
        new_names += suggested_options.get(name, [])
        for option_name in clean_values(new_names):
            if category.find_option(option_name) is None:
                category.options.append(VotingOption(option_name=option_name, added_by=user_id))

        # Suggestion-only entries add choices without touching the user's votes.
        if mirror is None:
            continue

        _retract(category, user_id)
        for m_opt in mirror.options:
            if user_id in m_opt.votes:
                option = category.find_option(m_opt.option_name.strip())
                if option is not None:
                    option.add_vote(user_id)

    return categories


# ═══════════════════════════════════════════════════════════════
#  text / list answers
# ═══════════════════════════════════════════════════════════════

def build_field_responses(
    fields: Dict[str, CustomField], answers: Dict[str, Any]
) -> List[FieldResponse]:
    """Keep the non-voting answers: any text answer, and non-empty list answers."""
    responses: List[FieldResponse] = []
    for field_id, value in (answers or {}).items():
        field = fields.get(field_id)
        if field is None or field.type not in RESPONSE_FIELD_TYPES:
            continue
        if value is None:
            continue

        if field.type == "text":
            text = value if isinstance(value, str) else str(value)
            responses.append(FieldResponse(field_id=field_id, type="text", response=text))
        else:
            if isinstance(value, str):
                value = [value]
            elif not isinstance(value, (list, tuple)):
                continue
            entries = clean_values(value)
            if entries:
                responses.append(FieldResponse(field_id=field_id, type="list", response=entries))
    return responses


# ═══════════════════════════════════════════════════════════════
#  Entry point
# ═══════════════════════════════════════════════════════════════

def merge_response(
    event: Event,
    user_id: int,
    user_email: str,
    submission: EventResponseSubmit,
    existing: Optional[EventResponse] = None,
) -> Tuple[Event, EventResponse]:
    """
    Merge ``submission`` into ``event`` and create or update the user's response.

    All category updates are computed on a working copy and written back to
    the event in a single assignment. ``existing`` is the user's current
    EventResponse, if any; it is updated in place, otherwise a new one is
    built (not yet added to a session).
    """
    fields = event.custom_fields
    check_category_references(submission, fields)

    categories = event.voting_categories
    merge_builtin_category(
        categories,
        DATE_CATEGORY,
        user_id,
        selected=submission.selected_dates,
        suggested=submission.suggested_dates,
        allow_user_add=event.event_dates.allow_user_add,
    )
    merge_builtin_category(
        categories,
        PLACE_CATEGORY,
        user_id,
        selected=submission.selected_places,
        suggested=submission.suggested_places,
        allow_user_add=event.event_places.allow_user_add,
    )
    merge_field_categories(
        categories, user_id, submission.voting_categories, submission.suggested_options
    )
    field_responses = build_field_responses(fields, submission.custom_fields)

    event.voting_categories = categories

    response = existing
    if response is None:
        response = EventResponse(event_id=event.id, user_id=user_id)
    response.user_email = user_email
    response.field_responses = field_responses

    logger.info(
        f"Merged response of user {user_id} into event {event.id} "
        f"({len(field_responses)} field answers, {'update' if existing else 'new'})"
    )
    return event, response


# ═══════════════════════════════════════════════════════════════
#  Read helpers
# ═══════════════════════════════════════════════════════════════

def tally(category: VotingCategory) -> Dict[str, int]:
    """option name -> vote count."""
    return {o.option_name: len(o.votes) for o in category.options}


def user_selections(categories: List[VotingCategory], user_id: int) -> Dict[str, List[str]]:
    """category name -> option names the user currently votes for."""
    return {
        c.category_name: [o.option_name for o in c.options if o.has_vote(user_id)]
        for c in categories
    }
