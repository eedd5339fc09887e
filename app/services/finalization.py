"""
Finalization engine.

Validates an organizer's selections against the event's current voting
options and required-field rules, then locks the outcome into an immutable
``FinalizedEvent`` snapshot. Business-rule failures come back as a
``FinalizeResult(success=False, message=...)`` instead of an exception so the
caller can show the exact reason.
"""

import logging
from datetime import datetime, timezone
from typing import Any, Dict, Iterable, List, Optional

from app.models.event import Event, EventStatus
from app.schemas.event import (
    DATE_CATEGORY,
    PLACE_CATEGORY,
    CheckboxField,
    CustomField,
    ListField,
    RadioField,
    TextField,
    VotingCategory,
)
from app.schemas.finalize import (
    CustomFieldSelection,
    FinalizationSelections,
    FinalizedEvent,
    FinalizeResult,
)

logger = logging.getLogger(__name__)

ListEntries = Dict[str, Iterable[str]]


def is_empty(value: Any) -> bool:
    """None, blank strings and empty lists all count as no selection."""
    if value is None:
        return True
    if isinstance(value, str):
        return not value.strip()
    if isinstance(value, (list, tuple, set)):
        return len(value) == 0
    return False


def _fail(message: str) -> FinalizeResult:
    return FinalizeResult(success=False, message=message)


def _find(categories: List[VotingCategory], name: str) -> Optional[VotingCategory]:
    return next((c for c in categories if c.category_name == name), None)


def _as_list(selection: Any) -> Optional[List[str]]:
    if isinstance(selection, str):
        return [selection]
    if isinstance(selection, (list, tuple)) and all(isinstance(s, str) for s in selection):
        return list(selection)
    return None


def effective_selection(field: CustomField, field_id: str, selections: FinalizationSelections) -> Any:
    """The organizer's pick, falling back to a read-only field's preset value."""
    selection = selections.custom_fields.get(field_id)
    if not is_empty(selection) or not field.readonly:
        return selection
    if isinstance(field, TextField):
        return field.value
    if isinstance(field, ListField):
        return list(field.values)
    if isinstance(field, RadioField) and field.selected_option is not None:
        return next((o.label for o in field.options if o.id == field.selected_option), None)
    return selection


# ═══════════════════════════════════════════════════════════════
#  Per-type selection checks
# ═══════════════════════════════════════════════════════════════

def _check_text(field, field_id, selection, categories, list_entries) -> Optional[str]:
    if not isinstance(selection, str):
        return f'Selection for field "{field.title}" must be text'
    return None


def _check_radio(field, field_id, selection, categories, list_entries) -> Optional[str]:
    if not isinstance(selection, str):
        return f'Field "{field.title}" accepts a single option'
    category = _find(categories, field.title)
    if category is None or category.find_option(selection) is None:
        return f'Selected option "{selection}" is not available for field "{field.title}"'
    return None


def _check_checkbox(field, field_id, selection, categories, list_entries) -> Optional[str]:
    chosen = _as_list(selection)
    if chosen is None:
        return f'Field "{field.title}" accepts a list of options'
    category = _find(categories, field.title)
    available = category.option_names if category else []
    for option in chosen:
        if option not in available:
            return f'Selected option "{option}" is not available for field "{field.title}"'
    return None


def _check_list(field, field_id, selection, categories, list_entries) -> Optional[str]:
    chosen = _as_list(selection)
    if chosen is None:
        return f'Field "{field.title}" accepts a list of entries'
    known = set(field.values) | set((list_entries or {}).get(field_id, ()))
    for entry in chosen:
        if entry not in known:
            return f'Selected list option "{entry}" is not available for field "{field.title}"'
    return None


_CHECKS = {
    "text": _check_text,
    "radio": _check_radio,
    "checkbox": _check_checkbox,
    "list": _check_list,
}


# ═══════════════════════════════════════════════════════════════
#  Validation
# ═══════════════════════════════════════════════════════════════

def find_empty_optional_fields(event: Event, selections: FinalizationSelections) -> List[str]:
    """Titles of optional (not required, not read-only) fields left without a selection."""
    empty = []
    for field_id, field in event.custom_fields.items():
        if field.required or field.readonly:
            continue
        if is_empty(selections.custom_fields.get(field_id)):
            empty.append(field.title or field_id)
    return empty


def validate_finalization(
    event: Event,
    selections: FinalizationSelections,
    list_entries: Optional[ListEntries] = None,
) -> FinalizeResult:
    """Run the blocking checks in order; stop at the first failure."""
    if event.status_value == EventStatus.FINALIZED.value:
        return _fail("Event is already finalized")

    categories = event.voting_categories
    fields = event.custom_fields
    builtins = (
        (DATE_CATEGORY, "date", selections.date),
        (PLACE_CATEGORY, "place", selections.place),
    )

    for name, label, value in builtins:
        category = _find(categories, name)
        if category is not None and category.options and is_empty(value):
            return _fail(f"A {label} must be selected when the event has {label} voting options")

    for name, label, value in builtins:
        if is_empty(value):
            continue
        category = _find(categories, name)
        if category is None or category.find_option(value) is None:
            return _fail(f"Selected {label} is not available in the event's {label} options")

    for field_id in selections.custom_fields:
        if field_id not in fields:
            return _fail(f"Custom field {field_id} not found in event definition")

    for field_id, field in fields.items():
        if field.required and is_empty(effective_selection(field, field_id, selections)):
            return _fail(f'Required field "{field.title}" must have a selection')

    for field_id, field in fields.items():
        selection = effective_selection(field, field_id, selections)
        if is_empty(selection):
            continue
        message = _CHECKS[field.type](field, field_id, selection, categories, list_entries)
        if message:
            return _fail(message)

    warnings = [
        f'Optional field "{title}" has no selection'
        for title in find_empty_optional_fields(event, selections)
    ]
    return FinalizeResult(success=True, message="All validations passed", warnings=warnings)


# ═══════════════════════════════════════════════════════════════
#  Snapshot
# ═══════════════════════════════════════════════════════════════

def _voters(field: CustomField, chosen: List[str], categories: List[VotingCategory]) -> List[int]:
    if not isinstance(field, (RadioField, CheckboxField)):
        return []
    category = _find(categories, field.title)
    voters: List[int] = []
    for name in chosen:
        option = category.find_option(name) if category else None
        for user_id in option.votes if option else []:
            if user_id not in voters:
                voters.append(user_id)
    return voters


def build_snapshot(
    event: Event,
    selections: FinalizationSelections,
    finalized_by: int,
    now: Optional[datetime] = None,
) -> FinalizedEvent:
    categories = event.voting_categories
    chosen_fields: Dict[str, CustomFieldSelection] = {}
    for field_id, field in event.custom_fields.items():
        selection = effective_selection(field, field_id, selections)
        if is_empty(selection):
            continue
        if isinstance(field, (CheckboxField, ListField)):
            selection = _as_list(selection)
        chosen = selection if isinstance(selection, list) else [selection]
        chosen_fields[field_id] = CustomFieldSelection(
            field_id=field_id,
            field_type=field.type,
            field_title=field.title,
            selection=selection,
            voters=_voters(field, chosen, categories),
        )

    return FinalizedEvent(
        finalized_date=selections.date or None,
        finalized_place=selections.place or None,
        custom_field_selections=chosen_fields,
        finalized_at=now or datetime.now(timezone.utc),
        finalized_by=finalized_by,
    )


def finalize(
    event: Event,
    selections: FinalizationSelections,
    finalized_by: int,
    list_entries: Optional[ListEntries] = None,
    now: Optional[datetime] = None,
) -> FinalizeResult:
    """
    Validate ``selections`` and, if they pass, lock the event.

    On success the snapshot is attached to ``event`` and its status becomes
    ``finalized``; nothing is persisted here. ``list_entries`` maps list
    field ids to entries participants submitted, which count as known values.
    """
    result = validate_finalization(event, selections, list_entries)
    if not result.success:
        logger.warning(f"Finalization of event {event.id} rejected: {result.message}")
        return result

    snapshot = build_snapshot(event, selections, finalized_by, now)
    event.finalized_event = snapshot
    event.status = EventStatus.FINALIZED

    logger.info(f"Event {event.id} finalized by user {finalized_by}")
    return FinalizeResult(
        success=True,
        message="Event finalized",
        warnings=result.warnings,
        snapshot=snapshot,
    )
