from datetime import datetime, timezone

import pytest

from app.models.event import EventStatus
from app.schemas.finalize import FinalizationSelections
from app.services import finalization

D1 = "2025-01-01T10:00:00Z"
D2 = "2025-01-02T10:00:00Z"
NOW = datetime(2025, 1, 1, 12, 0, tzinfo=timezone.utc)


def selections(**kwargs) -> FinalizationSelections:
    return FinalizationSelections.model_validate(kwargs)


@pytest.fixture
def event(build_event):
    event = build_event({
        "eventDates": {"dates": [D1, D2]},
        "eventPlaces": {"places": ["Cafe"]},
        "customFields": {
            "cuisine": {
                "type": "radio",
                "title": "Cuisine",
                "required": True,
                "options": [{"id": 1, "label": "Thai"}, {"id": 2, "label": "Pizza"}],
            },
            "extras": {
                "type": "checkbox",
                "title": "Extras",
                "options": [{"id": 1, "label": "Music"}, {"id": 2, "label": "Games"}],
            },
            "bring": {"type": "list", "title": "Bring", "values": ["chips"]},
            "notes": {"type": "text", "title": "Notes"},
        },
    })
    categories = event.voting_categories
    for c in categories:
        if c.category_name == "Cuisine":
            c.find_option("Thai").add_vote(7)
            c.find_option("Thai").add_vote(8)
    event.voting_categories = categories
    return event


def valid(**overrides):
    base = {"date": D1, "place": "Cafe", "customFields": {"cuisine": "Thai"}}
    base.update(overrides)
    return selections(**base)


def test_finalize_locks_event_and_builds_snapshot(event):
    result = finalization.finalize(
        event,
        valid(customFields={"cuisine": "Thai", "extras": ["Music"], "bring": ["chips", "salsa"]}),
        finalized_by=100,
        list_entries={"bring": ["salsa"]},
        now=NOW,
    )
    assert result.success, result.message
    assert event.status == EventStatus.FINALIZED

    snapshot = event.finalized_event
    assert snapshot == result.snapshot
    assert snapshot.finalized_date == D1
    assert snapshot.finalized_place == "Cafe"
    assert snapshot.finalized_by == 100
    assert snapshot.finalized_at == NOW
    cuisine = snapshot.custom_field_selections["cuisine"]
    assert cuisine.selection == "Thai"
    assert cuisine.field_title == "Cuisine"
    assert cuisine.voters == [7, 8]
    assert snapshot.custom_field_selections["bring"].selection == ["chips", "salsa"]
    assert "notes" not in snapshot.custom_field_selections
    assert result.warnings == ['Optional field "Notes" has no selection']


def test_date_not_among_options_is_not_available(event):
    result = finalization.finalize(event, valid(date="2030-05-05T10:00:00Z"), finalized_by=100)
    assert not result.success
    assert "not available" in result.message
    assert event.status == EventStatus.OPEN
    assert event.finalized_event is None


def test_place_not_among_options(event):
    result = finalization.validate_finalization(event, valid(place="Beach"))
    assert result.message == "Selected place is not available in the event's place options"


def test_date_required_when_date_options_exist(event):
    result = finalization.finalize(event, valid(date=None), finalized_by=100)
    assert not result.success
    assert result.message == "A date must be selected when the event has date voting options"


def test_no_date_needed_when_date_category_is_empty(build_event):
    event = build_event({"eventPlaces": {"places": ["Cafe"]}})
    assert event.get_category("date").options == []
    result = finalization.finalize(event, selections(place="Cafe"), finalized_by=100, now=NOW)
    assert result.success
    assert event.finalized_event.finalized_date is None


def test_required_field_needs_selection(event):
    result = finalization.validate_finalization(event, valid(customFields={}))
    assert result.message == 'Required field "Cuisine" must have a selection'


def test_unknown_custom_field(event):
    result = finalization.validate_finalization(
        event, valid(customFields={"cuisine": "Thai", "ghost": "x"})
    )
    assert result.message == "Custom field ghost not found in event definition"


def test_radio_takes_one_available_option(event):
    result = finalization.validate_finalization(event, valid(customFields={"cuisine": "Sushi"}))
    assert not result.success
    assert "not available" in result.message

    result = finalization.validate_finalization(event, valid(customFields={"cuisine": ["Thai", "Pizza"]}))
    assert result.message == 'Field "Cuisine" accepts a single option'


def test_checkbox_must_be_subset(event):
    result = finalization.validate_finalization(
        event, valid(customFields={"cuisine": "Thai", "extras": ["Music", "Karaoke"]})
    )
    assert result.message == 'Selected option "Karaoke" is not available for field "Extras"'


def test_list_entry_must_be_known(event):
    result = finalization.validate_finalization(
        event, valid(customFields={"cuisine": "Thai", "bring": ["salsa"]})
    )
    assert result.message == 'Selected list option "salsa" is not available for field "Bring"'


def test_readonly_field_falls_back_to_preset(build_event):
    event = build_event({
        "customFields": {
            "dress": {"type": "text", "title": "Dress code", "readonly": True, "required": True,
                      "value": "Casual"},
        },
    })
    result = finalization.finalize(event, selections(), finalized_by=100, now=NOW)
    assert result.success, result.message
    assert event.finalized_event.custom_field_selections["dress"].selection == "Casual"


def test_finalization_is_terminal(event):
    assert finalization.finalize(event, valid(), finalized_by=100, now=NOW).success
    first = event.finalized_event_json

    again = finalization.finalize(event, valid(date=D2), finalized_by=100)
    assert not again.success
    assert again.message == "Event is already finalized"
    assert event.finalized_event_json == first


def test_find_empty_optional_fields(event):
    assert finalization.find_empty_optional_fields(event, valid()) == ["Extras", "Bring", "Notes"]


def test_selection_schema_rejects_bad_date_and_blank_place():
    with pytest.raises(ValueError):
        selections(date="next tuesday")
    with pytest.raises(ValueError):
        selections(place="   ")
