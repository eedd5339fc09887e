import pytest

from app.errors import BadRequestError
from app.schemas.event import ListField, VotingCategory, VotingOption
from app.schemas.response import EventResponseSubmit
from app.services import voting

D1 = "2025-01-01T10:00:00Z"
D2 = "2025-01-02T10:00:00Z"

U1 = 1
U2 = 2


def submission(**kwargs) -> EventResponseSubmit:
    return EventResponseSubmit.model_validate(kwargs)


def option(event, category, name):
    return event.get_category(category).find_option(name)


@pytest.fixture
def date_event(build_event):
    return build_event({"eventDates": {"dates": [D1], "maxVotes": 1, "allowUserAdd": True}})


@pytest.fixture
def poll_event(build_event):
    return build_event({
        "eventPlaces": {"places": ["Cafe", "Park"], "maxVotes": 2},
        "customFields": {
            "cuisine": {
                "type": "radio",
                "title": "Cuisine",
                "allowUserAddOptions": True,
                "options": [{"id": 1, "label": "Thai"}, {"id": 2, "label": "Pizza"}],
            },
            "extras": {
                "type": "checkbox",
                "title": "Extras",
                "options": [{"id": 1, "label": "Music"}, {"id": 2, "label": "Games"}],
            },
            "notes": {"type": "text", "title": "Notes"},
            "bring": {"type": "list", "title": "Bring"},
        },
    })


# ── date / place ──

def test_suggest_and_revote_date(date_event):
    event, _ = voting.merge_response(
        date_event, U1, "u1@example.com",
        submission(selectedDates=[D1], suggestedDates=[D2]),
    )
    category = event.get_category("date")
    assert category.option_names == [D1, D2]
    assert option(event, "date", D1).votes == [U1]
    assert option(event, "date", D2).added_by == U1
    assert option(event, "date", D2).votes == []

    event, _ = voting.merge_response(event, U1, "u1@example.com", submission(selectedDates=[D2]))
    assert U1 not in option(event, "date", D1).votes
    assert option(event, "date", D2).votes == [U1]


def test_resubmission_is_idempotent(date_event):
    sub = submission(selectedDates=[D1])
    event, _ = voting.merge_response(date_event, U1, "u1@example.com", sub)
    once = event.voting_categories_json
    event, _ = voting.merge_response(event, U1, "u1@example.com", sub)
    assert event.voting_categories_json == once
    assert option(event, "date", D1).votes == [U1]


def test_other_users_votes_are_kept(date_event):
    event, _ = voting.merge_response(date_event, U1, "u1@example.com", submission(selectedDates=[D1]))
    event, _ = voting.merge_response(event, U2, "u2@example.com", submission(selectedDates=[D1]))
    event, _ = voting.merge_response(event, U1, "u1@example.com", submission(selectedDates=[]))
    assert option(event, "date", D1).votes == [U2]


def test_suggestion_ignored_when_adding_is_disabled(build_event):
    event = build_event({"eventDates": {"dates": [D1], "allowUserAdd": False}})
    event, _ = voting.merge_response(
        event, U1, "u1@example.com", submission(selectedDates=[D2], suggestedDates=[D2])
    )
    assert event.get_category("date").option_names == [D1]
    assert option(event, "date", D1).votes == []


def test_suggesting_existing_option_does_not_duplicate(date_event):
    event, _ = voting.merge_response(
        date_event, U1, "u1@example.com", submission(selectedDates=[D1], suggestedDates=[D1, " "])
    )
    assert event.get_category("date").option_names == [D1]
    assert option(event, "date", D1).added_by is None


def test_missing_builtin_category_is_created_on_demand():
    categories = []
    voting.merge_builtin_category(categories, "place", U1, ["Cafe"], ["Cafe"], allow_user_add=True)
    assert [c.category_name for c in categories] == ["place"]
    assert categories[0].options[0].votes == [U1]

    untouched = []
    voting.merge_builtin_category(untouched, "place", U1, [], [], allow_user_add=True)
    assert untouched == []


def test_empty_category_is_not_recreated():
    categories = [VotingCategory(category_name="date", options=[])]
    voting.merge_builtin_category(categories, "date", U1, [D1], [], allow_user_add=False)
    assert len(categories) == 1
    assert categories[0].options == []


def test_multi_vote_places(poll_event):
    event, _ = voting.merge_response(
        poll_event, U1, "u1@example.com", submission(selectedPlaces=["Cafe", "Park"])
    )
    assert option(event, "place", "Cafe").votes == [U1]
    assert option(event, "place", "Park").votes == [U1]
    event, _ = voting.merge_response(event, U1, "u1@example.com", submission(selectedPlaces=["Park"]))
    assert option(event, "place", "Cafe").votes == []
    assert option(event, "place", "Park").votes == [U1]


# ── radio / checkbox ──

def test_field_votes_follow_mirror(poll_event):
    sub = submission(votingCategories=[
        {"categoryName": "Cuisine", "options": [
            {"optionName": "Thai", "votes": [U2, U1]},
            {"optionName": "Pizza", "votes": []},
        ]},
        {"categoryName": "Extras", "options": [
            {"optionName": "Music", "votes": [U1]},
            {"optionName": "Games", "votes": [U1]},
        ]},
    ])
    event, _ = voting.merge_response(poll_event, U1, "u1@example.com", sub)
    # only the caller's own vote is applied from the mirror
    assert option(event, "Cuisine", "Thai").votes == [U1]
    assert option(event, "Extras", "Music").votes == [U1]
    assert option(event, "Extras", "Games").votes == [U1]

    sub = submission(votingCategories=[
        {"categoryName": "Cuisine", "options": [{"optionName": "Pizza", "votes": [U1]}]},
    ])
    event, _ = voting.merge_response(event, U1, "u1@example.com", sub)
    assert option(event, "Cuisine", "Thai").votes == []
    assert option(event, "Cuisine", "Pizza").votes == [U1]
    # categories absent from the submission are left alone
    assert option(event, "Extras", "Music").votes == [U1]


def test_mirror_adds_new_option_with_attribution(poll_event):
    sub = submission(votingCategories=[
        {"categoryName": "Cuisine", "options": [{"optionName": "Sushi", "votes": [U1]}]},
    ])
    event, _ = voting.merge_response(poll_event, U1, "u1@example.com", sub)
    sushi = option(event, "Cuisine", "Sushi")
    assert sushi.added_by == U1
    assert sushi.votes == [U1]


def test_suggested_options_do_not_touch_votes(poll_event):
    event, _ = voting.merge_response(
        poll_event, U1, "u1@example.com",
        submission(votingCategories=[
            {"categoryName": "Cuisine", "options": [{"optionName": "Thai", "votes": [U1]}]},
        ]),
    )
    event, _ = voting.merge_response(
        event, U1, "u1@example.com", submission(suggestedOptions={"Cuisine": ["Tacos"]})
    )
    assert option(event, "Cuisine", "Tacos").added_by == U1
    assert option(event, "Cuisine", "Tacos").votes == []
    assert option(event, "Cuisine", "Thai").votes == [U1]


def test_unknown_category_rejected_before_mutation(poll_event):
    before = poll_event.voting_categories_json
    with pytest.raises(BadRequestError):
        voting.merge_response(
            poll_event, U1, "u1@example.com",
            submission(
                selectedPlaces=["Cafe"],
                votingCategories=[{"categoryName": "Nope", "options": [{"optionName": "x", "votes": [U1]}]}],
            ),
        )
    assert poll_event.voting_categories_json == before


# ── text / list answers ──

def test_field_responses_keep_text_and_non_empty_lists(poll_event):
    _, response = voting.merge_response(
        poll_event, U1, "u1@example.com",
        submission(customFields={
            "notes": "vegetarian",
            "bring": [" chips ", "", "chips", "salsa"],
            "cuisine": "Thai",
            "missing": "x",
        }),
    )
    answers = {fr.field_id: fr for fr in response.field_responses}
    assert set(answers) == {"notes", "bring"}
    assert answers["notes"].type == "text"
    assert answers["notes"].response == "vegetarian"
    assert answers["bring"].response == ["chips", "salsa"]
    assert response.user_id == U1
    assert response.user_email == "u1@example.com"


def test_empty_list_answer_is_dropped():
    fields = {"bring": ListField(title="Bring")}
    assert voting.build_field_responses(fields, {"bring": []}) == []


def test_existing_response_is_updated_in_place(poll_event):
    _, first = voting.merge_response(poll_event, U1, "u1@example.com", submission(customFields={"notes": "a"}))
    _, second = voting.merge_response(
        poll_event, U1, "u1@example.com", submission(customFields={"notes": "b"}), existing=first
    )
    assert second is first
    assert [fr.response for fr in second.field_responses] == ["b"]


def test_tally_and_user_selections():
    categories = [
        VotingCategory(category_name="date", options=[
            VotingOption(option_name=D1, votes=[U1, U2]),
            VotingOption(option_name=D2, votes=[U2]),
        ]),
    ]
    assert voting.tally(categories[0]) == {D1: 2, D2: 1}
    assert voting.user_selections(categories, U2) == {"date": [D1, D2]}
    assert voting.user_selections(categories, U1) == {"date": [D1]}
