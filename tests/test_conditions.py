from __future__ import annotations

import pytest

from clinic_access.core.errors import ValidationError
from clinic_access.policy.conditions import (
    MAX_CONDITION_DEPTH,
    UNKNOWN,
    And,
    BranchMatches,
    Or,
    condition_to_dict,
    parse_condition,
)


def test_equals_and_in_set_compare_scalars() -> None:
    equals = parse_condition({"op": "equals", "attribute": "patient.consent", "value": "granted"})
    in_set = parse_condition({"op": "in_set", "attribute": "request.action", "values": ["VIEW", "EDIT"]})

    assert equals.evaluate({"patient.consent": "granted"}) is True
    assert equals.evaluate({"patient": {"consent": "revoked"}}) is False
    assert in_set.evaluate({"request.action": "EDIT"}) is True
    assert in_set.evaluate({"request.action": "DELETE"}) is False


def test_booleans_do_not_match_integers() -> None:
    condition = parse_condition({"op": "equals", "attribute": "flag", "value": True})

    assert condition.evaluate({"flag": True}) is True
    assert condition.evaluate({"flag": 1}) is False


def test_missing_attribute_is_unknown() -> None:
    condition = parse_condition({"op": "equals", "attribute": "consent.granted", "value": True})

    assert condition.evaluate({}) is None
    assert condition.evaluate({"consent.granted": UNKNOWN}) is None


def test_branch_matches_defaults_to_requester_and_patient() -> None:
    condition = parse_condition({"op": "branch_matches"})

    assert isinstance(condition, BranchMatches)
    assert condition.evaluate({"requester.branch_id": "north", "patient.branch_id": "north"}) is True
    assert condition.evaluate({"requester.branch_id": "north", "patient.branch_id": "south"}) is False
    assert condition.evaluate({"requester.branch_id": "north"}) is None


def test_time_within_wraps_past_midnight() -> None:
    night_shift = parse_condition({"op": "time_within", "start": "22:00", "end": "06:00"})

    assert night_shift.evaluate({"request.time": "23:30:00"}) is True
    assert night_shift.evaluate({"request.time": "2026-10-19T05:59:00"}) is True
    assert night_shift.evaluate({"request.time": "12:00"}) is False
    assert night_shift.evaluate({"request.time": "not-a-time"}) is None


def test_kleene_logic_for_combinators() -> None:
    known_false = {"op": "equals", "attribute": "a", "value": 1}
    unknown = {"op": "equals", "attribute": "missing", "value": 1}
    known_true = {"op": "equals", "attribute": "b", "value": 2}
    bag = {"a": 0, "b": 2}

    assert parse_condition({"op": "and", "conditions": [unknown, known_false]}).evaluate(bag) is False
    assert parse_condition({"op": "and", "conditions": [unknown, known_true]}).evaluate(bag) is None
    assert parse_condition({"op": "or", "conditions": [unknown, known_true]}).evaluate(bag) is True
    assert parse_condition({"op": "or", "conditions": [unknown, known_false]}).evaluate(bag) is None
    assert parse_condition({"op": "not", "condition": unknown}).evaluate(bag) is None
    assert parse_condition({"op": "not", "condition": known_false}).evaluate(bag) is True
    assert parse_condition({"op": "and"}).evaluate(bag) is True


def test_attributes_lists_every_referenced_path() -> None:
    condition = parse_condition(
        {
            "op": "and",
            "conditions": [
                {"op": "branch_matches"},
                {"op": "not", "condition": {"op": "equals", "attribute": "consent.revoked", "value": True}},
            ],
        }
    )

    assert condition.attributes() == {"requester.branch_id", "patient.branch_id", "consent.revoked"}


@pytest.mark.parametrize(
    "raw",
    [
        {"op": "regex", "attribute": "a", "pattern": ".*"},
        {"op": "equals", "attribute": "a"},
        {"op": "equals", "attribute": "bad path!", "value": 1},
        {"op": "in_set", "attribute": "a", "values": []},
        {"op": "or", "conditions": []},
        {"op": "time_within", "start": "08:00", "end": "08:00"},
        {"op": "equals", "attribute": "a", "value": 1, "extra": True},
        "equals",
    ],
)
def test_malformed_conditions_are_rejected(raw: object) -> None:
    with pytest.raises(ValidationError):
        parse_condition(raw)


def test_nesting_depth_is_bounded() -> None:
    condition: dict = {"op": "equals", "attribute": "a", "value": 1}
    for _ in range(MAX_CONDITION_DEPTH):
        condition = {"op": "not", "condition": condition}

    with pytest.raises(ValidationError):
        parse_condition(condition)


def test_round_trips_through_storage_form() -> None:
    raw = {
        "op": "or",
        "conditions": [
            {"op": "in_set", "attribute": "request.branch_id", "values": ["north", "south"]},
            {"op": "time_within", "start": "08:00:00", "end": "17:00:00"},
        ],
    }
    stored = condition_to_dict(parse_condition(raw))

    reparsed = parse_condition(stored)
    assert isinstance(reparsed, Or)
    assert reparsed == parse_condition(raw)
    assert isinstance(parse_condition({"op": "and", "conditions": [raw]}), And)
