"""Tests for the predicate language.

Covers:
- comparison and attribute-check semantics, including ABSENT handling
- relationship traversal (related) in any / none / all modes
- verdict predicate roots: for_all, none_match, at_most, setting
- applicability checks
- static checks raising MalformedPredicate
"""

from typing import Any

import pytest

from sbs_compliance_engine.compliance_as_code.fact_store import FactStore
from sbs_compliance_engine.compliance_as_code.predicates import (
    AtMost,
    Compare,
    ForAll,
    Selector,
    parse_applicability,
    parse_condition,
    parse_predicate,
    validate_predicate,
)
from sbs_compliance_engine.core.errors import MalformedPredicate, MissingData
from sbs_compliance_engine.core.models import Entity, EntityKind


def _holds(condition: dict[str, Any], attributes: dict[str, Any], facts: FactStore) -> bool:
    entity = Entity(id="e1", kind=EntityKind.USER, attributes=attributes)
    return parse_condition(condition, "SBS-TEST-001").holds(entity, facts)


# ---------------------------------------------------------------------------
# Test 1: comparisons
# ---------------------------------------------------------------------------


@pytest.mark.parametrize(
    ("condition", "attributes", "expected"),
    [
        ({"op": "eq", "attr": "a", "value": True}, {"a": True}, True),
        ({"op": "eq", "attr": "a", "value": True}, {"a": False}, False),
        ({"op": "ne", "attr": "a", "value": "Guest"}, {"a": "Standard"}, True),
        ({"op": "in", "attr": "a", "value": ["x", "y"]}, {"a": "y"}, True),
        ({"op": "not_in", "attr": "a", "value": ["x", "y"]}, {"a": "z"}, True),
        ({"op": "ge", "attr": "a", "value": 12}, {"a": 12}, True),
        ({"op": "lt", "attr": "a", "value": 12}, {"a": 12}, False),
    ],
)
def test_comparison_semantics(
    condition: dict[str, Any], attributes: dict[str, Any], expected: bool, org_facts: FactStore
) -> None:
    """Comparison ops behave like their Python counterparts on present values."""
    assert _holds(condition, attributes, org_facts) is expected


@pytest.mark.parametrize(
    ("op", "value", "expected"),
    [
        ("eq", True, False),
        ("ne", True, True),
        ("in", [True, False], False),
        ("not_in", [True, False], True),
        ("gt", 0, False),
        ("le", 100, False),
    ],
)
def test_absent_attribute_semantics(op: str, value: Any, expected: bool, org_facts: FactStore) -> None:
    """ABSENT fails eq/in/ordering and satisfies ne/not_in."""
    assert _holds({"op": op, "attr": "missing", "value": value}, {}, org_facts) is expected


def test_absent_differs_from_explicit_null(org_facts: FactStore) -> None:
    """An explicit None is present; a missing attribute is not."""
    present = {"op": "present", "attr": "a"}
    assert _holds(present, {"a": None}, org_facts) is True
    assert _holds(present, {}, org_facts) is False
    assert _holds({"op": "eq", "attr": "a", "value": None}, {"a": None}, org_facts) is True
    assert _holds({"op": "eq", "attr": "a", "value": None}, {}, org_facts) is False


def test_incompatible_types_compare_false(org_facts: FactStore) -> None:
    """An ordering comparison across incompatible types is false, not an error."""
    assert _holds({"op": "ge", "attr": "a", "value": 12}, {"a": "twelve"}, org_facts) is False


def test_combinators(org_facts: FactStore) -> None:
    """all_of, any_of and not compose conditions."""
    condition = {
        "op": "all_of",
        "of": [
            {"op": "truthy", "attr": "active"},
            {"op": "any_of", "of": [{"op": "falsy", "attr": "sso"}, {"op": "absent", "attr": "mfa"}]},
            {"op": "not", "of": {"op": "eq", "attr": "type", "value": "Integration"}},
        ],
    }
    assert _holds(condition, {"active": True, "sso": False, "type": "Standard"}, org_facts) is True
    assert _holds(condition, {"active": True, "sso": True, "mfa": True}, org_facts) is False
    assert _holds(condition, {"active": True, "sso": False, "type": "Integration"}, org_facts) is False


# ---------------------------------------------------------------------------
# Test 2: related
# ---------------------------------------------------------------------------


def test_related_any_follows_direct_relationship(org_facts: FactStore) -> None:
    """related/any is true when some reached entity satisfies where."""
    condition = parse_condition(
        {"op": "related", "path": ["Profile"], "where": {"op": "truthy", "attr": "modify_all_data"}},
        "SBS-TEST-001",
    )
    assert condition.holds(org_facts.get_entity("005U01"), org_facts) is True
    assert condition.holds(org_facts.get_entity("005U02"), org_facts) is False


def test_related_multi_hop_path(org_facts: FactStore) -> None:
    """A multi-hop path reaches entities through intermediate kinds."""
    condition = parse_condition(
        {
            "op": "related",
            "path": ["PermissionSet", "PermissionSetGroup"],
            "mode": "any",
            "where": {"op": "le", "attr": "last_reviewed_days", "value": 90},
        },
        "SBS-TEST-001",
    )
    assert condition.holds(org_facts.get_entity("005U01"), org_facts) is True
    assert condition.holds(org_facts.get_entity("005U05"), org_facts) is False


def test_related_none_and_all_modes(org_facts: FactStore) -> None:
    """none is true when nothing matches; all is vacuously true when nothing is reached."""
    none_mode = parse_condition(
        {"op": "related", "path": ["PermissionSet"], "mode": "none", "where": {"op": "truthy", "attr": "author_apex"}},
        "SBS-TEST-001",
    )
    all_mode = parse_condition(
        {"op": "related", "path": ["PermissionSet"], "mode": "all", "where": {"op": "truthy", "attr": "author_apex"}},
        "SBS-TEST-001",
    )
    assert none_mode.holds(org_facts.get_entity("005U01"), org_facts) is False
    assert none_mode.holds(org_facts.get_entity("005U02"), org_facts) is True
    assert all_mode.holds(org_facts.get_entity("005U01"), org_facts) is True
    assert all_mode.holds(org_facts.get_entity("005U02"), org_facts) is True


# ---------------------------------------------------------------------------
# Test 3: verdict predicates
# ---------------------------------------------------------------------------


def test_for_all_reports_failures_with_observed_values(org_facts: FactStore) -> None:
    """for_all fails every in-scope entity that does not meet require."""
    predicate = parse_predicate(
        {
            "op": "for_all",
            "scope": {"kind": "User", "where": {"op": "eq", "attr": "is_active", "value": True}},
            "require": {"op": "eq", "attr": "is_sso_enabled", "value": True},
        },
        "SBS-TEST-001",
    )
    scope = predicate.scope_entities(org_facts, "SBS-TEST-001")
    failures = predicate.raw_failures(scope, org_facts)
    assert len(scope) == 10
    assert [entity.id for entity, _ in failures] == ["005U08", "005U09", "005U10"]
    assert "is_sso_enabled=False" in failures[0][1]


def test_none_match_reports_matching_entities(org_facts: FactStore) -> None:
    """none_match fails every in-scope entity for which forbid holds."""
    predicate = parse_predicate(
        {"op": "none_match", "scope": {"kind": "Profile"}, "forbid": {"op": "truthy", "attr": "api_enabled"}},
        "SBS-TEST-001",
    )
    scope = predicate.scope_entities(org_facts, "SBS-TEST-001")
    assert [entity.id for entity, _ in predicate.raw_failures(scope, org_facts)] == ["00eADMIN"]


def test_at_most_counts_scope_and_residual(org_facts: FactStore) -> None:
    """at_most fails the whole scope when over the limit, and re-checks after suppression."""
    predicate = AtMost(
        scope=Selector(EntityKind.USER, parse_condition({"op": "falsy", "attr": "is_sso_enabled"}, "SBS-TEST-001")),
        limit=2,
    )
    validate_predicate(predicate, "SBS-TEST-001")
    scope = predicate.scope_entities(org_facts, "SBS-TEST-001")
    failures = predicate.raw_failures(scope, org_facts)
    assert len(failures) == 3
    assert "at most 2 allowed" in failures[0][1]
    assert predicate.residual(failures[:2]) == []
    assert len(predicate.residual(failures)) == 3


def test_setting_check_missing_setting_is_missing_data(org_facts: FactStore) -> None:
    """A setting entity the collector did not return is MissingData."""
    predicate = parse_predicate(
        {"op": "setting", "setting_id": "SessionSettings", "require": {"op": "le", "attr": "timeout", "value": 120}},
        "SBS-TEST-001",
    )
    with pytest.raises(MissingData) as exc_info:
        predicate.scope_entities(org_facts, "SBS-TEST-001")
    assert exc_info.value.missing_kind == "Setting"
    assert exc_info.value.control_id == "SBS-TEST-001"


def test_setting_check_evaluates_setting_attributes(org_facts: FactStore) -> None:
    """The setting root checks one named setting entity."""
    predicate = parse_predicate(
        {"op": "setting", "setting_id": "PasswordPolicies", "require": {"op": "ge", "attr": "min_length", "value": 12}},
        "SBS-TEST-001",
    )
    scope = predicate.scope_entities(org_facts, "SBS-TEST-001")
    failures = predicate.raw_failures(scope, org_facts)
    assert [entity.id for entity, _ in failures] == ["PasswordPolicies"]
    assert "min_length=8" in failures[0][1]


@pytest.mark.parametrize(
    "require",
    [
        {"op": "ne", "attr": "lockout_policy", "value": "disabled"},
        {"op": "not_in", "attr": "lockout_policy", "value": ["disabled", "off"]},
        {"op": "falsy", "attr": "lockout_policy"},
        {"op": "not", "of": {"op": "eq", "attr": "lockout_policy", "value": "disabled"}},
    ],
)
def test_absent_attribute_does_not_meet_a_requirement(require: dict[str, Any], org_facts: FactStore) -> None:
    """In a require position a condition resting on ABSENT is not met."""
    predicate = parse_predicate({"op": "setting", "setting_id": "PasswordPolicies", "require": require}, "SBS-TEST-001")
    scope = predicate.scope_entities(org_facts, "SBS-TEST-001")
    failures = predicate.raw_failures(scope, org_facts)
    assert [entity.id for entity, _ in failures] == ["PasswordPolicies"]
    assert "lockout_policy=ABSENT" in failures[0][1]


def test_any_of_requirement_met_by_a_carried_attribute(org_facts: FactStore) -> None:
    """any_of is met when one branch holds on an attribute the entity carries."""
    predicate = parse_predicate(
        {
            "op": "for_all",
            "scope": {"kind": "User"},
            "require": {
                "op": "any_of",
                "of": [{"op": "ne", "attr": "federation_id", "value": ""}, {"op": "truthy", "attr": "mfa_enabled"}],
            },
        },
        "SBS-TEST-001",
    )
    scope = predicate.scope_entities(org_facts, "SBS-TEST-001")
    assert predicate.raw_failures(scope, org_facts) == []


def test_absent_attribute_still_matches_forbid(org_facts: FactStore) -> None:
    """none_match keeps plain ABSENT semantics: a missing attribute satisfies falsy."""
    predicate = parse_predicate(
        {"op": "none_match", "scope": {"kind": "Profile"}, "forbid": {"op": "falsy", "attr": "modify_all_data"}},
        "SBS-TEST-001",
    )
    scope = predicate.scope_entities(org_facts, "SBS-TEST-001")
    assert [entity.id for entity, _ in predicate.raw_failures(scope, org_facts)] == ["00eSTD"]


def test_predicate_round_trips_to_mapping() -> None:
    """Parsing the mapping form of a predicate yields an equal predicate."""
    data = {
        "op": "for_all",
        "scope": {"kind": "User", "where": {"op": "in", "attr": "user_type", "value": ["Standard", "Guest"]}},
        "require": {"op": "related", "path": ["Profile"], "mode": "none", "where": {"op": "truthy", "attr": "api_enabled"}},
    }
    predicate = parse_predicate(data, "SBS-TEST-001")
    assert parse_predicate(predicate.to_dict(), "SBS-TEST-001") == predicate


# ---------------------------------------------------------------------------
# Test 4: applicability
# ---------------------------------------------------------------------------


def test_applicability_exists_and_not_exists(org_facts: FactStore) -> None:
    """exists / not_exists test whether the scope has any entity."""
    guests = {"kind": "User", "where": {"op": "eq", "attr": "user_type", "value": "Guest"}}
    assert parse_applicability({"op": "exists", "scope": guests}, "SBS-TEST-001").applies(org_facts) is False
    assert parse_applicability({"op": "not_exists", "scope": guests}, "SBS-TEST-001").applies(org_facts) is True


def test_applicability_combinators(org_facts: FactStore) -> None:
    """all_of / any_of combine applicability checks."""
    users = {"op": "exists", "scope": {"kind": "User"}}
    guests = {"op": "exists", "scope": {"kind": "User", "where": {"op": "eq", "attr": "user_type", "value": "Guest"}}}
    assert parse_applicability({"op": "any_of", "of": [users, guests]}, "SBS-TEST-001").applies(org_facts) is True
    assert parse_applicability({"op": "all_of", "of": [users, guests]}, "SBS-TEST-001").applies(org_facts) is False


# ---------------------------------------------------------------------------
# Test 5: static checks
# ---------------------------------------------------------------------------


@pytest.mark.parametrize(
    ("data", "fragment"),
    [
        ({"op": "eq", "attr": "a", "value": 1}, "not a verdict predicate"),
        ({"op": "score", "scope": {"kind": "User"}}, "graded"),
        ({"op": "for_all", "result": "percentage", "scope": {"kind": "User"}, "require": {"op": "truthy", "attr": "a"}}, "binary"),
        ({"op": "for_all", "scope": {"kind": "Dashboard"}, "require": {"op": "truthy", "attr": "a"}}, "unknown entity kind"),
        ({"op": "for_all", "scope": {"kind": "User"}}, "missing 'require'"),
        ({"op": "for_all", "scope": {"kind": "User"}, "require": {"op": "matches", "attr": "a"}}, "unknown condition op"),
        ({"op": "at_most", "scope": {"kind": "User"}, "limit": -1}, "non-negative"),
        ({"op": "at_most", "scope": {"kind": "User"}, "limit": "3"}, "non-negative"),
        (
            {"op": "for_all", "scope": {"kind": "Setting"}, "require": {"op": "related", "path": ["User"]}},
            "no relationship",
        ),
        (
            {"op": "for_all", "scope": {"kind": "User"}, "require": {"op": "related", "path": ["Profile"], "mode": "most"}},
            "related mode",
        ),
        ({"op": "for_all", "scope": {"kind": "User"}, "require": {"op": "in", "attr": "a", "value": "x"}}, "list value"),
        ({"op": "for_all", "scope": {"kind": "User"}, "require": {"op": "all_of", "of": []}}, "at least one"),
    ],
)
def test_malformed_predicates_rejected(data: dict[str, Any], fragment: str) -> None:
    """Malformed predicates raise MalformedPredicate naming the control."""
    with pytest.raises(MalformedPredicate, match=fragment) as exc_info:
        parse_predicate(data, "SBS-TEST-001")
    assert exc_info.value.control_id == "SBS-TEST-001"


def test_validate_predicate_rejects_non_root() -> None:
    """A bare condition cannot be a control's predicate."""
    with pytest.raises(MalformedPredicate, match="verdict predicate"):
        validate_predicate(Compare("eq", "a", 1), "SBS-TEST-001")


def test_validate_predicate_checks_programmatic_trees() -> None:
    """Programmatically built roots get the same static checks as parsed ones."""
    predicate = ForAll(Selector(EntityKind.USER), Compare("between", "a", (1, 2)))
    with pytest.raises(MalformedPredicate, match="unknown comparison"):
        validate_predicate(predicate, "SBS-TEST-001")
