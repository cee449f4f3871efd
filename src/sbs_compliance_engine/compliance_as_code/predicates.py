"""Predicate language — tagged expression trees for declarative controls.

Controls are written as small composable expressions rather than callbacks so
that a catalog stays inspectable, diffable, and statically checkable. Every
node is a frozen dataclass that can be parsed from and serialized back to a
mapping tagged with an "op" key.

Conditions (evaluated against one entity):
- eq | ne | in | not_in | gt | ge | lt | le  {attr, value}
- present | absent | truthy | falsy          {attr}
- all_of | any_of                            {of: [condition, ...]}
- not                                        {of: condition}
- related   {path: [Kind, ...], mode: any | none | all, where?: condition}

Verdict predicates (the only legal roots of a control):
- for_all    {scope, require}  every in-scope entity satisfies require
- none_match {scope, forbid}   no in-scope entity satisfies forbid
- at_most    {scope, limit}    at most `limit` non-excepted entities in scope
- setting    {setting_id, require}  an org-wide setting satisfies require

Applicability checks:
- exists | not_exists {scope}
- all_of | any_of     {of: [applicability, ...]}

A scope is {kind, where?}. Attributes an entity does not carry read as ABSENT:
ABSENT fails eq/in/ordering comparisons and satisfies ne/not_in. Comparisons
between incompatible types are false rather than errors, so evaluation is total
over any well-formed snapshot. In a require position (for_all, setting) a
condition whose outcome rests on an ABSENT attribute is not met.

Verdicts are binary. Any node or declaration asking for a graded result is
rejected with MalformedPredicate at catalog load.
"""

from __future__ import annotations

import operator
from collections.abc import Callable, Mapping
from dataclasses import dataclass
from typing import Any

from sbs_compliance_engine.core.errors import KindNotCollectedError, MalformedPredicate, MissingData
from sbs_compliance_engine.core.interfaces import IFactStore
from sbs_compliance_engine.core.models import ABSENT, RELATIONSHIP_PAIRS, Entity, EntityKind

_COMPARISON_OPS: dict[str, tuple[str, Callable[[Any, Any], bool]]] = {
    "eq": ("==", operator.eq),
    "ne": ("!=", operator.ne),
    "gt": (">", operator.gt),
    "ge": (">=", operator.ge),
    "lt": ("<", operator.lt),
    "le": ("<=", operator.le),
    "in": ("in", lambda actual, expected: actual in expected),
    "not_in": ("not in", lambda actual, expected: actual not in expected),
}

_ATTR_CHECK_OPS = ("present", "absent", "truthy", "falsy")
_RELATED_MODES = ("any", "none", "all")

# Node names that would produce a graded result.
_GRADED_OPS = frozenset({"score", "ratio", "percent", "percentage", "weighted", "graded", "partial"})


def _format_value(value: Any) -> str:
    if value is ABSENT:
        return "ABSENT"
    return repr(value)


# ---------------------------------------------------------------------------
# Conditions
# ---------------------------------------------------------------------------


class Condition:
    """Base class for boolean conditions over a single entity."""

    def holds(self, entity: Entity, facts: IFactStore) -> bool:
        raise NotImplementedError

    def describe(self) -> str:
        raise NotImplementedError

    def to_dict(self) -> dict[str, Any]:
        raise NotImplementedError

    def attributes(self) -> tuple[str, ...]:
        """Attribute names read directly from the evaluated entity."""
        return ()

    def undetermined(self, entity: Entity, facts: IFactStore) -> bool:
        """True when the outcome rests on an attribute the entity does not carry."""
        return False

    def required_kinds(self) -> frozenset[EntityKind]:
        return frozenset()

    def check(self, control_id: str, context_kind: EntityKind) -> None:
        """Raise MalformedPredicate if this node is not valid for context_kind entities."""


@dataclass(frozen=True)
class Compare(Condition):
    op: str
    attr: str
    value: Any

    def holds(self, entity: Entity, facts: IFactStore) -> bool:
        actual = entity.get(self.attr)
        if actual is ABSENT:
            return self.op in ("ne", "not_in")
        try:
            return bool(_COMPARISON_OPS[self.op][1](actual, self.value))
        except TypeError:
            return False

    def undetermined(self, entity: Entity, facts: IFactStore) -> bool:
        return entity.get(self.attr) is ABSENT

    def describe(self) -> str:
        return f"{self.attr} {_COMPARISON_OPS[self.op][0]} {_format_value(self.value)}"

    def to_dict(self) -> dict[str, Any]:
        value = list(self.value) if isinstance(self.value, tuple) else self.value
        return {"op": self.op, "attr": self.attr, "value": value}

    def attributes(self) -> tuple[str, ...]:
        return (self.attr,)

    def check(self, control_id: str, context_kind: EntityKind) -> None:
        if self.op not in _COMPARISON_OPS:
            raise MalformedPredicate(control_id, f"unknown comparison '{self.op}'")
        if self.op in ("in", "not_in") and not isinstance(self.value, tuple):
            raise MalformedPredicate(control_id, f"'{self.op}' on '{self.attr}' needs a list value")


@dataclass(frozen=True)
class AttrCheck(Condition):
    op: str
    attr: str

    def holds(self, entity: Entity, facts: IFactStore) -> bool:
        actual = entity.get(self.attr)
        if self.op == "present":
            return actual is not ABSENT
        if self.op == "absent":
            return actual is ABSENT
        if self.op == "truthy":
            return bool(actual)
        return not actual

    def undetermined(self, entity: Entity, facts: IFactStore) -> bool:
        return self.op in ("truthy", "falsy") and entity.get(self.attr) is ABSENT

    def describe(self) -> str:
        return f"{self.attr} is {self.op}"

    def to_dict(self) -> dict[str, Any]:
        return {"op": self.op, "attr": self.attr}

    def attributes(self) -> tuple[str, ...]:
        return (self.attr,)

    def check(self, control_id: str, context_kind: EntityKind) -> None:
        if self.op not in _ATTR_CHECK_OPS:
            raise MalformedPredicate(control_id, f"unknown attribute check '{self.op}'")


@dataclass(frozen=True)
class AllOf(Condition):
    conditions: tuple[Condition, ...]

    def holds(self, entity: Entity, facts: IFactStore) -> bool:
        return all(c.holds(entity, facts) for c in self.conditions)

    def undetermined(self, entity: Entity, facts: IFactStore) -> bool:
        return any(c.undetermined(entity, facts) for c in self.conditions)

    def describe(self) -> str:
        return "(" + " and ".join(c.describe() for c in self.conditions) + ")"

    def to_dict(self) -> dict[str, Any]:
        return {"op": "all_of", "of": [c.to_dict() for c in self.conditions]}

    def attributes(self) -> tuple[str, ...]:
        return tuple(a for c in self.conditions for a in c.attributes())

    def required_kinds(self) -> frozenset[EntityKind]:
        return frozenset().union(*(c.required_kinds() for c in self.conditions))

    def check(self, control_id: str, context_kind: EntityKind) -> None:
        if not self.conditions:
            raise MalformedPredicate(control_id, "all_of needs at least one condition")
        for condition in self.conditions:
            condition.check(control_id, context_kind)


@dataclass(frozen=True)
class AnyOf(AllOf):
    def holds(self, entity: Entity, facts: IFactStore) -> bool:
        return any(c.holds(entity, facts) for c in self.conditions)

    def undetermined(self, entity: Entity, facts: IFactStore) -> bool:
        # Determined as soon as one branch holds on attributes the entity carries.
        if any(c.holds(entity, facts) and not c.undetermined(entity, facts) for c in self.conditions):
            return False
        return any(c.undetermined(entity, facts) for c in self.conditions)

    def describe(self) -> str:
        return "(" + " or ".join(c.describe() for c in self.conditions) + ")"

    def to_dict(self) -> dict[str, Any]:
        return {"op": "any_of", "of": [c.to_dict() for c in self.conditions]}

    def check(self, control_id: str, context_kind: EntityKind) -> None:
        if not self.conditions:
            raise MalformedPredicate(control_id, "any_of needs at least one condition")
        for condition in self.conditions:
            condition.check(control_id, context_kind)


@dataclass(frozen=True)
class Not(Condition):
    condition: Condition

    def holds(self, entity: Entity, facts: IFactStore) -> bool:
        return not self.condition.holds(entity, facts)

    def undetermined(self, entity: Entity, facts: IFactStore) -> bool:
        return self.condition.undetermined(entity, facts)

    def describe(self) -> str:
        return f"not {self.condition.describe()}"

    def to_dict(self) -> dict[str, Any]:
        return {"op": "not", "of": self.condition.to_dict()}

    def attributes(self) -> tuple[str, ...]:
        return self.condition.attributes()

    def required_kinds(self) -> frozenset[EntityKind]:
        return self.condition.required_kinds()

    def check(self, control_id: str, context_kind: EntityKind) -> None:
        self.condition.check(control_id, context_kind)


@dataclass(frozen=True)
class Related(Condition):
    """Join across relationships.

    Walks path hop by hop from the evaluated entity (each hop follows the
    relationship pair in either direction) and tests the reached entities.
    """

    path: tuple[EntityKind, ...]
    mode: str = "any"
    where: Condition | None = None

    def _reached(self, entity: Entity, facts: IFactStore) -> list[Entity]:
        current: tuple[str, ...] = (entity.id,)
        for kind in self.path:
            if not facts.has_kind(kind):
                raise KindNotCollectedError(kind.value)
            reached: set[str] = set()
            for entity_id in current:
                reached.update(facts.related_ids(entity_id, kind))
            current = tuple(sorted(reached))
        return [facts.get_entity(entity_id) for entity_id in current]

    def holds(self, entity: Entity, facts: IFactStore) -> bool:
        reached = self._reached(entity, facts)
        matches = [e for e in reached if self.where is None or self.where.holds(e, facts)]
        if self.mode == "any":
            return bool(matches)
        if self.mode == "none":
            return not matches
        return len(matches) == len(reached)

    def describe(self) -> str:
        target = "/".join(k.value for k in self.path)
        where = f" where {self.where.describe()}" if self.where is not None else ""
        return f"{self.mode} related {target}{where}"

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {
            "op": "related",
            "path": [k.value for k in self.path],
            "mode": self.mode,
        }
        if self.where is not None:
            data["where"] = self.where.to_dict()
        return data

    def required_kinds(self) -> frozenset[EntityKind]:
        kinds = frozenset(self.path)
        if self.where is not None:
            kinds = kinds | self.where.required_kinds()
        return kinds

    def check(self, control_id: str, context_kind: EntityKind) -> None:
        if self.mode not in _RELATED_MODES:
            raise MalformedPredicate(control_id, f"related mode must be one of {_RELATED_MODES}")
        if not self.path:
            raise MalformedPredicate(control_id, "related needs a non-empty path")
        previous = context_kind
        for kind in self.path:
            if (previous, kind) not in RELATIONSHIP_PAIRS and (kind, previous) not in RELATIONSHIP_PAIRS:
                raise MalformedPredicate(
                    control_id, f"no relationship between {previous.value} and {kind.value}"
                )
            previous = kind
        if self.where is not None:
            self.where.check(control_id, previous)


# ---------------------------------------------------------------------------
# Scope
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class Selector:
    """Entities of one kind, optionally filtered by a condition."""

    kind: EntityKind
    where: Condition | None = None

    def select(self, facts: IFactStore) -> tuple[Entity, ...]:
        """Return matching entities in id-ascending order."""
        entities = facts.get_entities(self.kind)
        if self.where is None:
            return entities
        return tuple(e for e in entities if self.where.holds(e, facts))

    def describe(self) -> str:
        if self.where is None:
            return self.kind.value
        return f"{self.kind.value} where {self.where.describe()}"

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {"kind": self.kind.value}
        if self.where is not None:
            data["where"] = self.where.to_dict()
        return data

    def required_kinds(self) -> frozenset[EntityKind]:
        kinds = frozenset({self.kind})
        if self.where is not None:
            kinds = kinds | self.where.required_kinds()
        return kinds

    def check(self, control_id: str) -> None:
        if self.where is not None:
            self.where.check(control_id, self.kind)


# ---------------------------------------------------------------------------
# Verdict predicates
# ---------------------------------------------------------------------------


class VerdictPredicate:
    """Base class for predicate roots. Produces raw failures for one snapshot."""

    def scope_entities(self, facts: IFactStore, control_id: str) -> tuple[Entity, ...]:
        raise NotImplementedError

    def raw_failures(
        self, scope: tuple[Entity, ...], facts: IFactStore
    ) -> list[tuple[Entity, str]]:
        raise NotImplementedError

    def residual(self, failures: list[tuple[Entity, str]]) -> list[tuple[Entity, str]]:
        """Failures that still count after exception suppression."""
        return failures

    def to_dict(self) -> dict[str, Any]:
        raise NotImplementedError

    def required_kinds(self) -> frozenset[EntityKind]:
        raise NotImplementedError

    def check(self, control_id: str) -> None:
        raise NotImplementedError


def _requirement_met(require: Condition, entity: Entity, facts: IFactStore) -> bool:
    return require.holds(entity, facts) and not require.undetermined(entity, facts)


def _observed(entity: Entity, attrs: tuple[str, ...]) -> str:
    names = sorted(set(attrs))
    if not names:
        return ""
    rendered = ", ".join(f"{name}={_format_value(entity.get(name))}" for name in names)
    return f" (observed: {rendered})"


@dataclass(frozen=True)
class ForAll(VerdictPredicate):
    scope: Selector
    require: Condition

    def scope_entities(self, facts: IFactStore, control_id: str) -> tuple[Entity, ...]:
        return self.scope.select(facts)

    def raw_failures(
        self, scope: tuple[Entity, ...], facts: IFactStore
    ) -> list[tuple[Entity, str]]:
        reason = f"requirement not met: {self.require.describe()}"
        return [
            (entity, reason + _observed(entity, self.require.attributes()))
            for entity in scope
            if not _requirement_met(self.require, entity, facts)
        ]

    def to_dict(self) -> dict[str, Any]:
        return {"op": "for_all", "scope": self.scope.to_dict(), "require": self.require.to_dict()}

    def required_kinds(self) -> frozenset[EntityKind]:
        return self.scope.required_kinds() | self.require.required_kinds()

    def check(self, control_id: str) -> None:
        self.scope.check(control_id)
        self.require.check(control_id, self.scope.kind)


@dataclass(frozen=True)
class NoneMatch(VerdictPredicate):
    scope: Selector
    forbid: Condition

    def scope_entities(self, facts: IFactStore, control_id: str) -> tuple[Entity, ...]:
        return self.scope.select(facts)

    def raw_failures(
        self, scope: tuple[Entity, ...], facts: IFactStore
    ) -> list[tuple[Entity, str]]:
        reason = f"forbidden condition holds: {self.forbid.describe()}"
        return [
            (entity, reason + _observed(entity, self.forbid.attributes()))
            for entity in scope
            if self.forbid.holds(entity, facts)
        ]

    def to_dict(self) -> dict[str, Any]:
        return {"op": "none_match", "scope": self.scope.to_dict(), "forbid": self.forbid.to_dict()}

    def required_kinds(self) -> frozenset[EntityKind]:
        return self.scope.required_kinds() | self.forbid.required_kinds()

    def check(self, control_id: str) -> None:
        self.scope.check(control_id)
        self.forbid.check(control_id, self.scope.kind)


@dataclass(frozen=True)
class AtMost(VerdictPredicate):
    """Aggregation: the scope may hold at most `limit` entities.

    When the raw count exceeds the limit every in-scope entity is a raw
    failure. After exception suppression the remaining entities only fail if
    they still exceed the limit.
    """

    scope: Selector
    limit: int

    def scope_entities(self, facts: IFactStore, control_id: str) -> tuple[Entity, ...]:
        return self.scope.select(facts)

    def raw_failures(
        self, scope: tuple[Entity, ...], facts: IFactStore
    ) -> list[tuple[Entity, str]]:
        if len(scope) <= self.limit:
            return []
        reason = f"{len(scope)} entities match {self.scope.describe()}; at most {self.limit} allowed"
        return [(entity, reason) for entity in scope]

    def residual(self, failures: list[tuple[Entity, str]]) -> list[tuple[Entity, str]]:
        if len(failures) <= self.limit:
            return []
        reason = (
            f"{len(failures)} non-excepted entities match {self.scope.describe()}; "
            f"at most {self.limit} allowed"
        )
        return [(entity, reason) for entity, _ in failures]

    def to_dict(self) -> dict[str, Any]:
        return {"op": "at_most", "scope": self.scope.to_dict(), "limit": self.limit}

    def required_kinds(self) -> frozenset[EntityKind]:
        return self.scope.required_kinds()

    def check(self, control_id: str) -> None:
        if isinstance(self.limit, bool) or not isinstance(self.limit, int) or self.limit < 0:
            raise MalformedPredicate(control_id, f"at_most limit must be a non-negative integer, got {self.limit!r}")
        self.scope.check(control_id)


@dataclass(frozen=True)
class SettingCheck(VerdictPredicate):
    """An org-wide setting must exist and satisfy require.

    A setting the collector did not return is MissingData, never a vacuous pass.
    """

    setting_id: str
    require: Condition

    def scope_entities(self, facts: IFactStore, control_id: str) -> tuple[Entity, ...]:
        for entity in facts.get_entities(EntityKind.SETTING):
            if entity.id == self.setting_id:
                return (entity,)
        raise MissingData(
            control_id, EntityKind.SETTING.value, f"setting '{self.setting_id}' not collected"
        )

    def raw_failures(
        self, scope: tuple[Entity, ...], facts: IFactStore
    ) -> list[tuple[Entity, str]]:
        reason = f"setting requirement not met: {self.require.describe()}"
        return [
            (entity, reason + _observed(entity, self.require.attributes()))
            for entity in scope
            if not _requirement_met(self.require, entity, facts)
        ]

    def to_dict(self) -> dict[str, Any]:
        return {"op": "setting", "setting_id": self.setting_id, "require": self.require.to_dict()}

    def required_kinds(self) -> frozenset[EntityKind]:
        return frozenset({EntityKind.SETTING}) | self.require.required_kinds()

    def check(self, control_id: str) -> None:
        if not self.setting_id:
            raise MalformedPredicate(control_id, "setting check needs a setting_id")
        self.require.check(control_id, EntityKind.SETTING)


# ---------------------------------------------------------------------------
# Applicability
# ---------------------------------------------------------------------------


class Applicability:
    """Base class for applicability checks over a whole snapshot."""

    def applies(self, facts: IFactStore) -> bool:
        raise NotImplementedError

    def to_dict(self) -> dict[str, Any]:
        raise NotImplementedError

    def required_kinds(self) -> frozenset[EntityKind]:
        raise NotImplementedError

    def check(self, control_id: str) -> None:
        raise NotImplementedError


@dataclass(frozen=True)
class Exists(Applicability):
    scope: Selector
    negate: bool = False

    def applies(self, facts: IFactStore) -> bool:
        found = bool(self.scope.select(facts))
        return not found if self.negate else found

    def to_dict(self) -> dict[str, Any]:
        return {"op": "not_exists" if self.negate else "exists", "scope": self.scope.to_dict()}

    def required_kinds(self) -> frozenset[EntityKind]:
        return self.scope.required_kinds()

    def check(self, control_id: str) -> None:
        self.scope.check(control_id)


@dataclass(frozen=True)
class ApplicableIf(Applicability):
    """all_of / any_of over nested applicability checks."""

    mode: str
    checks: tuple[Applicability, ...]

    def applies(self, facts: IFactStore) -> bool:
        results = (c.applies(facts) for c in self.checks)
        return all(results) if self.mode == "all_of" else any(results)

    def to_dict(self) -> dict[str, Any]:
        return {"op": self.mode, "of": [c.to_dict() for c in self.checks]}

    def required_kinds(self) -> frozenset[EntityKind]:
        return frozenset().union(*(c.required_kinds() for c in self.checks))

    def check(self, control_id: str) -> None:
        if self.mode not in ("all_of", "any_of") or not self.checks:
            raise MalformedPredicate(control_id, f"invalid applicability combinator '{self.mode}'")
        for item in self.checks:
            item.check(control_id)


# ---------------------------------------------------------------------------
# Parsing
# ---------------------------------------------------------------------------


def _require_mapping(data: Any, control_id: str, what: str) -> Mapping[str, Any]:
    if not isinstance(data, Mapping):
        raise MalformedPredicate(control_id, f"{what} must be a mapping, got {type(data).__name__}")
    return data


def _op(data: Mapping[str, Any], control_id: str) -> str:
    op = data.get("op")
    if not isinstance(op, str):
        raise MalformedPredicate(control_id, f"node without an 'op' tag: {dict(data)!r}")
    if op in _GRADED_OPS:
        raise MalformedPredicate(control_id, f"'{op}' yields a graded result; verdicts are binary")
    return op


def _field(data: Mapping[str, Any], name: str, control_id: str) -> Any:
    try:
        return data[name]
    except KeyError:
        raise MalformedPredicate(control_id, f"'{data.get('op')}' node is missing '{name}'") from None


def _kind(value: Any, control_id: str) -> EntityKind:
    try:
        return EntityKind(value)
    except ValueError:
        raise MalformedPredicate(control_id, f"unknown entity kind '{value}'") from None


def parse_condition(data: Any, control_id: str) -> Condition:
    """Parse a condition mapping into a Condition node.

    Args:
        data: Tagged mapping.
        control_id: Owning control, for error messages.

    Returns:
        The parsed Condition.

    Raises:
        MalformedPredicate: On unknown ops, graded ops, or missing fields.
    """
    data = _require_mapping(data, control_id, "condition")
    op = _op(data, control_id)
    if op in _COMPARISON_OPS:
        value = _field(data, "value", control_id)
        if op in ("in", "not_in"):
            if not isinstance(value, (list, tuple)):
                raise MalformedPredicate(control_id, f"'{op}' needs a list value")
            value = tuple(value)
        return Compare(op=op, attr=str(_field(data, "attr", control_id)), value=value)
    if op in _ATTR_CHECK_OPS:
        return AttrCheck(op=op, attr=str(_field(data, "attr", control_id)))
    if op in ("all_of", "any_of"):
        items = _field(data, "of", control_id)
        if not isinstance(items, list):
            raise MalformedPredicate(control_id, f"'{op}' needs a list under 'of'")
        conditions = tuple(parse_condition(item, control_id) for item in items)
        return AllOf(conditions) if op == "all_of" else AnyOf(conditions)
    if op == "not":
        return Not(parse_condition(_field(data, "of", control_id), control_id))
    if op == "related":
        path = _field(data, "path", control_id)
        if isinstance(path, str):
            path = [path]
        where = data.get("where")
        return Related(
            path=tuple(_kind(k, control_id) for k in path),
            mode=str(data.get("mode", "any")),
            where=parse_condition(where, control_id) if where is not None else None,
        )
    raise MalformedPredicate(control_id, f"unknown condition op '{op}'")


def parse_selector(data: Any, control_id: str) -> Selector:
    """Parse a {kind, where?} scope mapping."""
    data = _require_mapping(data, control_id, "scope")
    where = data.get("where")
    return Selector(
        kind=_kind(_field(data, "kind", control_id), control_id),
        where=parse_condition(where, control_id) if where is not None else None,
    )


def parse_predicate(data: Any, control_id: str) -> VerdictPredicate:
    """Parse and statically check a verdict predicate.

    Args:
        data: Tagged mapping for the predicate root.
        control_id: Owning control.

    Returns:
        The parsed VerdictPredicate.

    Raises:
        MalformedPredicate: If the root is not a binary verdict predicate or
            any nested node fails its checks.
    """
    data = _require_mapping(data, control_id, "predicate")
    result = data.get("result", "binary")
    if result != "binary":
        raise MalformedPredicate(control_id, f"predicate declares a '{result}' result; verdicts are binary")
    op = _op(data, control_id)
    predicate: VerdictPredicate
    if op == "for_all":
        predicate = ForAll(
            scope=parse_selector(_field(data, "scope", control_id), control_id),
            require=parse_condition(_field(data, "require", control_id), control_id),
        )
    elif op == "none_match":
        predicate = NoneMatch(
            scope=parse_selector(_field(data, "scope", control_id), control_id),
            forbid=parse_condition(_field(data, "forbid", control_id), control_id),
        )
    elif op == "at_most":
        predicate = AtMost(
            scope=parse_selector(_field(data, "scope", control_id), control_id),
            limit=_field(data, "limit", control_id),
        )
    elif op == "setting":
        predicate = SettingCheck(
            setting_id=str(_field(data, "setting_id", control_id)),
            require=parse_condition(_field(data, "require", control_id), control_id),
        )
    else:
        raise MalformedPredicate(control_id, f"'{op}' is not a verdict predicate")
    predicate.check(control_id)
    return predicate


def parse_applicability(data: Any, control_id: str) -> Applicability:
    """Parse and statically check an applicability mapping."""
    data = _require_mapping(data, control_id, "applicability")
    op = _op(data, control_id)
    applicability: Applicability
    if op in ("exists", "not_exists"):
        applicability = Exists(
            scope=parse_selector(_field(data, "scope", control_id), control_id),
            negate=op == "not_exists",
        )
    elif op in ("all_of", "any_of"):
        items = _field(data, "of", control_id)
        if not isinstance(items, list):
            raise MalformedPredicate(control_id, f"'{op}' needs a list under 'of'")
        applicability = ApplicableIf(
            mode=op, checks=tuple(parse_applicability(item, control_id) for item in items)
        )
    else:
        raise MalformedPredicate(control_id, f"unknown applicability op '{op}'")
    applicability.check(control_id)
    return applicability


def validate_predicate(predicate: Any, control_id: str) -> None:
    """Check a programmatically built predicate root.

    Raises:
        MalformedPredicate: If predicate is not a VerdictPredicate or fails its checks.
    """
    if not isinstance(predicate, VerdictPredicate):
        raise MalformedPredicate(
            control_id, f"predicate root must be a verdict predicate, got {type(predicate).__name__}"
        )
    predicate.check(control_id)
