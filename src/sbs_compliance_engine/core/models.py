"""Domain types for the SBS compliance engine.

Input records (Entity, ApprovedException) are frozen pydantic models so that
externally collected data is validated once at the boundary. Evaluation
results (FailingEntity, SuppressedEntity, Verdict, EvaluationFailure) are
frozen dataclasses created fresh by every run.

Types:
- EntityKind      — tagged variant of governed objects
- RiskLevel       — Critical | High | Moderate prioritization axis
- VerdictStatus   — compliant | noncompliant | not_applicable (never graded)
- ABSENT          — distinguished value for attributes an entity does not carry
- Entity          — one governed object inside a fact snapshot
- ApprovedException — a documented, entity-scoped deviation from one control
- Verdict / EvaluationFailure — per-control outcome of one run
"""

from collections.abc import Mapping
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from types import MappingProxyType
from typing import Any

from pydantic import AwareDatetime, BaseModel, ConfigDict, Field, field_validator, model_validator


class EntityKind(str, Enum):
    """Kinds of entity the benchmark reasons about."""

    USER = "User"
    PROFILE = "Profile"
    PERMISSION_SET = "PermissionSet"
    PERMISSION_SET_GROUP = "PermissionSetGroup"
    SETTING = "Setting"
    CONNECTED_APP = "ConnectedApp"


# Relationship pairs a snapshot may carry, as (from_kind, to_kind).
RELATIONSHIP_PAIRS: frozenset[tuple[EntityKind, EntityKind]] = frozenset(
    {
        (EntityKind.USER, EntityKind.PROFILE),
        (EntityKind.USER, EntityKind.PERMISSION_SET),
        (EntityKind.USER, EntityKind.PERMISSION_SET_GROUP),
        (EntityKind.PERMISSION_SET_GROUP, EntityKind.PERMISSION_SET),
        (EntityKind.PROFILE, EntityKind.CONNECTED_APP),
        (EntityKind.PERMISSION_SET, EntityKind.CONNECTED_APP),
    }
)


class RiskLevel(str, Enum):
    """Remediation priority of a control."""

    CRITICAL = "Critical"
    HIGH = "High"
    MODERATE = "Moderate"

    @property
    def rank(self) -> int:
        """Sort rank: Critical sorts first."""
        return _RISK_RANK[self]


_RISK_RANK: dict[RiskLevel, int] = {
    RiskLevel.CRITICAL: 0,
    RiskLevel.HIGH: 1,
    RiskLevel.MODERATE: 2,
}


class VerdictStatus(str, Enum):
    """Binary (plus not-applicable) outcome of one control."""

    COMPLIANT = "compliant"
    NONCOMPLIANT = "noncompliant"
    NOT_APPLICABLE = "not_applicable"


class _Absent:
    """Singleton marker for an attribute the entity does not carry.

    Unequal to everything but itself, falsy, and never a member of a value set.
    """

    _instance: "_Absent | None" = None

    def __new__(cls) -> "_Absent":
        if cls._instance is None:
            cls._instance = super().__new__(cls)
        return cls._instance

    def __bool__(self) -> bool:
        return False

    def __repr__(self) -> str:
        return "ABSENT"


ABSENT = _Absent()


def freeze(value: Any) -> Any:
    """Return a read-only copy of a collected attribute value.

    Mappings become MappingProxyType and lists become tuples, recursively.
    """
    if isinstance(value, Mapping):
        return MappingProxyType({key: freeze(item) for key, item in value.items()})
    if isinstance(value, (list, tuple)):
        return tuple(freeze(item) for item in value)
    return value


def thaw(value: Any) -> Any:
    """Inverse of freeze, for serializing attributes back to plain records."""
    if isinstance(value, Mapping):
        return {key: thaw(item) for key, item in value.items()}
    if isinstance(value, tuple):
        return [thaw(item) for item in value]
    return value


class Entity(BaseModel):
    """A governed object inside one fact snapshot.

    Attributes:
        id: Stable identifier, unique within the snapshot and stable across snapshots.
        kind: The entity kind.
        attributes: Kind-specific attribute values, frozen on validation.
    """

    model_config = ConfigDict(frozen=True)

    id: str = Field(..., min_length=1, description="Stable entity identifier")
    kind: EntityKind = Field(..., description="Entity kind")
    attributes: Mapping[str, Any] = Field(default_factory=dict, description="Attribute values")

    @field_validator("attributes", mode="after")
    @classmethod
    def freeze_attributes(cls, value: Mapping[str, Any]) -> Mapping[str, Any]:
        return freeze(value)

    def get(self, attr: str) -> Any:
        """Read an attribute, returning ABSENT when it is not carried.

        Args:
            attr: Attribute name.

        Returns:
            The attribute value, or ABSENT.
        """
        return self.attributes.get(attr, ABSENT)


_WILDCARD_CHARS = frozenset("*?[]")


class ApprovedException(BaseModel):
    """A documented, approved deviation for exactly one entity and one control.

    Attributes:
        entity_id: The entity the deviation covers.
        control_id: The control the deviation covers.
        justification: Why the deviation is acceptable.
        approver: Who approved it.
        approved_at: When it was approved.
        expires_at: Optional expiry. The exception stops being effective at this instant.
    """

    model_config = ConfigDict(frozen=True)

    entity_id: str = Field(..., min_length=1)
    control_id: str = Field(..., min_length=1)
    justification: str = Field(..., min_length=1)
    approver: str = Field(..., min_length=1)
    approved_at: AwareDatetime
    expires_at: AwareDatetime | None = None

    @field_validator("entity_id", "control_id")
    @classmethod
    def _reject_patterns(cls, value: str) -> str:
        """Exceptions name one entity and one control, never a pattern."""
        if _WILDCARD_CHARS.intersection(value):
            raise ValueError(f"'{value}' looks like a pattern; exceptions must name exact ids")
        return value

    @model_validator(mode="after")
    def _expiry_after_approval(self) -> "ApprovedException":
        if self.expires_at is not None and self.expires_at <= self.approved_at:
            raise ValueError("expires_at must be later than approved_at")
        return self

    def is_effective(self, as_of: datetime) -> bool:
        """Return whether this exception applies at the given instant.

        Args:
            as_of: Evaluation instant (timezone-aware).

        Returns:
            True if approved by as_of and not yet expired.
        """
        if self.approved_at > as_of:
            return False
        return self.expires_at is None or self.expires_at > as_of


@dataclass(frozen=True)
class FailingEntity:
    """An entity that fails a control, with the reason."""

    entity_id: str
    entity_kind: str
    reason: str


@dataclass(frozen=True)
class SuppressedEntity:
    """An entity that failed the raw predicate but is covered by an effective exception.

    Suppressed entities are reclassified, never dropped, so the audit trail
    shows every deviation and who approved it.
    """

    entity_id: str
    entity_kind: str
    reason: str
    justification: str
    approver: str
    expires_at: datetime | None = None


@dataclass(frozen=True)
class Verdict:
    """Outcome of evaluating one control against one fact snapshot.

    Attributes:
        control_id: The evaluated control.
        status: compliant | noncompliant | not_applicable.
        failing_entities: Failures remaining after exception suppression, id ascending.
        suppressed_entities: Failures covered by an effective exception, id ascending.
        evaluated_at: The evaluation instant (defaults to snapshot collection time).
        risk: Risk tier of the control.
        category: Report category of the control.
        scope_size: Number of entities the predicate enumerated.
    """

    control_id: str
    status: VerdictStatus
    failing_entities: tuple[FailingEntity, ...]
    evaluated_at: datetime
    risk: RiskLevel
    category: str
    suppressed_entities: tuple[SuppressedEntity, ...] = field(default_factory=tuple)
    scope_size: int = 0


@dataclass(frozen=True)
class EvaluationFailure:
    """A control that could not be evaluated in a run.

    Reported next to the verdicts; never counted as compliant.
    """

    control_id: str
    error: str
    missing_kind: str
    message: str
    risk: RiskLevel
    category: str
