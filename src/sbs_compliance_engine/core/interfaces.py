"""Abstract interfaces (Protocol classes) for the SBS compliance engine.

The predicate interpreter and the evaluator depend on these protocols, never
on the concrete FactStore or ExceptionRegistry, so tests and alternative
snapshot backends can stand in for them.

Protocols defined:
- IFactStore
- IExceptionRegistry
"""

from datetime import datetime
from typing import Protocol

from sbs_compliance_engine.core.models import ApprovedException, Entity, EntityKind


class IFactStore(Protocol):
    """Read-only snapshot of environment state."""

    @property
    def snapshot_id(self) -> str:
        """Identifier of the collection run."""
        ...

    @property
    def collected_at(self) -> datetime:
        """When the snapshot was collected."""
        ...

    def has_kind(self, kind: EntityKind) -> bool:
        """Return whether the kind was collected (possibly with zero entities)."""
        ...

    def get_entities(self, kind: EntityKind) -> tuple[Entity, ...]:
        """Return all entities of a kind in id-ascending order.

        Raises:
            KindNotCollectedError: If the kind was never collected.
        """
        ...

    def get_entity(self, entity_id: str) -> Entity:
        """Return one entity by id.

        Raises:
            NotFoundError: If no entity has this id.
        """
        ...

    def get_relationships(self, kind_pair: tuple[EntityKind, EntityKind]) -> frozenset[tuple[str, str]]:
        """Return (from_id, to_id) pairs for one relationship kind."""
        ...

    def related_ids(self, entity_id: str, target_kind: EntityKind) -> tuple[str, ...]:
        """Return ids of related entities of target_kind, in ascending order."""
        ...


class IExceptionRegistry(Protocol):
    """Lookup of approved, entity-scoped deviations."""

    def is_effective(self, entity_id: str, control_id: str, as_of: datetime) -> bool:
        """Return whether an unexpired exception covers exactly (entity_id, control_id)."""
        ...

    def effective_exception(
        self, entity_id: str, control_id: str, as_of: datetime
    ) -> ApprovedException | None:
        """Return the exception that covers (entity_id, control_id) at as_of, if any."""
        ...
