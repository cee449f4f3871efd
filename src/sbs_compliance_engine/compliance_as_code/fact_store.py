"""Fact store — immutable, pre-indexed snapshot of environment state.

A FactStore is built once per audit run from externally collected records and
is never mutated afterwards; the next run's snapshot supersedes it. It indexes
entities by id (O(1) lookup) and by kind (id-ascending tuples built at
construction), and indexes every relationship pair in both directions.

A kind can be collected with zero entities. A kind that was never collected is
missing, and querying it raises KindNotCollectedError so that predicates never
treat "not collected" as "nothing to check".

External snapshot format (YAML or JSON):

    snapshot_id: run-2026-10-19
    collected_at: 2026-10-19T00:00:00Z
    entities:
      User:
        - {id: 005A, is_active: true, is_sso_enabled: false}
      Profile: []
    relationships:
      - {from: User, to: Profile, pairs: [[005A, 00eA]]}
"""

import hashlib
import json
from collections.abc import Iterable, Mapping
from datetime import UTC, datetime
from pathlib import Path
from typing import Any

import yaml

from sbs_compliance_engine.core.errors import (
    InvalidSnapshotError,
    KindNotCollectedError,
    NotFoundError,
)
from sbs_compliance_engine.core.models import RELATIONSHIP_PAIRS, Entity, EntityKind, thaw
from sbs_compliance_engine.observability import get_logger

logger = get_logger(__name__)

KindPair = tuple[EntityKind, EntityKind]


def _parse_kind(value: Any) -> EntityKind:
    try:
        return EntityKind(value)
    except ValueError as exc:
        raise InvalidSnapshotError(
            f"Unknown entity kind '{value}'. Known kinds: {sorted(k.value for k in EntityKind)}"
        ) from exc


class FactStore:
    """Read-only snapshot of entities and relationships.

    Args:
        entities: All entities in the snapshot.
        relationships: Mapping of (from_kind, to_kind) to (from_id, to_id) pairs.
        collected_kinds: Kinds the collector gathered. Defaults to the kinds
            present in entities plus those named by relationships.
        snapshot_id: Identifier of the collection run.
        collected_at: When the snapshot was collected (timezone-aware). Required.

    Raises:
        InvalidSnapshotError: On a missing collected_at, duplicate ids, dangling or
            mistyped relationship endpoints, or unknown relationship pairs.
    """

    def __init__(
        self,
        entities: Iterable[Entity],
        relationships: Mapping[KindPair, Iterable[tuple[str, str]]] | None = None,
        collected_kinds: Iterable[EntityKind] | None = None,
        snapshot_id: str = "snapshot",
        collected_at: datetime | None = None,
    ) -> None:
        if collected_at is None:
            raise InvalidSnapshotError("collected_at is required")
        if collected_at.tzinfo is None:
            raise InvalidSnapshotError("collected_at must be timezone-aware")
        self._snapshot_id = snapshot_id
        self._collected_at = collected_at

        by_id: dict[str, Entity] = {}
        by_kind: dict[EntityKind, list[Entity]] = {}
        for entity in entities:
            if entity.id in by_id:
                raise InvalidSnapshotError(f"Duplicate entity id '{entity.id}'")
            by_id[entity.id] = entity
            by_kind.setdefault(entity.kind, []).append(entity)

        kinds = set(collected_kinds) if collected_kinds is not None else set(by_kind)
        for kind in by_kind:
            if kind not in kinds:
                raise InvalidSnapshotError(
                    f"Entities of kind '{kind.value}' present but kind not declared as collected"
                )

        forward: dict[KindPair, frozenset[tuple[str, str]]] = {}
        for pair, pairs in (relationships or {}).items():
            if pair not in RELATIONSHIP_PAIRS:
                raise InvalidSnapshotError(
                    f"Unknown relationship {pair[0].value} -> {pair[1].value}"
                )
            checked: set[tuple[str, str]] = set()
            for from_id, to_id in pairs:
                self._check_endpoint(by_id, from_id, pair[0])
                self._check_endpoint(by_id, to_id, pair[1])
                checked.add((from_id, to_id))
            forward[pair] = frozenset(checked)
            if collected_kinds is None:
                kinds.update(pair)

        self._by_id = by_id
        self._by_kind: dict[EntityKind, tuple[Entity, ...]] = {
            kind: tuple(sorted(by_kind.get(kind, []), key=lambda e: e.id)) for kind in kinds
        }
        self._collected_kinds = frozenset(kinds)
        self._relationships = forward

        # entity_id -> target_kind -> sorted related ids, both directions
        adjacency: dict[str, dict[EntityKind, set[str]]] = {}
        for (from_kind, to_kind), pairs in forward.items():
            for from_id, to_id in pairs:
                adjacency.setdefault(from_id, {}).setdefault(to_kind, set()).add(to_id)
                adjacency.setdefault(to_id, {}).setdefault(from_kind, set()).add(from_id)
        self._adjacency: dict[str, dict[EntityKind, tuple[str, ...]]] = {
            entity_id: {kind: tuple(sorted(ids)) for kind, ids in targets.items()}
            for entity_id, targets in adjacency.items()
        }
        self._fingerprint: str | None = None

    @staticmethod
    def _check_endpoint(by_id: dict[str, Entity], entity_id: str, kind: EntityKind) -> None:
        entity = by_id.get(entity_id)
        if entity is None:
            raise InvalidSnapshotError(
                f"Relationship references entity '{entity_id}' not present in the snapshot"
            )
        if entity.kind != kind:
            raise InvalidSnapshotError(
                f"Relationship expects '{entity_id}' to be {kind.value}, found {entity.kind.value}"
            )

    @property
    def snapshot_id(self) -> str:
        return self._snapshot_id

    @property
    def collected_at(self) -> datetime:
        return self._collected_at

    @property
    def collected_kinds(self) -> frozenset[EntityKind]:
        return self._collected_kinds

    def has_kind(self, kind: EntityKind) -> bool:
        """Return whether the collector gathered this kind (possibly with zero entities)."""
        return kind in self._collected_kinds

    def get_entities(self, kind: EntityKind) -> tuple[Entity, ...]:
        """Return every entity of a kind, ordered by id ascending.

        Args:
            kind: The entity kind.

        Returns:
            Tuple of entities (may be empty for a collected kind).

        Raises:
            KindNotCollectedError: If the kind was never collected.
        """
        try:
            return self._by_kind[kind]
        except KeyError:
            raise KindNotCollectedError(kind.value) from None

    def get_entity(self, entity_id: str) -> Entity:
        """Return one entity by id.

        Raises:
            NotFoundError: If no entity has this id.
        """
        entity = self._by_id.get(entity_id)
        if entity is None:
            raise NotFoundError(resource="Entity", resource_id=entity_id)
        return entity

    def get_relationships(self, kind_pair: KindPair) -> frozenset[tuple[str, str]]:
        """Return the (from_id, to_id) pairs of one relationship kind.

        Args:
            kind_pair: (from_kind, to_kind).

        Returns:
            Frozen set of id pairs; empty if the snapshot carries none.
        """
        return self._relationships.get(kind_pair, frozenset())

    def related_ids(self, entity_id: str, target_kind: EntityKind) -> tuple[str, ...]:
        """Return ids of target_kind entities related to entity_id in either direction.

        Args:
            entity_id: Source entity id.
            target_kind: Kind of the related entities to return.

        Returns:
            Related ids in ascending order.
        """
        return self._adjacency.get(entity_id, {}).get(target_kind, ())

    def to_dict(self) -> dict[str, Any]:
        """Return the snapshot in its external record-oriented format."""
        entities: dict[str, list[dict[str, Any]]] = {}
        for kind in sorted(self._collected_kinds, key=lambda k: k.value):
            entities[kind.value] = [
                {"id": e.id, **thaw(e.attributes)} for e in self._by_kind[kind]
            ]
        relationships = [
            {
                "from": from_kind.value,
                "to": to_kind.value,
                "pairs": [list(p) for p in sorted(pairs)],
            }
            for (from_kind, to_kind), pairs in sorted(
                self._relationships.items(), key=lambda item: (item[0][0].value, item[0][1].value)
            )
        ]
        return {
            "snapshot_id": self._snapshot_id,
            "collected_at": self._collected_at.isoformat(),
            "entities": entities,
            "relationships": relationships,
        }

    @property
    def fingerprint(self) -> str:
        """SHA-256 hex digest of the canonical snapshot content."""
        if self._fingerprint is None:
            canonical = json.dumps(
                self.to_dict(), sort_keys=True, separators=(",", ":"), ensure_ascii=False, default=str
            )
            self._fingerprint = hashlib.sha256(canonical.encode("utf-8")).hexdigest()
        return self._fingerprint

    @classmethod
    def from_snapshot(cls, data: Mapping[str, Any]) -> "FactStore":
        """Build a FactStore from the external record-oriented format.

        Args:
            data: Parsed snapshot mapping (see module docstring).

        Returns:
            The constructed FactStore.

        Raises:
            InvalidSnapshotError: If the mapping is structurally invalid.
        """
        raw_entities = data.get("entities")
        if not isinstance(raw_entities, Mapping):
            raise InvalidSnapshotError("Snapshot must contain an 'entities' mapping")

        entities: list[Entity] = []
        kinds: set[EntityKind] = set()
        for kind_name, records in raw_entities.items():
            kind = _parse_kind(kind_name)
            kinds.add(kind)
            for record in records or []:
                if not isinstance(record, Mapping) or "id" not in record:
                    raise InvalidSnapshotError(f"{kind.value} record without an 'id': {record!r}")
                attributes = {k: v for k, v in record.items() if k != "id"}
                entities.append(Entity(id=str(record["id"]), kind=kind, attributes=attributes))

        relationships: dict[KindPair, list[tuple[str, str]]] = {}
        for rel in data.get("relationships") or []:
            try:
                pair = (_parse_kind(rel["from"]), _parse_kind(rel["to"]))
                pairs = [(str(a), str(b)) for a, b in rel.get("pairs") or []]
            except (KeyError, TypeError, ValueError) as exc:
                raise InvalidSnapshotError(f"Malformed relationship record {rel!r}: {exc}") from exc
            relationships.setdefault(pair, []).extend(pairs)

        collected_at = _parse_timestamp(data.get("collected_at"))
        store = cls(
            entities=entities,
            relationships=relationships,
            collected_kinds=kinds,
            snapshot_id=str(data.get("snapshot_id", "snapshot")),
            collected_at=collected_at,
        )
        logger.info(
            "Fact snapshot loaded",
            snapshot_id=store.snapshot_id,
            entity_count=len(entities),
            kinds=sorted(k.value for k in kinds),
            relationship_kinds=len(relationships),
        )
        return store


def _parse_timestamp(value: Any) -> datetime:
    if value is None:
        raise InvalidSnapshotError("Snapshot must carry a collected_at timestamp")
    if isinstance(value, datetime):
        parsed = value
    else:
        try:
            parsed = datetime.fromisoformat(str(value).replace("Z", "+00:00"))
        except ValueError as exc:
            raise InvalidSnapshotError(f"Invalid collected_at timestamp '{value}'") from exc
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=UTC)
    return parsed


def load_snapshot_file(path: Path) -> FactStore:
    """Load a FactStore from a YAML or JSON snapshot file.

    Args:
        path: Path to the snapshot file. JSON is valid YAML, so one loader serves both.

    Returns:
        The constructed FactStore.
    """
    raw = yaml.safe_load(path.read_text(encoding="utf-8"))
    if not isinstance(raw, Mapping):
        raise InvalidSnapshotError(f"Snapshot file {path} does not contain a mapping")
    return FactStore.from_snapshot(raw)
