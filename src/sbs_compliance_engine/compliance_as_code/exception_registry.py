"""Exception registry — approved deviations that suppress individual findings.

An exception covers exactly one (entity_id, control_id) pair. There is no
wildcard or pattern matching, so an exception can never cover an entity that
was created after the approval. An exception is effective from approved_at
until (but not including) expires_at; an expired exception is simply not
effective, which fails closed to a noncompliant finding.
"""

from collections.abc import Iterable, Mapping
from datetime import datetime
from pathlib import Path
from typing import Any

import yaml
from pydantic import ValidationError

from sbs_compliance_engine.core.errors import InvalidExceptionRecord
from sbs_compliance_engine.core.models import ApprovedException
from sbs_compliance_engine.observability import get_logger

logger = get_logger(__name__)


class ExceptionRegistry:
    """Immutable index of approved exceptions keyed by (entity_id, control_id).

    Args:
        exceptions: The approved exceptions.
    """

    def __init__(self, exceptions: Iterable[ApprovedException] = ()) -> None:
        index: dict[tuple[str, str], list[ApprovedException]] = {}
        for exception in exceptions:
            index.setdefault((exception.entity_id, exception.control_id), []).append(exception)
        # Latest approval first so effective_exception() is deterministic.
        self._index: dict[tuple[str, str], tuple[ApprovedException, ...]] = {
            key: tuple(sorted(items, key=lambda e: (e.approved_at, e.approver), reverse=True))
            for key, items in index.items()
        }

    def __len__(self) -> int:
        return sum(len(items) for items in self._index.values())

    def is_effective(self, entity_id: str, control_id: str, as_of: datetime) -> bool:
        """Return whether an effective exception covers exactly this pair.

        Args:
            entity_id: Entity the finding concerns.
            control_id: Control the finding concerns.
            as_of: Evaluation instant.

        Returns:
            True if some exception for the exact pair is approved and unexpired at as_of.
        """
        return self.effective_exception(entity_id, control_id, as_of) is not None

    def effective_exception(
        self, entity_id: str, control_id: str, as_of: datetime
    ) -> ApprovedException | None:
        """Return the effective exception for the pair, latest approval first.

        Args:
            entity_id: Entity the finding concerns.
            control_id: Control the finding concerns.
            as_of: Evaluation instant.

        Returns:
            The ApprovedException applied, or None.
        """
        for exception in self._index.get((entity_id, control_id), ()):
            if exception.is_effective(as_of):
                return exception
        return None

    def expired(self, as_of: datetime) -> list[ApprovedException]:
        """Return exceptions whose expiry has passed at as_of, ordered by (control_id, entity_id)."""
        stale = [
            exception
            for items in self._index.values()
            for exception in items
            if exception.expires_at is not None and exception.expires_at <= as_of
        ]
        return sorted(stale, key=lambda e: (e.control_id, e.entity_id, e.approved_at))

    def unknown_controls(self, control_ids: Iterable[str]) -> list[ApprovedException]:
        """Return exceptions naming controls that are not in the given set.

        Args:
            control_ids: Ids of the controls in the catalog being evaluated.

        Returns:
            Orphaned exceptions ordered by (control_id, entity_id).
        """
        known = set(control_ids)
        orphans = [
            exception
            for (_, control_id), items in self._index.items()
            if control_id not in known
            for exception in items
        ]
        return sorted(orphans, key=lambda e: (e.control_id, e.entity_id, e.approved_at))

    @classmethod
    def from_records(cls, records: Iterable[Mapping[str, Any]]) -> "ExceptionRegistry":
        """Build a registry from plain exception records.

        Args:
            records: Mappings with entity_id, control_id, justification,
                approver, approved_at and optional expires_at.

        Returns:
            The constructed ExceptionRegistry.

        Raises:
            InvalidExceptionRecord: If any record fails validation.
        """
        exceptions: list[ApprovedException] = []
        for position, record in enumerate(records):
            try:
                exceptions.append(ApprovedException.model_validate(dict(record)))
            except ValidationError as exc:
                raise InvalidExceptionRecord(f"Exception record #{position} is invalid: {exc}") from exc
        registry = cls(exceptions)
        logger.info("Exception registry loaded", exception_count=len(registry))
        return registry


def load_exceptions_file(path: Path) -> ExceptionRegistry:
    """Load an ExceptionRegistry from a YAML or JSON list of records.

    Args:
        path: Path to the exceptions file. A top-level mapping with an
            "exceptions" key is also accepted.

    Returns:
        The constructed ExceptionRegistry.
    """
    raw = yaml.safe_load(path.read_text(encoding="utf-8")) or []
    if isinstance(raw, Mapping):
        raw = raw.get("exceptions") or []
    if not isinstance(raw, list):
        raise InvalidExceptionRecord(f"Exceptions file {path} must contain a list of records")
    return ExceptionRegistry.from_records(raw)
