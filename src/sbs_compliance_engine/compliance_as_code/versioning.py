"""Versioning guard — immutability and semantic version bumps for catalogs.

A published catalog version is frozen: re-publishing identical content is a
no-op, any other content at that version raises ImmutableVersionViolation.
Changes ship only as a new version whose bump matches the largest change:

- MAJOR     a predicate changed, or a control was added, removed, or renumbered
- MINOR     non-predicate metadata changed (risk, references, text rewording)
- REVISION  text changed only in whitespace, letter case, or trailing punctuation

While MAJOR is 0 the catalog is a draft: MAJOR never advances and a
MAJOR-class change needs only a MINOR bump. Cutting with stable=True from a
draft produces 1.0.0, the first stable release.
"""

import re
from collections.abc import Iterable
from dataclasses import dataclass
from enum import IntEnum
from typing import Any

from sbs_compliance_engine.compliance_as_code.control_catalog import (
    TEXT_FIELDS,
    CatalogVersion,
    Control,
    ControlCatalog,
)
from sbs_compliance_engine.core.errors import ImmutableVersionViolation, NotFoundError, VersionBumpRejected
from sbs_compliance_engine.observability import get_logger

logger = get_logger(__name__)

_TRAILING_PUNCTUATION = re.compile(r"[.!?;:,]+$")
_WHITESPACE = re.compile(r"\s+")


class ChangeLevel(IntEnum):
    """Magnitude of a catalog change, ordered NONE < REVISION < MINOR < MAJOR."""

    NONE = 0
    REVISION = 1
    MINOR = 2
    MAJOR = 3

    @classmethod
    def parse(cls, value: "ChangeLevel | str") -> "ChangeLevel":
        if isinstance(value, ChangeLevel):
            return value
        try:
            return cls[str(value).upper()]
        except KeyError:
            raise ValueError(f"Unknown change level '{value}', expected one of {[m.name for m in cls]}") from None


@dataclass(frozen=True)
class CatalogChange:
    """One detected difference between two catalog contents.

    Attributes:
        control_id: The affected control (the new id for a renumbering).
        level: Bump the change requires.
        kind: added | removed | renumbered | predicate_changed | metadata_changed | text_revised.
        detail: Human-readable description.
        previous_id: The old id for a renumbering.
    """

    control_id: str
    level: ChangeLevel
    kind: str
    detail: str
    previous_id: str | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "control_id": self.control_id,
            "level": self.level.name,
            "kind": self.kind,
            "detail": self.detail,
            "previous_id": self.previous_id,
        }


def _normalize_text(value: str) -> str:
    # Operators, digits and separators inside the text stay significant.
    collapsed = _WHITESPACE.sub(" ", value.lower()).strip()
    return _TRAILING_PUNCTUATION.sub("", collapsed).rstrip()


def _compare_control(old: Control, new: Control) -> CatalogChange | None:
    """Classify the change to one control that kept its id."""
    if old.predicate_fingerprint != new.predicate_fingerprint:
        return CatalogChange(new.control_id, ChangeLevel.MAJOR, "predicate_changed", "predicate logic changed")
    if old.metadata_fingerprint == new.metadata_fingerprint:
        return None

    minor_fields: list[str] = []
    revised_fields: list[str] = []
    old_meta, new_meta = old.metadata_dict(), new.metadata_dict()
    for name in sorted(old_meta):
        if old_meta[name] == new_meta[name]:
            continue
        if name in TEXT_FIELDS and _normalize_text(old_meta[name]) == _normalize_text(new_meta[name]):
            revised_fields.append(name)
        else:
            minor_fields.append(name)

    if minor_fields:
        return CatalogChange(
            new.control_id,
            ChangeLevel.MINOR,
            "metadata_changed",
            f"changed: {', '.join(minor_fields)}",
        )
    return CatalogChange(
        new.control_id,
        ChangeLevel.REVISION,
        "text_revised",
        f"formatting changed: {', '.join(revised_fields)}",
    )


def classify_changes(base: Iterable[Control], proposed: Iterable[Control]) -> list[CatalogChange]:
    """Detect and classify every difference between two sets of controls.

    Args:
        base: Controls of the published base version.
        proposed: Controls of the proposed next version.

    Returns:
        Changes ordered by control id.
    """
    old = {control.control_id: control for control in base}
    new = {control.control_id: control for control in proposed}
    removed = sorted(set(old) - set(new))
    added = sorted(set(new) - set(old))
    changes: list[CatalogChange] = []

    for old_id in list(removed):
        fingerprint = old[old_id].predicate_fingerprint
        match = next((new_id for new_id in added if new[new_id].predicate_fingerprint == fingerprint), None)
        if match is None:
            continue
        removed.remove(old_id)
        added.remove(match)
        changes.append(
            CatalogChange(match, ChangeLevel.MAJOR, "renumbered", f"renumbered from {old_id}", previous_id=old_id)
        )

    changes.extend(CatalogChange(cid, ChangeLevel.MAJOR, "removed", "control removed") for cid in removed)
    changes.extend(CatalogChange(cid, ChangeLevel.MAJOR, "added", "control added") for cid in added)

    for control_id in sorted(set(old) & set(new)):
        change = _compare_control(old[control_id], new[control_id])
        if change is not None:
            changes.append(change)

    return sorted(changes, key=lambda c: (c.control_id, c.kind))


def required_level(changes: Iterable[CatalogChange]) -> ChangeLevel:
    """Return the largest level among changes (NONE when there are none)."""
    return max((change.level for change in changes), default=ChangeLevel.NONE)


def next_version(base: CatalogVersion, level: ChangeLevel, stable: bool = False) -> CatalogVersion:
    """Compute the version that follows base for a bump of the given level.

    Args:
        base: The base version.
        level: Bump to apply.
        stable: Promote a draft base to 1.0.0.

    Returns:
        The next version (base itself for ChangeLevel.NONE).
    """
    if stable and base.is_draft:
        return CatalogVersion(1, 0, 0)
    if base.is_draft and level is ChangeLevel.MAJOR:
        level = ChangeLevel.MINOR
    if level is ChangeLevel.MAJOR:
        return CatalogVersion(base.major + 1, 0, 0)
    if level is ChangeLevel.MINOR:
        return CatalogVersion(base.major, base.minor + 1, 0)
    if level is ChangeLevel.REVISION:
        return CatalogVersion(base.major, base.minor, base.revision + 1)
    return base


class VersioningGuard:
    """Registry of published catalog versions enforcing immutability and bumps."""

    def __init__(self) -> None:
        self._published: dict[CatalogVersion, ControlCatalog] = {}

    def published_versions(self) -> tuple[CatalogVersion, ...]:
        return tuple(sorted(self._published))

    def latest(self) -> ControlCatalog | None:
        if not self._published:
            return None
        return self._published[max(self._published)]

    def get(self, version: CatalogVersion | str) -> ControlCatalog:
        """Return a published catalog.

        Raises:
            NotFoundError: If the version was never published.
        """
        parsed = CatalogVersion.parse(version)
        catalog = self._published.get(parsed)
        if catalog is None:
            raise NotFoundError(resource="CatalogVersion", resource_id=str(parsed))
        return catalog

    def publish(self, catalog: ControlCatalog) -> ControlCatalog:
        """Publish a catalog at its own version.

        Args:
            catalog: The catalog to publish.

        Returns:
            The published catalog (the existing one when content is identical).

        Raises:
            ImmutableVersionViolation: If the version is already published with different content.
        """
        existing = self._published.get(catalog.version)
        if existing is None:
            self._published[catalog.version] = catalog
            logger.info(
                "Catalog version published",
                version=str(catalog.version),
                control_count=len(catalog),
                fingerprint=catalog.fingerprint,
            )
            return catalog
        if existing.fingerprint == catalog.fingerprint:
            return existing

        changes = classify_changes(existing, catalog)
        first = changes[0] if changes else None
        logger.error(
            "Attempt to modify a published catalog version",
            version=str(catalog.version),
            changes=[change.to_dict() for change in changes],
        )
        raise ImmutableVersionViolation(
            str(catalog.version),
            first.control_id if first else None,
            first.detail if first else "catalog content differs",
        )

    def register(self, version: CatalogVersion | str, control: Control) -> None:
        """Register a control at an already published version.

        Re-registering an identical control is a no-op.

        Raises:
            NotFoundError: If the version was never published.
            ImmutableVersionViolation: If the control is new to the version or differs from it.
        """
        catalog = self.get(version)
        if control.control_id not in catalog:
            detail = "control is not part of the published version"
        else:
            change = _compare_control(catalog.get(control.control_id), control)
            if change is None:
                return
            detail = change.detail
        logger.error(
            "Attempt to modify a published catalog version",
            version=str(catalog.version),
            control_id=control.control_id,
            detail=detail,
        )
        raise ImmutableVersionViolation(str(catalog.version), control.control_id, detail)

    def cut_version(
        self,
        base_version: CatalogVersion | str,
        controls: Iterable[Control],
        declared: ChangeLevel | str,
        stable: bool = False,
    ) -> ControlCatalog:
        """Publish the next version of a catalog after checking the declared bump.

        Args:
            base_version: The published version the proposal starts from.
            controls: Full control set of the proposed version.
            declared: Bump the author declares.
            stable: Promote a draft base to 1.0.0.

        Returns:
            The newly published catalog, or the base catalog when nothing changed.

        Raises:
            NotFoundError: If base_version is not published.
            VersionBumpRejected: If the declared bump is lower than the changes require.
            ImmutableVersionViolation: If the computed version is published with other content.
        """
        base = self.get(base_version)
        declared_level = ChangeLevel.parse(declared)
        proposed = ControlCatalog(base.version, controls, base.categories)
        changes = classify_changes(base, proposed)
        required = required_level(changes)
        if base.version.is_draft and required is ChangeLevel.MAJOR:
            required = ChangeLevel.MINOR

        if declared_level < required:
            logger.warning(
                "Catalog version bump rejected",
                base_version=str(base.version),
                declared=declared_level.name,
                required=required.name,
                change_count=len(changes),
            )
            raise VersionBumpRejected(
                declared_level.name, required.name, [change.to_dict() for change in changes]
            )

        version = next_version(base.version, declared_level, stable=stable)
        if version == base.version:
            return base

        published = self.publish(proposed.with_version(version))
        logger.info(
            "Catalog version cut",
            base_version=str(base.version),
            version=str(version),
            declared=declared_level.name,
            required=required.name,
            change_count=len(changes),
        )
        return published
