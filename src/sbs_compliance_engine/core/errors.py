"""Error taxonomy for the SBS compliance engine.

Catalog-structural errors (MalformedPredicate, DuplicateControlError,
ImmutableVersionViolation, VersionBumpRejected) are fatal to a run.
MissingData is raised per control and collected by the engine next to the
successful verdicts. An expired exception is not an error at all: it is simply
not effective.
"""

from typing import Any


class ComplianceEngineError(Exception):
    """Base class for every error raised by the engine."""


class NotFoundError(ComplianceEngineError):
    """A looked-up resource does not exist.

    Args:
        resource: Resource type name (e.g. "Entity", "Control").
        resource_id: Identifier that was looked up.
    """

    def __init__(self, resource: str, resource_id: str) -> None:
        self.resource = resource
        self.resource_id = resource_id
        super().__init__(f"{resource} '{resource_id}' not found")


class InvalidSnapshotError(ComplianceEngineError):
    """A fact snapshot violates its structural invariants."""


class InvalidExceptionRecord(ComplianceEngineError):
    """An approved-exception record failed validation."""


class KindNotCollectedError(ComplianceEngineError):
    """An entity kind was queried that the snapshot never collected.

    Args:
        kind: The entity kind value that is missing.
    """

    def __init__(self, kind: str) -> None:
        self.kind = kind
        super().__init__(f"Entity kind '{kind}' was not collected in this snapshot")


class MissingData(ComplianceEngineError):
    """A control cannot be evaluated because required data is absent.

    Args:
        control_id: The control being evaluated.
        missing_kind: The entity kind that is missing (or that holds the missing entity).
        detail: Optional extra description.
    """

    def __init__(self, control_id: str, missing_kind: str, detail: str | None = None) -> None:
        self.control_id = control_id
        self.missing_kind = missing_kind
        self.detail = detail
        message = f"{control_id}: required entity kind '{missing_kind}' is missing"
        if detail:
            message = f"{message} ({detail})"
        super().__init__(message)


class CatalogError(ComplianceEngineError):
    """Base class for catalog-structural errors. These abort the whole run."""


class MalformedPredicate(CatalogError):
    """A control predicate failed static checks at catalog load.

    Args:
        control_id: The control whose predicate is malformed ("<unknown>" if not yet known).
        detail: What is wrong with it.
    """

    def __init__(self, control_id: str, detail: str) -> None:
        self.control_id = control_id
        self.detail = detail
        super().__init__(f"{control_id}: malformed predicate: {detail}")


class DuplicateControlError(CatalogError):
    """The same control id appears twice in one catalog."""

    def __init__(self, control_id: str) -> None:
        self.control_id = control_id
        super().__init__(f"Control '{control_id}' is defined more than once")


class ImmutableVersionViolation(CatalogError):
    """An attempt to change a published catalog version in place.

    Args:
        version: The published version string.
        control_id: The control involved, if any.
        detail: What the attempted mutation was.
    """

    def __init__(self, version: str, control_id: str | None, detail: str) -> None:
        self.version = version
        self.control_id = control_id
        self.detail = detail
        target = f"{control_id} at {version}" if control_id else version
        super().__init__(f"Published catalog is immutable ({target}): {detail}")


class VersionBumpRejected(CatalogError):
    """A proposed catalog update declared a bump lower than its changes require.

    Args:
        declared: Declared change level name.
        required: Required change level name.
        changes: Detected changes, as dicts, for diagnostics.
    """

    def __init__(self, declared: str, required: str, changes: list[dict[str, Any]]) -> None:
        self.declared = declared
        self.required = required
        self.changes = changes
        super().__init__(
            f"Declared {declared} bump is lower than the required {required} bump "
            f"({len(changes)} change(s) detected)"
        )
