"""Control catalog — versioned collection of declarative control definitions.

A catalog is an explicitly constructed value (never process-wide state), so
several catalog versions can be evaluated side by side in one process. Every
control's predicate is parsed and statically checked when the catalog is
built; a malformed predicate or a duplicate id aborts the load.

Catalog file format (YAML):

    version: 1.0.0
    controls:
      - id: SBS-AUTH-002
        title: All active users authenticate through SSO
        risk: High
        predicate:
          op: for_all
          scope: {kind: User, where: {op: eq, attr: is_active, value: true}}
          require: {op: eq, attr: is_sso_enabled, value: true}
        remediation_text: ...
        default_value_note: ...

Categories are derived from the control-id prefix (the middle segment of
SBS-AUTH-002) through a configurable CategoryResolver.
"""

import hashlib
import json
import re
from collections.abc import Iterable, Iterator, Mapping
from dataclasses import dataclass, field
from functools import total_ordering
from pathlib import Path
from typing import Any

import yaml

from sbs_compliance_engine.compliance_as_code.predicates import (
    Applicability,
    VerdictPredicate,
    parse_applicability,
    parse_predicate,
    validate_predicate,
)
from sbs_compliance_engine.core.errors import DuplicateControlError, MalformedPredicate, NotFoundError
from sbs_compliance_engine.core.models import EntityKind, RiskLevel
from sbs_compliance_engine.observability import get_logger
from sbs_compliance_engine.settings import DEFAULT_CATEGORY_PREFIXES

logger = get_logger(__name__)

_CONTROL_ID_PATTERN = re.compile(r"^[A-Z][A-Z0-9]*-(?P<prefix>[A-Z][A-Z0-9]*)-\d{3}$")
_VERSION_PATTERN = re.compile(r"^(\d+)\.(\d+)\.(\d+)$")

# Text fields compared when classifying catalog changes.
TEXT_FIELDS: tuple[str, ...] = (
    "title",
    "description",
    "rationale",
    "audit_procedure",
    "remediation_text",
    "default_value_note",
)


def _canonical_hash(data: Any) -> str:
    canonical = json.dumps(data, sort_keys=True, separators=(",", ":"), ensure_ascii=False)
    return hashlib.sha256(canonical.encode("utf-8")).hexdigest()


@total_ordering
@dataclass(frozen=True)
class CatalogVersion:
    """MAJOR.MINOR.REVISION version of a catalog. MAJOR == 0 means draft."""

    major: int
    minor: int
    revision: int

    @classmethod
    def parse(cls, value: "str | CatalogVersion") -> "CatalogVersion":
        """Parse "M.m.r" into a CatalogVersion.

        Raises:
            ValueError: If the string is not three dot-separated integers.
        """
        if isinstance(value, CatalogVersion):
            return value
        match = _VERSION_PATTERN.match(str(value).strip())
        if match is None:
            raise ValueError(f"Invalid catalog version '{value}', expected MAJOR.MINOR.REVISION")
        return cls(*(int(part) for part in match.groups()))

    @property
    def is_draft(self) -> bool:
        return self.major == 0

    def as_tuple(self) -> tuple[int, int, int]:
        return (self.major, self.minor, self.revision)

    def __lt__(self, other: "CatalogVersion") -> bool:
        return self.as_tuple() < other.as_tuple()

    def __str__(self) -> str:
        return f"{self.major}.{self.minor}.{self.revision}"


class CategoryResolver:
    """Maps control ids to report categories via their prefix.

    Args:
        prefixes: Mapping of prefix (e.g. "AUTH") to category name. Unknown
            prefixes resolve to the raw prefix so new benchmark sections show
            up in reports without code changes.
    """

    def __init__(self, prefixes: Mapping[str, str] | None = None) -> None:
        self._prefixes = dict(DEFAULT_CATEGORY_PREFIXES if prefixes is None else prefixes)

    @staticmethod
    def prefix_of(control_id: str) -> str:
        match = _CONTROL_ID_PATTERN.match(control_id)
        if match is None:
            return control_id.split("-")[1] if control_id.count("-") >= 2 else control_id
        return match.group("prefix")

    def resolve(self, control_id: str) -> str:
        """Return the category name for a control id."""
        prefix = self.prefix_of(control_id)
        return self._prefixes.get(prefix, prefix)


@dataclass(frozen=True)
class Control:
    """A named, versioned rule of the benchmark.

    Attributes:
        control_id: Stable identifier, e.g. SBS-AUTH-001.
        title: Short control statement.
        risk: Critical | High | Moderate.
        predicate: Verdict predicate (tagged expression tree).
        applicability: Optional applicability check; None means always applicable.
        remediation_text: How to remediate a failure.
        default_value_note: The platform's default for the governed setting.
        description: Full control statement.
        rationale: Why the control matters.
        audit_procedure: How an auditor verifies the control manually.
        references: External references.
        related_controls: Informational links to other controls. Not used for ordering.
    """

    control_id: str
    title: str
    risk: RiskLevel
    predicate: VerdictPredicate
    applicability: Applicability | None = None
    remediation_text: str = ""
    default_value_note: str = ""
    description: str = ""
    rationale: str = ""
    audit_procedure: str = ""
    references: tuple[str, ...] = field(default_factory=tuple)
    related_controls: tuple[str, ...] = field(default_factory=tuple)

    def logic_dict(self) -> dict[str, Any]:
        """Predicate and applicability in their tagged-mapping form."""
        return {
            "predicate": self.predicate.to_dict(),
            "applicability": self.applicability.to_dict() if self.applicability else None,
        }

    @property
    def predicate_fingerprint(self) -> str:
        """SHA-256 of the canonical predicate logic."""
        return _canonical_hash(self.logic_dict())

    def metadata_dict(self) -> dict[str, Any]:
        """Every non-predicate field."""
        return {
            "risk": self.risk.value,
            "references": list(self.references),
            "related_controls": list(self.related_controls),
            **{name: getattr(self, name) for name in TEXT_FIELDS},
        }

    @property
    def metadata_fingerprint(self) -> str:
        return _canonical_hash(self.metadata_dict())

    def required_kinds(self) -> frozenset[EntityKind]:
        kinds = self.predicate.required_kinds()
        if self.applicability is not None:
            kinds = kinds | self.applicability.required_kinds()
        return kinds

    def to_dict(self) -> dict[str, Any]:
        """Serialize back to the catalog file entry format."""
        data: dict[str, Any] = {"id": self.control_id, "risk": self.risk.value}
        data.update({name: getattr(self, name) for name in TEXT_FIELDS})
        data["predicate"] = self.predicate.to_dict()
        if self.applicability is not None:
            data["applicability"] = self.applicability.to_dict()
        data["references"] = list(self.references)
        data["related_controls"] = list(self.related_controls)
        return data


class ControlCatalog:
    """Immutable, versioned set of controls ordered by control id.

    Args:
        version: Catalog version.
        controls: The controls. Ids must be unique and well-formed.
        categories: Resolver used to derive report categories.

    Raises:
        DuplicateControlError: If two controls share an id.
        MalformedPredicate: If an id is malformed or a predicate fails its checks.
    """

    def __init__(
        self,
        version: CatalogVersion | str,
        controls: Iterable[Control],
        categories: CategoryResolver | None = None,
    ) -> None:
        self._version = CatalogVersion.parse(version)
        self._categories = categories or CategoryResolver()
        by_id: dict[str, Control] = {}
        for control in controls:
            if not _CONTROL_ID_PATTERN.match(control.control_id):
                raise MalformedPredicate(
                    control.control_id, "control id must look like SBS-<PREFIX>-<NNN>"
                )
            if control.control_id in by_id:
                raise DuplicateControlError(control.control_id)
            validate_predicate(control.predicate, control.control_id)
            if control.applicability is not None:
                control.applicability.check(control.control_id)
            by_id[control.control_id] = control
        self._controls: dict[str, Control] = {key: by_id[key] for key in sorted(by_id)}

    @property
    def version(self) -> CatalogVersion:
        return self._version

    @property
    def categories(self) -> CategoryResolver:
        return self._categories

    def __len__(self) -> int:
        return len(self._controls)

    def __iter__(self) -> Iterator[Control]:
        return iter(self._controls.values())

    def __contains__(self, control_id: object) -> bool:
        return control_id in self._controls

    @property
    def control_ids(self) -> tuple[str, ...]:
        return tuple(self._controls)

    def get(self, control_id: str) -> Control:
        """Return a control by id.

        Raises:
            NotFoundError: If the catalog has no such control.
        """
        control = self._controls.get(control_id)
        if control is None:
            raise NotFoundError(resource="Control", resource_id=control_id)
        return control

    def category_of(self, control_id: str) -> str:
        return self._categories.resolve(control_id)

    def with_version(self, version: CatalogVersion | str) -> "ControlCatalog":
        """Return a copy of this catalog carrying a different version."""
        return ControlCatalog(version, self._controls.values(), self._categories)

    def to_dict(self) -> dict[str, Any]:
        return {
            "version": str(self._version),
            "controls": [control.to_dict() for control in self._controls.values()],
        }

    @property
    def fingerprint(self) -> str:
        """SHA-256 over the catalog's full content (version excluded)."""
        return _canonical_hash(self.to_dict()["controls"])


def _text(entry: Mapping[str, Any], name: str) -> str:
    value = entry.get(name)
    return "" if value is None else str(value).strip()


def _risk(value: Any, control_id: str) -> RiskLevel:
    try:
        return RiskLevel(str(value).capitalize())
    except ValueError:
        raise MalformedPredicate(
            control_id, f"risk must be one of {[r.value for r in RiskLevel]}, got {value!r}"
        ) from None


def parse_control(entry: Mapping[str, Any]) -> Control:
    """Parse one catalog entry into a Control.

    Args:
        entry: Mapping with id, risk, predicate and optional text fields.

    Returns:
        The parsed Control.

    Raises:
        MalformedPredicate: If the entry or its predicate is malformed.
    """
    control_id = str(entry.get("id") or entry.get("control_id") or "<unknown>")
    if "predicate" not in entry:
        raise MalformedPredicate(control_id, "control has no predicate")
    applicability = entry.get("applicability")
    return Control(
        control_id=control_id,
        title=_text(entry, "title"),
        risk=_risk(entry.get("risk"), control_id),
        predicate=parse_predicate(entry["predicate"], control_id),
        applicability=parse_applicability(applicability, control_id) if applicability else None,
        remediation_text=_text(entry, "remediation_text"),
        default_value_note=_text(entry, "default_value_note"),
        description=_text(entry, "description"),
        rationale=_text(entry, "rationale"),
        audit_procedure=_text(entry, "audit_procedure"),
        references=tuple(str(r) for r in entry.get("references") or ()),
        related_controls=tuple(str(r) for r in entry.get("related_controls") or ()),
    )


def load_catalog(data: Mapping[str, Any], categories: CategoryResolver | None = None) -> ControlCatalog:
    """Build a ControlCatalog from its mapping form.

    Args:
        data: Mapping with "version" and "controls".
        categories: Optional category resolver.

    Returns:
        The loaded catalog.

    Raises:
        MalformedPredicate: If any control is malformed.
        DuplicateControlError: If two controls share an id.
        ValueError: If the version string is invalid.
    """
    entries = data.get("controls")
    if not isinstance(entries, list):
        raise MalformedPredicate("<catalog>", "catalog must contain a 'controls' list")
    controls = [parse_control(entry) for entry in entries]
    catalog = ControlCatalog(data.get("version", "0.1.0"), controls, categories)
    logger.info(
        "Control catalog loaded",
        version=str(catalog.version),
        control_count=len(catalog),
        draft=catalog.version.is_draft,
    )
    return catalog


def load_catalog_file(path: Path, categories: CategoryResolver | None = None) -> ControlCatalog:
    """Load a ControlCatalog from a YAML file.

    Args:
        path: Path to the catalog YAML.
        categories: Optional category resolver.

    Returns:
        The loaded catalog.
    """
    raw = yaml.safe_load(path.read_text(encoding="utf-8"))
    if not isinstance(raw, Mapping):
        raise MalformedPredicate("<catalog>", f"catalog file {path} does not contain a mapping")
    return load_catalog(raw, categories)
