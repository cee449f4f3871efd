"""Verdict aggregator — rolls per-control outcomes into a run report.

The aggregator is a pure fold over verdicts and evaluation failures: it never
re-evaluates anything and its output depends only on its inputs. Groups are
counted per risk tier and per category; the noncompliant list is ordered for
remediation (Critical first, then High, then Moderate, ids ascending within a
tier).
"""

from collections.abc import Iterable
from dataclasses import dataclass
from datetime import datetime

from sbs_compliance_engine.compliance_as_code.control_catalog import CatalogVersion
from sbs_compliance_engine.core.interfaces import IFactStore
from sbs_compliance_engine.core.models import EvaluationFailure, RiskLevel, Verdict, VerdictStatus


@dataclass(frozen=True)
class GroupSummary:
    """Outcome counts for one group of controls."""

    compliant: int = 0
    noncompliant: int = 0
    not_applicable: int = 0
    missing_data: int = 0

    @property
    def total(self) -> int:
        return self.compliant + self.noncompliant + self.not_applicable + self.missing_data

    def to_dict(self) -> dict[str, int]:
        return {
            "compliant": self.compliant,
            "noncompliant": self.noncompliant,
            "not_applicable": self.not_applicable,
            "missing_data": self.missing_data,
            "total": self.total,
        }


@dataclass(frozen=True)
class Report:
    """Aggregated outcome of one compliance run.

    Attributes:
        catalog_version: Version of the evaluated catalog.
        snapshot_id: Identifier of the evaluated fact snapshot.
        snapshot_fingerprint: SHA-256 of the snapshot content, or "" if unknown.
        evaluated_at: The evaluation instant shared by every verdict.
        summary: Counts across all controls.
        by_risk: Counts per risk tier, in tier order.
        by_category: Counts per category, sorted by category name.
        noncompliant_control_ids: Noncompliant controls in remediation order.
        verdicts: Verdicts sorted by control id.
        failures: Evaluation failures sorted by control id.
        overall_compliant: True only if nothing is noncompliant or failed.
    """

    catalog_version: str
    snapshot_id: str
    snapshot_fingerprint: str
    evaluated_at: datetime
    summary: GroupSummary
    by_risk: tuple[tuple[str, GroupSummary], ...]
    by_category: tuple[tuple[str, GroupSummary], ...]
    noncompliant_control_ids: tuple[str, ...]
    verdicts: tuple[Verdict, ...]
    failures: tuple[EvaluationFailure, ...]
    overall_compliant: bool

    def verdict_for(self, control_id: str) -> Verdict | None:
        """Return the verdict for a control, or None if it failed or is unknown."""
        for verdict in self.verdicts:
            if verdict.control_id == control_id:
                return verdict
        return None

    def failure_for(self, control_id: str) -> EvaluationFailure | None:
        for failure in self.failures:
            if failure.control_id == control_id:
                return failure
        return None


class _Counter:
    def __init__(self) -> None:
        self.counts = {"compliant": 0, "noncompliant": 0, "not_applicable": 0, "missing_data": 0}

    def add(self, outcome: str) -> None:
        self.counts[outcome] += 1

    def freeze(self) -> GroupSummary:
        return GroupSummary(**self.counts)


def aggregate(
    verdicts: Iterable[Verdict],
    failures: Iterable[EvaluationFailure],
    catalog_version: CatalogVersion | str,
    facts: IFactStore,
    evaluated_at: datetime | None = None,
) -> Report:
    """Fold verdicts and evaluation failures into a Report.

    Args:
        verdicts: Per-control verdicts of one run.
        failures: Per-control evaluation failures of the same run.
        catalog_version: Version of the evaluated catalog.
        facts: The evaluated snapshot (for provenance).
        evaluated_at: Evaluation instant; defaults to the snapshot's collection time.

    Returns:
        The aggregated Report.
    """
    ordered_verdicts = tuple(sorted(verdicts, key=lambda v: v.control_id))
    ordered_failures = tuple(sorted(failures, key=lambda f: f.control_id))

    overall = _Counter()
    by_risk: dict[RiskLevel, _Counter] = {risk: _Counter() for risk in RiskLevel}
    by_category: dict[str, _Counter] = {}

    outcomes: list[tuple[str, RiskLevel, str]] = [
        (v.status.value, v.risk, v.category) for v in ordered_verdicts
    ]
    outcomes.extend(("missing_data", f.risk, f.category) for f in ordered_failures)
    for outcome, risk, category in outcomes:
        overall.add(outcome)
        by_risk[risk].add(outcome)
        by_category.setdefault(category, _Counter()).add(outcome)

    noncompliant = sorted(
        (v for v in ordered_verdicts if v.status is VerdictStatus.NONCOMPLIANT),
        key=lambda v: (v.risk.rank, v.control_id),
    )
    summary = overall.freeze()

    return Report(
        catalog_version=str(catalog_version),
        snapshot_id=facts.snapshot_id,
        snapshot_fingerprint=str(getattr(facts, "fingerprint", "")),
        evaluated_at=evaluated_at or facts.collected_at,
        summary=summary,
        by_risk=tuple((risk.value, by_risk[risk].freeze()) for risk in sorted(RiskLevel, key=lambda r: r.rank)),
        by_category=tuple((name, by_category[name].freeze()) for name in sorted(by_category)),
        noncompliant_control_ids=tuple(v.control_id for v in noncompliant),
        verdicts=ordered_verdicts,
        failures=ordered_failures,
        overall_compliant=summary.noncompliant == 0 and summary.missing_data == 0,
    )
