"""Drift detection — compares two run reports.

Reports from successive audit runs are compared per control. A control that
could not be evaluated counts as status "missing_data" for comparison.
Entity-level drift lists ids that started or stopped failing a control that
exists in both reports.
"""

from dataclasses import dataclass, field

from sbs_compliance_engine.compliance_as_code.aggregator import Report
from sbs_compliance_engine.core.models import VerdictStatus

_MISSING_DATA = "missing_data"
_FAILING_STATES = frozenset({VerdictStatus.NONCOMPLIANT.value, _MISSING_DATA})


@dataclass(frozen=True)
class ControlDrift:
    """Change of one control between two reports."""

    control_id: str
    previous_status: str
    current_status: str
    newly_failing: tuple[str, ...] = field(default_factory=tuple)
    newly_passing: tuple[str, ...] = field(default_factory=tuple)

    @property
    def is_regression(self) -> bool:
        return self.current_status in _FAILING_STATES and self.previous_status not in _FAILING_STATES

    @property
    def is_resolution(self) -> bool:
        return self.previous_status in _FAILING_STATES and self.current_status not in _FAILING_STATES


@dataclass(frozen=True)
class DriftReport:
    """Differences between a previous and a current report.

    Attributes:
        previous_version: Catalog version of the previous report.
        current_version: Catalog version of the current report.
        changes: Controls whose status or failing entities changed, by id.
        added_controls: Controls present only in the current report.
        removed_controls: Controls present only in the previous report.
    """

    previous_version: str
    current_version: str
    changes: tuple[ControlDrift, ...]
    added_controls: tuple[str, ...]
    removed_controls: tuple[str, ...]

    @property
    def regressions(self) -> tuple[str, ...]:
        return tuple(c.control_id for c in self.changes if c.is_regression)

    @property
    def resolutions(self) -> tuple[str, ...]:
        return tuple(c.control_id for c in self.changes if c.is_resolution)

    @property
    def has_drift(self) -> bool:
        return bool(self.changes or self.added_controls or self.removed_controls)


def _outcomes(report: Report) -> dict[str, tuple[str, frozenset[str]]]:
    outcomes = {
        v.control_id: (v.status.value, frozenset(f.entity_id for f in v.failing_entities))
        for v in report.verdicts
    }
    outcomes.update({f.control_id: (_MISSING_DATA, frozenset()) for f in report.failures})
    return outcomes


def diff_reports(previous: Report, current: Report) -> DriftReport:
    """Compare two reports control by control.

    Args:
        previous: The earlier report.
        current: The later report.

    Returns:
        DriftReport with every difference, ordered by control id.
    """
    before = _outcomes(previous)
    after = _outcomes(current)
    changes: list[ControlDrift] = []
    for control_id in sorted(set(before) & set(after)):
        old_status, old_failing = before[control_id]
        new_status, new_failing = after[control_id]
        if old_status == new_status and old_failing == new_failing:
            continue
        changes.append(
            ControlDrift(
                control_id=control_id,
                previous_status=old_status,
                current_status=new_status,
                newly_failing=tuple(sorted(new_failing - old_failing)),
                newly_passing=tuple(sorted(old_failing - new_failing)),
            )
        )
    return DriftReport(
        previous_version=previous.catalog_version,
        current_version=current.catalog_version,
        changes=tuple(changes),
        added_controls=tuple(sorted(set(after) - set(before))),
        removed_controls=tuple(sorted(set(before) - set(after))),
    )
