"""Report serializer — canonical, byte-stable encoding of a run report.

Two runs over the same catalog version, snapshot, and exception set produce
byte-identical output: field order is fixed, keys are sorted, timestamps are
rendered in UTC ISO-8601, and the encoding is UTF-8 with a trailing newline.
"""

import hashlib
import json
from datetime import UTC, datetime
from typing import Any

from sbs_compliance_engine.compliance_as_code.aggregator import Report
from sbs_compliance_engine.core.models import EvaluationFailure, Verdict


def _timestamp(value: datetime | None) -> str | None:
    if value is None:
        return None
    return value.astimezone(UTC).isoformat()


def _verdict_to_dict(verdict: Verdict) -> dict[str, Any]:
    return {
        "control_id": verdict.control_id,
        "status": verdict.status.value,
        "risk": verdict.risk.value,
        "category": verdict.category,
        "scope_size": verdict.scope_size,
        "failing_entities": [
            {"entity_id": f.entity_id, "entity_kind": f.entity_kind, "reason": f.reason}
            for f in verdict.failing_entities
        ],
        "suppressed_entities": [
            {
                "entity_id": s.entity_id,
                "entity_kind": s.entity_kind,
                "reason": s.reason,
                "justification": s.justification,
                "approver": s.approver,
                "expires_at": _timestamp(s.expires_at),
            }
            for s in verdict.suppressed_entities
        ],
        "evaluated_at": _timestamp(verdict.evaluated_at),
    }


def _failure_to_dict(failure: EvaluationFailure) -> dict[str, Any]:
    return {
        "control_id": failure.control_id,
        "error": failure.error,
        "missing_kind": failure.missing_kind,
        "message": failure.message,
        "risk": failure.risk.value,
        "category": failure.category,
    }


def report_to_dict(report: Report) -> dict[str, Any]:
    """Convert a Report into plain JSON-compatible data.

    Args:
        report: The report to convert.

    Returns:
        Dict with the report's fields in a fixed order.
    """
    return {
        "catalog_version": report.catalog_version,
        "snapshot_id": report.snapshot_id,
        "snapshot_fingerprint": report.snapshot_fingerprint,
        "evaluated_at": _timestamp(report.evaluated_at),
        "overall_compliant": report.overall_compliant,
        "summary": report.summary.to_dict(),
        "by_risk": {name: group.to_dict() for name, group in report.by_risk},
        "by_category": {name: group.to_dict() for name, group in report.by_category},
        "noncompliant_control_ids": list(report.noncompliant_control_ids),
        "verdicts": [_verdict_to_dict(v) for v in report.verdicts],
        "failures": [_failure_to_dict(f) for f in report.failures],
    }


def serialize_report(report: Report) -> bytes:
    """Encode a Report as canonical JSON bytes."""
    text = json.dumps(report_to_dict(report), sort_keys=True, indent=2, ensure_ascii=False)
    return (text + "\n").encode("utf-8")


def report_digest(report: Report) -> str:
    """SHA-256 hex digest of the canonical encoding."""
    return hashlib.sha256(serialize_report(report)).hexdigest()
