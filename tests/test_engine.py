"""Tests for the predicate evaluator and the async compliance engine.

Covers:
- exception suppression (effective, expired, exact-pair only)
- applicability short-circuit to not_applicable
- MissingData isolation from sibling controls
- at_most aggregation with suppression
- byte-identical reports across reruns and concurrency settings
- the engine's catalog selection from settings
"""

from collections.abc import Callable
from datetime import datetime, timedelta
from pathlib import Path
from typing import Any

import pytest
import yaml

from sbs_compliance_engine.compliance_as_code.control_catalog import Control, ControlCatalog
from sbs_compliance_engine.compliance_as_code.engine import ComplianceEngine, PredicateEvaluator
from sbs_compliance_engine.compliance_as_code.exception_registry import ExceptionRegistry
from sbs_compliance_engine.compliance_as_code.fact_store import FactStore
from sbs_compliance_engine.compliance_as_code.report_serializer import report_digest, serialize_report
from sbs_compliance_engine.core.errors import MissingData
from sbs_compliance_engine.core.models import ApprovedException, VerdictStatus
from sbs_compliance_engine.settings import Settings

# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _make_engine(max_concurrency: int = 4) -> ComplianceEngine:
    return ComplianceEngine(Settings(max_concurrency=max_concurrency))


def _all_users_sso(snapshot: dict[str, Any]) -> dict[str, Any]:
    for user in snapshot["entities"]["User"]:
        user["is_sso_enabled"] = True
    return snapshot


# ---------------------------------------------------------------------------
# Test 1: exception suppression
# ---------------------------------------------------------------------------


def test_excepted_user_is_suppressed_not_failing(
    benchmark_catalog: ControlCatalog,
    org_facts: FactStore,
    make_exception: Callable[..., ApprovedException],
) -> None:
    """Ten users, three without SSO, one excepted: two failing, one suppressed."""
    registry = ExceptionRegistry([make_exception("005U09", "SBS-AUTH-002", expires_in_days=90)])
    verdict = PredicateEvaluator().evaluate(benchmark_catalog.get("SBS-AUTH-002"), org_facts, registry)

    assert verdict.status is VerdictStatus.NONCOMPLIANT
    assert [f.entity_id for f in verdict.failing_entities] == ["005U08", "005U10"]
    assert [s.entity_id for s in verdict.suppressed_entities] == ["005U09"]
    assert verdict.suppressed_entities[0].approver == "ciso@example.com"
    assert verdict.scope_size == 10
    assert verdict.evaluated_at == org_facts.collected_at
    assert verdict.category == "Authentication"


def test_expired_exception_does_not_suppress(
    benchmark_catalog: ControlCatalog,
    org_facts: FactStore,
    make_exception: Callable[..., ApprovedException],
) -> None:
    """An exception that expired before collection leaves the finding in place."""
    registry = ExceptionRegistry([make_exception("005U09", "SBS-AUTH-002", expires_in_days=-1)])
    verdict = PredicateEvaluator().evaluate(benchmark_catalog.get("SBS-AUTH-002"), org_facts, registry)
    assert [f.entity_id for f in verdict.failing_entities] == ["005U08", "005U09", "005U10"]
    assert verdict.suppressed_entities == ()


def test_as_of_controls_exception_expiry(
    benchmark_catalog: ControlCatalog,
    org_facts: FactStore,
    make_exception: Callable[..., ApprovedException],
    collected_at: datetime,
) -> None:
    """Re-evaluating after the expiry instant un-suppresses the entity."""
    registry = ExceptionRegistry([make_exception("005U09", "SBS-AUTH-002", expires_in_days=7)])
    control = benchmark_catalog.get("SBS-AUTH-002")
    before = PredicateEvaluator().evaluate(control, org_facts, registry, as_of=collected_at)
    after = PredicateEvaluator().evaluate(control, org_facts, registry, as_of=collected_at + timedelta(days=7))
    assert len(before.failing_entities) == 2
    assert len(after.failing_entities) == 3


def test_fully_excepted_control_is_compliant(
    benchmark_catalog: ControlCatalog,
    org_facts: FactStore,
    make_exception: Callable[..., ApprovedException],
) -> None:
    """When every failure is excepted the control is compliant with suppressions listed."""
    registry = ExceptionRegistry([make_exception(uid, "SBS-AUTH-002") for uid in ("005U08", "005U09", "005U10")])
    verdict = PredicateEvaluator().evaluate(benchmark_catalog.get("SBS-AUTH-002"), org_facts, registry)
    assert verdict.status is VerdictStatus.COMPLIANT
    assert verdict.failing_entities == ()
    assert len(verdict.suppressed_entities) == 3


# ---------------------------------------------------------------------------
# Test 2: applicability
# ---------------------------------------------------------------------------


def test_password_policy_not_applicable_when_all_users_use_sso(
    benchmark_catalog: ControlCatalog, org_snapshot: dict[str, Any]
) -> None:
    """The local-password control is not applicable when every active user has SSO."""
    facts = FactStore.from_snapshot(_all_users_sso(org_snapshot))
    verdict = PredicateEvaluator().evaluate(benchmark_catalog.get("SBS-AUTH-003"), facts, ExceptionRegistry())
    assert verdict.status is VerdictStatus.NOT_APPLICABLE
    assert verdict.failing_entities == ()


def test_password_policy_applies_when_local_logins_exist(
    benchmark_catalog: ControlCatalog, org_facts: FactStore
) -> None:
    """With non-SSO users the weak password policy is a finding."""
    verdict = PredicateEvaluator().evaluate(benchmark_catalog.get("SBS-AUTH-003"), org_facts, ExceptionRegistry())
    assert verdict.status is VerdictStatus.NONCOMPLIANT
    assert [f.entity_id for f in verdict.failing_entities] == ["PasswordPolicies"]
    assert verdict.failing_entities[0].entity_kind == "Setting"


def test_not_applicable_control_ignores_uncollected_predicate_kinds(
    benchmark_catalog: ControlCatalog, org_snapshot: dict[str, Any]
) -> None:
    """Applicability runs first, so a predicate kind that was never collected does not matter."""
    del org_snapshot["entities"]["Setting"]
    facts = FactStore.from_snapshot(_all_users_sso(org_snapshot))
    verdict = PredicateEvaluator().evaluate(benchmark_catalog.get("SBS-AUTH-003"), facts, ExceptionRegistry())
    assert verdict.status is VerdictStatus.NOT_APPLICABLE


def test_applicable_control_with_uncollected_predicate_kind_raises(
    benchmark_catalog: ControlCatalog, org_snapshot: dict[str, Any]
) -> None:
    """Once a control applies, its predicate kinds must have been collected."""
    del org_snapshot["entities"]["Setting"]
    facts = FactStore.from_snapshot(org_snapshot)
    with pytest.raises(MissingData) as exc_info:
        PredicateEvaluator().evaluate(benchmark_catalog.get("SBS-AUTH-003"), facts, ExceptionRegistry())
    assert exc_info.value.missing_kind == "Setting"


# ---------------------------------------------------------------------------
# Test 3: missing data
# ---------------------------------------------------------------------------


def test_uncollected_kind_raises_missing_data(benchmark_catalog: ControlCatalog, org_facts: FactStore) -> None:
    """A control over an uncollected kind raises MissingData, never a vacuous pass."""
    with pytest.raises(MissingData) as exc_info:
        PredicateEvaluator().evaluate(benchmark_catalog.get("SBS-ACS-004"), org_facts, ExceptionRegistry())
    assert exc_info.value.missing_kind == "ConnectedApp"
    assert exc_info.value.control_id == "SBS-ACS-004"


def test_collected_empty_kind_is_vacuously_compliant(
    benchmark_catalog: ControlCatalog, org_snapshot: dict[str, Any]
) -> None:
    """A kind collected with zero entities is evaluable."""
    org_snapshot["entities"]["ConnectedApp"] = []
    facts = FactStore.from_snapshot(org_snapshot)
    verdict = PredicateEvaluator().evaluate(benchmark_catalog.get("SBS-ACS-004"), facts, ExceptionRegistry())
    assert verdict.status is VerdictStatus.COMPLIANT
    assert verdict.scope_size == 0


@pytest.mark.asyncio
async def test_missing_data_does_not_block_other_controls(
    benchmark_catalog: ControlCatalog, org_facts: FactStore
) -> None:
    """The ConnectedApp control fails with MissingData while every other control gets a verdict."""
    report = await _make_engine().run(benchmark_catalog, org_facts, ExceptionRegistry())

    assert [f.control_id for f in report.failures] == ["SBS-ACS-004"]
    assert report.failures[0].missing_kind == "ConnectedApp"
    assert report.failures[0].error == "missing_data"
    assert len(report.verdicts) == len(benchmark_catalog) - 1
    assert report.verdict_for("SBS-ACS-004") is None
    assert report.overall_compliant is False


# ---------------------------------------------------------------------------
# Test 4: at_most with suppression
# ---------------------------------------------------------------------------


def test_at_most_respects_suppression(
    make_control: Callable[..., Control],
    org_facts: FactStore,
    make_exception: Callable[..., ApprovedException],
) -> None:
    """Excepting enough entities brings an at_most control back under its limit."""
    control = make_control(
        "SBS-AUTH-010",
        {"op": "at_most", "scope": {"kind": "User", "where": {"op": "falsy", "attr": "is_sso_enabled"}}, "limit": 2},
    )
    evaluator = PredicateEvaluator()
    failing = evaluator.evaluate(control, org_facts, ExceptionRegistry())
    assert failing.status is VerdictStatus.NONCOMPLIANT
    assert len(failing.failing_entities) == 3

    registry = ExceptionRegistry([make_exception("005U10", "SBS-AUTH-010")])
    passing = evaluator.evaluate(control, org_facts, registry)
    assert passing.status is VerdictStatus.COMPLIANT
    assert [s.entity_id for s in passing.suppressed_entities] == ["005U10"]


# ---------------------------------------------------------------------------
# Test 5: full run over the benchmark
# ---------------------------------------------------------------------------


@pytest.mark.asyncio
async def test_full_run_over_benchmark(benchmark_catalog: ControlCatalog, org_facts: FactStore) -> None:
    """The benchmark run over the sample org yields the expected outcome per control."""
    report = await _make_engine().run(benchmark_catalog, org_facts)

    assert report.noncompliant_control_ids == ("SBS-ACS-002", "SBS-AUTH-002", "SBS-AUTH-003")
    assert report.verdict_for("SBS-CPORTAL-002").status is VerdictStatus.NOT_APPLICABLE
    assert report.verdict_for("SBS-ACS-001").status is VerdictStatus.COMPLIANT
    assert [f.entity_id for f in report.verdict_for("SBS-ACS-002").failing_entities] == ["005U01"]
    assert report.summary.compliant == 9
    assert report.summary.noncompliant == 3
    assert report.summary.not_applicable == 1
    assert report.summary.missing_data == 1
    assert report.summary.total == len(benchmark_catalog)
    assert report.catalog_version == "1.0.0"
    assert report.snapshot_fingerprint == org_facts.fingerprint


@pytest.mark.asyncio
async def test_verdicts_are_binary(benchmark_catalog: ControlCatalog, org_facts: FactStore) -> None:
    """Every verdict status is one of the three allowed values."""
    report = await _make_engine().run(benchmark_catalog, org_facts)
    assert {v.status for v in report.verdicts} <= set(VerdictStatus)


# ---------------------------------------------------------------------------
# Test 6: determinism
# ---------------------------------------------------------------------------


@pytest.mark.asyncio
async def test_reruns_produce_byte_identical_reports(
    benchmark_catalog: ControlCatalog,
    org_snapshot: dict[str, Any],
    make_exception: Callable[..., ApprovedException],
) -> None:
    """Same catalog, snapshot and exceptions give byte-identical serialized reports."""
    exceptions = [make_exception("005U09", "SBS-AUTH-002", expires_in_days=90)]
    first = await _make_engine(max_concurrency=1).run(
        benchmark_catalog, FactStore.from_snapshot(org_snapshot), ExceptionRegistry(exceptions)
    )
    second = await _make_engine(max_concurrency=16).run(
        benchmark_catalog, FactStore.from_snapshot(org_snapshot), ExceptionRegistry(list(reversed(exceptions)))
    )
    assert serialize_report(first) == serialize_report(second)
    assert report_digest(first) == report_digest(second)


# ---------------------------------------------------------------------------
# Test 7: catalog selection
# ---------------------------------------------------------------------------


def test_engine_loads_builtin_catalog_by_default() -> None:
    """Without catalog_path the engine uses the built-in benchmark."""
    catalog = ComplianceEngine(Settings()).load_catalog()
    assert "SBS-AUTH-001" in catalog


def test_engine_loads_catalog_from_settings_path(tmp_path: Path) -> None:
    """catalog_path and category_prefixes come from settings."""
    path = tmp_path / "catalog.yaml"
    path.write_text(
        yaml.safe_dump(
            {
                "version": "0.2.0",
                "controls": [
                    {
                        "id": "SBS-DATA-001",
                        "risk": "Moderate",
                        "predicate": {
                            "op": "for_all",
                            "scope": {"kind": "User"},
                            "require": {"op": "truthy", "attr": "mfa_enabled"},
                        },
                    }
                ],
            }
        ),
        encoding="utf-8",
    )
    engine = ComplianceEngine(Settings(catalog_path=path, category_prefixes={"DATA": "Data Protection"}))
    catalog = engine.load_catalog()
    assert catalog.control_ids == ("SBS-DATA-001",)
    assert catalog.category_of("SBS-DATA-001") == "Data Protection"
