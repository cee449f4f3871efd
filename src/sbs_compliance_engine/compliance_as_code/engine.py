"""Compliance engine — evaluates a control catalog against a fact snapshot.

Architecture:
- PredicateEvaluator: synchronous, pure evaluation of one control
- ComplianceEngine: async orchestrator that fans controls out to worker
  threads and folds the outcomes into a Report

The evaluator processes one control by:
1. Checking applicability first (not applicable short-circuits to an empty
   verdict, and the predicate is never touched)
2. Checking that every entity kind the predicate reads was collected
3. Enumerating the predicate's scope in entity-id order
4. Computing raw failures
5. Moving failures covered by an effective exception to the suppressed list
6. Deciding the binary status from what remains

Evaluation of one control never observes another control's result, so the
engine may run controls in any order or concurrently.
"""

import asyncio
import time
from datetime import datetime

from sbs_compliance_engine.compliance_as_code.aggregator import Report, aggregate
from sbs_compliance_engine.compliance_as_code.benchmark_inventory import build_benchmark_catalog
from sbs_compliance_engine.compliance_as_code.control_catalog import (
    CategoryResolver,
    Control,
    ControlCatalog,
    load_catalog_file,
)
from sbs_compliance_engine.compliance_as_code.exception_registry import ExceptionRegistry
from sbs_compliance_engine.core.errors import KindNotCollectedError, MissingData
from sbs_compliance_engine.core.interfaces import IExceptionRegistry, IFactStore
from sbs_compliance_engine.core.models import (
    Entity,
    EntityKind,
    EvaluationFailure,
    FailingEntity,
    SuppressedEntity,
    Verdict,
    VerdictStatus,
)
from sbs_compliance_engine.observability import get_logger
from sbs_compliance_engine.settings import Settings

logger = get_logger(__name__)

_MISSING_DATA = "missing_data"


def _check_collected(control_id: str, kinds: frozenset[EntityKind], facts: IFactStore) -> None:
    missing = sorted(kind.value for kind in kinds if not facts.has_kind(kind))
    if missing:
        detail = f"also missing: {', '.join(missing[1:])}" if len(missing) > 1 else None
        raise MissingData(control_id, missing[0], detail)


class PredicateEvaluator:
    """Evaluates a single control against a snapshot and an exception registry.

    Args:
        categories: Resolver used when the caller does not pass a category.
    """

    def __init__(self, categories: CategoryResolver | None = None) -> None:
        self._categories = categories or CategoryResolver()

    def evaluate(
        self,
        control: Control,
        facts: IFactStore,
        exceptions: IExceptionRegistry,
        as_of: datetime | None = None,
        category: str | None = None,
    ) -> Verdict:
        """Evaluate one control.

        Args:
            control: The control to evaluate.
            facts: The fact snapshot.
            exceptions: Approved exceptions.
            as_of: Instant at which exception expiry is judged. Defaults to the
                snapshot's collection time so reruns are reproducible.
            category: Report category; derived from the control id when omitted.

        Returns:
            The control's Verdict.

        Raises:
            MissingData: If an entity kind or setting the control needs was not collected.
        """
        control_id = control.control_id
        evaluated_at = as_of or facts.collected_at
        category = category or self._categories.resolve(control_id)

        if control.applicability is not None:
            _check_collected(control_id, control.applicability.required_kinds(), facts)
            try:
                applies = control.applicability.applies(facts)
            except KindNotCollectedError as exc:
                raise MissingData(control_id, exc.kind) from exc
            if not applies:
                return Verdict(
                    control_id=control_id,
                    status=VerdictStatus.NOT_APPLICABLE,
                    failing_entities=(),
                    evaluated_at=evaluated_at,
                    risk=control.risk,
                    category=category,
                )

        _check_collected(control_id, control.predicate.required_kinds(), facts)
        try:
            scope = control.predicate.scope_entities(facts, control_id)
            raw = control.predicate.raw_failures(scope, facts)
        except KindNotCollectedError as exc:
            raise MissingData(control_id, exc.kind) from exc

        remaining: list[tuple[Entity, str]] = []
        suppressed: list[SuppressedEntity] = []
        for entity, reason in raw:
            exception = exceptions.effective_exception(entity.id, control_id, evaluated_at)
            if exception is None:
                remaining.append((entity, reason))
                continue
            suppressed.append(
                SuppressedEntity(
                    entity_id=entity.id,
                    entity_kind=entity.kind.value,
                    reason=reason,
                    justification=exception.justification,
                    approver=exception.approver,
                    expires_at=exception.expires_at,
                )
            )
            logger.debug(
                "Finding suppressed by approved exception",
                control_id=control_id,
                entity_id=entity.id,
                approver=exception.approver,
            )

        failing = tuple(
            FailingEntity(entity_id=entity.id, entity_kind=entity.kind.value, reason=reason)
            for entity, reason in control.predicate.residual(remaining)
        )
        return Verdict(
            control_id=control_id,
            status=VerdictStatus.NONCOMPLIANT if failing else VerdictStatus.COMPLIANT,
            failing_entities=failing,
            evaluated_at=evaluated_at,
            risk=control.risk,
            category=category,
            suppressed_entities=tuple(suppressed),
            scope_size=len(scope),
        )


class ComplianceEngine:
    """Async orchestrator for compliance runs.

    Controls are evaluated on worker threads, at most settings.max_concurrency
    at a time. A control that hits MissingData becomes an EvaluationFailure in
    the report and does not affect its siblings. Catalog-structural errors are
    raised before any run starts, when the catalog is built.

    Args:
        settings: Engine settings.
        evaluator: Optional evaluator override.
    """

    def __init__(
        self,
        settings: Settings | None = None,
        evaluator: PredicateEvaluator | None = None,
    ) -> None:
        self._settings = settings or Settings()
        self._categories = CategoryResolver(self._settings.category_prefixes)
        self._evaluator = evaluator or PredicateEvaluator(self._categories)

    @property
    def settings(self) -> Settings:
        return self._settings

    def load_catalog(self) -> ControlCatalog:
        """Return the configured catalog.

        Loads settings.catalog_path when set, otherwise builds the built-in
        benchmark catalog. Both use the configured category mapping.
        """
        if self._settings.catalog_path is not None:
            return load_catalog_file(self._settings.catalog_path, self._categories)
        return build_benchmark_catalog(self._categories)

    async def run(
        self,
        catalog: ControlCatalog,
        facts: IFactStore,
        exceptions: IExceptionRegistry | None = None,
        as_of: datetime | None = None,
    ) -> Report:
        """Evaluate every control of a catalog against one snapshot.

        Args:
            catalog: The catalog to evaluate.
            facts: The fact snapshot.
            exceptions: Approved exceptions; none when omitted.
            as_of: Evaluation instant; defaults to the snapshot's collection time.

        Returns:
            The aggregated Report.
        """
        registry: IExceptionRegistry = exceptions if exceptions is not None else ExceptionRegistry()
        evaluated_at = as_of or facts.collected_at
        start_time = time.monotonic()

        logger.info(
            "Starting compliance run",
            catalog_version=str(catalog.version),
            snapshot_id=facts.snapshot_id,
            control_count=len(catalog),
            evaluated_at=evaluated_at.isoformat(),
        )
        if isinstance(registry, ExceptionRegistry):
            self._log_exception_hygiene(registry, catalog, evaluated_at)

        semaphore = asyncio.Semaphore(self._settings.max_concurrency)

        async def evaluate_one(control: Control) -> Verdict | EvaluationFailure:
            category = catalog.category_of(control.control_id)
            async with semaphore:
                try:
                    return await asyncio.to_thread(
                        self._evaluator.evaluate, control, facts, registry, evaluated_at, category
                    )
                except MissingData as exc:
                    logger.warning(
                        "Control could not be evaluated",
                        control_id=control.control_id,
                        missing_kind=exc.missing_kind,
                        error=str(exc),
                    )
                    return EvaluationFailure(
                        control_id=control.control_id,
                        error=_MISSING_DATA,
                        missing_kind=exc.missing_kind,
                        message=str(exc),
                        risk=control.risk,
                        category=category,
                    )

        outcomes = await asyncio.gather(*(evaluate_one(control) for control in catalog))
        verdicts = [o for o in outcomes if isinstance(o, Verdict)]
        failures = [o for o in outcomes if isinstance(o, EvaluationFailure)]

        report = aggregate(verdicts, failures, catalog.version, facts, evaluated_at)
        logger.info(
            "Compliance run complete",
            catalog_version=report.catalog_version,
            snapshot_id=report.snapshot_id,
            overall_compliant=report.overall_compliant,
            noncompliant_count=report.summary.noncompliant,
            missing_data_count=report.summary.missing_data,
            duration_ms=round((time.monotonic() - start_time) * 1000, 2),
        )
        return report

    @staticmethod
    def _log_exception_hygiene(
        registry: ExceptionRegistry, catalog: ControlCatalog, as_of: datetime
    ) -> None:
        for exception in registry.unknown_controls(catalog.control_ids):
            logger.warning(
                "Exception references a control not in the catalog",
                control_id=exception.control_id,
                entity_id=exception.entity_id,
                catalog_version=str(catalog.version),
            )
        expired = registry.expired(as_of)
        if expired:
            logger.info(
                "Expired exceptions no longer suppress findings",
                expired_count=len(expired),
                pairs=[f"{e.control_id}:{e.entity_id}" for e in expired],
            )
