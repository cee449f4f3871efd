"""Compliance-as-Code engine for SaaS security benchmark controls.

Evaluates a versioned catalog of declarative controls against an immutable
snapshot of environment state and returns one binary verdict per control.

Modules:
- fact_store: Immutable, pre-indexed snapshot of entities and relationships
- predicates: Tagged-expression predicate language and its interpreter
- control_catalog: Versioned catalog of controls and catalog loading
- benchmark_inventory: The built-in benchmark controls
- exception_registry: Approved, entity-scoped deviations
- engine: Per-control evaluation and async run orchestration
- aggregator: Roll-up of verdicts into a report
- versioning: Published-version immutability and bump enforcement
- report_serializer: Canonical report encoding
- drift: Comparison of two reports
"""
