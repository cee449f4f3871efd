"""Test fixtures for sbs-compliance-engine.

Provides:
- collected_at: The fixed collection instant shared by every snapshot
- org_snapshot: Record-oriented snapshot of a small org (10 users, 3 without SSO)
- org_facts: FactStore built from org_snapshot
- benchmark_catalog: The built-in benchmark catalog
- make_exception: Factory for ApprovedException records
- make_control: Factory for catalog controls from a predicate mapping
"""

import copy
from collections.abc import Callable
from datetime import UTC, datetime, timedelta
from typing import Any

import pytest

from sbs_compliance_engine.compliance_as_code.benchmark_inventory import build_benchmark_catalog
from sbs_compliance_engine.compliance_as_code.control_catalog import Control, ControlCatalog, parse_control
from sbs_compliance_engine.compliance_as_code.fact_store import FactStore
from sbs_compliance_engine.core.models import ApprovedException

USERS_WITHOUT_SSO = ("005U08", "005U09", "005U10")


@pytest.fixture()
def collected_at() -> datetime:
    """Return the fixed snapshot collection instant.

    Returns:
        2026-10-01T12:00:00Z.
    """
    return datetime(2026, 10, 1, 12, 0, tzinfo=UTC)


@pytest.fixture()
def org_snapshot() -> dict[str, Any]:
    """Return a snapshot of a small org in the external record format.

    Users 005U01..005U10 are active; 005U08..005U10 are not SSO-enabled.
    005U01 is the designated developer and holds the admin profile; everyone
    else has the custom standard profile. ConnectedApp is not collected.

    Returns:
        A fresh, mutable snapshot mapping.
    """
    users = [
        {
            "id": f"005U{n:02d}",
            "is_active": True,
            "is_sso_enabled": f"005U{n:02d}" not in USERS_WITHOUT_SSO,
            "mfa_enabled": True,
            "user_type": "Standard",
            "is_designated_developer": n == 1,
        }
        for n in range(1, 11)
    ]
    snapshot = {
        "snapshot_id": "run-2026-10-01",
        "collected_at": "2026-10-01T12:00:00Z",
        "entities": {
            "User": users,
            "Profile": [
                {
                    "id": "00eADMIN",
                    "is_custom": False,
                    "modify_all_data": True,
                    "view_all_data": True,
                    "api_enabled": True,
                },
                {"id": "00eSTD", "is_custom": True, "view_all_data": False, "api_enabled": False},
            ],
            "PermissionSet": [{"id": "0PSDEV", "author_apex": True, "api_enabled": False}],
            "PermissionSetGroup": [{"id": "0PGADMIN", "last_reviewed_days": 30}],
            "Setting": [
                {"id": "SingleSignOnSettings", "sso_required": True},
                {
                    "id": "PasswordPolicies",
                    "min_length": 8,
                    "complexity_required": True,
                    "max_login_attempts": 10,
                },
                {"id": "DeploymentSettings", "allow_direct_production_changes": False},
                {"id": "SetupAuditTrail", "retention_days": 365},
            ],
        },
        "relationships": [
            {
                "from": "User",
                "to": "Profile",
                "pairs": [["005U01", "00eADMIN"]] + [[f"005U{n:02d}", "00eSTD"] for n in range(2, 11)],
            },
            {"from": "User", "to": "PermissionSet", "pairs": [["005U01", "0PSDEV"]]},
            {"from": "PermissionSetGroup", "to": "PermissionSet", "pairs": [["0PGADMIN", "0PSDEV"]]},
        ],
    }
    return copy.deepcopy(snapshot)


@pytest.fixture()
def org_facts(org_snapshot: dict[str, Any]) -> FactStore:
    """Build a FactStore from the org snapshot.

    Args:
        org_snapshot: Injected snapshot mapping.

    Returns:
        The FactStore.
    """
    return FactStore.from_snapshot(org_snapshot)


@pytest.fixture()
def benchmark_catalog() -> ControlCatalog:
    """Return the built-in benchmark catalog."""
    return build_benchmark_catalog()


@pytest.fixture()
def make_exception(collected_at: datetime) -> Callable[..., ApprovedException]:
    """Factory for approved exceptions, approved 30 days before collection.

    Args:
        collected_at: Injected collection instant.

    Returns:
        Callable(entity_id, control_id, expires_in_days=None, approved_days_ago=30).
    """

    def _make(
        entity_id: str,
        control_id: str,
        expires_in_days: int | None = None,
        approved_days_ago: int = 30,
        approver: str = "ciso@example.com",
    ) -> ApprovedException:
        expires_at = collected_at + timedelta(days=expires_in_days) if expires_in_days is not None else None
        return ApprovedException(
            entity_id=entity_id,
            control_id=control_id,
            justification="Break-glass account managed by the identity team",
            approver=approver,
            approved_at=collected_at - timedelta(days=approved_days_ago),
            expires_at=expires_at,
        )

    return _make


@pytest.fixture()
def make_control() -> Callable[..., Control]:
    """Factory for controls built through the catalog entry parser.

    Returns:
        Callable(control_id, predicate, risk="High", **fields).
    """

    def _make(control_id: str, predicate: dict[str, Any], risk: str = "High", **fields: Any) -> Control:
        entry = {"id": control_id, "title": f"Control {control_id}", "risk": risk, "predicate": predicate}
        entry.update(fields)
        return parse_control(entry)

    return _make
