"""Benchmark inventory — the built-in SaaS security benchmark controls.

Provides the authoritative machine-readable form of the benchmark's controls,
grouped by section:
- AUTH     Authentication (SSO, password policy, MFA)
- ACS      Access controls (powerful permissions, API access, connected apps)
- CODE     Code security (who may author code, deployment review)
- CPORTAL  Customer portals (guest user exposure)
- GOV      Governance (permission reviews, audit trail retention)

Every entry is plain data in the catalog file format and goes through the same
parser and static checks as a YAML catalog, so the built-in catalog can never
contain a predicate a file could not.

Recognized attributes per entity kind:
- User:               is_active, is_sso_enabled, mfa_enabled, user_type,
                      is_designated_developer
- Profile:            is_custom, is_guest_profile, modify_all_data,
                      view_all_data, api_enabled
- PermissionSet:      modify_all_data, view_all_data, api_enabled, author_apex
- PermissionSetGroup: last_reviewed_days
- Setting:            one entity per settings page, attributes are its fields
- ConnectedApp:       permitted_users, refresh_token_policy
"""

from typing import Any

from sbs_compliance_engine.compliance_as_code.control_catalog import (
    CategoryResolver,
    ControlCatalog,
    load_catalog,
)

BENCHMARK_VERSION = "1.0.0"

_ACTIVE_USER: dict[str, Any] = {"op": "eq", "attr": "is_active", "value": True}
_LOCAL_AUTH_USER: dict[str, Any] = {
    "op": "all_of",
    "of": [_ACTIVE_USER, {"op": "not", "of": {"op": "eq", "attr": "is_sso_enabled", "value": True}}],
}


def _grants(flag: str) -> dict[str, Any]:
    """Condition: the user holds `flag` through profile, permission set, or group."""
    granted = {"op": "truthy", "attr": flag}
    return {
        "op": "any_of",
        "of": [
            {"op": "related", "path": ["Profile"], "mode": "any", "where": granted},
            {"op": "related", "path": ["PermissionSet"], "mode": "any", "where": granted},
            {
                "op": "related",
                "path": ["PermissionSetGroup", "PermissionSet"],
                "mode": "any",
                "where": granted,
            },
        ],
    }


# ---------------------------------------------------------------------------
# AUTH: Authentication
# ---------------------------------------------------------------------------

_AUTH_CONTROLS: list[dict[str, Any]] = [
    {
        "id": "SBS-AUTH-001",
        "title": "Enforce single sign-on for the organization",
        "risk": "Critical",
        "description": "The organization must require single sign-on through the corporate identity provider.",
        "rationale": (
            "Centralizing authentication in the identity provider applies corporate "
            "MFA, device and session policy uniformly and makes deprovisioning immediate."
        ),
        "audit_procedure": "Open the single sign-on settings and confirm SSO is required for login.",
        "remediation_text": "Enable 'Require SSO' in the single sign-on settings.",
        "default_value_note": "SSO is not required by default.",
        "predicate": {
            "op": "setting",
            "setting_id": "SingleSignOnSettings",
            "require": {"op": "eq", "attr": "sso_required", "value": True},
        },
    },
    {
        "id": "SBS-AUTH-002",
        "title": "All active users authenticate through SSO",
        "risk": "High",
        "description": "Every active user must be enabled for single sign-on.",
        "rationale": "Users outside SSO bypass the identity provider's controls and offboarding.",
        "audit_procedure": "List active users and confirm each has the SSO-enabled permission.",
        "remediation_text": "Enable SSO for each listed user or record an approved exception.",
        "default_value_note": "Users are not SSO-enabled by default.",
        "related_controls": ["SBS-AUTH-001", "SBS-AUTH-003"],
        "predicate": {
            "op": "for_all",
            "scope": {"kind": "User", "where": _ACTIVE_USER},
            "require": {"op": "eq", "attr": "is_sso_enabled", "value": True},
        },
    },
    {
        "id": "SBS-AUTH-003",
        "title": "Strong password policy where local authentication exists",
        "risk": "Moderate",
        "description": (
            "When any active user can still log in with a local password, the password "
            "policy must require at least 12 characters, complexity, and lockout after "
            "at most 5 failed attempts."
        ),
        "rationale": "Local credentials are the remaining password attack surface.",
        "audit_procedure": "Open the password policies page and compare each field.",
        "remediation_text": "Set minimum length >= 12, complexity enabled, lockout <= 5 attempts.",
        "default_value_note": "Default minimum length is 8 with lockout after 10 attempts.",
        "applicability": {"op": "exists", "scope": {"kind": "User", "where": _LOCAL_AUTH_USER}},
        "predicate": {
            "op": "setting",
            "setting_id": "PasswordPolicies",
            "require": {
                "op": "all_of",
                "of": [
                    {"op": "ge", "attr": "min_length", "value": 12},
                    {"op": "eq", "attr": "complexity_required", "value": True},
                    {"op": "le", "attr": "max_login_attempts", "value": 5},
                ],
            },
        },
    },
    {
        "id": "SBS-AUTH-004",
        "title": "MFA for users who log in with local credentials",
        "risk": "High",
        "description": "Every active user not covered by SSO must have multi-factor authentication enabled.",
        "rationale": "Local passwords without a second factor are trivially phishable.",
        "audit_procedure": "List active non-SSO users and confirm MFA registration.",
        "remediation_text": "Require MFA for each listed user through a permission set or session policy.",
        "default_value_note": "MFA is not enforced for local logins by default.",
        "applicability": {"op": "exists", "scope": {"kind": "User", "where": _LOCAL_AUTH_USER}},
        "predicate": {
            "op": "for_all",
            "scope": {"kind": "User", "where": _LOCAL_AUTH_USER},
            "require": {"op": "eq", "attr": "mfa_enabled", "value": True},
        },
    },
]

# ---------------------------------------------------------------------------
# ACS: Access controls
# ---------------------------------------------------------------------------

_ACS_CONTROLS: list[dict[str, Any]] = [
    {
        "id": "SBS-ACS-001",
        "title": "Limit users holding Modify All Data",
        "risk": "Critical",
        "description": "No more than three active users may hold Modify All Data by any assignment path.",
        "rationale": "Modify All Data bypasses the sharing model entirely.",
        "audit_procedure": (
            "Query users whose profile, permission sets, or permission set groups grant Modify All Data."
        ),
        "remediation_text": "Remove Modify All Data from all but the designated administrators.",
        "default_value_note": "Granted to the System Administrator profile by default.",
        "related_controls": ["SBS-GOV-001"],
        "predicate": {
            "op": "at_most",
            "scope": {
                "kind": "User",
                "where": {"op": "all_of", "of": [_ACTIVE_USER, _grants("modify_all_data")]},
            },
            "limit": 3,
        },
    },
    {
        "id": "SBS-ACS-002",
        "title": "API access only for integration users",
        "risk": "High",
        "description": "Active users other than integration users must not hold API Enabled.",
        "rationale": "API access lets a compromised interactive account exfiltrate data in bulk.",
        "audit_procedure": "Query active non-integration users granted API Enabled by any path.",
        "remediation_text": "Remove API Enabled from the listed users' profiles and permission sets.",
        "default_value_note": "API Enabled is granted to most standard profiles by default.",
        "predicate": {
            "op": "none_match",
            "scope": {
                "kind": "User",
                "where": {
                    "op": "all_of",
                    "of": [_ACTIVE_USER, {"op": "ne", "attr": "user_type", "value": "Integration"}],
                },
            },
            "forbid": _grants("api_enabled"),
        },
    },
    {
        "id": "SBS-ACS-003",
        "title": "Custom profiles do not grant View All Data",
        "risk": "Moderate",
        "description": "No custom profile may include View All Data.",
        "rationale": "Broad read access belongs in reviewed permission sets, not baseline profiles.",
        "audit_procedure": "Inspect every custom profile's system permissions.",
        "remediation_text": "Move View All Data into a reviewed permission set.",
        "default_value_note": "Custom profiles cloned from System Administrator inherit it.",
        "predicate": {
            "op": "none_match",
            "scope": {"kind": "Profile", "where": {"op": "eq", "attr": "is_custom", "value": True}},
            "forbid": {"op": "truthy", "attr": "view_all_data"},
        },
    },
    {
        "id": "SBS-ACS-004",
        "title": "Connected apps restricted to admin-approved users",
        "risk": "High",
        "description": "Every connected app must only permit admin-approved users to authorize.",
        "rationale": "Self-authorized apps create unreviewed OAuth grants into the org.",
        "audit_procedure": "Inspect the OAuth policies of each connected app.",
        "remediation_text": "Set 'Permitted Users' to 'Admin approved users are pre-authorized'.",
        "default_value_note": "All users may self-authorize by default.",
        "predicate": {
            "op": "for_all",
            "scope": {"kind": "ConnectedApp"},
            "require": {"op": "eq", "attr": "permitted_users", "value": "admin_approved"},
        },
    },
]

# ---------------------------------------------------------------------------
# CODE: Code security
# ---------------------------------------------------------------------------

_CODE_CONTROLS: list[dict[str, Any]] = [
    {
        "id": "SBS-CODE-001",
        "title": "Author Apex restricted to designated developers",
        "risk": "High",
        "description": "Only designated developers may hold the permission to author server-side code.",
        "rationale": "Server-side code runs in system context and can bypass field and object security.",
        "audit_procedure": "Query active users granted Author Apex and compare with the developer roster.",
        "remediation_text": "Remove Author Apex from users who are not designated developers.",
        "default_value_note": "Granted to System Administrator by default.",
        "predicate": {
            "op": "none_match",
            "scope": {
                "kind": "User",
                "where": {
                    "op": "all_of",
                    "of": [
                        _ACTIVE_USER,
                        {"op": "not", "of": {"op": "eq", "attr": "is_designated_developer", "value": True}},
                    ],
                },
            },
            "forbid": _grants("author_apex"),
        },
    },
    {
        "id": "SBS-CODE-002",
        "title": "Production changes require reviewed deployments",
        "risk": "Moderate",
        "description": "Direct changes to production metadata outside reviewed deployments must be disabled.",
        "rationale": "Unreviewed production changes bypass change management and testing.",
        "audit_procedure": "Open deployment settings and confirm direct production edits are disabled.",
        "remediation_text": "Disable direct production edits and require deployments from source control.",
        "default_value_note": "Direct production edits are allowed by default.",
        "related_controls": ["SBS-GOV-002"],
        "predicate": {
            "op": "setting",
            "setting_id": "DeploymentSettings",
            "require": {"op": "eq", "attr": "allow_direct_production_changes", "value": False},
        },
    },
]

# ---------------------------------------------------------------------------
# CPORTAL: Customer portals
# ---------------------------------------------------------------------------

_CPORTAL_CONTROLS: list[dict[str, Any]] = [
    {
        "id": "SBS-CPORTAL-001",
        "title": "Guest user profiles do not have API access",
        "risk": "Critical",
        "description": "Profiles used by unauthenticated portal guests must not include API Enabled.",
        "rationale": "Guest API access exposes data to anonymous internet callers.",
        "audit_procedure": "Inspect the system permissions of every guest user profile.",
        "remediation_text": "Remove API Enabled from all guest user profiles.",
        "default_value_note": "Guest profiles do not include API Enabled by default.",
        "predicate": {
            "op": "none_match",
            "scope": {"kind": "Profile", "where": {"op": "eq", "attr": "is_guest_profile", "value": True}},
            "forbid": {"op": "truthy", "attr": "api_enabled"},
        },
    },
    {
        "id": "SBS-CPORTAL-002",
        "title": "Guest users hold no View All Data permission sets",
        "risk": "High",
        "description": "Portal guest users must not be assigned permission sets granting View All Data.",
        "rationale": "Guest users are anonymous; any broad read grant is a public data leak.",
        "audit_procedure": "List permission set assignments for guest users.",
        "remediation_text": "Unassign the listed permission sets from guest users.",
        "default_value_note": "Guest users have no permission set assignments by default.",
        "applicability": {
            "op": "exists",
            "scope": {"kind": "User", "where": {"op": "eq", "attr": "user_type", "value": "Guest"}},
        },
        "predicate": {
            "op": "none_match",
            "scope": {"kind": "User", "where": {"op": "eq", "attr": "user_type", "value": "Guest"}},
            "forbid": {
                "op": "related",
                "path": ["PermissionSet"],
                "mode": "any",
                "where": {"op": "truthy", "attr": "view_all_data"},
            },
        },
    },
]

# ---------------------------------------------------------------------------
# GOV: Governance
# ---------------------------------------------------------------------------

_GOV_CONTROLS: list[dict[str, Any]] = [
    {
        "id": "SBS-GOV-001",
        "title": "Permission set groups reviewed every 90 days",
        "risk": "Moderate",
        "description": "Every permission set group must have been reviewed within the last 90 days.",
        "rationale": "Periodic review catches permission creep in grouped grants.",
        "audit_procedure": "Compare each group's last review date against the review log.",
        "remediation_text": "Review the listed groups and record the review date.",
        "default_value_note": "No review cadence is enforced by the platform.",
        "related_controls": ["SBS-ACS-001"],
        "predicate": {
            "op": "for_all",
            "scope": {"kind": "PermissionSetGroup"},
            "require": {"op": "le", "attr": "last_reviewed_days", "value": 90},
        },
    },
    {
        "id": "SBS-GOV-002",
        "title": "Setup audit trail retained for 180 days",
        "risk": "Moderate",
        "description": "Configuration change history must be exported and retained for at least 180 days.",
        "rationale": "Change investigations need history beyond the platform's default window.",
        "audit_procedure": "Confirm the audit trail export job and its retention period.",
        "remediation_text": "Schedule a setup audit trail export with retention of at least 180 days.",
        "default_value_note": "The platform retains setup audit history for 180 days without export.",
        "predicate": {
            "op": "setting",
            "setting_id": "SetupAuditTrail",
            "require": {"op": "ge", "attr": "retention_days", "value": 180},
        },
    },
]

BENCHMARK_CONTROLS: list[dict[str, Any]] = [
    *_AUTH_CONTROLS,
    *_ACS_CONTROLS,
    *_CODE_CONTROLS,
    *_CPORTAL_CONTROLS,
    *_GOV_CONTROLS,
]


def build_benchmark_catalog(categories: CategoryResolver | None = None) -> ControlCatalog:
    """Build the built-in benchmark catalog.

    Args:
        categories: Optional category resolver; defaults to the standard prefixes.

    Returns:
        A freshly constructed ControlCatalog at BENCHMARK_VERSION.
    """
    return load_catalog(
        {"version": BENCHMARK_VERSION, "controls": BENCHMARK_CONTROLS},
        categories,
    )
