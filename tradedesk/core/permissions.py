from __future__ import annotations

from typing import Optional

from tradedesk.models.domain import RoleName

_READ_PERMISSIONS = frozenset(
    {
        "dashboard.view",
        "parties.view",
        "trades.view",
        "invoices.view",
        "payments.view",
        "exposure.view",
        "hedges.view",
    }
)

# Role -> permission matrix (per company membership).
ROLE_PERMISSIONS: dict[RoleName, frozenset[str]] = {
    RoleName.ADMIN: _READ_PERMISSIONS
    | {
        "parties.create",
        "parties.edit",
        "parties.delete",
        "trades.create",
        "trades.edit",
        "trades.delete",
        "invoices.create",
        "invoices.edit",
        "invoices.delete",
        "payments.create",
        "payments.edit",
        "payments.delete",
        "hedges.create",
        "hedges.edit",
        "hedges.delete",
        "audit.view",
        "users.manage",
        "settings.manage",
    },
    RoleName.FINANCE: _READ_PERMISSIONS
    | {
        "parties.create",
        "parties.edit",
        "trades.create",
        "trades.edit",
        "invoices.create",
        "invoices.edit",
        "payments.create",
        "payments.edit",
        "hedges.create",
        "hedges.edit",
        "audit.view",
    },
    # Auditor is strictly observational.
    RoleName.AUDITOR: _READ_PERMISSIONS,
}

_ROLE_DISPLAY_NAMES = {
    RoleName.ADMIN: "Admin",
    RoleName.FINANCE: "Finance",
    RoleName.AUDITOR: "Auditor",
}


def coerce_role(role: object) -> Optional[RoleName]:
    """Accept a RoleName, its string value, or None; unknown values map to None."""

    if role is None or isinstance(role, RoleName):
        return role
    try:
        return RoleName(str(role).strip().upper())
    except ValueError:
        return None


def is_admin(role: object) -> bool:
    return coerce_role(role) == RoleName.ADMIN


def has_finance_access(role: object) -> bool:
    """Admin or Finance: the roles allowed to create and move transactions."""

    return coerce_role(role) in (RoleName.ADMIN, RoleName.FINANCE)


def has_permission(role: object, permission: str) -> bool:
    r = coerce_role(role)
    if r is None:
        return False
    return permission in ROLE_PERMISSIONS.get(r, frozenset())


def can_manage_users(role: object) -> bool:
    return is_admin(role)


def can_edit_company(role: object) -> bool:
    return is_admin(role)


def role_display_name(role: object) -> str:
    r = coerce_role(role)
    return _ROLE_DISPLAY_NAMES.get(r, "Unknown") if r else "Unknown"
