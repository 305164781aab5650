from enum import Enum as PyEnum


class RoleName(str, PyEnum):
    """Per-company permission tier."""

    ADMIN = "ADMIN"
    FINANCE = "FINANCE"
    AUDITOR = "AUDITOR"  # view-only everywhere


class TradeStage(str, PyEnum):
    DRAFT = "DRAFT"
    SUBMITTED = "SUBMITTED"
    APPROVED = "APPROVED"
    CANCELLED = "CANCELLED"
    CLOSED = "CLOSED"


class TradeType(str, PyEnum):
    IMPORT = "IMPORT"
    EXPORT = "EXPORT"


class TradeAction(str, PyEnum):
    create = "create"
    edit = "edit"
    submit = "submit"
    approve = "approve"
    cancel = "cancel"
    close = "close"
