"""Trade lifecycle: stages, role-gated transitions, derived flags, validation.

Every guard is a pure function of (role, trade stage). Callers evaluate them
to decide which actions to offer and evaluate them again right before
dispatching a command, since the trade or the active role may have changed
after the screen was drawn.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Optional

from tradedesk.core.permissions import coerce_role, has_finance_access
from tradedesk.models.domain import RoleName, TradeAction, TradeStage
from tradedesk.schemas.trades import Trade, TradeFormData


class TradeActionNotAllowed(Exception):
    def __init__(self, action: TradeAction, role: Optional[RoleName], stage: Optional[TradeStage]):
        self.action = action
        self.role = role
        self.stage = stage
        role_s = role.value if role else "no role"
        stage_s = stage.value if stage else "no trade"
        super().__init__(f"{action.value} is not allowed for {role_s} on a {stage_s} trade")


class TradeValidationError(ValueError):
    def __init__(self, errors: dict[str, str]):
        self.errors = errors
        super().__init__("; ".join(f"{k}: {v}" for k, v in errors.items()))


@dataclass(frozen=True)
class Transition:
    action: TradeAction
    allowed_from: frozenset[Optional[TradeStage]]
    to_stage: TradeStage
    roles: frozenset[RoleName]


_WRITERS = frozenset({RoleName.ADMIN, RoleName.FINANCE})

TRANSITIONS: dict[TradeAction, Transition] = {
    TradeAction.create: Transition(TradeAction.create, frozenset({None}), TradeStage.DRAFT, _WRITERS),
    TradeAction.edit: Transition(
        TradeAction.edit, frozenset({TradeStage.DRAFT}), TradeStage.DRAFT, _WRITERS
    ),
    TradeAction.submit: Transition(
        TradeAction.submit, frozenset({TradeStage.DRAFT}), TradeStage.SUBMITTED, _WRITERS
    ),
    TradeAction.approve: Transition(
        TradeAction.approve,
        frozenset({TradeStage.SUBMITTED}),
        TradeStage.APPROVED,
        frozenset({RoleName.ADMIN}),
    ),
    TradeAction.cancel: Transition(
        TradeAction.cancel,
        frozenset({TradeStage.DRAFT, TradeStage.SUBMITTED}),
        TradeStage.CANCELLED,
        _WRITERS,
    ),
    TradeAction.close: Transition(
        TradeAction.close, frozenset({TradeStage.APPROVED}), TradeStage.CLOSED, _WRITERS
    ),
}

TERMINAL_STAGES = frozenset({TradeStage.CANCELLED, TradeStage.CLOSED})

STAGE_LABELS: dict[TradeStage, str] = {
    TradeStage.DRAFT: "Draft",
    TradeStage.SUBMITTED: "Submitted",
    TradeStage.APPROVED: "Approved",
    TradeStage.CANCELLED: "Cancelled",
    TradeStage.CLOSED: "Closed",
}

STAGE_DESCRIPTIONS: dict[TradeStage, str] = {
    TradeStage.DRAFT: "Trade is in draft state and can be edited",
    TradeStage.SUBMITTED: "Trade submitted for approval",
    TradeStage.APPROVED: "Trade has been approved",
    TradeStage.CANCELLED: "Trade has been cancelled",
    TradeStage.CLOSED: "Trade has been closed",
}

# CANCELLED sits level with APPROVED: it is the alternative branch.
_STAGE_ORDER: dict[str, int] = {
    "CREATED": 0,
    TradeStage.DRAFT.value: 1,
    TradeStage.SUBMITTED.value: 2,
    TradeStage.APPROVED.value: 3,
    TradeStage.CANCELLED.value: 3,
    TradeStage.CLOSED.value: 4,
}

CANCEL_REASON_MIN_LENGTH = 10
CANCEL_REASON_MAX_LENGTH = 500
TRADE_REFERENCE_MAX_LENGTH = 100
REMARKS_MAX_LENGTH = 500


def _stage_of(trade: Trade | TradeStage | None) -> Optional[TradeStage]:
    if trade is None or isinstance(trade, TradeStage):
        return trade
    return trade.trade_stage


def is_action_allowed(role: object, stage: Optional[TradeStage], action: TradeAction) -> bool:
    """Generic guard over the transition table. `stage` is None only for create."""

    r = coerce_role(role)
    if r is None:
        return False
    transition = TRANSITIONS[action]
    return r in transition.roles and stage in transition.allowed_from


def can_create_trade(role: object) -> bool:
    return has_finance_access(role)


def can_edit_trade(role: object, trade: Trade | TradeStage | None) -> bool:
    stage = _stage_of(trade)
    return stage is not None and is_action_allowed(role, stage, TradeAction.edit)


def can_submit_trade(role: object, trade: Trade | TradeStage | None) -> bool:
    stage = _stage_of(trade)
    return stage is not None and is_action_allowed(role, stage, TradeAction.submit)


def can_approve_trade(role: object, trade: Trade | TradeStage | None) -> bool:
    stage = _stage_of(trade)
    return stage is not None and is_action_allowed(role, stage, TradeAction.approve)


def can_cancel_trade(role: object, trade: Trade | TradeStage | None) -> bool:
    stage = _stage_of(trade)
    return stage is not None and is_action_allowed(role, stage, TradeAction.cancel)


def can_close_trade(role: object, trade: Trade | TradeStage | None) -> bool:
    stage = _stage_of(trade)
    return stage is not None and is_action_allowed(role, stage, TradeAction.close)


def allowed_actions(role: object, trade: Trade | TradeStage | None) -> list[TradeAction]:
    """Actions to surface for an existing trade, in table order."""

    stage = _stage_of(trade)
    if stage is None:
        return []
    return [
        action
        for action in TRANSITIONS
        if action != TradeAction.create and is_action_allowed(role, stage, action)
    ]


def ensure_action_allowed(
    role: object, trade: Trade | TradeStage | None, action: TradeAction
) -> None:
    stage = None if action == TradeAction.create else _stage_of(trade)
    allowed = (
        can_create_trade(role)
        if action == TradeAction.create
        else stage is not None and is_action_allowed(role, stage, action)
    )
    if not allowed:
        raise TradeActionNotAllowed(action, coerce_role(role), stage)


def is_trade_read_only(trade: Trade | TradeStage | None) -> bool:
    return _stage_of(trade) != TradeStage.DRAFT


def is_trade_terminal(trade: Trade | TradeStage | None) -> bool:
    return _stage_of(trade) in TERMINAL_STAGES


def next_stages(stage: TradeStage) -> list[TradeStage]:
    stages: list[TradeStage] = []
    for transition in TRANSITIONS.values():
        if stage in transition.allowed_from and transition.to_stage != stage:
            if transition.to_stage not in stages:
                stages.append(transition.to_stage)
    return stages


def stage_order(stage: TradeStage | str) -> int:
    key = stage.value if isinstance(stage, TradeStage) else str(stage)
    return _STAGE_ORDER.get(key, 0)


def stage_label(stage: TradeStage | str) -> str:
    try:
        return STAGE_LABELS[TradeStage(stage)]
    except ValueError:
        return str(stage)


def trade_type_label(trade_type: object) -> str:
    value = getattr(trade_type, "value", trade_type)
    return "Export" if value == "EXPORT" else "Import"


def validate_cancel_reason(reason: Optional[str]) -> Optional[str]:
    """Return an error message, or None when the reason is acceptable."""

    if not reason or not reason.strip():
        return "Cancel reason is required"
    if len(reason) < CANCEL_REASON_MIN_LENGTH:
        return f"Reason must be at least {CANCEL_REASON_MIN_LENGTH} characters"
    if len(reason) > CANCEL_REASON_MAX_LENGTH:
        return f"Reason must be {CANCEL_REASON_MAX_LENGTH} characters or less"
    return None


def validate_trade_fields(form: TradeFormData) -> dict[str, str]:
    errors: dict[str, str] = {}
    if not form.party_id:
        errors["partyId"] = "Party is required"
    if not form.trade_type:
        errors["tradeType"] = "Trade type is required"
    if form.trade_reference and len(form.trade_reference) > TRADE_REFERENCE_MAX_LENGTH:
        errors["tradeReference"] = (
            f"Reference must be {TRADE_REFERENCE_MAX_LENGTH} characters or less"
        )
    if form.remarks and len(form.remarks) > REMARKS_MAX_LENGTH:
        errors["remarks"] = f"Remarks must be {REMARKS_MAX_LENGTH} characters or less"
    return errors
