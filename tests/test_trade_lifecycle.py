import pytest

from tradedesk.models.domain import RoleName, TradeAction, TradeStage
from tradedesk.schemas.trades import TradeFormData
from tradedesk.services import trade_lifecycle as lc

from conftest import make_trade

ALL_STAGES = list(TradeStage)
WRITERS = (RoleName.ADMIN, RoleName.FINANCE)

# (action, stages it may start from, roles allowed)
EXPECTED = {
    TradeAction.edit: ({TradeStage.DRAFT}, WRITERS),
    TradeAction.submit: ({TradeStage.DRAFT}, WRITERS),
    TradeAction.approve: ({TradeStage.SUBMITTED}, (RoleName.ADMIN,)),
    TradeAction.cancel: ({TradeStage.DRAFT, TradeStage.SUBMITTED}, WRITERS),
    TradeAction.close: ({TradeStage.APPROVED}, WRITERS),
}

GUARDS = {
    TradeAction.edit: lc.can_edit_trade,
    TradeAction.submit: lc.can_submit_trade,
    TradeAction.approve: lc.can_approve_trade,
    TradeAction.cancel: lc.can_cancel_trade,
    TradeAction.close: lc.can_close_trade,
}


@pytest.mark.parametrize("action", list(EXPECTED))
@pytest.mark.parametrize("stage", ALL_STAGES)
@pytest.mark.parametrize("role", list(RoleName))
def test_guard_grid(role, stage, action):
    stages, roles = EXPECTED[action]
    expected = stage in stages and role in roles
    assert GUARDS[action](role, make_trade(stage)) is expected
    assert lc.is_action_allowed(role, stage, action) is expected


def test_auditor_may_do_nothing():
    assert not lc.can_create_trade(RoleName.AUDITOR)
    for stage in ALL_STAGES:
        assert lc.allowed_actions(RoleName.AUDITOR, stage) == []


def test_missing_role_or_trade_denies():
    assert not lc.can_create_trade(None)
    assert not lc.can_submit_trade(None, make_trade())
    assert not lc.can_submit_trade(RoleName.ADMIN, None)
    assert not lc.can_approve_trade("NOT_A_ROLE", make_trade(TradeStage.SUBMITTED))


def test_role_strings_are_accepted():
    assert lc.can_approve_trade("admin", TradeStage.SUBMITTED)
    assert not lc.can_approve_trade("finance", TradeStage.SUBMITTED)


def test_allowed_actions_for_draft():
    assert lc.allowed_actions(RoleName.FINANCE, TradeStage.DRAFT) == [
        TradeAction.edit,
        TradeAction.submit,
        TradeAction.cancel,
    ]
    assert lc.allowed_actions(RoleName.ADMIN, TradeStage.SUBMITTED) == [
        TradeAction.approve,
        TradeAction.cancel,
    ]


def test_ensure_action_allowed_raises_with_context():
    with pytest.raises(lc.TradeActionNotAllowed) as exc_info:
        lc.ensure_action_allowed(RoleName.FINANCE, make_trade(TradeStage.SUBMITTED), TradeAction.approve)

    err = exc_info.value
    assert err.action == TradeAction.approve
    assert err.role == RoleName.FINANCE
    assert err.stage == TradeStage.SUBMITTED


def test_terminal_stages_have_no_exits():
    for stage in (TradeStage.CANCELLED, TradeStage.CLOSED):
        assert lc.is_trade_terminal(stage)
        assert lc.next_stages(stage) == []
        for role in RoleName:
            assert lc.allowed_actions(role, stage) == []


def test_next_stages():
    assert lc.next_stages(TradeStage.DRAFT) == [TradeStage.SUBMITTED, TradeStage.CANCELLED]
    assert lc.next_stages(TradeStage.SUBMITTED) == [TradeStage.APPROVED, TradeStage.CANCELLED]
    assert lc.next_stages(TradeStage.APPROVED) == [TradeStage.CLOSED]


def test_read_only_unless_draft():
    assert not lc.is_trade_read_only(make_trade(TradeStage.DRAFT))
    for stage in ALL_STAGES[1:]:
        assert lc.is_trade_read_only(make_trade(stage))


def test_stage_order_puts_cancelled_level_with_approved():
    assert lc.stage_order("CREATED") == 0
    assert lc.stage_order(TradeStage.DRAFT) < lc.stage_order(TradeStage.SUBMITTED)
    assert lc.stage_order(TradeStage.CANCELLED) == lc.stage_order(TradeStage.APPROVED)
    assert lc.stage_order(TradeStage.CLOSED) == 4


# =============================================================================
# Validation
# =============================================================================


@pytest.mark.parametrize(
    "reason, expected",
    [
        (None, "Cancel reason is required"),
        ("", "Cancel reason is required"),
        ("   ", "Cancel reason is required"),
        ("x" * 9, "Reason must be at least 10 characters"),
        ("x" * 10, None),
        ("x" * 500, None),
        ("x" * 501, "Reason must be 500 characters or less"),
    ],
)
def test_validate_cancel_reason(reason, expected):
    assert lc.validate_cancel_reason(reason) == expected


def test_validate_trade_fields():
    assert lc.validate_trade_fields(TradeFormData(party_id="p-1")) == {}

    errors = lc.validate_trade_fields(
        TradeFormData(party_id="", trade_type=None, trade_reference="r" * 101, remarks="m" * 501)
    )
    assert errors == {
        "partyId": "Party is required",
        "tradeType": "Trade type is required",
        "tradeReference": "Reference must be 100 characters or less",
        "remarks": "Remarks must be 500 characters or less",
    }


def test_labels():
    assert lc.stage_label(TradeStage.SUBMITTED) == "Submitted"
    assert lc.trade_type_label("EXPORT") == "Export"
    assert lc.trade_type_label("IMPORT") == "Import"
