from __future__ import annotations

from datetime import datetime
from typing import Optional

from tradedesk.models.domain import TradeAction, TradeStage
from tradedesk.schemas.trades import TimelineStage, Trade, TradeTimelineEvent
from tradedesk.services.trade_lifecycle import TRANSITIONS, stage_order

CREATED = "CREATED"

_LABELS: dict[str, str] = {
    CREATED: "Trade Created",
    TradeStage.SUBMITTED.value: "Submitted for Approval",
    TradeStage.APPROVED.value: "Approved",
    TradeStage.CANCELLED.value: "Cancelled",
    TradeStage.CLOSED.value: "Closed",
}

# Forward path after DRAFT; CANCELLED is a side branch handled separately.
_FORWARD = (TradeStage.SUBMITTED, TradeStage.APPROVED, TradeStage.CLOSED)


def _audit(trade: Trade, stage: TradeStage) -> tuple[Optional[datetime], Optional[str]]:
    if stage == TradeStage.SUBMITTED:
        return trade.submitted_at, trade.submitted_by_name
    if stage == TradeStage.APPROVED:
        return trade.approved_at, trade.approved_by_name
    if stage == TradeStage.CANCELLED:
        return trade.cancelled_at, trade.cancelled_by_name
    if stage == TradeStage.CLOSED:
        return trade.closed_at, trade.closed_by_name
    return trade.created_at, trade.created_by_name


def _event(
    stage: TimelineStage,
    timestamp: Optional[datetime],
    user_name: Optional[str],
    *,
    is_current: bool,
    details: Optional[str] = None,
) -> TradeTimelineEvent:
    key = stage.value if isinstance(stage, TradeStage) else stage
    return TradeTimelineEvent(
        stage=stage,
        label=_LABELS[key],
        timestamp=timestamp,
        user_name=user_name,
        details=details,
        is_current=is_current,
    )


def build_trade_timeline(trade: Trade) -> list[TradeTimelineEvent]:
    """Ordered audit events for a trade, oldest first.

    CREATED always leads. Forward stages up to the current one appear when
    their timestamp is recorded; the current stage always appears, with a
    null timestamp if the record is incomplete. A cancelled trade ends with a
    single CANCELLED event carrying the reason. Exactly one event is current.
    """

    current = trade.trade_stage
    events = [
        _event(
            CREATED,
            trade.created_at,
            trade.created_by_name,
            is_current=current == TradeStage.DRAFT,
        )
    ]

    if current == TradeStage.CANCELLED:
        # Only stages cancel can be reached from precede the cancellation.
        cancellable_from = TRANSITIONS[TradeAction.cancel].allowed_from
        walk = [s for s in _FORWARD if s in cancellable_from]
    else:
        walk = [s for s in _FORWARD if stage_order(s) <= stage_order(current)]

    for stage in walk:
        timestamp, user_name = _audit(trade, stage)
        is_current = stage == current
        if timestamp is None and not is_current:
            continue
        events.append(_event(stage, timestamp, user_name, is_current=is_current))

    if current == TradeStage.CANCELLED:
        timestamp, user_name = _audit(trade, TradeStage.CANCELLED)
        events.append(
            _event(
                TradeStage.CANCELLED,
                timestamp,
                user_name,
                is_current=True,
                details=trade.cancel_reason,
            )
        )

    return events
