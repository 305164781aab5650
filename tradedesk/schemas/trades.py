from __future__ import annotations

from datetime import datetime
from typing import Literal, Optional, Union

from pydantic import Field

from tradedesk.models.domain import TradeStage, TradeType
from tradedesk.schemas.common import ApiEnvelope, ApiModel, Pagination


class Trade(ApiModel):
    id: str
    company_id: str
    party_id: str
    party_name: str = ""
    trade_number: str
    trade_type: TradeType
    trade_reference: Optional[str] = None
    remarks: Optional[str] = None
    trade_stage: TradeStage = TradeStage.DRAFT

    created_by: str = ""
    created_by_name: Optional[str] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    submitted_by: Optional[str] = None
    submitted_by_name: Optional[str] = None
    submitted_at: Optional[datetime] = None

    approved_by: Optional[str] = None
    approved_by_name: Optional[str] = None
    approved_at: Optional[datetime] = None

    cancelled_by: Optional[str] = None
    cancelled_by_name: Optional[str] = None
    cancelled_at: Optional[datetime] = None
    cancel_reason: Optional[str] = None

    closed_by: Optional[str] = None
    closed_by_name: Optional[str] = None
    closed_at: Optional[datetime] = None


class CreateTradeRequest(ApiModel):
    party_id: str = Field(..., min_length=1)
    trade_type: TradeType
    trade_reference: Optional[str] = None
    remarks: Optional[str] = None


class UpdateTradeRequest(ApiModel):
    id: str
    party_id: Optional[str] = None
    trade_type: Optional[TradeType] = None
    trade_reference: Optional[str] = None
    remarks: Optional[str] = None

    def body(self) -> dict:
        return self.model_dump(mode="json", by_alias=True, exclude_none=True, exclude={"id"})


class CancelTradeRequest(ApiModel):
    id: str
    cancel_reason: str

    def body(self) -> dict:
        return {"cancelReason": self.cancel_reason}


class TradeFilters(ApiModel):
    stage: Optional[TradeStage] = None
    trade_type: Optional[TradeType] = None
    party_id: Optional[str] = None
    search: Optional[str] = None
    page: Optional[int] = Field(default=None, ge=1)
    limit: Optional[int] = Field(default=None, ge=1)

    def to_params(self) -> dict[str, str]:
        """Query parameters in the order the API documents them; empty values dropped."""

        params: dict[str, str] = {}
        for key, value in self.model_dump(mode="json", by_alias=True).items():
            if value in (None, "", 0):
                continue
            params[key] = str(value)
        return params


class TradeFormData(ApiModel):
    party_id: str = ""
    trade_type: Optional[TradeType] = TradeType.EXPORT
    trade_reference: str = ""
    remarks: str = ""

    @classmethod
    def from_trade(cls, trade: Trade) -> "TradeFormData":
        return cls(
            party_id=trade.party_id,
            trade_type=trade.trade_type,
            trade_reference=trade.trade_reference or "",
            remarks=trade.remarks or "",
        )


TimelineStage = Union[Literal["CREATED"], TradeStage]


class TradeTimelineEvent(ApiModel):
    stage: TimelineStage
    label: str
    timestamp: Optional[datetime] = None
    user_name: Optional[str] = None
    details: Optional[str] = None
    is_current: bool = False


TradeEnvelope = ApiEnvelope[Trade]


class TradesEnvelope(ApiEnvelope[list[Trade]]):
    pagination: Optional[Pagination] = None
