from tradedesk.models.domain import RoleName, TradeAction, TradeStage, TradeType
from tradedesk.models.session_entry import SessionEntry

__all__ = [
    "RoleName",
    "SessionEntry",
    "TradeAction",
    "TradeStage",
    "TradeType",
]
